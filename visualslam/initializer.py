"""Monocular map initialisation from two views.

A homography and a fundamental matrix are estimated in parallel RANSAC loops
over the same minimal sets. The model that explains the matches better is then
decomposed into a relative motion, and the matched points are triangulated.
"""

from __future__ import annotations

import math
import random
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from visualslam.epipolar import compute_f21, compute_h21, decompose_e, normalize, triangulate

_CHI2_ONE_DOF = 3.841
_CHI2_TWO_DOF = 5.991
_PARALLAX_COS_LIMIT = 0.99998
_HOMOGRAPHY_RATIO = 0.40
_MIN_SET = 8


@dataclass
class Reconstruction:
    """Relative motion of view 2 with respect to view 1 and the triangulated points.

    ``points`` has one row per keypoint of the reference view; ``triangulated``
    flags the rows that hold a point seen with enough parallax.
    """

    rotation: np.ndarray
    translation: np.ndarray
    points: np.ndarray
    triangulated: list[bool]


def _points(points) -> np.ndarray:
    rows = [getattr(p, "pt", p) for p in points]
    arr = np.asarray(rows, dtype=np.float64)
    if arr.size == 0:
        return arr.reshape(0, 2)
    if arr.ndim != 2 or arr.shape[1] < 2:
        raise ValueError("points must be a sequence of (x, y) pairs")
    return arr[:, :2].copy()


def _homogeneous(points: np.ndarray) -> np.ndarray:
    return np.column_stack([points, np.ones(len(points))])


class Initializer:
    """Estimates the initial two-view reconstruction against a reference view."""

    def __init__(self, reference_points, K, sigma=1.0, iterations=200):
        self._keys1 = _points(reference_points)
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError("calibration matrix must be 3x3")
        if sigma <= 0:
            raise ValueError("sigma must be positive")
        if iterations < 1:
            raise ValueError("at least one RANSAC iteration is required")
        self.K = K
        self.sigma = float(sigma)
        self.sigma2 = self.sigma * self.sigma
        self.max_iterations = int(iterations)
        self._keys2 = np.empty((0, 2))
        self._idx1 = np.empty(0, dtype=int)
        self._idx2 = np.empty(0, dtype=int)

    def _set_matches(self, current_points, matches12: Sequence[int]) -> None:
        keys2 = _points(current_points)
        if len(matches12) != len(self._keys1):
            raise ValueError("there must be one match entry per reference keypoint")
        pairs = [(i1, int(i2)) for i1, i2 in enumerate(matches12) if i2 >= 0]
        if any(i2 >= len(keys2) for _, i2 in pairs):
            raise ValueError("a match refers to a keypoint that does not exist")
        self._keys2 = keys2
        self._idx1 = np.array([p[0] for p in pairs], dtype=int)
        self._idx2 = np.array([p[1] for p in pairs], dtype=int)

    def initialize(self, current_points, matches12, seed=0) -> Reconstruction | None:
        """Reconstruct from the current view; ``matches12[i]`` is the match of
        reference keypoint ``i`` in the current view, or a negative value.

        Returns None when no reliable reconstruction is found.
        """
        self._set_matches(current_points, matches12)
        n = len(self._idx1)
        if n < _MIN_SET:
            raise ValueError(f"at least {_MIN_SET} matches are required")

        rng = random.Random(seed)
        sets = [rng.sample(range(n), _MIN_SET) for _ in range(self.max_iterations)]

        h_inliers, h_score, H = self._find_homography(sets)
        f_inliers, f_score, F = self._find_fundamental(sets)

        total = h_score + f_score
        if not total > 0:
            return None
        if h_score / total > _HOMOGRAPHY_RATIO:
            return self.reconstruct_h(h_inliers, H, 1.0, 50)
        return self.reconstruct_f(f_inliers, F, 1.0, 50)

    def _find_homography(self, sets):
        pn1, T1 = normalize(self._keys1)
        pn2, T2 = normalize(self._keys2)
        T2inv = np.linalg.inv(T2)
        best_score = 0.0
        best_inliers = [False] * len(self._idx1)
        best_H = None
        for chosen in sets:
            Hn = compute_h21(pn1[self._idx1[chosen]], pn2[self._idx2[chosen]])
            H21 = T2inv @ Hn @ T1
            try:
                H12 = np.linalg.inv(H21)
            except np.linalg.LinAlgError:
                continue
            score, inliers = self.check_homography(H21, H12)
            if score > best_score:
                best_score, best_inliers, best_H = score, inliers, H21.copy()
        return best_inliers, best_score, best_H

    def _find_fundamental(self, sets):
        pn1, T1 = normalize(self._keys1)
        pn2, T2 = normalize(self._keys2)
        T2t = T2.T
        best_score = 0.0
        best_inliers = [False] * len(self._idx1)
        best_F = None
        for chosen in sets:
            Fn = compute_f21(pn1[self._idx1[chosen]], pn2[self._idx2[chosen]])
            F21 = T2t @ Fn @ T1
            score, inliers = self.check_fundamental(F21)
            if score > best_score:
                best_score, best_inliers, best_F = score, inliers, F21.copy()
        return best_inliers, best_score, best_F

    def check_homography(self, H21, H12) -> tuple[float, list[bool]]:
        """Score a homography by symmetric transfer error; returns (score, inliers)."""
        H21 = np.asarray(H21, dtype=np.float64)
        H12 = np.asarray(H12, dtype=np.float64)
        p1 = self._keys1[self._idx1]
        p2 = self._keys2[self._idx2]
        inv_sigma2 = 1.0 / self.sigma2
        with np.errstate(divide="ignore", invalid="ignore"):
            x2in1 = _homogeneous(p2) @ H12.T
            x2in1 = x2in1[:, :2] / x2in1[:, 2:3]
            chi1 = ((p1 - x2in1) ** 2).sum(axis=1) * inv_sigma2
            x1in2 = _homogeneous(p1) @ H21.T
            x1in2 = x1in2[:, :2] / x1in2[:, 2:3]
            chi2 = ((p2 - x1in2) ** 2).sum(axis=1) * inv_sigma2
        in1 = ~(chi1 > _CHI2_TWO_DOF)
        in2 = ~(chi2 > _CHI2_TWO_DOF)
        score = float(np.sum(_CHI2_TWO_DOF - chi1[in1]) + np.sum(_CHI2_TWO_DOF - chi2[in2]))
        return score, [bool(v) for v in in1 & in2]

    def check_fundamental(self, F21) -> tuple[float, list[bool]]:
        """Score a fundamental matrix by point-to-epipolar-line distance; returns (score, inliers)."""
        F21 = np.asarray(F21, dtype=np.float64)
        h1 = _homogeneous(self._keys1[self._idx1])
        h2 = _homogeneous(self._keys2[self._idx2])
        inv_sigma2 = 1.0 / self.sigma2
        with np.errstate(divide="ignore", invalid="ignore"):
            lines2 = h1 @ F21.T
            num2 = (lines2 * h2).sum(axis=1)
            chi1 = num2 * num2 / (lines2[:, 0] ** 2 + lines2[:, 1] ** 2) * inv_sigma2
            lines1 = h2 @ F21
            num1 = (lines1 * h1).sum(axis=1)
            chi2 = num1 * num1 / (lines1[:, 0] ** 2 + lines1[:, 1] ** 2) * inv_sigma2
        in1 = ~(chi1 > _CHI2_ONE_DOF)
        in2 = ~(chi2 > _CHI2_ONE_DOF)
        score = float(np.sum(_CHI2_TWO_DOF - chi1[in1]) + np.sum(_CHI2_TWO_DOF - chi2[in2]))
        return score, [bool(v) for v in in1 & in2]

    def check_rt(self, R, t, inliers, th2) -> tuple[int, np.ndarray, list[bool], float]:
        """Triangulate the inlier matches under motion (R, t) and count the good ones.

        Returns ``(n_good, points, good, parallax_degrees)``, where ``points`` and
        ``good`` have one entry per reference keypoint.
        """
        R = np.asarray(R, dtype=np.float64)
        t = np.asarray(t, dtype=np.float64).reshape(3)
        K = self.K
        fx, fy, cx, cy = K[0, 0], K[1, 1], K[0, 2], K[1, 2]
        n_keys = len(self._keys1)
        good = [False] * n_keys
        points = np.zeros((n_keys, 3))
        cos_parallaxes: list[float] = []

        P1 = np.zeros((3, 4))
        P1[:, :3] = K
        P2 = K @ np.column_stack([R, t])
        O2 = -R.T @ t

        n_good = 0
        with np.errstate(divide="ignore", invalid="ignore"):
            for i1, i2, inlier in zip(self._idx1, self._idx2, inliers):
                if not inlier:
                    continue
                kp1 = self._keys1[i1]
                kp2 = self._keys2[i2]
                p3d_c1 = triangulate(kp1, kp2, P1, P2)
                if not np.all(np.isfinite(p3d_c1)):
                    good[i1] = False
                    continue

                normal1 = p3d_c1
                normal2 = p3d_c1 - O2
                cos_parallax = float(normal1 @ normal2 / (np.linalg.norm(normal1) * np.linalg.norm(normal2)))

                if p3d_c1[2] <= 0 and cos_parallax < _PARALLAX_COS_LIMIT:
                    continue
                p3d_c2 = R @ p3d_c1 + t
                if p3d_c2[2] <= 0 and cos_parallax < _PARALLAX_COS_LIMIT:
                    continue

                inv_z1 = 1.0 / p3d_c1[2]
                im1 = np.array([fx * p3d_c1[0] * inv_z1 + cx, fy * p3d_c1[1] * inv_z1 + cy])
                if ((im1 - kp1) ** 2).sum() > th2:
                    continue
                inv_z2 = 1.0 / p3d_c2[2]
                im2 = np.array([fx * p3d_c2[0] * inv_z2 + cx, fy * p3d_c2[1] * inv_z2 + cy])
                if ((im2 - kp2) ** 2).sum() > th2:
                    continue

                cos_parallaxes.append(cos_parallax)
                points[i1] = p3d_c1
                n_good += 1
                if cos_parallax < _PARALLAX_COS_LIMIT:
                    good[i1] = True

        if n_good > 0:
            cos_parallaxes.sort()
            idx = min(50, len(cos_parallaxes) - 1)
            parallax = math.degrees(math.acos(max(-1.0, min(1.0, cos_parallaxes[idx]))))
        else:
            parallax = 0.0
        return n_good, points, good, parallax

    def reconstruct_f(self, inliers, F21, min_parallax=1.0, min_triangulated=50) -> Reconstruction | None:
        """Recover the motion from a fundamental matrix, or None when ambiguous."""
        n = sum(bool(v) for v in inliers)
        E21 = self.K.T @ np.asarray(F21, dtype=np.float64) @ self.K
        R1, R2, t = decompose_e(E21)
        hypotheses = [(R1, t), (R2, t), (R1, -t), (R2, -t)]
        results = [self.check_rt(R, tr, inliers, 4.0 * self.sigma2) for R, tr in hypotheses]
        goods = [r[0] for r in results]
        max_good = max(goods)
        min_good = max(int(0.9 * n), min_triangulated)
        similar = sum(1 for g in goods if g > 0.7 * max_good)
        if max_good < min_good or similar > 1:
            return None

        best = goods.index(max_good)
        _, points, good, parallax = results[best]
        if parallax > min_parallax:
            R, tr = hypotheses[best]
            return Reconstruction(R.copy(), tr.copy(), points, good)
        return None

    def reconstruct_h(self, inliers, H21, min_parallax=1.0, min_triangulated=50) -> Reconstruction | None:
        """Recover the motion from a homography (Faugeras decomposition), or None."""
        n = sum(bool(v) for v in inliers)
        K = self.K
        A = np.linalg.inv(K) @ np.asarray(H21, dtype=np.float64) @ K
        U, w, Vt = np.linalg.svd(A, full_matrices=True)
        s = np.linalg.det(U) * np.linalg.det(Vt)
        d1, d2, d3 = (float(v) for v in w)

        with np.errstate(divide="ignore", invalid="ignore"):
            if not (d1 / d2 >= 1.00001 and d2 / d3 >= 1.00001):
                return None

        aux1 = math.sqrt((d1 * d1 - d2 * d2) / (d1 * d1 - d3 * d3))
        aux3 = math.sqrt((d2 * d2 - d3 * d3) / (d1 * d1 - d3 * d3))
        x1 = (aux1, aux1, -aux1, -aux1)
        x3 = (aux3, -aux3, aux3, -aux3)
        root = math.sqrt((d1 * d1 - d2 * d2) * (d2 * d2 - d3 * d3))

        rotations: list[np.ndarray] = []
        translations: list[np.ndarray] = []

        # case d' = d2
        aux_stheta = root / ((d1 + d3) * d2)
        ctheta = (d2 * d2 + d1 * d3) / ((d1 + d3) * d2)
        stheta = (aux_stheta, -aux_stheta, -aux_stheta, aux_stheta)
        for a, c, st in zip(x1, x3, stheta):
            Rp = np.eye(3)
            Rp[0, 0] = ctheta
            Rp[0, 2] = -st
            Rp[2, 0] = st
            Rp[2, 2] = ctheta
            rotations.append(s * U @ Rp @ Vt)
            tr = U @ (np.array([a, 0.0, -c]) * (d1 - d3))
            translations.append(tr / np.linalg.norm(tr))

        # case d' = -d2
        aux_sphi = root / ((d1 - d3) * d2)
        cphi = (d1 * d3 - d2 * d2) / ((d1 - d3) * d2)
        sphi = (aux_sphi, -aux_sphi, -aux_sphi, aux_sphi)
        for a, c, sp in zip(x1, x3, sphi):
            Rp = np.eye(3)
            Rp[0, 0] = cphi
            Rp[0, 2] = sp
            Rp[1, 1] = -1.0
            Rp[2, 0] = sp
            Rp[2, 2] = -cphi
            rotations.append(s * U @ Rp @ Vt)
            tr = U @ (np.array([a, 0.0, c]) * (d1 + d3))
            translations.append(tr / np.linalg.norm(tr))

        best_good = 0
        second_good = 0
        best_idx = -1
        best_parallax = -1.0
        best_points = None
        best_triangulated = None
        for idx, (R, tr) in enumerate(zip(rotations, translations)):
            n_good, points, good, parallax = self.check_rt(R, tr, inliers, 4.0 * self.sigma2)
            if n_good > best_good:
                second_good = best_good
                best_good = n_good
                best_idx = idx
                best_parallax = parallax
                best_points = points
                best_triangulated = good
            elif n_good > second_good:
                second_good = n_good

        if (
            second_good < 0.75 * best_good
            and best_parallax >= min_parallax
            and best_good > min_triangulated
            and best_good > 0.9 * n
        ):
            return Reconstruction(
                rotations[best_idx].copy(), translations[best_idx].copy(), best_points, best_triangulated
            )
        return None