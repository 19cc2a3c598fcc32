"""A single image frame: keypoints, descriptors, the feature grid and stereo depth."""

from __future__ import annotations

import itertools
import math
from collections.abc import Sequence

import numpy as np

from visualslam.camera import Camera, KeyPoint
from visualslam.descriptors import descriptor_distance

_PATCH_HALF = 5
_SEARCH_HALF = 5
_ROW_BAND = 2.0


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


class Frame:
    """Keypoints of one image together with their grid, depth and camera pose."""

    _ids = itertools.count()

    def __init__(self, keypoints, descriptors, camera: Camera, timestamp=0.0, scale_factors=(1.0,)):
        self.keypoints: list[KeyPoint] = list(keypoints)
        n = len(self.keypoints)
        desc = np.asarray(descriptors, dtype=np.uint8)
        if n == 0:
            desc = desc.reshape(0, desc.shape[-1] if desc.ndim == 2 else 32)
        if desc.ndim != 2 or desc.shape[0] != n:
            raise ValueError("there must be one descriptor row per keypoint")
        factors = [float(s) for s in scale_factors]
        if not factors or any(s <= 0 for s in factors):
            raise ValueError("scale factors must be positive")
        if any(kp.octave < 0 or kp.octave >= len(factors) for kp in self.keypoints):
            raise ValueError("a keypoint octave has no scale factor")

        self.id = next(Frame._ids)
        self.camera = camera
        self.timestamp = float(timestamp)
        self.descriptors = desc

        self.scale_levels = len(factors)
        self.scale_factor = factors[1] if len(factors) > 1 else 1.0
        self.log_scale_factor = math.log(self.scale_factor)
        self.scale_factors = factors
        self.inv_scale_factors = [1.0 / s for s in factors]
        self.level_sigma2 = [s * s for s in factors]
        self.inv_level_sigma2 = [1.0 / s2 for s2 in self.level_sigma2]

        self.keypoints_un: list[KeyPoint] = camera.undistort(self.keypoints)
        self.u_right: list[float] = [-1.0] * n
        self.depth: list[float] = [-1.0] * n
        self.map_points: list[object | None] = [None] * n
        self.outliers: list[bool] = [False] * n

        self.Tcw: np.ndarray | None = None
        self.Rcw: np.ndarray | None = None
        self.tcw: np.ndarray | None = None
        self.Rwc: np.ndarray | None = None
        self.Ow: np.ndarray | None = None

        self.grid: list[list[list[int]]] = [
            [[] for _ in range(camera.grid_rows)] for _ in range(camera.grid_cols)
        ]
        for index, kp in enumerate(self.keypoints_un):
            cell = camera.pos_in_grid(kp)
            if cell is not None:
                col, row = cell
                self.grid[col][row].append(index)

    def __len__(self) -> int:
        return len(self.keypoints)

    def set_pose(self, Tcw) -> None:
        """Set the world-to-camera transform and derive rotation, translation and centre."""
        T = np.asarray(Tcw, dtype=np.float64)
        if T.ndim != 2 or T.shape[0] < 3 or T.shape[1] != 4:
            raise ValueError("pose must be a 3x4 or 4x4 matrix")
        self.Tcw = T.copy()
        self.Rcw = T[:3, :3].copy()
        self.tcw = T[:3, 3].copy()
        self.Rwc = self.Rcw.T
        self.Ow = -self.Rwc @ self.tcw

    def features_in_area(self, x, y, r, min_level=-1, max_level=-1) -> list[int]:
        """Return indices of undistorted keypoints within a square of half-size r."""
        cam = self.camera
        winv = cam.grid_element_width_inv
        hinv = cam.grid_element_height_inv

        min_cx = max(0, math.floor((x - cam.min_x - r) * winv))
        if min_cx >= cam.grid_cols:
            return []
        max_cx = min(cam.grid_cols - 1, math.ceil((x - cam.min_x + r) * winv))
        if max_cx < 0:
            return []
        min_cy = max(0, math.floor((y - cam.min_y - r) * hinv))
        if min_cy >= cam.grid_rows:
            return []
        max_cy = min(cam.grid_rows - 1, math.ceil((y - cam.min_y + r) * hinv))
        if max_cy < 0:
            return []

        check_levels = min_level > 0 or max_level >= 0
        found: list[int] = []
        for ix in range(min_cx, max_cx + 1):
            for iy in range(min_cy, max_cy + 1):
                for index in self.grid[ix][iy]:
                    kp = self.keypoints_un[index]
                    if check_levels:
                        if kp.octave < min_level:
                            continue
                        if max_level >= 0 and kp.octave > max_level:
                            continue
                    if abs(kp.x - x) < r and abs(kp.y - y) < r:
                        found.append(index)
        return found

    def compute_stereo_from_rgbd(self, depth) -> None:
        """Fill depth and virtual right coordinates from a registered depth map."""
        depth_map = np.asarray(depth, dtype=np.float64)
        if depth_map.ndim != 2:
            raise ValueError("depth map must be two-dimensional")
        n = len(self.keypoints)
        self.u_right = [-1.0] * n
        self.depth = [-1.0] * n
        bf = self.camera.bf
        for i, (kp, kp_un) in enumerate(zip(self.keypoints, self.keypoints_un)):
            d = float(depth_map[int(kp.y), int(kp.x)])
            if d > 0:
                self.depth[i] = d
                self.u_right[i] = kp_un.x - bf / d

    def compute_stereo_matches(
        self,
        right_keypoints: Sequence[KeyPoint],
        right_descriptors,
        left_pyramid,
        right_pyramid,
        th_low=50,
        th_high=100,
    ) -> None:
        """Match left keypoints along rectified rows of the right image and set their depth.

        Candidates are picked by descriptor distance, refined by patch correlation
        with parabola fitting, and matches with a large correlation cost are dropped.
        """
        cam = self.camera
        if cam.bf <= 0:
            raise ValueError("stereo matching needs a positive bf")
        right_keypoints = list(right_keypoints)
        right_desc = np.asarray(right_descriptors, dtype=np.uint8)
        if len(right_keypoints) and (right_desc.ndim != 2 or right_desc.shape[0] != len(right_keypoints)):
            raise ValueError("there must be one descriptor row per right keypoint")

        n = len(self.keypoints)
        self.u_right = [-1.0] * n
        self.depth = [-1.0] * n
        th_orb_dist = (th_high + th_low) // 2

        n_rows = np.asarray(left_pyramid[0]).shape[0]
        row_indices: list[list[int]] = [[] for _ in range(n_rows)]
        for i_r, kp in enumerate(right_keypoints):
            r = _ROW_BAND * self.scale_factors[kp.octave]
            lo = max(0, math.floor(kp.y - r))
            hi = min(n_rows - 1, math.ceil(kp.y + r))
            for yi in range(lo, hi + 1):
                row_indices[yi].append(i_r)

        min_z = cam.baseline
        min_d = 0.0
        max_d = cam.bf / min_z

        w = _PATCH_HALF
        L = _SEARCH_HALF
        dist_idx: list[tuple[int, int]] = []

        for i_l, kp_l in enumerate(self.keypoints):
            level = kp_l.octave
            u_l, v_l = kp_l.x, kp_l.y
            row = int(v_l)
            if row < 0 or row >= n_rows:
                continue
            candidates = row_indices[row]
            if not candidates:
                continue
            min_u = u_l - max_d
            max_u = u_l - min_d
            if max_u < 0:
                continue

            best_dist = th_high
            best_idx_r = 0
            for i_r in candidates:
                kp_r = right_keypoints[i_r]
                if kp_r.octave < level - 1 or kp_r.octave > level + 1:
                    continue
                if min_u <= kp_r.x <= max_u:
                    dist = descriptor_distance(self.descriptors[i_l], right_desc[i_r])
                    if dist < best_dist:
                        best_dist = dist
                        best_idx_r = i_r

            if best_dist >= th_orb_dist:
                continue

            u_r0 = right_keypoints[best_idx_r].x
            inv_scale = self.inv_scale_factors[level]
            su_l = _round_half_away(u_l * inv_scale)
            sv_l = _round_half_away(v_l * inv_scale)
            su_r0 = _round_half_away(u_r0 * inv_scale)

            left_img = np.asarray(left_pyramid[level], dtype=np.float64)
            right_img = np.asarray(right_pyramid[level], dtype=np.float64)
            if (
                sv_l - w < 0
                or sv_l + w + 1 > left_img.shape[0]
                or sv_l + w + 1 > right_img.shape[0]
                or su_l - w < 0
                or su_l + w + 1 > left_img.shape[1]
            ):
                continue
            patch_l = left_img[sv_l - w : sv_l + w + 1, su_l - w : su_l + w + 1]
            patch_l = patch_l - patch_l[w, w]

            ini_u = su_r0 + L - w
            end_u = su_r0 + L + w + 1
            if ini_u < 0 or end_u >= right_img.shape[1] or su_r0 - L - w < 0:
                continue

            best_corr = None
            best_inc = 0
            dists: list[float] = []
            for inc in range(-L, L + 1):
                start = su_r0 + inc - w
                patch_r = right_img[sv_l - w : sv_l + w + 1, start : start + 2 * w + 1]
                patch_r = patch_r - patch_r[w, w]
                dist = float(np.abs(patch_l - patch_r).sum())
                if best_corr is None or dist < best_corr:
                    best_corr = int(dist)
                    best_inc = inc
                dists.append(dist)

            if best_inc in (-L, L):
                continue

            dist1 = dists[L + best_inc - 1]
            dist2 = dists[L + best_inc]
            dist3 = dists[L + best_inc + 1]
            denom = 2.0 * (dist1 + dist3 - 2.0 * dist2)
            if denom == 0:
                continue
            delta_r = (dist1 - dist3) / denom
            if delta_r < -1 or delta_r > 1:
                continue

            best_u_r = self.scale_factors[level] * (su_r0 + best_inc + delta_r)
            disparity = u_l - best_u_r
            if min_d <= disparity < max_d:
                if disparity <= 0:
                    disparity = 0.01
                    best_u_r = u_l - 0.01
                self.depth[i_l] = cam.bf / disparity
                self.u_right[i_l] = best_u_r
                dist_idx.append((best_corr, i_l))

        if not dist_idx:
            return
        dist_idx.sort()
        median = dist_idx[len(dist_idx) // 2][0]
        th_dist = 1.5 * 1.4 * median
        for dist, i_l in reversed(dist_idx):
            if dist < th_dist:
                break
            self.u_right[i_l] = -1.0
            self.depth[i_l] = -1.0

    def unproject_stereo(self, i) -> np.ndarray | None:
        """Return the world position of keypoint i from its depth, or None without depth."""
        z = self.depth[i]
        if not z > 0:
            return None
        if self.Rwc is None:
            raise ValueError("the frame has no pose")
        kp = self.keypoints_un[i]
        x3d_c = self.camera.unproject(kp.x, kp.y, z)
        return self.Rwc @ x3d_c + self.Ow