"""Two-view geometry: point normalisation, homography and fundamental matrix
estimation, linear triangulation and essential matrix decomposition."""

from __future__ import annotations

from collections.abc import Iterable

import numpy as np


def _as_points(points: Iterable) -> np.ndarray:
    """Return an (N, 2) float array from points, keypoints or an array."""
    rows = [getattr(p, "pt", p) for p in points]
    arr = np.asarray(rows, dtype=np.float64)
    if arr.size == 0:
        return arr.reshape(0, 2)
    if arr.ndim != 2 or arr.shape[1] < 2:
        raise ValueError("points must be a sequence of (x, y) pairs")
    return arr[:, :2]


def _xy(point) -> np.ndarray:
    arr = np.asarray(getattr(point, "pt", point), dtype=np.float64).reshape(-1)
    if arr.shape[0] < 2:
        raise ValueError("a point needs x and y coordinates")
    return arr[:2]


def normalize(points) -> tuple[np.ndarray, np.ndarray]:
    """Centre points on their mean and scale them to unit mean absolute deviation.

    Returns ``(normalized, T)`` where ``T`` is the 3x3 transform mapping the
    homogeneous input points onto the normalized ones.
    """
    pts = _as_points(points)
    if len(pts) == 0:
        raise ValueError("cannot normalize an empty set of points")
    mean = pts.mean(axis=0)
    centred = pts - mean
    mean_dev = np.abs(centred).mean(axis=0)
    if np.any(mean_dev == 0.0):
        raise ValueError("points are degenerate along one axis")
    scale = 1.0 / mean_dev
    normalized = centred * scale
    T = np.eye(3)
    T[0, 0] = scale[0]
    T[1, 1] = scale[1]
    T[0, 2] = -mean[0] * scale[0]
    T[1, 2] = -mean[1] * scale[1]
    return normalized, T


def _paired(p1, p2, minimum: int) -> tuple[np.ndarray, np.ndarray]:
    a = _as_points(p1)
    b = _as_points(p2)
    if len(a) != len(b):
        raise ValueError("both point sets must have the same length")
    if len(a) < minimum:
        raise ValueError(f"at least {minimum} correspondences are required")
    return a, b


def compute_h21(p1, p2) -> np.ndarray:
    """Estimate the homography mapping points of view 1 onto view 2 (DLT)."""
    a, b = _paired(p1, p2, 4)
    u1, v1 = a[:, 0], a[:, 1]
    u2, v2 = b[:, 0], b[:, 1]
    zeros = np.zeros_like(u1)
    ones = np.ones_like(u1)
    rows_even = np.stack([zeros, zeros, zeros, -u1, -v1, -ones, v2 * u1, v2 * v1, v2], axis=1)
    rows_odd = np.stack([u1, v1, ones, zeros, zeros, zeros, -u2 * u1, -u2 * v1, -u2], axis=1)
    A = np.empty((2 * len(a), 9))
    A[0::2] = rows_even
    A[1::2] = rows_odd
    _, _, vt = np.linalg.svd(A, full_matrices=True)
    return vt[8].reshape(3, 3)


def compute_f21(p1, p2) -> np.ndarray:
    """Estimate the rank-2 fundamental matrix with x2^T F21 x1 = 0 (eight-point)."""
    a, b = _paired(p1, p2, 8)
    u1, v1 = a[:, 0], a[:, 1]
    u2, v2 = b[:, 0], b[:, 1]
    A = np.stack(
        [u2 * u1, u2 * v1, u2, v2 * u1, v2 * v1, v2, u1, v1, np.ones_like(u1)],
        axis=1,
    )
    _, _, vt = np.linalg.svd(A, full_matrices=True)
    f_pre = vt[8].reshape(3, 3)
    u, w, vt = np.linalg.svd(f_pre, full_matrices=True)
    w[2] = 0.0
    return u @ np.diag(w) @ vt


def triangulate(kp1, kp2, P1, P2) -> np.ndarray:
    """Linearly triangulate one correspondence seen by projection matrices P1 and P2.

    The result may hold non-finite values when the point lies at infinity.
    """
    x1, y1 = _xy(kp1)
    x2, y2 = _xy(kp2)
    P1 = np.asarray(P1, dtype=np.float64)
    P2 = np.asarray(P2, dtype=np.float64)
    if P1.shape != (3, 4) or P2.shape != (3, 4):
        raise ValueError("projection matrices must be 3x4")
    A = np.array(
        [
            x1 * P1[2] - P1[0],
            y1 * P1[2] - P1[1],
            x2 * P2[2] - P2[0],
            y2 * P2[2] - P2[1],
        ]
    )
    _, _, vt = np.linalg.svd(A, full_matrices=True)
    homogeneous = vt[3]
    with np.errstate(divide="ignore", invalid="ignore"):
        return homogeneous[:3] / homogeneous[3]


def decompose_e(E) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split an essential matrix into its two rotations and unit translation.

    Returns ``(R1, R2, t)``; the four motion hypotheses are (R1, t), (R2, t),
    (R1, -t) and (R2, -t).
    """
    E = np.asarray(E, dtype=np.float64)
    if E.shape != (3, 3):
        raise ValueError("essential matrix must be 3x3")
    u, _, vt = np.linalg.svd(E)
    t = u[:, 2].copy()
    t /= np.linalg.norm(t)
    W = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    R1 = u @ W @ vt
    if np.linalg.det(R1) < 0:
        R1 = -R1
    R2 = u @ W.T @ vt
    if np.linalg.det(R2) < 0:
        R2 = -R2
    return R1, R2, t