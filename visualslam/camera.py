"""Pinhole camera with radial-tangential distortion, keypoints and image bounds."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

import numpy as np

_UNDISTORT_ITERATIONS = 5


@dataclass(frozen=True)
class KeyPoint:
    """A detected image feature."""

    x: float
    y: float
    octave: int = 0
    angle: float = -1.0
    size: float = 0.0
    response: float = 0.0

    @property
    def pt(self) -> tuple[float, float]:
        return (self.x, self.y)

    def moved_to(self, x: float, y: float) -> "KeyPoint":
        """Return a copy of this keypoint at another position."""
        return replace(self, x=float(x), y=float(y))


def _distortion_terms(dist_coef: Sequence[float]) -> tuple[float, ...]:
    coef = [float(c) for c in np.asarray(dist_coef, dtype=np.float64).reshape(-1)]
    if len(coef) not in (4, 5, 8):
        raise ValueError("distortion must have 4, 5 or 8 coefficients")
    coef += [0.0] * (8 - len(coef))
    return tuple(coef)


def _intrinsics(K) -> tuple[float, float, float, float]:
    K = np.asarray(K, dtype=np.float64)
    if K.shape != (3, 3):
        raise ValueError("calibration matrix must be 3x3")
    return K[0, 0], K[1, 1], K[0, 2], K[1, 2]


def undistort_points(points, K, dist_coef) -> np.ndarray:
    """Remove lens distortion from pixel coordinates, keeping the same intrinsics."""
    pts = np.asarray([getattr(p, "pt", p) for p in points], dtype=np.float64)
    if pts.size == 0:
        return pts.reshape(0, 2)
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError("points must be a sequence of (x, y) pairs")
    fx, fy, cx, cy = _intrinsics(K)
    k1, k2, p1, p2, k3, k4, k5, k6 = _distortion_terms(dist_coef)

    x0 = (pts[:, 0] - cx) / fx
    y0 = (pts[:, 1] - cy) / fy
    x, y = x0.copy(), y0.copy()
    for _ in range(_UNDISTORT_ITERATIONS):
        r2 = x * x + y * y
        icdist = (1.0 + ((k6 * r2 + k5) * r2 + k4) * r2) / (
            1.0 + ((k3 * r2 + k2) * r2 + k1) * r2
        )
        delta_x = 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
        delta_y = p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y
        x = (x0 - delta_x) * icdist
        y = (y0 - delta_y) * icdist
    return np.column_stack([x * fx + cx, y * fy + cy])


def compute_image_bounds(width, height, K, dist_coef) -> tuple[float, float, float, float]:
    """Return ``(min_x, max_x, min_y, max_y)`` of the undistorted image."""
    coef = _distortion_terms(dist_coef)
    if coef[0] == 0.0:
        return 0.0, float(width), 0.0, float(height)
    corners = [(0.0, 0.0), (float(width), 0.0), (0.0, float(height)), (float(width), float(height))]
    c = undistort_points(corners, K, dist_coef)
    min_x = float(min(c[0, 0], c[2, 0]))
    max_x = float(max(c[1, 0], c[3, 0]))
    min_y = float(min(c[0, 1], c[1, 1]))
    max_y = float(max(c[2, 1], c[3, 1]))
    return min_x, max_x, min_y, max_y


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


@dataclass
class Camera:
    """Calibrated camera together with its undistorted image bounds and feature grid."""

    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int
    dist_coef: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0)
    bf: float = 0.0
    th_depth: float = 0.0
    grid_cols: int = 64
    grid_rows: int = 48
    min_x: float = field(init=False)
    max_x: float = field(init=False)
    min_y: float = field(init=False)
    max_y: float = field(init=False)

    def __post_init__(self) -> None:
        self.dist_coef = tuple(float(c) for c in np.asarray(self.dist_coef).reshape(-1))
        _distortion_terms(self.dist_coef)
        if self.fx == 0 or self.fy == 0:
            raise ValueError("focal lengths must be non-zero")
        if self.grid_cols <= 0 or self.grid_rows <= 0:
            raise ValueError("grid dimensions must be positive")
        self.min_x, self.max_x, self.min_y, self.max_y = compute_image_bounds(
            self.width, self.height, self.K, self.dist_coef
        )
        if self.max_x <= self.min_x or self.max_y <= self.min_y:
            raise ValueError("image bounds are empty")

    @classmethod
    def from_matrix(cls, K, width, height, dist_coef=(0.0, 0.0, 0.0, 0.0), bf=0.0, th_depth=0.0) -> "Camera":
        fx, fy, cx, cy = _intrinsics(K)
        return cls(fx, fy, cx, cy, width, height, tuple(dist_coef), bf, th_depth)

    @property
    def K(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @property
    def inv_fx(self) -> float:
        return 1.0 / self.fx

    @property
    def inv_fy(self) -> float:
        return 1.0 / self.fy

    @property
    def baseline(self) -> float:
        """Stereo baseline in metres (bf / fx)."""
        return self.bf / self.fx

    @property
    def is_distorted(self) -> bool:
        return self.dist_coef[0] != 0.0

    @property
    def grid_element_width_inv(self) -> float:
        return self.grid_cols / (self.max_x - self.min_x)

    @property
    def grid_element_height_inv(self) -> float:
        return self.grid_rows / (self.max_y - self.min_y)

    def undistort(self, keypoints: Iterable[KeyPoint]) -> list[KeyPoint]:
        """Return the keypoints with lens distortion removed."""
        keypoints = list(keypoints)
        if not self.is_distorted or not keypoints:
            return keypoints
        corrected = undistort_points([kp.pt for kp in keypoints], self.K, self.dist_coef)
        return [kp.moved_to(x, y) for kp, (x, y) in zip(keypoints, corrected)]

    def pos_in_grid(self, keypoint) -> tuple[int, int] | None:
        """Return the grid cell of an undistorted keypoint, or None when outside."""
        x, y = getattr(keypoint, "pt", keypoint)
        col = _round_half_away((x - self.min_x) * self.grid_element_width_inv)
        row = _round_half_away((y - self.min_y) * self.grid_element_height_inv)
        if col < 0 or col >= self.grid_cols or row < 0 or row >= self.grid_rows:
            return None
        return col, row

    def unproject(self, u: float, v: float, z: float) -> np.ndarray:
        """Back-project a pixel at depth z into camera coordinates."""
        return np.array([(u - self.cx) * z * self.inv_fx, (v - self.cy) * z * self.inv_fy, z])