"""Conversions between pose matrices, rotation/translation pairs and quaternions."""

from __future__ import annotations

import math

import numpy as np


def to_descriptor_vector(descriptors) -> list[np.ndarray]:
    """Split a descriptor matrix into a list of its rows."""
    matrix = np.asarray(descriptors)
    if matrix.ndim != 2:
        raise ValueError("descriptors must be a two-dimensional matrix")
    return [row.copy() for row in matrix]


def pose_to_rotation_translation(T) -> tuple[np.ndarray, np.ndarray]:
    """Split a 3x4 or 4x4 rigid transform into a 3x3 rotation and a 3-vector translation."""
    matrix = np.asarray(T, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[0] < 3 or matrix.shape[1] < 4:
        raise ValueError("pose must be at least a 3x4 matrix")
    rotation = matrix[:3, :3].copy()
    translation = matrix[:3, 3].copy()
    return rotation, translation


def se3_to_matrix(R, t) -> np.ndarray:
    """Build a 4x4 homogeneous transform (float32) from a rotation and translation."""
    rotation = np.asarray(R, dtype=np.float64)
    translation = np.asarray(t, dtype=np.float64).reshape(-1)
    if rotation.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    if translation.shape != (3,):
        raise ValueError("translation must have three components")
    matrix = np.eye(4, dtype=np.float32)
    matrix[:3, :3] = rotation
    matrix[:3, 3] = translation
    return matrix


def sim3_to_matrix(scale, R, t) -> np.ndarray:
    """Build a 4x4 similarity transform [s*R | t] (float32)."""
    return se3_to_matrix(float(scale) * np.asarray(R, dtype=np.float64), t)


def to_quaternion(R) -> list[float]:
    """Return the unit quaternion of a rotation matrix as [x, y, z, w]."""
    m = np.asarray(R, dtype=np.float64)
    if m.ndim != 2 or m.shape[0] < 3 or m.shape[1] < 3:
        raise ValueError("rotation must be a 3x3 matrix")
    m = m[:3, :3]
    q = [0.0, 0.0, 0.0]
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = math.sqrt(trace + 1.0)
        w = 0.5 * s
        s = 0.5 / s
        q[0] = (m[2, 1] - m[1, 2]) * s
        q[1] = (m[0, 2] - m[2, 0]) * s
        q[2] = (m[1, 0] - m[0, 1]) * s
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[i] = 0.5 * s
        s = 0.5 / s
        w = (m[k, j] - m[j, k]) * s
        q[j] = (m[j, i] + m[i, j]) * s
        q[k] = (m[k, i] + m[i, k]) * s
    return [float(np.float32(v)) for v in (q[0], q[1], q[2], w)]