"""Geometric building blocks for feature-based visual SLAM: two-view initialization,
epipolar geometry, camera model, frames with stereo matching, pose conversions and
dataset loaders."""

__version__ = "0.1.0"