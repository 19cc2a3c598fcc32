"""Readers for RGB-D and stereo image sequences."""

from __future__ import annotations

import os

from visualslam.monocular_datasets import _content_lines, _parse_timestamp

_NANOSECONDS = 1e9


def load_tum_rgbd(association_path) -> tuple[list[str], list[str], list[float]]:
    """Read a TUM RGB-D association file.

    Each line holds ``<t_rgb> <rgb_name> <t_depth> <depth_name>``. Returns
    ``(rgb_names, depth_names, timestamps)``; names are relative to the sequence
    folder and the timestamps are those of the colour images.
    """
    rgb_names: list[str] = []
    depth_names: list[str] = []
    timestamps: list[float] = []
    for number, line in _content_lines(association_path):
        fields = line.split()
        if len(fields) < 4:
            raise ValueError(
                f"{os.fspath(association_path)}:{number}: expected a colour timestamp and image "
                "followed by a depth timestamp and image"
            )
        timestamps.append(_parse_timestamp(fields[0], association_path, number))
        rgb_names.append(fields[1])
        _parse_timestamp(fields[2], association_path, number)
        depth_names.append(fields[3])
    return rgb_names, depth_names, timestamps


def load_euroc_stereo(left_path, right_path, times_path) -> tuple[list[str], list[str], list[float]]:
    """Read a EuRoC timestamp list for a stereo pair.

    Each line names the images ``<left_path>/<line>.png`` and
    ``<right_path>/<line>.png``; its first field is a timestamp in nanoseconds,
    returned in seconds.
    """
    left_folder = os.fspath(left_path)
    right_folder = os.fspath(right_path)
    left: list[str] = []
    right: list[str] = []
    timestamps: list[float] = []
    for number, line in _content_lines(times_path):
        left.append(f"{left_folder}/{line}.png")
        right.append(f"{right_folder}/{line}.png")
        timestamps.append(_parse_timestamp(line.split()[0], times_path, number) / _NANOSECONDS)
    return left, right, timestamps


def load_kitti_stereo(sequence) -> tuple[list[str], list[str], list[float]]:
    """Read a KITTI odometry sequence: ``times.txt`` with images in ``image_0`` and ``image_1``."""
    root = os.fspath(sequence)
    times_file = f"{root}/times.txt"
    timestamps = [
        _parse_timestamp(line.split()[0], times_file, number)
        for number, line in _content_lines(times_file)
    ]
    left = [f"{root}/image_0/{index:06d}.png" for index in range(len(timestamps))]
    right = [f"{root}/image_1/{index:06d}.png" for index in range(len(timestamps))]
    return left, right, timestamps