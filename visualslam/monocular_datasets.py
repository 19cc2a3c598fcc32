"""Readers for monocular image sequences and helpers for replaying them in real time."""

from __future__ import annotations

import os
from collections.abc import Iterator, Sequence
from typing import NamedTuple

_TUM_HEADER_LINES = 3
_NANOSECONDS = 1e9


class TrackingStatistics(NamedTuple):
    """Median and mean of per-frame tracking times, in seconds."""

    median: float
    mean: float


def _content_lines(path, skip: int = 0) -> Iterator[tuple[int, str]]:
    """Yield ``(line_number, text)`` for the non-blank lines of a text file."""
    with open(path, encoding="utf-8") as handle:
        for number, raw in enumerate(handle, start=1):
            if number <= skip:
                continue
            line = raw.rstrip("\r\n")
            if line.strip():
                yield number, line


def _parse_timestamp(token: str, path, number: int) -> float:
    try:
        return float(token)
    except ValueError:
        raise ValueError(f"{os.fspath(path)}:{number}: invalid timestamp {token!r}") from None


def load_euroc_mono(image_path, times_path) -> tuple[list[str], list[float]]:
    """Read a EuRoC timestamp list.

    Each line names an image ``<image_path>/<line>.png``; its first field is a
    timestamp in nanoseconds, returned in seconds.
    """
    folder = os.fspath(image_path)
    images: list[str] = []
    timestamps: list[float] = []
    for number, line in _content_lines(times_path):
        images.append(f"{folder}/{line}.png")
        timestamps.append(_parse_timestamp(line.split()[0], times_path, number) / _NANOSECONDS)
    return images, timestamps


def _kitti_timestamps(sequence: str) -> list[float]:
    times_file = f"{sequence}/times.txt"
    return [_parse_timestamp(line.split()[0], times_file, number) for number, line in _content_lines(times_file)]


def load_kitti_mono(sequence) -> tuple[list[str], list[float]]:
    """Read a KITTI odometry sequence: ``times.txt`` and the left images in ``image_0``."""
    root = os.fspath(sequence)
    timestamps = _kitti_timestamps(root)
    images = [f"{root}/image_0/{index:06d}.png" for index in range(len(timestamps))]
    return images, timestamps


def load_tum_mono(sequence) -> tuple[list[str], list[float]]:
    """Read a TUM RGB-D ``rgb.txt`` list, skipping its three header lines.

    Image paths are returned joined with the sequence folder.
    """
    root = os.fspath(sequence)
    list_file = f"{root}/rgb.txt"
    images: list[str] = []
    timestamps: list[float] = []
    for number, line in _content_lines(list_file, skip=_TUM_HEADER_LINES):
        fields = line.split()
        if len(fields) < 2:
            raise ValueError(f"{list_file}:{number}: expected a timestamp and an image name")
        timestamps.append(_parse_timestamp(fields[0], list_file, number))
        images.append(f"{root}/{fields[1]}")
    return images, timestamps


def frame_delay(timestamps: Sequence[float], index: int, elapsed: float) -> float:
    """Return how long to wait after frame ``index`` took ``elapsed`` seconds to track.

    The frame period is the gap to the next timestamp, or to the previous one for
    the last frame; the wait is whatever remains of it, never negative.
    """
    count = len(timestamps)
    if not 0 <= index < count:
        raise IndexError("frame index out of range")
    current = timestamps[index]
    period = 0.0
    if index < count - 1:
        period = timestamps[index + 1] - current
    elif index > 0:
        period = current - timestamps[index - 1]
    return period - elapsed if elapsed < period else 0.0


def tracking_statistics(times: Sequence[float]) -> TrackingStatistics:
    """Return the median (upper middle element) and mean of tracking times."""
    ordered = sorted(float(t) for t in times)
    if not ordered:
        raise ValueError("no tracking times recorded")
    return TrackingStatistics(ordered[len(ordered) // 2], sum(ordered) / len(ordered))