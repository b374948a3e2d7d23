"""Alignment of label frames with left and right eye-camera frames by timestamp."""

from __future__ import annotations

import logging
import math
from bisect import bisect_left
from collections.abc import Collection, Sequence
from dataclasses import dataclass
from operator import itemgetter
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)

WIN_SIZE_MUL = 10
NEIGHBOR_WINDOW = 5
NO_DEVIATION = 2**64 - 1
_MIN_PATTERN_FRAMES = 10
_FPS_SAMPLE_FRAMES = 3000


def pearson_correlation(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson correlation coefficient of two equally long sequences; NaN if undefined."""
    if len(xs) != len(ys):
        raise ValueError(f"sequences differ in length: {len(xs)} and {len(ys)}")
    count = len(xs)
    if count == 0:
        return math.nan

    mean_x = sum(xs) / count
    mean_y = sum(ys) / count
    covariance = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys))
    spread_x = sum((x - mean_x) ** 2 for x in xs)
    spread_y = sum((y - mean_y) ** 2 for y in ys)
    denominator = math.sqrt(spread_x * spread_y)
    if denominator == 0:
        return math.nan
    return covariance / denominator


def _intervals(timestamps: Sequence[int]) -> list[int]:
    return [later - earlier for earlier, later in zip(timestamps, timestamps[1:])]


def find_pattern_based_offset(label_timestamps: Sequence[int], eye_timestamps: Sequence[int]) -> int:
    """Offset of the eye stream against the labels found by correlating frame intervals."""
    if len(label_timestamps) < _MIN_PATTERN_FRAMES or len(eye_timestamps) < _MIN_PATTERN_FRAMES:
        return 0

    label_intervals = [float(i) for i in _intervals(label_timestamps)]
    eye_intervals = [float(i) for i in _intervals(eye_timestamps)]
    width = len(label_intervals)

    best_offset = 0
    best_correlation = -1.0
    for start_pos in range(max(1, len(eye_intervals) - width)):
        end_pos = start_pos + width
        if end_pos > len(eye_intervals):
            break
        correlation = pearson_correlation(label_intervals, eye_intervals[start_pos:end_pos])
        if correlation > best_correlation:
            best_correlation = correlation
            best_offset = eye_timestamps[start_pos] - label_timestamps[0]

    logger.info("Pattern correlation: %d (%.4f)", best_offset, best_correlation)
    return best_offset


def find_best_unused_neighbor(
    timestamps: Sequence[int],
    idx: int,
    target: int,
    used_indices: Collection[int],
    window_size: int,
) -> tuple[int | None, int]:
    """Index closest to target within the scaled window around idx, skipping used ones.

    Returns (index, deviation); the index is None when nothing qualifies.
    """
    span = window_size * WIN_SIZE_MUL
    start = max(0, idx - span)
    end = min(idx + span, len(timestamps))

    best_idx: int | None = None
    best_dev = NO_DEVIATION
    for i in range(start, end):
        if i in used_indices:
            continue
        deviation = abs(timestamps[i] - target)
        if deviation < best_dev:
            best_dev = deviation
            best_idx = i
    return best_idx, best_dev


@dataclass
class AlignedFrame:
    """A label matched with one left and one right eye image."""

    label: Any
    left_eye: Any
    right_eye: Any
    timestamp: int


class _Match(NamedTuple):
    quality: int
    label_ts: int
    label: Any
    left_idx: int
    right_idx: int


def _nearest_index(timestamps: Sequence[int], target: int) -> int | None:
    start = bisect_left(timestamps, abs(target))
    best_idx, _ = find_best_unused_neighbor(timestamps, start, target, frozenset(), NEIGHBOR_WINDOW)
    return best_idx


def _log_frame_rates(label_timestamps: Sequence[int], left_timestamps: Sequence[int]) -> None:
    label_intervals = _intervals(label_timestamps[:_FPS_SAMPLE_FRAMES])
    left_intervals = _intervals(left_timestamps[:_FPS_SAMPLE_FRAMES])
    if not label_intervals or not left_intervals:
        return

    def fps(intervals: list[int]) -> float:
        mean = sum(intervals) / len(intervals)
        return 1000.0 / mean if mean else math.inf

    logger.info(
        "Estimated frame rates: Label=%.1ffps, Left=%.1ffps",
        fps(label_intervals),
        fps(left_intervals),
    )


def align_frames(reader) -> list[AlignedFrame]:
    """Pair every label with the nearest unclaimed left and right frames, best matches first."""
    left_frames = sorted(reader.left_eye_frames.items(), key=itemgetter(0))
    right_frames = sorted(reader.right_eye_frames.items(), key=itemgetter(0))
    label_frames = sorted(reader.label_frames.items(), key=itemgetter(0))

    left_timestamps = [ts for ts, _ in left_frames]
    right_timestamps = [ts for ts, _ in right_frames]
    label_timestamps = [ts for ts, _ in label_frames]

    logger.info("Advanced Phase 1: Cross-correlation offset detection...")
    _log_frame_rates(label_timestamps, left_timestamps)

    left_offset = find_pattern_based_offset(label_timestamps, left_timestamps)
    right_offset = find_pattern_based_offset(label_timestamps, right_timestamps)
    logger.info("Pattern-based offsets: left=%dms, right=%dms", left_offset, right_offset)

    potential: list[_Match] = []
    for label_ts, label in label_frames:
        left_idx = _nearest_index(left_timestamps, label_ts + left_offset)
        right_idx = _nearest_index(right_timestamps, label_ts + right_offset)
        if left_idx is None or right_idx is None:
            continue
        quality = abs(left_timestamps[left_idx] - label_ts) + abs(right_timestamps[right_idx] - label_ts)
        potential.append(_Match(quality, label_ts, label, left_idx, right_idx))

    logger.info("Found %d potential matches before conflict resolution", len(potential))

    potential.sort(key=lambda match: match.quality)

    used_left: set[int] = set()
    used_right: set[int] = set()
    final: list[AlignedFrame] = []
    for match in potential:
        if match.left_idx in used_left or match.right_idx in used_right:
            continue
        used_left.add(match.left_idx)
        used_right.add(match.right_idx)
        final.append(
            AlignedFrame(
                label=match.label,
                left_eye=left_frames[match.left_idx][1],
                right_eye=right_frames[match.right_idx][1],
                timestamp=match.label_ts,
            )
        )

    logger.info("Dropped %d potential matches due to conflicts", len(potential) - len(final))

    final.sort(key=lambda frame: frame.timestamp)
    return final