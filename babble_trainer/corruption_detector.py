"""Detection of corrupted eye-camera frames from row pattern consistency."""

from __future__ import annotations

import logging
import statistics
from collections import deque
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

_MIN_ADAPTIVE_HISTORY = 20


def calculate_row_pattern_consistency_tensor(image) -> float:
    """Unbiased variance of consecutive row-mean differences of a 0-1 grayscale image."""
    pixels = np.asarray(image, dtype=np.float64)
    row_means = pixels.mean(axis=1)
    rows = row_means.shape[0]
    if rows < 2:
        logger.error("Not enough rows to calculate consistency, Dims: %s", pixels.shape)
        return 0.0

    diffs = np.diff(row_means)
    if diffs.size < 2:
        # Sample variance of a single difference divides zero by zero.
        return float("nan")
    return float(np.var(diffs, ddof=1))


def calculate_row_pattern_consistency_image(image) -> float:
    """Mean squared difference between consecutive row means of an 8-bit grayscale image."""
    pixels = np.asarray(image)
    if pixels.shape[0] <= 1:
        return 0.0

    row_means = pixels.astype(np.float64).mean(axis=1)
    diffs = np.diff(row_means)
    return float(np.mean(diffs * diffs))


@dataclass
class CorruptionDetectionResult:
    """Outcome of checking a left/right frame pair."""

    left_corrupted: bool = False
    right_corrupted: bool = False
    left_value: float = 0.0
    right_value: float = 0.0
    left_threshold: float = 0.0
    right_threshold: float = 0.0


@dataclass
class CorruptionDetectionStats:
    """Running totals of a detector."""

    total_frames: int
    corrupted_left: int
    corrupted_right: int
    corruption_rate_left: float
    corruption_rate_right: float
    base_threshold: float
    current_threshold: float
    threshold_updates: int
    adaptive_enabled: bool


class FastCorruptionDetector:
    """Flags frames whose row pattern metric exceeds a (possibly adaptive) threshold."""

    def __init__(self, threshold: float, use_adaptive: bool = True, adaption_window: int = 100):
        self.base_threshold = threshold
        self.current_threshold = threshold
        self.use_adaptive = use_adaptive
        self.adaption_window = adaption_window
        self._recent_values: deque[float] = deque()
        self.total_frames = 0
        self.detected_corrupted_left = 0
        self.detected_corrupted_right = 0
        self.threshold_updates = 0

    def update_adaptive_threshold(self, value: float) -> None:
        """Record a metric value and recompute the threshold as median + 3 * MAD."""
        if not self.use_adaptive:
            return

        self._recent_values.append(value)
        if len(self._recent_values) < _MIN_ADAPTIVE_HISTORY:
            return

        median_value = statistics.median(self._recent_values)
        mad = statistics.median(abs(v - median_value) for v in self._recent_values)
        adaptive_threshold = median_value + 3.0 * mad

        low = self.base_threshold * 0.5
        high = self.base_threshold * 3.0
        self.current_threshold = min(max(adaptive_threshold, low), high)
        self.threshold_updates += 1

    def _judge(self, metric_value: float) -> tuple[bool, float, float]:
        self.total_frames += 1
        self.update_adaptive_threshold(metric_value)
        return metric_value > self.current_threshold, metric_value, self.current_threshold

    def is_corrupted_tensor(self, frame) -> tuple[bool, float, float]:
        """Judge a 0-1 float frame; returns (is_corrupted, metric_value, threshold_used)."""
        return self._judge(calculate_row_pattern_consistency_tensor(frame))

    def is_corrupted(self, frame) -> tuple[bool, float, float]:
        """Judge an 8-bit frame; returns (is_corrupted, metric_value, threshold_used)."""
        return self._judge(calculate_row_pattern_consistency_image(frame))

    def process_frame_pair(self, left_frame, right_frame) -> CorruptionDetectionResult:
        """Judge both eyes of one capture and update the corruption counters."""
        self.total_frames += 1

        left_corrupted, left_value, left_threshold = self.is_corrupted(left_frame)
        right_corrupted, right_value, right_threshold = self.is_corrupted(right_frame)

        if left_corrupted:
            self.detected_corrupted_left += 1
        if right_corrupted:
            self.detected_corrupted_right += 1

        return CorruptionDetectionResult(
            left_corrupted=left_corrupted,
            right_corrupted=right_corrupted,
            left_value=left_value,
            right_value=right_value,
            left_threshold=left_threshold,
            right_threshold=right_threshold,
        )

    def stats(self) -> CorruptionDetectionStats:
        """Snapshot of the detector's counters and thresholds."""
        denominator = max(1.0, float(self.total_frames))
        return CorruptionDetectionStats(
            total_frames=self.total_frames,
            corrupted_left=self.detected_corrupted_left,
            corrupted_right=self.detected_corrupted_right,
            corruption_rate_left=self.detected_corrupted_left / denominator,
            corruption_rate_right=self.detected_corrupted_right / denominator,
            base_threshold=self.base_threshold,
            current_threshold=self.current_threshold,
            threshold_updates=self.threshold_updates,
            adaptive_enabled=self.use_adaptive,
        )