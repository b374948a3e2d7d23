"""Windowing of aligned frames and assembly of training batches."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np

from babble_trainer.frame_correlator import AlignedFrame

WINDOW_SIZE = 4
_CLOSED_EYE = (0.5, 0.5, 1.0)
_LID_CLOSED_BELOW = 0.5


def _extent(values: Iterable[float]) -> tuple[float, float]:
    low, high = math.inf, -math.inf
    for value in values:
        if value < low:
            low = value
        if value > high:
            high = value
    return low, high


@dataclass
class DatasetInfo:
    """Ranges of gaze angles in a set of frames."""

    pitch_min_l: float
    pitch_max_l: float
    yaw_min_l: float
    yaw_max_l: float
    pitch_min_r: float
    pitch_max_r: float
    yaw_min_r: float
    yaw_max_r: float
    label_count: int

    @classmethod
    def from_frames(cls, frames: Sequence[AlignedFrame]) -> DatasetInfo:
        labels = [frame.label for frame in frames]
        pitch_min_l, pitch_max_l = _extent(label.left_eye_pitch for label in labels)
        yaw_min_l, yaw_max_l = _extent(label.left_eye_yaw for label in labels)
        pitch_min_r, pitch_max_r = _extent(label.right_eye_pitch for label in labels)
        yaw_min_r, yaw_max_r = _extent(label.right_eye_yaw for label in labels)
        return cls(
            pitch_min_l=pitch_min_l,
            pitch_max_l=pitch_max_l,
            yaw_min_l=yaw_min_l,
            yaw_max_l=yaw_max_l,
            pitch_min_r=pitch_min_r,
            pitch_max_r=pitch_max_r,
            yaw_min_r=yaw_min_r,
            yaw_max_r=yaw_max_r,
            label_count=len(frames),
        )


@dataclass
class WindowedFrame:
    """Four consecutive frames of both eyes with the label of the newest."""

    label: Any
    left_eye: tuple[Any, Any, Any, Any]
    right_eye: tuple[Any, Any, Any, Any]
    timestamp: int


@dataclass
class EyeDataBatch:
    """Images of shape (N, 8, W, H) and targets of shape (N, 6)."""

    images: np.ndarray
    targets: np.ndarray


def to_windowed_frame(window: Sequence[AlignedFrame]) -> WindowedFrame:
    """Combine a window of aligned frames; the newest frame gives label and timestamp."""
    if len(window) < WINDOW_SIZE:
        raise ValueError(f"a window needs at least {WINDOW_SIZE} frames, got {len(window)}")
    first = window[:WINDOW_SIZE]
    newest = window[-1]
    return WindowedFrame(
        label=newest.label,
        left_eye=tuple(frame.left_eye for frame in first),
        right_eye=tuple(frame.right_eye for frame in first),
        timestamp=newest.timestamp,
    )


def _normalise_angle(angle: float) -> float:
    return float(np.clip((angle + 45.0) / 90.0, 0.0, 1.0))


def _eye_target(pitch: float, yaw: float, lid: float) -> tuple[float, float, float]:
    if lid < _LID_CLOSED_BELOW:
        return _CLOSED_EYE
    return _normalise_angle(pitch), _normalise_angle(yaw), 0.0


def _target_row(label) -> tuple[float, ...]:
    left = _eye_target(label.left_eye_pitch, label.left_eye_yaw, label.routine_left_lid)
    right = _eye_target(label.right_eye_pitch, label.right_eye_yaw, label.routine_right_lid)
    return left + right


def _channel(img) -> np.ndarray:
    pixels = np.asarray(img, dtype=np.float32)
    height, width = pixels.shape
    return pixels.reshape(width, height)


def _stack_channels(item: WindowedFrame) -> np.ndarray:
    # Left eye channels on even indices, right eye channels on odd ones.
    interleaved = [img for pair in zip(item.left_eye, item.right_eye) for img in pair]
    return np.stack([_channel(img) for img in interleaved])


@dataclass
class EyeDataBatcher:
    """Turns windowed frames into image and target arrays."""

    training: bool
    dataset_info: DatasetInfo

    def batch(self, items: Sequence[WindowedFrame]) -> EyeDataBatch:
        if not items:
            raise ValueError("cannot build a batch from no items")
        targets = np.array([_target_row(item.label) for item in items], dtype=np.float32)
        images = np.stack([_stack_channels(item) for item in items])
        return EyeDataBatch(images=images, targets=targets)