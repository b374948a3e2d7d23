"""Reading of binary capture files holding labelled stereo eye frames."""

from __future__ import annotations

import io
import logging
import os
import struct
import time
from dataclasses import dataclass, fields
from typing import BinaryIO

import numpy as np
from PIL import Image

from babble_trainer.corruption_detector import FastCorruptionDetector

logger = logging.getLogger(__name__)

FLAG_GOOD_DATA = 1 << 30
SAFE_FRAME_FLAG = 67108864
MAX_JPEG_LENGTH = 10 * 1024 * 1024

_HEADER = struct.Struct("<16f3Q3i")
_HISTOGRAM_BINS = 128
_LUMA_WEIGHTS = (2126, 7152, 722)
_LUMA_DIVISOR = 10000


def _to_luma(img: Image.Image) -> np.ndarray:
    if img.mode == "L":
        return np.array(img, dtype=np.uint8)
    rgb = np.asarray(img.convert("RGB"), dtype=np.uint32)
    red_w, green_w, blue_w = _LUMA_WEIGHTS
    luma = (rgb[..., 0] * red_w + rgb[..., 1] * green_w + rgb[..., 2] * blue_w) // _LUMA_DIVISOR
    return luma.astype(np.uint8)


def _equalize_hsv(img: Image.Image, bins: int) -> Image.Image:
    """Equalize the value channel in HSV space using the given number of bins."""
    rgb = img.convert("RGB")
    hsv = np.array(rgb.convert("HSV"), dtype=np.uint8)
    value = hsv[..., 2]
    bin_index = (value.astype(np.uint32) * bins) // 256
    cdf = np.cumsum(np.bincount(bin_index.ravel(), minlength=bins))
    total = int(cdf[-1]) if cdf.size else 0
    nonzero = cdf[cdf > 0]
    cdf_min = int(nonzero[0]) if nonzero.size else 0
    if total == cdf_min:
        return rgb
    lut = np.clip(np.round((cdf - cdf_min) * 255.0 / (total - cdf_min)), 0, 255).astype(np.uint8)
    hsv[..., 2] = lut[bin_index]
    width, height = rgb.size
    return Image.frombytes("HSV", (width, height), hsv.tobytes()).convert("RGB")


def decode_jpeg(data: bytes, equalize_histogram: bool = True) -> np.ndarray:
    """Decode JPEG bytes into an 8-bit grayscale array of shape (height, width)."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, ValueError) as exc:
        raise ValueError(f"could not decode image data: {exc}") from exc

    logger.debug("Decoded JPEG image: dimensions=%s, mode=%s", img.size, img.mode)

    if equalize_histogram:
        return _to_luma(_equalize_hsv(img, _HISTOGRAM_BINS))
    return _to_luma(img)


def image_to_tensor(img) -> np.ndarray:
    """Scale an 8-bit grayscale image to float32 values in 0-1, shape (height, width)."""
    return np.asarray(img, dtype=np.float32) / 255.0


@dataclass(frozen=True)
class FileData:
    """Fixed-size header preceding each pair of JPEG frames in a capture file."""

    routine_pitch: float
    routine_yaw: float
    routine_distance: float
    routine_convergence: float
    fov_adjust_distance: float
    left_eye_pitch: float
    left_eye_yaw: float
    right_eye_pitch: float
    right_eye_yaw: float
    routine_left_lid: float
    routine_right_lid: float
    routine_brow_raise: float
    routine_brow_angry: float
    routine_widen: float
    routine_squint: float
    routine_dilate: float
    timestamp: int
    video_timestamp_left: int
    video_timestamp_right: int
    routine_state: int
    jpeg_data_left_length: int
    jpeg_data_right_length: int

    SIZE = _HEADER.size

    def is_safe_frame(self) -> bool:
        return self.routine_state & SAFE_FRAME_FLAG != 0

    @classmethod
    def from_stream(cls, stream: BinaryIO) -> FileData:
        """Read one little-endian header; raises EOFError if the stream runs out."""
        raw = stream.read(_HEADER.size)
        if len(raw) < _HEADER.size:
            raise EOFError("stream ended inside a frame header")
        return cls(*_HEADER.unpack(raw))


@dataclass
class ImageLabel:
    """Calibration routine values recorded with a frame."""

    routine_pitch: float
    routine_yaw: float
    routine_distance: float
    routine_convergence: float
    fov_adjust_distance: float
    left_eye_pitch: float
    left_eye_yaw: float
    right_eye_pitch: float
    right_eye_yaw: float
    routine_left_lid: float
    routine_right_lid: float
    routine_brow_raise: float
    routine_brow_angry: float
    routine_widen: float
    routine_squint: float
    routine_dilate: float
    routine_state: int

    @classmethod
    def from_file_data(cls, data: FileData) -> ImageLabel:
        return cls(**{f.name: getattr(data, f.name) for f in fields(cls)})


def _read_exact(stream: BinaryIO, length: int) -> bytes:
    chunk = stream.read(length)
    if len(chunk) < length:
        raise EOFError(f"expected {length} bytes of image data, got {len(chunk)}")
    return chunk


class FileReader:
    """Collects eye frames and labels from capture files, keyed by timestamp."""

    def __init__(self):
        self.left_eye_frames: dict[int, np.ndarray] = {}
        self.right_eye_frames: dict[int, np.ndarray] = {}
        self.label_frames: dict[int, ImageLabel] = {}
        self.raw_frames = 0
        self.skipped_frames = 0
        self.total_bad_frames = 0
        self._detector = FastCorruptionDetector(0.022669, True, 100)

    def read_capture_file(
        self,
        filename: str | os.PathLike,
        do_glitch_detection: bool = False,
        equalize_histogram: bool = True,
        exclude_after: int = 0,
        exclude_before: int = 0,
    ) -> None:
        """Read every frame of a capture file into this reader."""
        start_time = time.monotonic()
        with open(filename, "rb") as stream:
            while True:
                try:
                    data = FileData.from_stream(stream)
                except EOFError:
                    logger.info("Reached end of file")
                    break

                left_length = data.jpeg_data_left_length
                right_length = data.jpeg_data_right_length
                if left_length < 0 or right_length < 0:
                    logger.info(
                        "Invalid JPEG data lengths: left=%d, right=%d", left_length, right_length
                    )
                    break
                if left_length > MAX_JPEG_LENGTH or right_length > MAX_JPEG_LENGTH:
                    logger.info(
                        "JPEG data lengths too large: left=%d, right=%d", left_length, right_length
                    )
                    break

                left_bytes = _read_exact(stream, left_length)
                right_bytes = _read_exact(stream, right_length)

                self.raw_frames += 1

                left_image = decode_jpeg(left_bytes, equalize_histogram)
                right_image = decode_jpeg(right_bytes, equalize_histogram)

                bad = False
                if do_glitch_detection:
                    detection = self._detector.process_frame_pair(left_image, right_image)
                    bad = detection.left_corrupted or detection.right_corrupted
                    if bad:
                        self.total_bad_frames += 1
                        logger.debug(
                            "Detected bad frame at timestamp %d: bad_left=%s, bad_right=%s",
                            data.timestamp,
                            detection.left_corrupted,
                            detection.right_corrupted,
                        )

                if self.skipped_frames < exclude_before:
                    self.skipped_frames += 1
                    continue
                if exclude_after != 0 and self.raw_frames > exclude_after:
                    break

                if not bad:
                    self.left_eye_frames[data.video_timestamp_left] = left_image
                    self.right_eye_frames[data.video_timestamp_right] = right_image
                    self.label_frames[data.timestamp] = ImageLabel.from_file_data(data)

        elapsed = time.monotonic() - start_time
        logger.info(
            "Finished reading file in %.2fs (%.1f per second)",
            elapsed,
            self.raw_frames / max(elapsed, 1.0),
        )
        logger.info("Detected %d raw frames", self.raw_frames)
        logger.info("Unique left eye frames: %d", len(self.left_eye_frames))
        logger.info("Unique right eye frames: %d", len(self.right_eye_frames))
        logger.info("Unique label frames: %d", len(self.label_frames))
        logger.info("Excluded %d bad frames (bsb glitch detector)", self.total_bad_frames)