import math

import numpy as np
import pytest

from babble_trainer.corruption_detector import (
    CorruptionDetectionResult,
    FastCorruptionDetector,
    calculate_row_pattern_consistency_image,
    calculate_row_pattern_consistency_tensor,
)


def _striped(rows=8, cols=6, low=0, high=200):
    image = np.full((rows, cols), low, dtype=np.uint8)
    image[1::2, :] = high
    return image


def test_image_metric_uniform_is_zero():
    assert calculate_row_pattern_consistency_image(np.full((5, 4), 77, np.uint8)) == 0.0


def test_image_metric_single_row_is_zero():
    assert calculate_row_pattern_consistency_image(np.arange(6, dtype=np.uint8)[None, :]) == 0.0


def test_image_metric_shift_invariant():
    base = _striped(low=10, high=60)
    shifted = _striped(low=40, high=90)
    assert calculate_row_pattern_consistency_image(base) == pytest.approx(
        calculate_row_pattern_consistency_image(shifted)
    )


def test_image_metric_scales_quadratically():
    small = _striped(low=0, high=50)
    large = _striped(low=0, high=100)
    assert calculate_row_pattern_consistency_image(large) == pytest.approx(
        4 * calculate_row_pattern_consistency_image(small)
    )


def test_image_metric_stripes_exceed_uniform():
    assert calculate_row_pattern_consistency_image(_striped()) > 0.0


def test_tensor_metric_linear_gradient_is_zero():
    image = np.repeat(np.linspace(0.0, 1.0, 10)[:, None], 5, axis=1)
    assert calculate_row_pattern_consistency_tensor(image) == pytest.approx(0.0, abs=1e-12)


def test_tensor_metric_single_row_is_zero():
    assert calculate_row_pattern_consistency_tensor(np.ones((1, 4))) == 0.0


def test_tensor_metric_two_rows_is_nan():
    value = calculate_row_pattern_consistency_tensor(np.array([[0.0, 0.0], [1.0, 1.0]]))
    assert float(value) == pytest.approx(math.nan, nan_ok=True)


def test_tensor_metric_shift_invariant():
    rng = np.random.default_rng(3)
    image = rng.random((12, 7))
    assert calculate_row_pattern_consistency_tensor(image) == pytest.approx(
        calculate_row_pattern_consistency_tensor(image + 0.25)
    )


def test_non_adaptive_threshold_stays_fixed():
    detector = FastCorruptionDetector(0.5, False, 100)
    for _ in range(30):
        corrupted, value, threshold = detector.is_corrupted(_striped())
        assert threshold == 0.5
        assert corrupted == (value > 0.5)
    assert detector.threshold_updates == 0
    assert detector.total_frames == 30


def test_is_corrupted_tensor_reports_metric():
    detector = FastCorruptionDetector(0.1, False, 100)
    uniform = np.zeros((6, 6))
    corrupted, value, threshold = detector.is_corrupted_tensor(uniform)
    assert corrupted is False
    assert value == pytest.approx(0.0)
    assert threshold == 0.1
    assert detector.total_frames == 1


def test_adaptive_needs_twenty_values():
    detector = FastCorruptionDetector(1.0, True, 100)
    for _ in range(19):
        detector.update_adaptive_threshold(1.0)
    assert detector.threshold_updates == 0
    detector.update_adaptive_threshold(1.0)
    assert detector.threshold_updates == 1


def test_adaptive_threshold_clamped_high():
    detector = FastCorruptionDetector(2.0, True, 100)
    for _ in range(25):
        detector.update_adaptive_threshold(1000.0)
    assert detector.current_threshold == pytest.approx(2.0 * 3.0)


def test_adaptive_threshold_clamped_low():
    detector = FastCorruptionDetector(2.0, True, 100)
    for _ in range(25):
        detector.update_adaptive_threshold(0.0)
    assert detector.current_threshold == pytest.approx(2.0 * 0.5)


def test_adaptive_threshold_follows_median_when_in_range():
    detector = FastCorruptionDetector(2.0, True, 100)
    for _ in range(20):
        detector.update_adaptive_threshold(2.5)
    assert detector.current_threshold == pytest.approx(2.5)


def test_process_frame_pair_counts_corruption():
    detector = FastCorruptionDetector(0.022669, False, 100)
    clean = np.full((8, 6), 100, np.uint8)
    result = detector.process_frame_pair(_striped(), clean)
    assert isinstance(result, CorruptionDetectionResult)
    assert result.left_corrupted is True
    assert result.right_corrupted is False
    assert result.left_threshold == result.right_threshold == 0.022669
    stats = detector.stats()
    assert stats.corrupted_left == 1
    assert stats.corrupted_right == 0


def test_stats_rates_consistent_with_counts():
    detector = FastCorruptionDetector(0.022669, False, 100)
    clean = np.full((8, 6), 100, np.uint8)
    for _ in range(4):
        detector.process_frame_pair(_striped(), clean)
    stats = detector.stats()
    assert stats.total_frames == 3 * 4
    assert stats.corruption_rate_left == pytest.approx(stats.corrupted_left / stats.total_frames)
    assert stats.corruption_rate_right == 0.0
    assert stats.adaptive_enabled is False
    assert stats.base_threshold == stats.current_threshold


def test_fresh_stats_are_empty():
    stats = FastCorruptionDetector(0.3, True, 100).stats()
    assert stats.total_frames == 0
    assert stats.corruption_rate_left == 0.0
    assert stats.adaptive_enabled is True