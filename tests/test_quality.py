import cv2
import numpy as np
import pytest

from conftest import FakeAnalyzer, PADDING

from idverify.quality import ImageMetrics, OpenCVImageAnalyzer, QualityAssessor, estimate_metrics
from idverify.errors import ProviderError


def encode_png(img: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode(".png", img)
    assert ok
    return buffer.tobytes()


def test_clean_large_image_scores_full_marks():
    result = QualityAssessor(FakeAnalyzer()).assess(PADDING)
    assert result.is_acceptable
    assert result.score == 100
    assert result.issues == []
    assert not result.estimated


def test_small_file_costs_thirty_points():
    result = QualityAssessor(FakeAnalyzer()).assess(b"\0" * (20 * 1024))
    assert result.score == 70
    assert result.is_acceptable
    assert result.issues == ["Image resolution is too low. Please capture a clearer photo."]


def test_medium_file_costs_fifteen_points():
    result = QualityAssessor(FakeAnalyzer()).assess(b"\0" * (75 * 1024))
    assert result.score == 85
    assert len(result.issues) == 1


def test_two_issues_are_not_acceptable_even_with_a_good_score():
    dark = FakeAnalyzer(ImageMetrics(brightness=0.1, blur=0.2, contrast=0.6))
    result = QualityAssessor(dark).assess(b"\0" * (75 * 1024))
    assert result.score == 65
    assert not result.is_acceptable


def test_every_penalty_applies():
    bad = FakeAnalyzer(ImageMetrics(brightness=0.1, blur=0.9, contrast=0.1))
    result = QualityAssessor(bad).assess(b"\0" * 1024)
    # 100 - 30 - 20 - 25 - 15
    assert result.score == 10
    assert len(result.issues) == 4
    assert not result.is_acceptable


def test_overexposed_image():
    bright = FakeAnalyzer(ImageMetrics(brightness=0.95, blur=0.2, contrast=0.6))
    result = QualityAssessor(bright).assess(PADDING)
    assert result.score == 85
    assert result.issues == ["Image is too bright or overexposed."]


def test_analyzer_failure_falls_back_to_estimates():
    result = QualityAssessor(FakeAnalyzer(fail=True)).assess(PADDING)
    assert result.estimated
    # 200KB: brightness 0.4, blur 0.333, contrast 0.5
    assert result.brightness == pytest.approx(0.4)
    assert result.contrast == pytest.approx(0.5)
    assert result.score == 100


def test_no_analyzer_means_estimated_metrics():
    result = QualityAssessor().assess(PADDING)
    assert result.estimated


def test_estimated_metrics_are_bounded():
    tiny = estimate_metrics(1)
    huge = estimate_metrics(10000)
    assert tiny.brightness == 0.4 and huge.brightness == 0.8
    assert tiny.contrast == 0.3 and huge.contrast == 0.9
    assert huge.blur == 0.1


def test_missing_file_scores_zero(tmp_path):
    result = QualityAssessor(FakeAnalyzer()).assess(str(tmp_path / "missing.jpg"))
    assert result.score == 0
    assert not result.is_acceptable
    assert result.issues == ["Image file not found"]


def test_reads_image_from_path(tmp_path):
    path = tmp_path / "id.jpg"
    path.write_bytes(PADDING)
    assert QualityAssessor(FakeAnalyzer()).assess(str(path)).score == 100


def test_opencv_analyzer_metrics_are_normalized():
    rng = np.random.default_rng(0)
    noisy = rng.integers(0, 256, size=(120, 160, 3), dtype=np.uint8)
    metrics = OpenCVImageAnalyzer().analyze(encode_png(noisy))
    for value in (metrics.brightness, metrics.blur, metrics.contrast):
        assert 0.0 <= value <= 1.0
    # Random noise is sharp with plenty of contrast
    assert metrics.blur < 0.5
    assert metrics.contrast > 0.3


def test_opencv_analyzer_flat_image_is_blurry_and_flat():
    flat = np.full((120, 160, 3), 40, dtype=np.uint8)
    metrics = OpenCVImageAnalyzer().analyze(encode_png(flat))
    assert metrics.blur == 1.0
    assert metrics.contrast == 0.0
    assert metrics.brightness == pytest.approx(40 / 255, abs=0.01)


def test_opencv_analyzer_rejects_undecodable_bytes():
    with pytest.raises(ProviderError):
        OpenCVImageAnalyzer().analyze(b"not an image")


def test_undecodable_image_is_assessed_with_estimates():
    result = QualityAssessor(OpenCVImageAnalyzer()).assess(PADDING)
    assert result.estimated
