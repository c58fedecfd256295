import pytest

from conftest import (
    FRONT_IMAGE,
    SELFIE_IMAGE,
    FakeFaceProvider,
    id_face,
    selfie_face,
)

from idverify.errors import InvalidInputError, ProviderError
from idverify.face_match import (
    SIMULATED_DISTANCE,
    SIMULATED_LIVENESS_CONFIDENCE,
    BiometricEvaluator,
)
from idverify.models import BoundingBox


def evaluator_for(**detections):
    provider = FakeFaceProvider({prefix.encode(): reply for prefix, reply in detections.items()})
    return BiometricEvaluator(provider), provider


def test_detect_face_passes_provider_result_through(evaluator):
    result = evaluator.detect_face(SELFIE_IMAGE)
    assert result.has_face
    assert not result.simulated


def test_detection_outage_is_simulated_and_tagged():
    evaluator, _ = evaluator_for(SELFIE=ProviderError("fake-face", "timeout"))
    result = evaluator.detect_face(SELFIE_IMAGE)
    assert result.has_face
    assert result.confidence == 0.95
    assert result.simulated
    assert "timeout" in result.provider_error


def test_unloadable_image_has_no_face(evaluator, tmp_path):
    result = evaluator.detect_face(str(tmp_path / "gone.jpg"))
    assert not result.has_face
    assert not result.simulated
    assert result.issues == ["Failed to process image: Image file not found"]


def test_id_face_low_quality_issue():
    evaluator, _ = evaluator_for(FRONT=id_face(quality=0.3))
    result = evaluator.detect_face_in_id(FRONT_IMAGE)
    assert result.issues == ["Face in ID is low quality. This may affect matching accuracy."]


def test_id_without_face():
    evaluator, _ = evaluator_for()
    result = evaluator.detect_face_in_id(FRONT_IMAGE)
    assert not result.has_face
    assert result.issues == ["No face detected in the ID image. Please ensure the ID photo is visible."]


# ------------------------------------------------------------ enrollment ---

def test_good_selfie_is_valid(evaluator):
    result = evaluator.validate_face_for_enrollment(SELFIE_IMAGE)
    assert result.is_valid
    assert result.quality_issues == []
    assert result.suggestions == []


def test_no_face_suggestions():
    evaluator, _ = evaluator_for()
    result = evaluator.validate_face_for_enrollment(SELFIE_IMAGE)
    assert not result.is_valid
    assert result.quality_issues == ["No face detected in the image"]
    assert result.suggestions == [
        "Position your face in the center of the frame",
        "Ensure good lighting on your face",
    ]


def test_every_enrollment_check_reports_in_order():
    detection = selfie_face(confidence=0.5, quality=0.4, face_count=2)
    detection.bounding_box = BoundingBox(x=0, y=0, width=100, height=100)
    evaluator, _ = evaluator_for(SELFIE=detection)
    result = evaluator.validate_face_for_enrollment(SELFIE_IMAGE)
    assert result.quality_issues == [
        "Multiple faces detected",
        "Face detection confidence is low",
        "Face is too small in the frame",
        "Image quality is suboptimal",
    ]
    assert "Move closer to the camera" in result.suggestions


def test_face_too_close():
    detection = selfie_face()
    detection.bounding_box = BoundingBox(x=0, y=0, width=1000, height=1500)
    evaluator, _ = evaluator_for(SELFIE=detection)
    result = evaluator.validate_face_for_enrollment(SELFIE_IMAGE)
    assert result.quality_issues == ["Face is too close to the camera"]
    assert result.suggestions == ["Move further from the camera"]


def test_simulated_detection_fails_the_size_check():
    evaluator, _ = evaluator_for(SELFIE=ProviderError("fake-face", "down"))
    result = evaluator.validate_face_for_enrollment(SELFIE_IMAGE)
    assert not result.is_valid
    assert result.quality_issues == ["Face is too small in the frame"]


def test_detector_issues_are_appended():
    detection = selfie_face()
    detection.issues = ["Eyes closed"]
    evaluator, _ = evaluator_for(SELFIE=detection)
    result = evaluator.validate_face_for_enrollment(SELFIE_IMAGE)
    assert result.quality_issues == ["Eyes closed"]
    assert not result.is_valid


# -------------------------------------------------------------- matching ---

def test_compare_faces_match(evaluator):
    result = evaluator.compare_faces(SELFIE_IMAGE, FRONT_IMAGE)
    assert result.is_match
    assert result.distance == 0.25
    assert result.similarity == pytest.approx(0.75)
    assert result.confidence == pytest.approx(0.75)
    assert result.threshold == 0.6
    assert not result.simulated


def test_distance_at_threshold_is_not_a_match():
    provider = FakeFaceProvider({b"SELFIE": selfie_face(), b"FRONT": id_face()}, distance=0.6)
    result = BiometricEvaluator(provider).compare_faces(SELFIE_IMAGE, FRONT_IMAGE)
    assert not result.is_match


def test_compare_without_face_never_calls_provider():
    evaluator, provider = evaluator_for(SELFIE=selfie_face())
    result = evaluator.compare_faces(SELFIE_IMAGE, FRONT_IMAGE)
    assert not result.is_match
    assert result.distance == 1.0
    assert result.confidence == 0.0
    assert provider.compare_calls == 0


def test_compare_outage_is_simulated():
    provider = FakeFaceProvider({b"SELFIE": selfie_face(), b"FRONT": id_face()}, distance=None)
    result = BiometricEvaluator(provider).compare_faces(SELFIE_IMAGE, FRONT_IMAGE)
    assert result.simulated
    assert result.distance == SIMULATED_DISTANCE
    assert result.is_match
    assert "compare unavailable" in result.provider_error


def test_simulated_detection_taints_the_comparison():
    evaluator, _ = evaluator_for(SELFIE=ProviderError("fake-face", "down"), FRONT=id_face())
    result = evaluator.compare_faces(SELFIE_IMAGE, FRONT_IMAGE)
    assert result.simulated
    assert result.distance == 0.25


# -------------------------------------------------------------- liveness ---

def test_liveness_passes_challenges(evaluator, face_provider):
    result = evaluator.perform_liveness_check([SELFIE_IMAGE], ["blink", "smile"])
    assert result.is_live
    assert face_provider.liveness_calls == [["blink", "smile"]]


def test_unknown_challenge_is_rejected(evaluator):
    with pytest.raises(InvalidInputError):
        evaluator.perform_liveness_check([SELFIE_IMAGE], ["jump"])


def test_liveness_outage_is_simulated():
    provider = FakeFaceProvider(liveness_error=True)
    result = BiometricEvaluator(provider).perform_liveness_check([SELFIE_IMAGE])
    assert result.is_live
    assert result.simulated
    assert result.confidence == SIMULATED_LIVENESS_CONFIDENCE
    assert not result.checks.depth_check


def test_liveness_with_unloadable_frame(evaluator, tmp_path):
    result = evaluator.perform_liveness_check([str(tmp_path / "gone.jpg")])
    assert not result.is_live
    assert result.confidence == 0.0


# ---------------------------------------------------------- selfie vs ID ---

def test_selfie_matches_id(evaluator):
    result = evaluator.verify_selfie_with_id(SELFIE_IMAGE, FRONT_IMAGE)
    assert result.is_match
    assert result.issues == []
    # (0.25 * 0.95 + 0.25 * 0.9 + 0.5 * 0.75) / 1.0
    assert result.overall_confidence == pytest.approx(0.8375)


def test_selfie_issue_blocks_the_match_even_when_faces_match():
    evaluator, _ = evaluator_for(SELFIE=selfie_face(quality=0.4), FRONT=id_face())
    result = evaluator.verify_selfie_with_id(SELFIE_IMAGE, FRONT_IMAGE)
    assert result.match_result.is_match
    assert not result.is_match
    assert result.issues == ["Image quality is suboptimal"]


def test_no_face_in_id():
    evaluator, provider = evaluator_for(SELFIE=selfie_face())
    result = evaluator.verify_selfie_with_id(SELFIE_IMAGE, FRONT_IMAGE)
    assert not result.is_match
    assert "No face found in the ID image" in result.issues
    assert provider.compare_calls == 0
    # Only the selfie weight contributed
    assert result.overall_confidence == pytest.approx(0.95)


def test_face_mismatch_issue():
    provider = FakeFaceProvider({b"SELFIE": selfie_face(), b"FRONT": id_face()}, distance=0.8)
    result = BiometricEvaluator(provider).verify_selfie_with_id(SELFIE_IMAGE, FRONT_IMAGE)
    assert not result.is_match
    assert result.issues == ["Face does not match the ID photo"]


def test_no_faces_at_all_scores_zero():
    evaluator, _ = evaluator_for()
    result = evaluator.verify_selfie_with_id(SELFIE_IMAGE, FRONT_IMAGE)
    assert result.overall_confidence == 0.0


def test_precomputed_selfie_validation_is_reused(evaluator):
    validation = evaluator.validate_face_for_enrollment(SELFIE_IMAGE)
    result = evaluator.verify_selfie_with_id(SELFIE_IMAGE, FRONT_IMAGE, validation)
    assert result.selfie_validation is validation
