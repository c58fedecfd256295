"""
Face biometrics evaluation: detection, enrollment validation, pairwise
matching and liveness, built on a FaceProvider.

Provider failures never propagate from here. They degrade to simulated
results that carry ``simulated=True`` and the provider error, so a
simulated pass can always be told apart from a confirmed one.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from .errors import ImageLoadError, InvalidInputError, ProviderError
from .models import (
    BoundingBox,
    FaceDetectionResult,
    FaceLandmarks,
    FaceMatchResult,
    FaceValidationResult,
    LivenessChecks,
    LivenessResult,
    Point,
    SelfieVerificationResult,
)
from .providers import LIVENESS_CHALLENGES, FaceProvider
from .utils import ImageRef, describe_image, read_image_bytes

logger = logging.getLogger(__name__)

# Lower distance is more similar
FACE_MATCH_THRESHOLD = 0.6
MIN_FACE_CONFIDENCE = 0.8
MIN_FACE_QUALITY = 0.7
MIN_ID_FACE_QUALITY = 0.5
# Face area as a share of the reference frame
MIN_FACE_SIZE_RATIO = 0.15
MAX_FACE_SIZE_RATIO = 0.5
REFERENCE_FRAME = (1080, 1920)

SELFIE_WEIGHT = 0.25
ID_FACE_WEIGHT = 0.25
MATCH_WEIGHT = 0.5

SIMULATED_DISTANCE = 0.35
SIMULATED_LIVENESS_CONFIDENCE = 0.85


def simulated_detection(provider_error: str) -> FaceDetectionResult:
    """Single centred face returned when the provider is unavailable"""
    return FaceDetectionResult(
        has_face=True,
        face_count=1,
        confidence=0.95,
        bounding_box=BoundingBox(x=100, y=80, width=200, height=250),
        landmarks=FaceLandmarks(
            left_eye=Point(150, 150),
            right_eye=Point(250, 150),
            nose=Point(200, 200),
            left_mouth=Point(160, 260),
            right_mouth=Point(240, 260),
        ),
        quality_score=0.88,
        issues=[],
        simulated=True,
        provider_error=provider_error,
    )


def no_match(threshold: float = FACE_MATCH_THRESHOLD) -> FaceMatchResult:
    return FaceMatchResult(is_match=False, similarity=0.0, confidence=0.0, distance=1.0, threshold=threshold)


class BiometricEvaluator:
    """
    Evaluates selfies and ID photos through a face-biometrics provider
    """

    def __init__(self, provider: FaceProvider, match_threshold: float = FACE_MATCH_THRESHOLD):
        self.provider = provider
        self.match_threshold = match_threshold

    # ------------------------------------------------------------ detection ---

    def _detect_bytes(self, image: bytes, label: str) -> FaceDetectionResult:
        try:
            return self.provider.detect(image)
        except ProviderError as e:
            logger.warning("Face detection provider failed for %s, using SIMULATED detection: %s", label, e)
            return simulated_detection(str(e))

    def _load(self, image: ImageRef) -> Tuple[Optional[bytes], Optional[str]]:
        try:
            return read_image_bytes(image), None
        except ImageLoadError as e:
            logger.info("Could not load face image %s: %s", describe_image(image), e)
            return None, str(e)

    def detect_face(self, image: ImageRef) -> FaceDetectionResult:
        data, error = self._load(image)
        if data is None:
            return FaceDetectionResult(has_face=False, face_count=0, confidence=0.0,
                                       issues=[f"Failed to process image: {error}"])
        return self._detect_bytes(data, describe_image(image))

    def detect_face_in_id(self, image: ImageRef) -> FaceDetectionResult:
        """Face detection with ID-photo specific issues"""
        result = self.detect_face(image)
        if result.has_face:
            # ID photos are small, so the quality bar is lower
            if result.quality_score < MIN_ID_FACE_QUALITY:
                result.issues.append("Face in ID is low quality. This may affect matching accuracy.")
        else:
            result.issues.append("No face detected in the ID image. Please ensure the ID photo is visible.")
        return result

    # ----------------------------------------------------------- enrollment ---

    def validate_detection(self, detection: FaceDetectionResult) -> FaceValidationResult:
        quality_issues: List[str] = []
        suggestions: List[str] = []

        if not detection.has_face:
            quality_issues.append("No face detected in the image")
            suggestions.append("Position your face in the center of the frame")
            suggestions.append("Ensure good lighting on your face")
            quality_issues.extend(detection.issues)
            return FaceValidationResult(False, detection, quality_issues, suggestions)

        if detection.face_count > 1:
            quality_issues.append("Multiple faces detected")
            suggestions.append("Ensure only your face is visible in the frame")

        if detection.confidence < MIN_FACE_CONFIDENCE:
            quality_issues.append("Face detection confidence is low")
            suggestions.append("Ensure your face is clearly visible")
            suggestions.append("Remove any obstructions like sunglasses or masks")

        if detection.bounding_box:
            frame_area = REFERENCE_FRAME[0] * REFERENCE_FRAME[1]
            face_ratio = detection.bounding_box.area / frame_area
            if face_ratio < MIN_FACE_SIZE_RATIO:
                quality_issues.append("Face is too small in the frame")
                suggestions.append("Move closer to the camera")
            elif face_ratio > MAX_FACE_SIZE_RATIO:
                quality_issues.append("Face is too close to the camera")
                suggestions.append("Move further from the camera")

        if detection.quality_score < MIN_FACE_QUALITY:
            quality_issues.append("Image quality is suboptimal")
            suggestions.append("Ensure good, even lighting")
            suggestions.append("Keep the camera steady")

        quality_issues.extend(detection.issues)

        return FaceValidationResult(
            is_valid=not quality_issues,
            face_detection=detection,
            quality_issues=quality_issues,
            suggestions=suggestions,
        )

    def validate_face_for_enrollment(self, image: ImageRef) -> FaceValidationResult:
        """Check that an image holds exactly one usable, well framed face"""
        return self.validate_detection(self.detect_face(image))

    # ------------------------------------------------------------- matching ---

    def _compare_detected(self, image_a: bytes, image_b: bytes,
                          detection_a: FaceDetectionResult,
                          detection_b: FaceDetectionResult) -> FaceMatchResult:
        if not detection_a.has_face or not detection_b.has_face:
            return no_match(self.match_threshold)

        degraded_detection = detection_a.provider_error or detection_b.provider_error
        try:
            comparison = self.provider.compare(image_a, image_b)
            distance = comparison.distance
            simulated = bool(degraded_detection)
            provider_error = degraded_detection
        except ProviderError as e:
            logger.warning("Face comparison provider failed, using SIMULATED comparison: %s", e)
            distance = SIMULATED_DISTANCE
            simulated = True
            provider_error = str(e)

        return FaceMatchResult(
            is_match=distance < self.match_threshold,
            similarity=1 - distance,
            confidence=1 - distance,
            distance=distance,
            threshold=self.match_threshold,
            simulated=simulated,
            provider_error=provider_error,
        )

    def compare_faces(self, image_a: ImageRef, image_b: ImageRef) -> FaceMatchResult:
        data_a, _ = self._load(image_a)
        data_b, _ = self._load(image_b)
        if data_a is None or data_b is None:
            return no_match(self.match_threshold)

        detection_a = self._detect_bytes(data_a, describe_image(image_a))
        detection_b = self._detect_bytes(data_b, describe_image(image_b))
        return self._compare_detected(data_a, data_b, detection_a, detection_b)

    # ------------------------------------------------------------- liveness ---

    def perform_liveness_check(self, frames: Sequence[ImageRef],
                               challenges: Optional[Sequence[str]] = None) -> LivenessResult:
        if challenges:
            unknown = [c for c in challenges if c not in LIVENESS_CHALLENGES]
            if unknown:
                raise InvalidInputError(f"Unknown liveness challenges: {unknown}")

        try:
            frame_bytes = [read_image_bytes(frame) for frame in frames]
        except ImageLoadError as e:
            logger.info("Could not load liveness frames: %s", e)
            return LivenessResult(is_live=False, confidence=0.0)

        try:
            return self.provider.liveness(frame_bytes, challenges)
        except ProviderError as e:
            logger.warning("Liveness provider failed, using SIMULATED liveness result: %s", e)
            # No depth sensor is assumed for the simulated reading
            return LivenessResult(
                is_live=True,
                confidence=SIMULATED_LIVENESS_CONFIDENCE,
                checks=LivenessChecks(
                    blink_detected=True,
                    head_movement=True,
                    texture_analysis=True,
                    depth_check=False,
                ),
                simulated=True,
                provider_error=str(e),
            )

    # --------------------------------------------------------- selfie vs ID ---

    def overall_confidence(self, selfie_detection: FaceDetectionResult,
                           id_detection: FaceDetectionResult,
                           match: FaceMatchResult) -> float:
        """
        Weighted blend of selfie detection, ID face detection and match
        confidence, normalized by the weights whose input was available
        """
        total = 0.0
        weights = 0.0

        if selfie_detection.has_face:
            total += SELFIE_WEIGHT * selfie_detection.confidence
            weights += SELFIE_WEIGHT

        if id_detection.has_face:
            total += ID_FACE_WEIGHT * id_detection.confidence
            weights += ID_FACE_WEIGHT

        if selfie_detection.has_face and id_detection.has_face:
            total += MATCH_WEIGHT * match.confidence
            weights += MATCH_WEIGHT

        return total / weights if weights else 0.0

    def verify_selfie_with_id(self, selfie: ImageRef, id_image: ImageRef,
                              selfie_validation: Optional[FaceValidationResult] = None) -> SelfieVerificationResult:
        issues: List[str] = []

        if selfie_validation is None:
            selfie_validation = self.validate_face_for_enrollment(selfie)
        if not selfie_validation.is_valid:
            issues.extend(selfie_validation.quality_issues)

        id_detection = self.detect_face_in_id(id_image)
        if not id_detection.has_face:
            issues.append("No face found in the ID image")

        match = no_match(self.match_threshold)
        if selfie_validation.face_detection.has_face and id_detection.has_face:
            selfie_bytes, _ = self._load(selfie)
            id_bytes, _ = self._load(id_image)
            match = self._compare_detected(
                selfie_bytes, id_bytes, selfie_validation.face_detection, id_detection
            )
            if not match.is_match:
                issues.append("Face does not match the ID photo")

        confidence = self.overall_confidence(selfie_validation.face_detection, id_detection, match)
        logger.info(
            "Selfie vs ID: match=%s distance=%.3f confidence=%.3f simulated=%s",
            match.is_match, match.distance, confidence, match.simulated,
        )
        return SelfieVerificationResult(
            is_match=match.is_match and not issues,
            match_result=match,
            selfie_validation=selfie_validation,
            id_face_detection=id_detection,
            overall_confidence=confidence,
            issues=issues,
        )
