"""
Data model for the identity verification pipeline.

Every result produced by a component is a plain dataclass so it can be
appended to a session timeline and serialized with ``dataclasses.asdict``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional


class VerificationStatus(str, Enum):
    IDLE = "idle"
    ID_FRONT_PENDING = "id_front_pending"
    ID_BACK_PENDING = "id_back_pending"
    ID_VALIDATION_IN_PROGRESS = "id_validation_in_progress"
    FACE_SCAN_PENDING = "face_scan_pending"
    FACE_MATCHING_IN_PROGRESS = "face_matching_in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class VerificationStep(str, Enum):
    """Pipeline steps, declared in execution order"""
    ID_FRONT_CAPTURE = "id_front_capture"
    ID_QUALITY_CHECK = "id_quality_check"
    ID_BACK_CAPTURE = "id_back_capture"
    ID_OCR = "id_ocr"
    ID_DATA_VALIDATION = "id_data_validation"
    FACE_CAPTURE = "face_capture"
    FACE_QUALITY_CHECK = "face_quality_check"
    FACE_LIVENESS = "face_liveness"
    FACE_MATCHING = "face_matching"
    FINAL_VERIFICATION = "final_verification"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class IDSide(str, Enum):
    FRONT = "front"
    BACK = "back"


# ---------------------------------------------------------------- document ---

@dataclass
class ExtractedIDData:
    id_type: str
    raw_text: str
    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    id_number: Optional[str] = None
    address: Optional[str] = None
    expiry_date: Optional[str] = None


@dataclass
class ImageQualityResult:
    is_acceptable: bool
    score: float
    issues: List[str] = field(default_factory=list)
    brightness: float = 0.0
    blur: float = 0.0
    contrast: float = 0.0
    # True when the metrics are file-size estimates, not a pixel analysis
    estimated: bool = False


@dataclass
class IDValidationResult:
    is_valid: bool
    confidence: float
    extracted_data: Optional[ExtractedIDData]
    quality_score: float
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    quality_estimated: bool = False
    provider_error: Optional[str] = None


@dataclass
class OCRResult:
    text: str
    confidence: float


@dataclass
class DeclaredIdentity:
    """Identity fields typed in by the user"""
    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    id_number: Optional[str] = None


@dataclass
class DataMatchResult:
    is_match: bool
    match_score: float
    discrepancies: List[str] = field(default_factory=list)


# -------------------------------------------------------------------- face ---

@dataclass
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass
class Point:
    x: float
    y: float


@dataclass
class FaceLandmarks:
    left_eye: Point
    right_eye: Point
    nose: Point
    left_mouth: Point
    right_mouth: Point


@dataclass
class FaceDetectionResult:
    has_face: bool
    face_count: int
    confidence: float
    bounding_box: Optional[BoundingBox] = None
    landmarks: Optional[FaceLandmarks] = None
    quality_score: float = 0.0
    issues: List[str] = field(default_factory=list)
    simulated: bool = False
    provider_error: Optional[str] = None


@dataclass
class FaceValidationResult:
    is_valid: bool
    face_detection: FaceDetectionResult
    quality_issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


@dataclass
class FaceComparison:
    """Raw pairwise comparison reported by a face provider"""
    distance: float
    confidence: float


@dataclass
class FaceMatchResult:
    is_match: bool
    similarity: float
    confidence: float
    distance: float
    threshold: float
    simulated: bool = False
    provider_error: Optional[str] = None


@dataclass
class LivenessChecks:
    blink_detected: bool = False
    head_movement: bool = False
    texture_analysis: bool = False
    depth_check: bool = False


@dataclass
class LivenessResult:
    is_live: bool
    confidence: float
    checks: LivenessChecks = field(default_factory=LivenessChecks)
    simulated: bool = False
    provider_error: Optional[str] = None


@dataclass
class SelfieVerificationResult:
    is_match: bool
    match_result: FaceMatchResult
    selfie_validation: FaceValidationResult
    id_face_detection: FaceDetectionResult
    overall_confidence: float
    issues: List[str] = field(default_factory=list)


# ------------------------------------------------------------ verification ---

@dataclass
class IDVerification:
    is_valid: bool
    confidence: float
    extracted_data: Optional[ExtractedIDData]
    warnings: List[str] = field(default_factory=list)
    # Invalidating errors of the front side; any of them blocks verification
    errors: List[str] = field(default_factory=list)


@dataclass
class FaceVerification:
    is_valid: bool
    match_confidence: float
    liveness_confidence: float
    warnings: List[str] = field(default_factory=list)


@dataclass
class VerificationResult:
    is_verified: bool
    overall_confidence: float
    id_verification: IDVerification
    face_verification: FaceVerification
    data_match_verification: DataMatchResult
    risk_score: float
    risk_factors: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    degraded_signals: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class VerificationConfig:
    min_id_confidence: float = 0.6
    min_face_match_confidence: float = 0.65
    min_liveness_confidence: float = 0.7
    require_liveness_check: bool = True
    max_risk_score: float = 0.4
    strict_mode: bool = False

    @classmethod
    def from_settings(cls, settings) -> "VerificationConfig":
        return cls(
            min_id_confidence=settings.MIN_ID_CONFIDENCE,
            min_face_match_confidence=settings.MIN_FACE_MATCH_CONFIDENCE,
            min_liveness_confidence=settings.MIN_LIVENESS_CONFIDENCE,
            require_liveness_check=settings.REQUIRE_LIVENESS_CHECK,
            max_risk_score=settings.MAX_RISK_SCORE,
            strict_mode=settings.STRICT_MODE,
        )


@dataclass(frozen=True)
class StepResult:
    step: VerificationStep
    status: StepStatus
    result: Any
    errors: List[str]
    timestamp: datetime


@dataclass
class VerificationSession:
    session_id: str
    start_time: datetime
    status: VerificationStatus = VerificationStatus.IDLE
    steps: List[StepResult] = field(default_factory=list)
    final_result: Optional[VerificationResult] = None
