"""
Verification orchestrator.

Drives the fixed verification step sequence over an explicit session:
front and back ID validation, data match, selfie checks, liveness and
selfie-vs-ID matching, then fuses everything into a VerificationResult.

One orchestrator holds at most one current session. Callers must not run
two full verifications concurrently against the same instance.
"""

import dataclasses
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from config import settings as default_settings
from .checks import IDValidator
from .decision import DecisionEngine, combine_id_results
from .errors import InvalidInputError
from .face_match import BiometricEvaluator
from .models import (
    DataMatchResult,
    DeclaredIdentity,
    FaceDetectionResult,
    FaceMatchResult,
    FaceValidationResult,
    IDValidationResult,
    StepResult,
    StepStatus,
    VerificationConfig,
    VerificationResult,
    VerificationSession,
    VerificationStatus,
    VerificationStep,
)
from .providers import build_face_provider, build_ocr_provider
from .quality import OpenCVImageAnalyzer, QualityAssessor
from .similarity import compare_with_user_input
from .utils import ImageRef, new_session_id

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[VerificationStep, int], None]

NO_DATA_EXTRACTED = "No data extracted from ID"


def build_default_components(settings) -> Tuple[IDValidator, BiometricEvaluator]:
    """Create the ID validator and biometric evaluator described by settings"""
    analyzer = OpenCVImageAnalyzer(settings.BLUR_THRESHOLD) if settings.USE_IMAGE_ANALYZER else None
    quality = QualityAssessor(analyzer)
    id_validator = IDValidator(build_ocr_provider(settings), quality, language=settings.OCR_LANGUAGE)
    evaluator = BiometricEvaluator(build_face_provider(settings))
    return id_validator, evaluator


def _step_errors(payload: Any) -> List[str]:
    for attr in ("errors", "quality_issues", "issues", "discrepancies"):
        value = getattr(payload, attr, None)
        if value:
            return list(value)
    return []


_CONFIG_TYPES = {f.name: f.type for f in dataclasses.fields(VerificationConfig)}


def _config_value_ok(name: str, value: Any) -> bool:
    expected = _CONFIG_TYPES[name]
    if expected is bool:
        return isinstance(value, bool)
    # bool is an int subclass but never a threshold
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class VerificationOrchestrator:
    """
    Sequences ID validation and face biometrics into a single verdict.
    Components are injected; missing ones are built from settings on
    first use.
    """

    def __init__(self, config: Optional[VerificationConfig] = None,
                 id_validator: Optional[IDValidator] = None,
                 evaluator: Optional[BiometricEvaluator] = None,
                 settings=None):
        self.settings = settings or default_settings
        self._config = config or VerificationConfig.from_settings(self.settings)
        self.id_validator = id_validator
        self.evaluator = evaluator
        self._current_session: Optional[VerificationSession] = None

    def initialize(self) -> None:
        """Build any component that was not injected"""
        if self.id_validator is not None and self.evaluator is not None:
            return
        logger.info("Initializing verification components")
        id_validator, evaluator = build_default_components(self.settings)
        if self.id_validator is None:
            self.id_validator = id_validator
        if self.evaluator is None:
            self.evaluator = evaluator

    def provider_health(self) -> Dict[str, bool]:
        """Reachability of the OCR and face providers"""
        self.initialize()
        return {
            "ocr": self.id_validator.ocr_provider.is_healthy(),
            "face": self.evaluator.provider.is_healthy(),
        }

    # -------------------------------------------------------------- session ---

    def start_session(self) -> VerificationSession:
        """Start a new session, replacing any current one"""
        session = VerificationSession(session_id=new_session_id(), start_time=datetime.now())
        if self._current_session is not None:
            logger.info("Discarding session %s", self._current_session.session_id)
        self._current_session = session
        logger.info("Session started: %s", session.session_id)
        return session

    def get_current_session(self) -> Optional[VerificationSession]:
        return self._current_session

    def end_session(self) -> Optional[VerificationSession]:
        session = self._current_session
        self._current_session = None
        if session is not None:
            logger.info("Session ended: %s (status=%s)", session.session_id, session.status.value)
        return session

    # --------------------------------------------------------------- config ---

    def update_config(self, **changes) -> VerificationConfig:
        known = {f.name for f in dataclasses.fields(VerificationConfig)}
        unknown = set(changes) - known
        if unknown:
            raise InvalidInputError(f"Unknown config fields: {sorted(unknown)}")
        for name, value in changes.items():
            if not _config_value_ok(name, value):
                raise InvalidInputError(f"Invalid value for {name}: {value!r}")
        self._config = dataclasses.replace(self._config, **changes)
        return self._config

    def get_config(self) -> VerificationConfig:
        return self._config

    # ------------------------------------------------------------- pipeline ---

    @staticmethod
    def _record(session: VerificationSession, step: VerificationStep, payload: Any) -> None:
        session.steps.append(StepResult(
            step=step,
            status=StepStatus.COMPLETED,
            result=payload,
            errors=_step_errors(payload),
            timestamp=datetime.now(),
        ))

    @staticmethod
    def _coerce_declared(user_fields: Union[DeclaredIdentity, Dict[str, Any]]) -> DeclaredIdentity:
        if isinstance(user_fields, DeclaredIdentity):
            return user_fields
        if isinstance(user_fields, dict):
            try:
                return DeclaredIdentity(**user_fields)
            except TypeError as e:
                raise InvalidInputError(f"Invalid user fields: {e}") from e
        raise InvalidInputError(f"User fields must be DeclaredIdentity or dict, got {type(user_fields).__name__}")

    @staticmethod
    def _degraded_signals(front: IDValidationResult, back: IDValidationResult,
                          selfie_detection: FaceDetectionResult, match: FaceMatchResult,
                          id_detection: FaceDetectionResult, liveness) -> List[str]:
        signals = []
        if front.quality_estimated:
            signals.append("front ID image quality")
        if back.quality_estimated:
            signals.append("back ID image quality")
        if selfie_detection.simulated:
            signals.append("selfie face detection")
        if id_detection.simulated:
            signals.append("ID face detection")
        if liveness is not None and liveness.simulated:
            signals.append("liveness check")
        if match.simulated:
            signals.append("face comparison")
        return signals

    def perform_full_verification(self, front_id: ImageRef, back_id: ImageRef, selfie: ImageRef,
                                  id_type: str, user_fields: Union[DeclaredIdentity, Dict[str, Any]],
                                  on_progress: Optional[ProgressCallback] = None,
                                  session: Optional[VerificationSession] = None) -> VerificationResult:
        """
        Run the full pipeline and seal the result into the session.

        Any exception aborts the run: the session is marked failed, the
        steps recorded so far are kept and the exception is re-raised.
        """
        self.initialize()
        if session is None:
            session = self._current_session or self.start_session()

        def progress(step: VerificationStep, percent: int) -> None:
            if on_progress is not None:
                on_progress(step, percent)

        config = self._config

        try:
            declared = self._coerce_declared(user_fields)

            # Step 1: front ID
            progress(VerificationStep.ID_FRONT_CAPTURE, 0)
            session.status = VerificationStatus.ID_FRONT_PENDING
            front = self.id_validator.validate_id(front_id, id_type, "front")
            self._record(session, VerificationStep.ID_FRONT_CAPTURE, front)
            self._record(session, VerificationStep.ID_QUALITY_CHECK, {
                "side": "front",
                "quality_score": front.quality_score,
                "quality_estimated": front.quality_estimated,
            })
            progress(VerificationStep.ID_QUALITY_CHECK, 20)

            # Step 2: back ID
            progress(VerificationStep.ID_BACK_CAPTURE, 25)
            session.status = VerificationStatus.ID_BACK_PENDING
            back = self.id_validator.validate_id(back_id, id_type, "back")
            self._record(session, VerificationStep.ID_BACK_CAPTURE, back)
            progress(VerificationStep.ID_OCR, 40)

            # Step 3: combined ID verdict
            session.status = VerificationStatus.ID_VALIDATION_IN_PROGRESS
            id_verification = combine_id_results(front, back)
            self._record(session, VerificationStep.ID_OCR, id_verification)

            # Step 4: declared data vs extracted data
            progress(VerificationStep.ID_DATA_VALIDATION, 50)
            if front.extracted_data is not None:
                data_match = compare_with_user_input(front.extracted_data, declared)
            else:
                data_match = DataMatchResult(is_match=False, match_score=0.0, discrepancies=[NO_DATA_EXTRACTED])
            self._record(session, VerificationStep.ID_DATA_VALIDATION, data_match)

            # Step 5: selfie
            progress(VerificationStep.FACE_CAPTURE, 60)
            session.status = VerificationStatus.FACE_SCAN_PENDING
            selfie_detection = self.evaluator.detect_face(selfie)
            self._record(session, VerificationStep.FACE_CAPTURE, selfie_detection)
            selfie_validation: FaceValidationResult = self.evaluator.validate_detection(selfie_detection)
            self._record(session, VerificationStep.FACE_QUALITY_CHECK, selfie_validation)
            progress(VerificationStep.FACE_QUALITY_CHECK, 70)

            # Step 6: liveness
            session.status = VerificationStatus.FACE_MATCHING_IN_PROGRESS
            liveness = None
            liveness_confidence = 1.0
            if config.require_liveness_check:
                progress(VerificationStep.FACE_LIVENESS, 75)
                liveness = self.evaluator.perform_liveness_check([selfie])
                liveness_confidence = liveness.confidence
                self._record(session, VerificationStep.FACE_LIVENESS, liveness)

            # Step 7: selfie vs ID photo
            progress(VerificationStep.FACE_MATCHING, 85)
            face_match = self.evaluator.verify_selfie_with_id(selfie, front_id, selfie_validation)
            self._record(session, VerificationStep.FACE_MATCHING, face_match)
        except Exception as e:
            logger.error("Verification %s failed: %s", session.session_id, e)
            session.status = VerificationStatus.FAILED
            raise

        # Step 8: fuse
        progress(VerificationStep.FINAL_VERIFICATION, 95)
        degraded = self._degraded_signals(
            front, back, selfie_detection, face_match.match_result, face_match.id_face_detection, liveness
        )
        if degraded:
            logger.warning("Verification %s used fallback signals: %s", session.session_id, ", ".join(degraded))

        result = DecisionEngine(config).make_decision(
            id_verification, data_match, selfie_validation, face_match,
            liveness, liveness_confidence, degraded,
        )

        # Step 9: seal
        session.final_result = result
        session.status = VerificationStatus.COMPLETED if result.is_verified else VerificationStatus.FAILED
        self._record(session, VerificationStep.FINAL_VERIFICATION, result)
        progress(VerificationStep.FINAL_VERIFICATION, 100)

        logger.info(
            "Verification %s: verified=%s confidence=%.3f risk=%.2f",
            session.session_id, result.is_verified, result.overall_confidence, result.risk_score,
        )
        return result

    # ------------------------------------------------------ quick operations ---

    def quick_validate_id(self, image: ImageRef, id_type: str, side: str = "front") -> IDValidationResult:
        self.initialize()
        return self.id_validator.validate_id(image, id_type, side)

    def quick_validate_face(self, image: ImageRef) -> FaceValidationResult:
        self.initialize()
        return self.evaluator.validate_face_for_enrollment(image)

    def detect_face_in_id(self, image: ImageRef) -> FaceDetectionResult:
        self.initialize()
        return self.evaluator.detect_face_in_id(image)

    def compare_faces(self, image_a: ImageRef, image_b: ImageRef) -> FaceMatchResult:
        self.initialize()
        return self.evaluator.compare_faces(image_a, image_b)
