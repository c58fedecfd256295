from typing import Iterable, List, Optional, Tuple

from .models import (
    DataMatchResult,
    FaceValidationResult,
    FaceVerification,
    IDValidationResult,
    IDVerification,
    LivenessResult,
    SelfieVerificationResult,
    VerificationConfig,
    VerificationResult,
)

# Risk penalties, applied independently and capped at 1.0
ID_INVALID_PENALTY = 0.30
DATA_MISMATCH_PENALTY = 0.20
SELFIE_INVALID_PENALTY = 0.15
FACE_MISMATCH_PENALTY = 0.25
LOW_LIVENESS_PENALTY = 0.10

# Evidence weights; they sum to 1 and are never renormalized, so a missing
# signal counts as zero evidence
ID_WEIGHT = 0.25
DATA_MATCH_WEIGHT = 0.20
FACE_MATCH_WEIGHT = 0.35
LIVENESS_WEIGHT = 0.20

STRICT_MIN_CONFIDENCE = 0.8
DEFAULT_MIN_CONFIDENCE = 0.6

# Back side counts half as much as the front
BACK_SIDE_WEIGHT = 0.5
MIN_BACK_QUALITY = 0.5

RISK_ID_INVALID = "ID document could not be validated"
RISK_ID_REJECTED = "ID document was rejected"
RISK_DATA_MISMATCH = "User input does not fully match ID data"
RISK_SELFIE_INVALID = "Selfie did not pass face quality checks"
RISK_LIVENESS_FAILED = "Liveness check failed - possible spoofing attempt"
RISK_LOW_LIVENESS = "Liveness confidence is below the required level"
RISK_FACE_MISMATCH = "Face does not match ID photo"


def combine_id_results(front: IDValidationResult, back: IDValidationResult) -> IDVerification:
    """Fold the front and back validations into one ID verdict"""
    return IDVerification(
        is_valid=front.is_valid and back.quality_score > MIN_BACK_QUALITY,
        confidence=(front.confidence + back.confidence * BACK_SIDE_WEIGHT) / (1 + BACK_SIDE_WEIGHT),
        extracted_data=front.extracted_data,
        warnings=list(front.warnings) + list(back.warnings),
        errors=list(front.errors),
    )


def calculate_risk_score(penalties: Iterable[float]) -> float:
    return min(1.0, sum(penalties))


def calculate_overall_confidence(id_confidence: float, data_match_score: float,
                                 face_match_confidence: float, liveness_confidence: float) -> float:
    return (
        id_confidence * ID_WEIGHT
        + data_match_score * DATA_MATCH_WEIGHT
        + face_match_confidence * FACE_MATCH_WEIGHT
        + liveness_confidence * LIVENESS_WEIGHT
    )


class DecisionEngine:
    """
    Fuses the sub-verdicts of a verification run into a VerificationResult
    under the configured policy
    """

    def __init__(self, config: VerificationConfig):
        self.config = config

    def assess_risk(self, id_verification: IDVerification, data_match: DataMatchResult,
                    selfie_validation: FaceValidationResult, face_match: SelfieVerificationResult,
                    liveness: Optional[LivenessResult], liveness_confidence: float) -> Tuple[float, List[str]]:
        """Return the capped risk score and a risk factor per applied penalty"""
        penalties = []
        factors = []

        if not id_verification.is_valid:
            penalties.append(ID_INVALID_PENALTY)
            factors.append(RISK_ID_INVALID)

        if id_verification.errors:
            factors.append(f"{RISK_ID_REJECTED}: {id_verification.errors[0]}")

        if not data_match.is_match:
            penalties.append(DATA_MISMATCH_PENALTY)
            factors.append(RISK_DATA_MISMATCH)

        if not selfie_validation.is_valid:
            penalties.append(SELFIE_INVALID_PENALTY)
            factors.append(RISK_SELFIE_INVALID)

        if liveness is not None and not liveness.is_live:
            factors.append(RISK_LIVENESS_FAILED)

        if liveness_confidence < self.config.min_liveness_confidence:
            penalties.append(LOW_LIVENESS_PENALTY)
            if liveness is None or liveness.is_live:
                factors.append(RISK_LOW_LIVENESS)

        if not face_match.is_match:
            penalties.append(FACE_MISMATCH_PENALTY)
            factors.append(RISK_FACE_MISMATCH)

        return calculate_risk_score(penalties), factors

    def is_verified(self, risk_score: float, overall_confidence: float, blocked: bool = False) -> bool:
        if blocked:
            return False
        if self.config.strict_mode:
            return risk_score == 0 and overall_confidence >= STRICT_MIN_CONFIDENCE
        return risk_score <= self.config.max_risk_score and overall_confidence >= DEFAULT_MIN_CONFIDENCE

    def generate_recommendations(self, id_verification: IDVerification, data_match: DataMatchResult,
                                 selfie_validation: FaceValidationResult,
                                 face_match: SelfieVerificationResult,
                                 risk_factors: List[str]) -> List[str]:
        recommendations = []

        if not id_verification.is_valid:
            recommendations.append("Re-upload a clearer photo of your ID")

        if not data_match.is_match and data_match.discrepancies:
            recommendations.append("Verify that the information entered matches your ID exactly")

        if not selfie_validation.is_valid:
            recommendations.extend(selfie_validation.suggestions)

        if not face_match.is_match:
            recommendations.append("Retake your selfie with better lighting")
            recommendations.append("Ensure your face is clearly visible without obstructions")

        if risk_factors:
            recommendations.append("If issues persist, contact support for manual verification")

        return recommendations

    def make_decision(self, id_verification: IDVerification, data_match: DataMatchResult,
                      selfie_validation: FaceValidationResult, face_match: SelfieVerificationResult,
                      liveness: Optional[LivenessResult], liveness_confidence: float,
                      degraded_signals: Optional[List[str]] = None) -> VerificationResult:
        risk_score, risk_factors = self.assess_risk(
            id_verification, data_match, selfie_validation, face_match, liveness, liveness_confidence
        )

        overall_confidence = calculate_overall_confidence(
            id_verification.confidence,
            data_match.match_score,
            face_match.match_result.confidence,
            liveness_confidence,
        )

        face_warnings = list(face_match.issues)
        degraded = list(degraded_signals or [])
        for signal in degraded:
            face_warnings.append(f"{signal} came from a fallback, not a confirmed provider result")

        return VerificationResult(
            is_verified=self.is_verified(risk_score, overall_confidence, blocked=bool(id_verification.errors)),
            overall_confidence=overall_confidence,
            id_verification=id_verification,
            face_verification=FaceVerification(
                is_valid=face_match.is_match,
                match_confidence=face_match.match_result.confidence,
                liveness_confidence=liveness_confidence,
                warnings=face_warnings,
            ),
            data_match_verification=data_match,
            risk_score=risk_score,
            risk_factors=risk_factors,
            recommendations=self.generate_recommendations(
                id_verification, data_match, selfie_validation, face_match, risk_factors
            ),
            degraded_signals=degraded,
        )
