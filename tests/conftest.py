from datetime import datetime
from typing import Dict, List, Optional, Sequence, Union

import pytest

from idverify.checks import IDValidator
from idverify.errors import ProviderError
from idverify.face_match import BiometricEvaluator
from idverify.models import (
    BoundingBox,
    FaceComparison,
    FaceDetectionResult,
    LivenessChecks,
    LivenessResult,
    OCRResult,
)
from idverify.orchestrator import VerificationOrchestrator
from idverify.providers import FaceProvider, OCRProvider
from idverify.quality import ImageAnalyzer, ImageMetrics, QualityAssessor

# Distinct, large enough payloads so the size penalties never apply
PADDING = b"\0" * (200 * 1024)
FRONT_IMAGE = b"FRONT" + PADDING
BACK_IMAGE = b"BACK" + PADDING
SELFIE_IMAGE = b"SELFIE" + PADDING

FRONT_TEXT = """REPUBLIC OF THE PHILIPPINES
PHILIPPINE IDENTIFICATION CARD
PCN 1234-5678-9012
NAME: JUAN DELA CRUZ
DATE OF BIRTH 01/15/1990
ADDRESS: 123 RIZAL ST, MANILA
VALID UNTIL 12/31/2099
"""

EXPIRED_FRONT_TEXT = FRONT_TEXT.replace("12/31/2099", "12/31/2001")

BACK_TEXT = """PHILIPPINE IDENTIFICATION CARD
PHILSYS NATIONAL ID
SIGNATURE OF HOLDER
"""

FIXED_NOW = datetime(2026, 1, 1)


class FakeOCR(OCRProvider):
    """Returns the text registered for the image prefix, or raises"""

    name = "fake-ocr"

    def __init__(self, texts: Optional[Dict[bytes, str]] = None, error: Optional[str] = None):
        self.texts = texts or {}
        self.error = error
        self.calls: List[str] = []

    def recognize_text(self, image: bytes, language: str) -> OCRResult:
        self.calls.append(language)
        if self.error:
            raise ProviderError(self.name, self.error)
        for prefix, text in self.texts.items():
            if image.startswith(prefix):
                return OCRResult(text=text, confidence=0.9)
        return OCRResult(text="", confidence=0.0)


class FakeAnalyzer(ImageAnalyzer):
    name = "fake-analyzer"

    def __init__(self, metrics: Optional[ImageMetrics] = None, fail: bool = False):
        self.metrics = metrics or ImageMetrics(brightness=0.6, blur=0.2, contrast=0.6)
        self.fail = fail

    def analyze(self, image: bytes) -> ImageMetrics:
        if self.fail:
            raise ProviderError(self.name, "analysis unavailable")
        return self.metrics


DetectionOrError = Union[FaceDetectionResult, ProviderError]


class FakeFaceProvider(FaceProvider):
    """Face provider whose replies are set per image prefix"""

    name = "fake-face"

    def __init__(self, detections: Optional[Dict[bytes, DetectionOrError]] = None,
                 distance: Optional[float] = 0.25,
                 liveness_result: Optional[LivenessResult] = None,
                 liveness_error: bool = False):
        self.detections = detections or {}
        # None makes compare fail
        self.distance = distance
        self.liveness_result = liveness_result or live_result()
        self.liveness_error = liveness_error
        self.compare_calls = 0
        self.liveness_calls: List[Optional[Sequence[str]]] = []

    def detect(self, image: bytes) -> FaceDetectionResult:
        for prefix, reply in self.detections.items():
            if image.startswith(prefix):
                if isinstance(reply, ProviderError):
                    raise reply
                return reply
        return no_face()

    def compare(self, image_a: bytes, image_b: bytes) -> FaceComparison:
        self.compare_calls += 1
        if self.distance is None:
            raise ProviderError(self.name, "compare unavailable")
        return FaceComparison(distance=self.distance, confidence=1 - self.distance)

    def liveness(self, frames, challenges=None) -> LivenessResult:
        self.liveness_calls.append(challenges)
        if self.liveness_error:
            raise ProviderError(self.name, "liveness unavailable")
        return self.liveness_result


def selfie_face(confidence: float = 0.95, quality: float = 0.9, face_count: int = 1) -> FaceDetectionResult:
    # 600x800 covers about 23% of the reference frame
    return FaceDetectionResult(
        has_face=True,
        face_count=face_count,
        confidence=confidence,
        bounding_box=BoundingBox(x=240, y=400, width=600, height=800),
        quality_score=quality,
    )


def id_face(confidence: float = 0.9, quality: float = 0.8) -> FaceDetectionResult:
    return FaceDetectionResult(
        has_face=True,
        face_count=1,
        confidence=confidence,
        bounding_box=BoundingBox(x=20, y=40, width=120, height=150),
        quality_score=quality,
    )


def no_face() -> FaceDetectionResult:
    return FaceDetectionResult(has_face=False, face_count=0, confidence=0.0)


def live_result(confidence: float = 0.92, is_live: bool = True) -> LivenessResult:
    return LivenessResult(
        is_live=is_live,
        confidence=confidence,
        checks=LivenessChecks(blink_detected=True, head_movement=True, texture_analysis=True, depth_check=True),
    )


@pytest.fixture
def ocr():
    return FakeOCR({b"FRONT": FRONT_TEXT, b"BACK": BACK_TEXT})


@pytest.fixture
def face_provider():
    return FakeFaceProvider({b"SELFIE": selfie_face(), b"FRONT": id_face()})


@pytest.fixture
def quality():
    return QualityAssessor(FakeAnalyzer())


@pytest.fixture
def id_validator(ocr, quality):
    return IDValidator(ocr, quality, clock=lambda: FIXED_NOW)


@pytest.fixture
def evaluator(face_provider):
    return BiometricEvaluator(face_provider)


@pytest.fixture
def orchestrator(id_validator, evaluator):
    return VerificationOrchestrator(id_validator=id_validator, evaluator=evaluator)


@pytest.fixture
def declared():
    return {
        "full_name": "Juan Dela Cruz",
        "date_of_birth": "01/15/1990",
        "id_number": "1234-5678-9012",
    }
