"""
External capability providers.

The pipeline never runs OCR or face inference itself; it calls a document
OCR provider and a face-biometrics provider through the narrow interfaces
below. Every adapter raises ``ProviderError`` for timeouts, connection
failures, non-2xx statuses and replies it cannot parse, so the caller can
decide on a fallback instead of mistaking an outage for a result.
"""

import base64
import json
import logging
import re
from typing import Any, Dict, Optional, Sequence

import requests
from openai import OpenAI, OpenAIError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ProviderError
from .models import (
    BoundingBox,
    FaceComparison,
    FaceDetectionResult,
    FaceLandmarks,
    LivenessChecks,
    LivenessResult,
    OCRResult,
    Point,
)

logger = logging.getLogger(__name__)

LIVENESS_CHALLENGES = ("blink", "turn_left", "turn_right", "smile")
# Used only when a detection reply omits qualityScore
DEFAULT_FACE_QUALITY = 0.8


class OCRProvider:
    """Document OCR capability"""

    name = "ocr"

    def recognize_text(self, image: bytes, language: str) -> OCRResult:
        raise NotImplementedError

    def is_healthy(self) -> bool:
        """Providers without a health probe report healthy"""
        return True


class FaceProvider:
    """Face biometrics capability"""

    name = "face"

    def detect(self, image: bytes) -> FaceDetectionResult:
        raise NotImplementedError

    def compare(self, image_a: bytes, image_b: bytes) -> FaceComparison:
        raise NotImplementedError

    def liveness(self, frames: Sequence[bytes], challenges: Optional[Sequence[str]] = None) -> LivenessResult:
        raise NotImplementedError

    def is_healthy(self) -> bool:
        return True


def safe_json_parse(text: str) -> Dict[str, Any]:
    """Parse the first JSON object embedded in a text reply"""
    match = re.search(r"\{.*\}", text or "", re.DOTALL)
    if not match:
        raise ValueError("No JSON found in model output")
    return json.loads(match.group())


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


class HttpProviderClient:
    """
    JSON-over-HTTP client shared by the HTTP adapters.
    The session is created on first use and retries idempotent failures.
    """

    def __init__(self, name: str, base_url: str, timeout: float = 30.0, retries: int = 2):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self._session: Optional[requests.Session] = None

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            retry = Retry(
                total=self.retries,
                backoff_factor=0.5,
                status_forcelist=(502, 503, 504),
                allowed_methods=frozenset(["GET", "POST"]),
                raise_on_status=False,
            )
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
            self._session = session
            logger.debug("Initialized %s provider session for %s", self.name, self.base_url)
        return self._session

    def request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.Timeout as e:
            raise ProviderError(self.name, f"request to {path} timed out") from e
        except requests.RequestException as e:
            raise ProviderError(self.name, f"request to {path} failed: {e}") from e

        if not response.ok:
            raise ProviderError(self.name, f"{path} request failed", status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(self.name, f"{path} returned a non-JSON body") from e
        if not isinstance(body, dict):
            raise ProviderError(self.name, f"{path} returned an unexpected body")
        return body

    def post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", path, payload)

    def is_healthy(self) -> bool:
        try:
            self.request("GET", "/health")
        except ProviderError as e:
            logger.warning("Provider health check failed: %s", e)
            return False
        return True


class HttpOCRProvider(OCRProvider):
    """OCR backend reached over HTTP: POST /ocr {image, language}"""

    name = "ocr-http"

    def __init__(self, base_url: str, timeout: float = 30.0, retries: int = 2):
        self.client = HttpProviderClient(self.name, base_url, timeout, retries)

    def recognize_text(self, image: bytes, language: str) -> OCRResult:
        body = self.client.post("/ocr", {"image": _b64(image), "language": language})
        try:
            return OCRResult(
                text=str(body.get("text") or ""),
                confidence=float(body.get("confidence") or 0.0),
            )
        except (TypeError, ValueError) as e:
            raise ProviderError(self.name, f"malformed OCR reply: {e}") from e

    def is_healthy(self) -> bool:
        return self.client.is_healthy()


class OpenAIOCRProvider(OCRProvider):
    """
    Transcribes document text with an OpenAI vision model.
    The client is created lazily so constructing the provider never needs a key.
    """

    name = "ocr-openai"

    PROMPT = """
You are an identity document transcription system.

Transcribe ALL text printed on this government ID exactly as it appears,
one printed line per output line. Keep labels such as SURNAME, GIVEN NAME,
DATE OF BIRTH, ADDRESS and VALID UNTIL together with their values.
DO NOT translate, correct, reorder or invent text.

Return STRICT JSON only.

Expected format:
{
  "text": "string",
  "confidence": 0.0-1.0
}
"""

    def __init__(self, api_key: str, model: str):
        self.api_key = api_key
        self.model = model
        self._client: Optional[OpenAI] = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def recognize_text(self, image: bytes, language: str) -> OCRResult:
        image_url = f"data:image/jpeg;base64,{_b64(image)}"
        prompt = f"{self.PROMPT}\nDocument languages (tesseract codes): {language}\n"

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": image_url}},
                        ],
                    }
                ],
                max_tokens=1200,
                temperature=0,
            )
        except OpenAIError as e:
            raise ProviderError(self.name, str(e)) from e

        try:
            parsed = safe_json_parse(response.choices[0].message.content)
            return OCRResult(
                text=str(parsed.get("text") or ""),
                confidence=float(parsed.get("confidence") or 0.0),
            )
        except (IndexError, TypeError, ValueError) as e:
            raise ProviderError(self.name, f"parse_error: {e}") from e


def _parse_point(raw: Dict[str, Any]) -> Point:
    return Point(x=float(raw["x"]), y=float(raw["y"]))


def parse_detection(body: Dict[str, Any]) -> FaceDetectionResult:
    """Map a face-detect reply (camelCase JSON) onto FaceDetectionResult"""
    box = body.get("boundingBox")
    marks = body.get("landmarks")
    quality = body.get("qualityScore")
    return FaceDetectionResult(
        has_face=bool(body["hasFace"]),
        face_count=int(body.get("faceCount", 0)),
        confidence=float(body.get("confidence", 0.0)),
        bounding_box=BoundingBox(
            x=float(box["x"]),
            y=float(box["y"]),
            width=float(box["width"]),
            height=float(box["height"]),
        ) if box else None,
        landmarks=FaceLandmarks(
            left_eye=_parse_point(marks["leftEye"]),
            right_eye=_parse_point(marks["rightEye"]),
            nose=_parse_point(marks["nose"]),
            left_mouth=_parse_point(marks["leftMouth"]),
            right_mouth=_parse_point(marks["rightMouth"]),
        ) if marks else None,
        quality_score=DEFAULT_FACE_QUALITY if quality is None else float(quality),
        issues=list(body.get("issues") or []),
    )


def parse_liveness(body: Dict[str, Any]) -> LivenessResult:
    checks = body.get("checks") or {}
    return LivenessResult(
        is_live=bool(body["isLive"]),
        confidence=float(body.get("confidence", 0.0)),
        checks=LivenessChecks(
            blink_detected=bool(checks.get("blinkDetected", False)),
            head_movement=bool(checks.get("headMovement", False)),
            texture_analysis=bool(checks.get("textureAnalysis", False)),
            depth_check=bool(checks.get("depthCheck", False)),
        ),
    )


class HttpFaceProvider(FaceProvider):
    """Face biometrics backend reached over HTTP"""

    name = "face-http"

    def __init__(self, base_url: str, timeout: float = 30.0, retries: int = 2):
        self.client = HttpProviderClient(self.name, base_url, timeout, retries)

    def detect(self, image: bytes) -> FaceDetectionResult:
        body = self.client.post("/face/detect", {"image": _b64(image)})
        try:
            return parse_detection(body)
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(self.name, f"malformed detection reply: {e}") from e

    def compare(self, image_a: bytes, image_b: bytes) -> FaceComparison:
        body = self.client.post("/face/compare", {"image1": _b64(image_a), "image2": _b64(image_b)})
        try:
            return FaceComparison(
                distance=float(body["distance"]),
                confidence=float(body.get("confidence", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(self.name, f"malformed comparison reply: {e}") from e

    def liveness(self, frames: Sequence[bytes], challenges: Optional[Sequence[str]] = None) -> LivenessResult:
        payload: Dict[str, Any] = {"frames": [_b64(frame) for frame in frames]}
        if challenges:
            payload["challenges"] = list(challenges)
        body = self.client.post("/face/liveness", payload)
        try:
            return parse_liveness(body)
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(self.name, f"malformed liveness reply: {e}") from e

    def is_healthy(self) -> bool:
        return self.client.is_healthy()


def build_ocr_provider(settings) -> OCRProvider:
    """Create the OCR provider selected by OCR_PROVIDER"""
    if settings.OCR_PROVIDER == "openai":
        return OpenAIOCRProvider(api_key=settings.OPENAI_API_KEY, model=settings.OPENAI_MODEL)
    if settings.OCR_PROVIDER == "http":
        return HttpOCRProvider(
            settings.OCR_API_URL,
            timeout=settings.PROVIDER_TIMEOUT,
            retries=settings.PROVIDER_RETRIES,
        )
    raise ValueError(f"Unknown OCR provider: {settings.OCR_PROVIDER}")


def build_face_provider(settings) -> FaceProvider:
    return HttpFaceProvider(
        settings.FACE_API_URL,
        timeout=settings.PROVIDER_TIMEOUT,
        retries=settings.PROVIDER_RETRIES,
    )
