import cv2
import logging
import numpy as np
from dataclasses import dataclass
from typing import Optional

from .errors import ImageLoadError, ProviderError
from .models import ImageQualityResult
from .utils import ImageRef, clamp, describe_image, read_image_bytes

logger = logging.getLogger(__name__)


@dataclass
class ImageMetrics:
    """Brightness, blur and contrast, each normalized to [0, 1]"""
    brightness: float
    blur: float
    contrast: float


class ImageAnalyzer:
    """Pluggable pixel-level image analysis capability"""

    name = "image-analyzer"

    def analyze(self, image: bytes) -> ImageMetrics:
        raise NotImplementedError


class OpenCVImageAnalyzer(ImageAnalyzer):
    """
    Measures image metrics with OpenCV:
    brightness from mean grey level, blur from Laplacian variance,
    contrast from grey level standard deviation
    """

    name = "opencv"

    def __init__(self, blur_threshold: float = 100):
        # Laplacian variance mapped to blur = 0.5
        self.blur_threshold = blur_threshold

    def decode(self, image: bytes) -> np.ndarray:
        buffer = np.frombuffer(image, dtype=np.uint8)
        img = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
        if img is None:
            raise ProviderError(self.name, "Image could not be decoded")
        return img

    def analyze(self, image: bytes) -> ImageMetrics:
        img = self.decode(image)
        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)

        sharpness = cv2.Laplacian(gray, cv2.CV_64F).var()
        return ImageMetrics(
            brightness=clamp(float(gray.mean()) / 255.0),
            blur=clamp(1.0 - float(sharpness) / (2 * self.blur_threshold)),
            contrast=clamp(float(gray.std()) / 128.0),
        )


def estimate_metrics(file_size_kb: float) -> ImageMetrics:
    """
    Degraded estimate used when no pixel analysis is available.
    Every metric is a monotonic function of the payload size.
    """
    return ImageMetrics(
        brightness=min(0.8, max(0.4, file_size_kb / 500)),
        blur=max(0.1, 1 - file_size_kb / 300),
        contrast=min(0.9, max(0.3, file_size_kb / 400)),
    )


class QualityAssessor:
    """
    Scores a document or face image for usability.
    Starts at 100 and deducts fixed penalties; acceptable means a score of
    at least 50 with no more than one reported issue.
    """

    MIN_ACCEPTABLE_SCORE = 50
    MAX_ACCEPTABLE_ISSUES = 1

    def __init__(self, analyzer: Optional[ImageAnalyzer] = None):
        self.analyzer = analyzer

    def measure(self, image: bytes, file_size_kb: float, label: str):
        """Return (metrics, estimated)"""
        if self.analyzer is not None:
            try:
                return self.analyzer.analyze(image), False
            except ProviderError as e:
                logger.warning("Image analysis failed for %s, using estimated quality: %s", label, e)
        else:
            logger.warning("No image analyzer configured, using estimated quality for %s", label)
        return estimate_metrics(file_size_kb), True

    def assess(self, image: ImageRef) -> ImageQualityResult:
        label = describe_image(image)
        try:
            data = read_image_bytes(image)
        except ImageLoadError as e:
            logger.info("Quality check could not load %s: %s", label, e)
            return ImageQualityResult(is_acceptable=False, score=0, issues=[str(e)])

        issues = []
        score = 100
        file_size_kb = len(data) / 1024

        # File size stands in for resolution
        if file_size_kb < 50:
            issues.append("Image resolution is too low. Please capture a clearer photo.")
            score -= 30
        elif file_size_kb < 100:
            issues.append("Image quality could be better. Consider retaking the photo.")
            score -= 15

        metrics, estimated = self.measure(data, file_size_kb, label)

        if metrics.brightness < 0.3:
            issues.append("Image is too dark. Please use better lighting.")
            score -= 20
        elif metrics.brightness > 0.9:
            issues.append("Image is too bright or overexposed.")
            score -= 15

        if metrics.blur > 0.5:
            issues.append("Image appears blurry. Please hold the camera steady.")
            score -= 25

        if metrics.contrast < 0.3:
            issues.append("Image has low contrast. Please ensure good lighting.")
            score -= 15

        score = max(0, score)
        result = ImageQualityResult(
            is_acceptable=score >= self.MIN_ACCEPTABLE_SCORE and len(issues) <= self.MAX_ACCEPTABLE_ISSUES,
            score=score,
            issues=issues,
            brightness=round(metrics.brightness, 4),
            blur=round(metrics.blur, 4),
            contrast=round(metrics.contrast, 4),
            estimated=estimated,
        )
        logger.debug(
            "Quality %s: score=%s acceptable=%s estimated=%s",
            label, result.score, result.is_acceptable, estimated,
        )
        return result
