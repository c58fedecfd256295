import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import ID_TYPE_PATTERNS, MIN_UNKNOWN_ID_LENGTH
from .errors import ImageLoadError, InvalidInputError, ProviderError
from .extractor import FieldExtractor, strip_separators
from .models import ExtractedIDData, IDSide, IDValidationResult
from .providers import OCRProvider
from .quality import QualityAssessor
from .utils import ImageRef, describe_image, read_image_bytes

logger = logging.getLogger(__name__)

MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}

# MM/DD/YYYY, MM-DD-YYYY, DD MMM YYYY
EXPIRY_FORMATS = [
    re.compile(r"(\d{2})/(\d{2})/(\d{4})"),
    re.compile(r"(\d{2})-(\d{2})-(\d{4})"),
    re.compile(r"(\d{2})\s*([A-Z]{3})\s*(\d{4})"),
]

TYPE_MATCH_RATIO = 0.3
MIN_OCR_TEXT_LENGTH = 10

UNREADABLE_TEXT_ERROR = "Could not read text from the ID image. Please ensure the image is clear."
EXPIRED_ERROR = "This ID appears to be expired. Please use a valid ID."


@dataclass
class FieldValidation:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    confidence: float = 1.0


class DocumentChecks:
    """
    Performs validation checks on extracted ID data
    """

    def __init__(self, id_patterns: Optional[Dict[str, Dict[str, Any]]] = None):
        self.id_patterns = id_patterns or ID_TYPE_PATTERNS
        self.format_regex = {
            id_type: re.compile(rules["number_format"])
            for id_type, rules in self.id_patterns.items()
        }

    def validate_id_number_format(self, id_number: str, id_type: str) -> bool:
        """Check the separator-stripped ID number against the type's rule"""
        clean = strip_separators(id_number)
        regex = self.format_regex.get(id_type)
        if regex is None:
            return len(clean) >= MIN_UNKNOWN_ID_LENGTH
        return bool(regex.match(clean))

    def parse_expiry(self, expiry: str) -> Optional[datetime]:
        """Parse an expiry date in one of the accepted formats"""
        text = expiry.upper()
        for pattern in EXPIRY_FORMATS:
            match = pattern.search(text)
            if not match:
                continue
            first, middle, year = match.groups()
            try:
                if middle.isalpha():
                    month = MONTHS.get(middle)
                    if month is None:
                        return None
                    return datetime(int(year), month, int(first))
                return datetime(int(year), int(first), int(middle))
            except ValueError:
                return None
        return None

    def is_expired(self, expiry: str, now: Optional[datetime] = None) -> bool:
        expiry_date = self.parse_expiry(expiry)
        if expiry_date is None:
            logger.warning("Could not parse expiry date: %s", expiry)
            return False
        return expiry_date < (now or datetime.now())

    def verify_id_type(self, text: str, expected_type: str) -> Dict[str, Any]:
        """Ratio of the type's keywords found in the text"""
        rules = self.id_patterns.get(expected_type)
        if not rules:
            return {"is_match": True, "confidence": 0.5}

        upper_text = text.upper()
        keywords = rules["keywords"]
        found = sum(1 for keyword in keywords if keyword in upper_text)
        ratio = found / len(keywords)
        return {"is_match": ratio >= TYPE_MATCH_RATIO, "confidence": ratio}

    def validate_extracted_data(self, data: ExtractedIDData, id_type: str, side: IDSide,
                                now: Optional[datetime] = None) -> FieldValidation:
        validation = FieldValidation()

        if side == IDSide.FRONT:
            if not data.id_number:
                validation.warnings.append("Could not extract ID number from the image.")
                validation.confidence *= 0.6

            if not data.full_name:
                validation.warnings.append("Could not extract name from the image.")
                validation.confidence *= 0.8

            if data.id_number and not self.validate_id_number_format(data.id_number, id_type):
                validation.warnings.append("ID number format does not match expected format.")
                validation.confidence *= 0.7

        if data.expiry_date and self.is_expired(data.expiry_date, now):
            validation.errors.append(EXPIRED_ERROR)
            validation.confidence = 0.0

        return validation


class IDValidator:
    """
    Validates one side of an ID: image quality, OCR, field extraction and
    field checks combined into an IDValidationResult
    """

    def __init__(self, ocr_provider: OCRProvider, quality: QualityAssessor,
                 extractor: Optional[FieldExtractor] = None,
                 checks: Optional[DocumentChecks] = None,
                 language: str = "eng+fil",
                 clock=None):
        self.ocr_provider = ocr_provider
        self.quality = quality
        self.extractor = extractor or FieldExtractor()
        self.checks = checks or DocumentChecks()
        self.language = language
        self.clock = clock or datetime.now

    def validate_id(self, image: ImageRef, id_type: str, side="front") -> IDValidationResult:
        try:
            side = IDSide(side)
        except ValueError:
            raise InvalidInputError(f"Unknown ID side: {side!r}") from None

        label = describe_image(image)

        # Step 1: image quality
        quality = self.quality.assess(image)

        def rejected(errors: List[str], provider_error: Optional[str] = None) -> IDValidationResult:
            return IDValidationResult(
                is_valid=False,
                confidence=0.0,
                extracted_data=None,
                quality_score=quality.score / 100,
                errors=errors,
                quality_estimated=quality.estimated,
                provider_error=provider_error,
            )

        if not quality.is_acceptable:
            logger.info("ID %s image %s rejected on quality (score=%s)", side.value, label, quality.score)
            return rejected(list(quality.issues))

        # Step 2: OCR
        try:
            ocr = self.ocr_provider.recognize_text(read_image_bytes(image), self.language)
        except ImageLoadError as e:
            return rejected([str(e)])
        except ProviderError as e:
            logger.warning("OCR provider failed for ID %s image %s: %s", side.value, label, e)
            return rejected([UNREADABLE_TEXT_ERROR], provider_error=str(e))

        if len(ocr.text.strip()) < MIN_OCR_TEXT_LENGTH:
            return rejected([UNREADABLE_TEXT_ERROR])

        # Step 3: field extraction
        extracted = self.extractor.extract(ocr.text, id_type)

        # Step 4: field checks
        validation = self.checks.validate_extracted_data(extracted, id_type, side, now=self.clock())
        errors = list(validation.errors)
        warnings = list(validation.warnings)
        confidence = validation.confidence

        # Step 5: document type
        type_match = self.checks.verify_id_type(ocr.text, id_type)
        if not type_match["is_match"]:
            warnings.append(f"The ID might not be a {id_type}. Please verify.")
            confidence *= 0.7

        result = IDValidationResult(
            is_valid=not errors and confidence > 0.5,
            confidence=confidence,
            extracted_data=extracted,
            quality_score=quality.score / 100,
            errors=errors,
            warnings=warnings,
            quality_estimated=quality.estimated,
        )
        logger.info(
            "ID %s validated: valid=%s confidence=%.3f errors=%d warnings=%d",
            side.value, result.is_valid, result.confidence, len(errors), len(warnings),
        )
        return result
