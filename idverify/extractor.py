import logging
import re
from typing import Any, Dict, List, Optional, Pattern

from config import DEFAULT_ID_TYPE, ID_TYPE_PATTERNS
from .models import ExtractedIDData

logger = logging.getLogger(__name__)

# Label-anchored patterns, tried in priority order. Captures stop at the
# end of the printed line.
NAME_PATTERNS = [
    re.compile(r"(?:SURNAME|LAST NAME)[: \t]*([A-Z \t]+)"),
    re.compile(r"(?:GIVEN NAME|FIRST NAME)[: \t]*([A-Z \t]+)"),
    re.compile(r"(?:NAME)[: \t]*([A-Z \t,]+)"),
]
ADDRESS_PATTERN = re.compile(r"(?:ADDRESS)[: \t]*([A-Z0-9 \t,.-]+)")

ID_SEPARATORS = re.compile(r"[-\s]")


def strip_separators(value: str) -> str:
    """Remove hyphens and whitespace from an ID number"""
    return ID_SEPARATORS.sub("", value)


class FieldExtractor:
    """
    Parses raw OCR text into structured ID fields.
    Unknown ID types fall back to the default type's patterns.
    """

    def __init__(self, id_patterns: Optional[Dict[str, Dict[str, Any]]] = None,
                 default_id_type: str = DEFAULT_ID_TYPE):
        self.id_patterns = id_patterns or ID_TYPE_PATTERNS
        self.default_id_type = default_id_type
        self._compiled: Dict[str, Dict[str, Pattern]] = {
            id_type: {
                "number": re.compile(rules["number_pattern"]),
                "date": re.compile(rules["date_pattern"]),
            }
            for id_type, rules in self.id_patterns.items()
        }

    def patterns_for(self, id_type: str) -> Dict[str, Pattern]:
        return self._compiled.get(id_type) or self._compiled[self.default_id_type]

    def find_id_number(self, upper_text: str, id_type: str) -> Optional[str]:
        match = self.patterns_for(id_type)["number"].search(upper_text)
        return strip_separators(match.group(0)) if match else None

    def find_dates(self, upper_text: str, id_type: str) -> List[str]:
        """All date matches in document order"""
        return [m.group(0) for m in self.patterns_for(id_type)["date"].finditer(upper_text)]

    def find_name(self, upper_text: str) -> Optional[str]:
        for pattern in NAME_PATTERNS:
            match = pattern.search(upper_text)
            if match:
                name = match.group(1).strip()
                if name:
                    return name
        return None

    def find_address(self, upper_text: str) -> Optional[str]:
        match = ADDRESS_PATTERN.search(upper_text)
        if not match:
            return None
        return match.group(1).strip() or None

    def extract(self, text: str, id_type: str) -> ExtractedIDData:
        """Extract structured data from OCR text"""
        upper_text = text.upper()

        dates = self.find_dates(upper_text, id_type)
        if len(dates) == 1:
            logger.debug("Single date on %s document, using it for birth and expiry", id_type)

        return ExtractedIDData(
            id_type=id_type,
            raw_text=text,
            full_name=self.find_name(upper_text),
            # First date is the date of birth, last is the expiry
            date_of_birth=dates[0] if dates else None,
            id_number=self.find_id_number(upper_text, id_type),
            address=self.find_address(upper_text),
            expiry_date=dates[-1] if dates else None,
        )
