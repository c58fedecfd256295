"""
Name/date/number normalization and fuzzy comparison used to reconcile
extracted ID fields with what the user typed in.
"""

import re
from typing import Optional

from rapidfuzz.distance import Levenshtein

from .extractor import strip_separators
from .models import DataMatchResult, DeclaredIdentity, ExtractedIDData

NAME_SIMILARITY_THRESHOLD = 0.7
MATCH_SCORE_THRESHOLD = 0.6
MAX_DISCREPANCIES = 1


def normalize_name(name: str) -> str:
    """Uppercase, drop everything but letters and spaces, collapse whitespace"""
    cleaned = re.sub(r"[^A-Z\s]", "", name.upper())
    return re.sub(r"\s+", " ", cleaned).strip()


def normalize_date(date_str: str) -> str:
    """
    Reduce a date to its digits. Only 8-digit results are comparable;
    anything else is returned unchanged.
    """
    digits = re.sub(r"\D", "", date_str)
    if len(digits) == 8:
        return digits
    return date_str


def string_similarity(a: str, b: str) -> float:
    """Edit-distance similarity in [0, 1]; symmetric, 1 for equal strings"""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    # (longest - distance) / longest
    return Levenshtein.normalized_similarity(a, b)


def _present(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def compare_with_user_input(extracted: ExtractedIDData, declared: DeclaredIdentity) -> DataMatchResult:
    """
    Compare extracted ID data with user-declared fields. Only fields present
    on both sides count as a check.
    """
    discrepancies = []
    matched = 0
    total_checks = 0

    if _present(extracted.full_name) and _present(declared.full_name):
        total_checks += 1
        similarity = string_similarity(
            normalize_name(extracted.full_name),
            normalize_name(declared.full_name),
        )
        if similarity >= NAME_SIMILARITY_THRESHOLD:
            matched += 1
        else:
            discrepancies.append("Name does not match the ID")

    if _present(extracted.id_number) and _present(declared.id_number):
        total_checks += 1
        if strip_separators(extracted.id_number) == strip_separators(declared.id_number):
            matched += 1
        else:
            discrepancies.append("ID number does not match")

    if _present(extracted.date_of_birth) and _present(declared.date_of_birth):
        total_checks += 1
        if normalize_date(extracted.date_of_birth) == normalize_date(declared.date_of_birth):
            matched += 1
        else:
            discrepancies.append("Date of birth does not match")

    score = matched / total_checks if total_checks else 0.0
    return DataMatchResult(
        is_match=score >= MATCH_SCORE_THRESHOLD and len(discrepancies) <= MAX_DISCREPANCIES,
        match_score=score,
        discrepancies=discrepancies,
    )
