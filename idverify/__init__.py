"""
Identity Verification Pipeline

This package orchestrates a multi-step identity verification:
- ID image quality assessment and OCR field extraction
- ID number, type and expiry checks
- Declared data reconciliation
- Face detection, liveness and selfie-vs-ID matching
- Risk scoring and final decision making
"""

from .errors import ImageLoadError, InvalidInputError, ProviderError, VerificationError
from .models import DeclaredIdentity, VerificationConfig, VerificationResult, VerificationSession
from .orchestrator import VerificationOrchestrator

__version__ = "1.0.0"

__all__ = [
    "DeclaredIdentity",
    "ImageLoadError",
    "InvalidInputError",
    "ProviderError",
    "VerificationConfig",
    "VerificationError",
    "VerificationOrchestrator",
    "VerificationResult",
    "VerificationSession",
]
