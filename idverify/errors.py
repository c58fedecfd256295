from typing import Optional


class VerificationError(Exception):
    """Base class for identity verification failures"""


class InvalidInputError(VerificationError):
    """Caller passed malformed input to the pipeline"""


class ImageLoadError(VerificationError):
    """An image reference could not be read"""


class ProviderError(VerificationError):
    """
    An external capability (OCR, face biometrics, image analysis) failed:
    timeout, connection error, non-2xx status or an unusable reply
    """

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        detail = f"{provider}: {message}"
        if status_code is not None:
            detail = f"{detail} (status={status_code})"
        super().__init__(detail)
