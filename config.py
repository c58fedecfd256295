from pydantic_settings import BaseSettings
from typing import Dict, Any

class Settings(BaseSettings):
    # Provider Configuration
    OCR_PROVIDER: str = "http"  # "http" | "openai"
    OCR_API_URL: str = "http://localhost:3001/api"
    OCR_LANGUAGE: str = "eng+fil"
    FACE_API_URL: str = "http://localhost:3001/api"
    PROVIDER_TIMEOUT: float = 30.0
    PROVIDER_RETRIES: int = 2

    # OpenAI Configuration (vision OCR)
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4.1-mini"

    # Image Quality
    # Laplacian variance at which an image counts as half blurred
    BLUR_THRESHOLD: float = 100
    USE_IMAGE_ANALYZER: bool = True

    # Verification Policy defaults
    MIN_ID_CONFIDENCE: float = 0.6
    MIN_FACE_MATCH_CONFIDENCE: float = 0.65
    MIN_LIVENESS_CONFIDENCE: float = 0.7
    REQUIRE_LIVENESS_CHECK: bool = True
    MAX_RISK_SCORE: float = 0.4
    STRICT_MODE: bool = False

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()

DEFAULT_ID_TYPE = "Philippine National ID"

NUMERIC_DATE_REGEX = r"\d{2}[/\-]\d{2}[/\-]\d{4}"

# Per ID type: number pattern, type-confirming keywords, date pattern and
# the full-match rule for the separator-stripped ID number
ID_TYPE_PATTERNS: Dict[str, Dict[str, Any]] = {
    "Philippine National ID": {
        "number_pattern": r"\d{4}[-\s]?\d{4}[-\s]?\d{4}",
        "keywords": ["PHILIPPINE", "NATIONAL", "IDENTIFICATION", "PCN", "PHILSYS"],
        "date_pattern": NUMERIC_DATE_REGEX,
        "number_format": r"^\d{12}$",
    },
    "Driver's License": {
        "number_pattern": r"[A-Z]\d{2}[-\s]?\d{2}[-\s]?\d{6}",
        "keywords": ["DRIVER", "LICENSE", "LTO", "LAND TRANSPORTATION"],
        "date_pattern": NUMERIC_DATE_REGEX,
        "number_format": r"^[A-Z]?\d{11,12}$",
    },
    "Passport": {
        "number_pattern": r"[A-Z]\d{8,9}",
        "keywords": ["PASSPORT", "REPUBLIC", "PHILIPPINES", "DFA"],
        "date_pattern": r"\d{2}\s?[A-Z]{3}\s?\d{4}",
        "number_format": r"^[A-Z]\d{8,9}$",
    },
    "SSS ID": {
        "number_pattern": r"\d{2}[-\s]?\d{7}[-\s]?\d{1}",
        "keywords": ["SSS", "SOCIAL SECURITY", "SYSTEM"],
        "date_pattern": NUMERIC_DATE_REGEX,
        "number_format": r"^\d{10}$",
    },
    "PhilHealth ID": {
        "number_pattern": r"\d{2}[-\s]?\d{9}[-\s]?\d{1}",
        "keywords": ["PHILHEALTH", "HEALTH", "INSURANCE"],
        "date_pattern": NUMERIC_DATE_REGEX,
        "number_format": r"^\d{12}$",
    },
    "Voter's ID": {
        "number_pattern": r"\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{6}",
        "keywords": ["VOTER", "COMELEC", "COMMISSION", "ELECTIONS"],
        "date_pattern": NUMERIC_DATE_REGEX,
        "number_format": r"^\d{22}$",
    },
}

# Stripped length accepted for ID types without a format rule
MIN_UNKNOWN_ID_LENGTH = 8
