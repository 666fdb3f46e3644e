"""
Extraction Service Configuration
Settings for the structured invoice-extraction endpoint (OpenAI-compatible
chat completions with tool calling).
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path, override=False)


@dataclass
class ExtractionConfig:
    """Extraction service configuration object"""

    api_key: str
    model: str = "google/gemini-2.5-flash"
    api_base_url: Optional[str] = None
    timeout: int = 60
    max_text_chars: int = 40000
    debug: bool = False

    def __post_init__(self):
        """Validate configuration after initialization"""
        self.validate()

    def validate(self):
        """Validate extraction configuration"""
        if not self.api_key:
            raise ValueError(
                "EXTRACTION_API_KEY not configured. Invoice analysis is unavailable."
            )

        if not self.model:
            raise ValueError("EXTRACTION_MODEL is required")

        if self.timeout <= 0:
            raise ValueError("EXTRACTION_TIMEOUT must be greater than 0")

        if self.max_text_chars <= 0:
            raise ValueError("EXTRACTION_MAX_TEXT_CHARS must be greater than 0")


def load_extraction_config() -> ExtractionConfig:
    """
    Load extraction configuration from environment variables.

    Environment Variables:
    - EXTRACTION_API_KEY: API key (required; falls back to OPENAI_API_KEY)
    - EXTRACTION_MODEL: Model name (default: google/gemini-2.5-flash)
    - EXTRACTION_API_BASE_URL: OpenAI-compatible gateway URL (optional)
    - EXTRACTION_TIMEOUT: Request timeout in seconds (default: 60)
    - EXTRACTION_MAX_TEXT_CHARS: Document text truncation limit (default: 40000)
    - EXTRACTION_DEBUG: Debug mode (default: false)

    Returns:
        ExtractionConfig object

    Raises:
        ValueError: If no API key is configured
    """
    api_key = os.getenv("EXTRACTION_API_KEY", "").strip()
    if not api_key:
        api_key = os.getenv("OPENAI_API_KEY", "").strip()

    return ExtractionConfig(
        api_key=api_key,
        model=os.getenv("EXTRACTION_MODEL", "google/gemini-2.5-flash").strip(),
        api_base_url=os.getenv("EXTRACTION_API_BASE_URL") or None,
        timeout=int(os.getenv("EXTRACTION_TIMEOUT", "60")),
        max_text_chars=int(os.getenv("EXTRACTION_MAX_TEXT_CHARS", "40000")),
        debug=os.getenv("EXTRACTION_DEBUG", "false").lower() == "true",
    )
