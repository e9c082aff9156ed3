"""
Configuration for Gosomi Court
==============================

Environment variables:
- JUDGE_MODE: none|gemini|openrouter (default: none)
- GEMINI_API_KEY: API key for Gemini
- GEMINI_MODEL: Model to use (default: gemini-2.5-flash)
- OPENROUTER_API_KEY: API key for OpenRouter
- OPENROUTER_MODEL: Model to use (default: google/gemini-2.5-flash)
- JUDGE_TEMPERATURE: Sampling temperature for verdicts (default: 0.4)
- LLM_TIMEOUT: Judge call timeout in seconds (default: 30)
- UPLOAD_ROOT: Directory that evidence image paths are relative to
- LEGAL_CODE_PATH: Override for the bundled legal code JSON
- SUMMONS_TTL_HOURS: Lifetime of a summons token (default: 24)

The database URL is read separately from DATABASE_URL (see db/session.py).
"""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings

from .schemas import JudgeMode


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Judge configuration
    judge_mode: JudgeMode = JudgeMode.NONE
    judge_temperature: float = 0.4

    # Gemini
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    # OpenRouter
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = "google/gemini-2.5-flash"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"

    # Timeouts (seconds)
    llm_timeout: int = 30

    # Evidence images
    upload_root: str = "."
    max_images_per_side: int = 3
    min_image_bytes: int = 5 * 1024  # skips 1x1 placeholders

    # Court rules
    legal_code_path: Optional[str] = None
    summons_ttl_hours: int = 24
    max_jurors: int = 5

    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173"

    # Service info
    service_version: str = "1.0.0"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def validate_judge_config(self) -> List[str]:
        """Validate judge configuration, return list of warnings"""
        warnings = []

        if self.judge_mode == JudgeMode.GEMINI and not self.gemini_api_key:
            warnings.append("JUDGE_MODE=gemini but GEMINI_API_KEY not set")
        elif self.judge_mode == JudgeMode.OPENROUTER and not self.openrouter_api_key:
            warnings.append("JUDGE_MODE=openrouter but OPENROUTER_API_KEY not set")
        elif self.judge_mode == JudgeMode.NONE:
            warnings.append("JUDGE_MODE=none: verdict requests will fail")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
