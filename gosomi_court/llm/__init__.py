"""
LLM Module
==========

Judge clients used by the Verdict Requester.

Environment Variables:
- JUDGE_MODE: none|gemini|openrouter
- GEMINI_API_KEY / GEMINI_MODEL
- OPENROUTER_API_KEY / OPENROUTER_MODEL / OPENROUTER_BASE_URL
- JUDGE_TEMPERATURE, LLM_TIMEOUT

Usage:
    from gosomi_court.llm import get_judge

    judge = get_judge()
    result = await judge.judge(prompt, images)
"""

import logging
from typing import Optional

from ..config import get_settings
from ..schemas import JudgeMode
from .base import (
    IMAGE_ERROR_MARKERS,
    DisabledJudge,
    JudgeCallResult,
    JudgeClient,
    JudgeImage,
    is_image_error,
    safe_log_content,
)
from .gemini import GeminiJudge
from .openrouter import OpenRouterJudge

logger = logging.getLogger(__name__)

_judge: Optional[JudgeClient] = None


def build_judge() -> JudgeClient:
    """Create a judge client for the configured JUDGE_MODE."""
    settings = get_settings()

    if settings.judge_mode == JudgeMode.GEMINI:
        return GeminiJudge(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.llm_timeout,
            temperature=settings.judge_temperature,
        )
    if settings.judge_mode == JudgeMode.OPENROUTER:
        return OpenRouterJudge(
            api_key=settings.openrouter_api_key,
            model=settings.openrouter_model,
            base_url=settings.openrouter_base_url,
            timeout=settings.llm_timeout,
            temperature=settings.judge_temperature,
        )
    return DisabledJudge()


def get_judge() -> JudgeClient:
    """Get singleton judge instance"""
    global _judge
    if _judge is None:
        _judge = build_judge()
        logger.info(f"Judge client: {_judge.name} ({_judge.model})")
    return _judge


__all__ = [
    "IMAGE_ERROR_MARKERS",
    "DisabledJudge",
    "GeminiJudge",
    "JudgeCallResult",
    "JudgeClient",
    "JudgeImage",
    "OpenRouterJudge",
    "build_judge",
    "get_judge",
    "is_image_error",
    "safe_log_content",
]
