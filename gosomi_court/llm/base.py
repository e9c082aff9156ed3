"""
Judge Client Base
=================

Shared types for the external judge (an LLM that reads a case and returns a
JSON verdict). Clients never raise on transport or API errors; they return a
JudgeCallResult with success=False so the caller decides what to do.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

# Substrings a vendor uses when it refuses the attached images
IMAGE_ERROR_MARKERS = (
    "Unable to process input image",
    "Invalid image",
    "image_parse_error",
)


def safe_log_content(content: str, max_chars: int = 120) -> str:
    """
    Create a safe log representation of content.

    Args:
        content: Content to log
        max_chars: Maximum characters to show

    Returns:
        Safe log string with length and hash
    """
    if not content:
        return "(empty)"

    content_hash = hashlib.sha256(content.encode()).hexdigest()[:12]
    preview = content[:max_chars].replace('\n', ' ')

    return f"len={len(content)} hash={content_hash} preview='{preview}...'"


def is_image_error(message: Optional[str]) -> bool:
    if not message:
        return False
    return any(marker.lower() in message.lower() for marker in IMAGE_ERROR_MARKERS)


@dataclass
class JudgeImage:
    """Image evidence attached to a judge call"""
    mime_type: str
    data: bytes

    @property
    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass
class JudgeCallResult:
    """Result from a judge call"""
    content: str
    model: str
    raw_response: Optional[Dict] = None
    success: bool = True
    error: Optional[str] = None
    image_rejected: bool = False


class JudgeClient:
    """
    Base async judge client.

    Subclasses implement `_post` for one vendor; this class handles the
    HTTP client lifecycle and error normalisation.
    """

    name = "base"

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        base_url: str,
        timeout: int = 30,
        temperature: float = 0.4,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _failure(self, error: str, raw_response: Optional[Dict] = None) -> JudgeCallResult:
        return JudgeCallResult(
            content="",
            model=self.model,
            raw_response=raw_response,
            success=False,
            error=error,
            image_rejected=is_image_error(error),
        )

    async def _post(self, prompt: str, images: List[JudgeImage]) -> JudgeCallResult:
        raise NotImplementedError

    async def judge(self, prompt: str, images: Sequence[JudgeImage] = ()) -> JudgeCallResult:
        """
        Ask the judge for a verdict.

        Args:
            prompt: Full verdict prompt
            images: Image evidence to attach (may be empty)

        Returns:
            JudgeCallResult with the raw text content or an error
        """
        if not self.api_key:
            return self._failure("API key not configured")

        try:
            return await self._post(prompt, list(images))
        except httpx.HTTPStatusError as e:
            logger.error(f"{self.name} API error: {e.response.status_code}")
            return self._failure(f"HTTP {e.response.status_code}: {e.response.text[:300]}")
        except httpx.TimeoutException:
            logger.error(f"{self.name} request timed out after {self.timeout}s")
            return self._failure(f"timeout after {self.timeout}s")
        except Exception as e:
            logger.error(f"{self.name} request failed: {e}")
            return self._failure(str(e))


class DisabledJudge(JudgeClient):
    """Used when JUDGE_MODE=none; every call fails."""

    name = "none"

    def __init__(self):
        super().__init__(api_key=None, model="none", base_url="")

    async def judge(self, prompt: str, images: Sequence[JudgeImage] = ()) -> JudgeCallResult:
        return self._failure("judge is disabled (JUDGE_MODE=none)")
