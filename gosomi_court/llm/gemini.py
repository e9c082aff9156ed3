"""
Gemini judge client (generateContent, inline image parts).
"""

import logging
from typing import List

from .base import JudgeCallResult, JudgeClient, JudgeImage, safe_log_content

logger = logging.getLogger(__name__)


class GeminiJudge(JudgeClient):
    name = "gemini"

    def build_payload(self, prompt: str, images: List[JudgeImage]) -> dict:
        parts = [{"text": prompt}]
        for image in images:
            parts.append({"inlineData": {"mimeType": image.mime_type, "data": image.b64}})

        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": self.temperature,
                "responseMimeType": "application/json",
            },
        }

    async def _post(self, prompt: str, images: List[JudgeImage]) -> JudgeCallResult:
        client = await self._get_client()
        url = f"{self.base_url}/models/{self.model}:generateContent"

        response = await client.post(
            url,
            json=self.build_payload(prompt, images),
            headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
        )
        response.raise_for_status()
        data = response.json()

        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError) as e:
            logger.error(f"Gemini response missing content: {e}")
            return self._failure(f"Response missing content: {e}", raw_response=data)

        content = "".join(p.get("text", "") for p in parts)
        logger.info(f"Gemini verdict ({len(images)} images): {safe_log_content(content)}")

        return JudgeCallResult(content=content, model=self.model, raw_response=data)
