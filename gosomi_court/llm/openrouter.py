"""
OpenRouter judge client (OpenAI-style chat completions).

Images travel as data URLs inside `image_url` content parts.
"""

import logging
from typing import List

from .base import JudgeCallResult, JudgeClient, JudgeImage, safe_log_content

logger = logging.getLogger(__name__)


class OpenRouterJudge(JudgeClient):
    name = "openrouter"
    app_name = "Gosomi Court"

    def build_payload(self, prompt: str, images: List[JudgeImage]) -> dict:
        if images:
            content = [{"type": "text", "text": prompt}]
            for image in images:
                content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{image.mime_type};base64,{image.b64}"},
                })
        else:
            content = prompt

        return {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }

    async def _post(self, prompt: str, images: List[JudgeImage]) -> JudgeCallResult:
        client = await self._get_client()

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": self.app_name,
        }

        response = await client.post(
            f"{self.base_url}/chat/completions",
            json=self.build_payload(prompt, images),
            headers=headers,
        )
        response.raise_for_status()
        data = response.json()

        # Some providers report failures inside a 200 body
        if data.get("error"):
            message = data["error"].get("message") if isinstance(data["error"], dict) else str(data["error"])
            return self._failure(message or "unknown provider error", raw_response=data)

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError) as e:
            logger.error(f"OpenRouter response missing content: {e}")
            return self._failure(f"Response missing content: {e}", raw_response=data)

        if content is None:
            content = ""

        logger.info(f"OpenRouter verdict ({len(images)} images): {safe_log_content(content)}")
        return JudgeCallResult(content=content, model=self.model, raw_response=data)
