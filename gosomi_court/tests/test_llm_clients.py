"""
Tests for the judge HTTP clients.

Requests are served by httpx.MockTransport; nothing leaves the process.
"""

import json

import httpx
import pytest

from gosomi_court.llm import (
    DisabledJudge,
    GeminiJudge,
    JudgeImage,
    OpenRouterJudge,
    is_image_error,
    safe_log_content,
)


IMAGE = JudgeImage(mime_type="image/png", data=b"\x89PNG-fake")


def _mock(judge, handler):
    judge._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return judge


def _gemini(**kwargs):
    return GeminiJudge(api_key="g-key", model="gemini-test", base_url="https://gemini.test/v1beta/", **kwargs)


def _openrouter(**kwargs):
    return OpenRouterJudge(api_key="or-key", model="vendor/model", base_url="https://openrouter.test/api/v1", **kwargs)


class TestHelpers:

    def test_image_error_detection(self):
        assert is_image_error("[400] Unable to process input image")
        assert is_image_error("invalid IMAGE data")
        assert not is_image_error("rate limited")
        assert not is_image_error(None)

    def test_safe_log_content(self):
        assert safe_log_content("") == "(empty)"
        logged = safe_log_content("x" * 500, max_chars=10)
        assert logged.startswith("len=500 hash=")
        assert "preview='xxxxxxxxxx...'" in logged


class TestGeminiJudge:

    def test_payload(self):
        payload = _gemini(temperature=0.2).build_payload("decide", [IMAGE])

        parts = payload["contents"][0]["parts"]
        assert parts[0] == {"text": "decide"}
        assert parts[1]["inlineData"] == {"mimeType": "image/png", "data": IMAGE.b64}
        assert payload["generationConfig"] == {"temperature": 0.2, "responseMimeType": "application/json"}

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-goog-api-key")
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": '{"result":'}, {"text": ' "GUILTY"}'}]}}],
            })

        judge = _mock(_gemini(), handler)
        result = await judge.judge("decide")

        assert result.success
        assert json.loads(result.content) == {"result": "GUILTY"}
        assert seen["url"] == "https://gemini.test/v1beta/models/gemini-test:generateContent"
        assert seen["key"] == "g-key"
        await judge.close()

    @pytest.mark.asyncio
    async def test_image_rejection(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"message": "Unable to process input image"}})

        result = await _mock(_gemini(), handler).judge("decide", [IMAGE])

        assert not result.success
        assert result.image_rejected
        assert result.error.startswith("HTTP 400")

    @pytest.mark.asyncio
    async def test_missing_candidates(self):
        result = await _mock(_gemini(), lambda request: httpx.Response(200, json={"candidates": []})).judge("decide")
        assert not result.success
        assert not result.image_rejected
        assert result.raw_response == {"candidates": []}

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = await _mock(_gemini(), handler).judge("decide")
        assert not result.success
        assert result.error == "timeout after 30s"


class TestOpenRouterJudge:

    def test_payload_text_only(self):
        payload = _openrouter().build_payload("decide", [])
        assert payload["messages"] == [{"role": "user", "content": "decide"}]
        assert payload["response_format"] == {"type": "json_object"}

    def test_payload_with_images(self):
        content = _openrouter().build_payload("decide", [IMAGE])["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "decide"}
        assert content[1]["image_url"]["url"] == f"data:image/png;base64,{IMAGE.b64}"

    @pytest.mark.asyncio
    async def test_success(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer or-key"
            assert json.loads(request.content)["model"] == "vendor/model"
            return httpx.Response(200, json={"choices": [{"message": {"content": '{"ok": true}'}}]})

        result = await _mock(_openrouter(), handler).judge("decide")
        assert result.success
        assert result.content == '{"ok": true}'

    @pytest.mark.asyncio
    async def test_error_inside_ok_body(self):
        def handler(request):
            return httpx.Response(200, json={"error": {"message": "Invalid image data"}})

        result = await _mock(_openrouter(), handler).judge("decide", [IMAGE])
        assert not result.success
        assert result.image_rejected
        assert result.error == "Invalid image data"

    @pytest.mark.asyncio
    async def test_server_error(self):
        result = await _mock(_openrouter(), lambda request: httpx.Response(502, text="bad gateway")).judge("decide")
        assert not result.success
        assert result.error == "HTTP 502: bad gateway"


class TestUnconfigured:

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        def handler(request):
            raise AssertionError("no request expected")

        judge = _mock(GeminiJudge(api_key=None, model="m", base_url="https://gemini.test"), handler)
        result = await judge.judge("decide")
        assert not result.success
        assert result.error == "API key not configured"

    @pytest.mark.asyncio
    async def test_disabled_judge(self):
        result = await DisabledJudge().judge("decide", [IMAGE])
        assert not result.success
        assert "disabled" in result.error
