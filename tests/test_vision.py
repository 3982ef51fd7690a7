# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the vision boundary — prompt text, schema, Anthropic adapter.

The Anthropic client is replaced by an AsyncMock; no network access.
"""

from __future__ import annotations

import base64
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from eventprobe.errors import (
    ConfigurationError,
    InferenceError,
    InferenceRateLimitError,
    InferenceResponseError,
    InferenceTimeoutError,
)
from eventprobe.models import EventDefinition
from eventprobe.verifier import UNPARSEABLE_REASON, VisualVerifier
from eventprobe.vision import REPORT_TOOL_NAME, AnthropicVisionService, UICheck, VisionPrompt, VisionResponse
from tests._fakes import make_page

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _prompt() -> VisionPrompt:
    return VisionPrompt(
        page_type="PRODUCT_DETAIL",
        checks=(
            UICheck("add_to_cart", ("add-to-cart button",), "cart button below price"),
            UICheck("add_to_wishlist", ("heart icon", "wishlist label")),
        ),
    )


def _response(*blocks) -> SimpleNamespace:
    return SimpleNamespace(content=list(blocks), usage=SimpleNamespace(input_tokens=1200, output_tokens=80))


def _service(create: AsyncMock) -> AnthropicVisionService:
    client = MagicMock()
    client.messages.create = create
    return AnthropicVisionService(model_name="test-model", client=client)


class TestPrompt:
    def test_text_lists_every_check(self):
        text = _prompt().to_text()
        assert "PRODUCT_DETAIL page" in text
        assert "- add_to_cart: add-to-cart button (cart button below price)" in text
        assert "- add_to_wishlist: heart icon, wishlist label" in text

    def test_schema_is_strict(self):
        schema = VisionResponse.model_json_schema()
        assert schema["additionalProperties"] is False
        assert "results" in schema["required"]


class TestAnthropicVisionService:
    async def test_forced_tool_call_and_payload(self):
        tool_input = {"results": [{"event_name": "add_to_cart", "elements_found": True, "confidence": "high"}]}
        create = AsyncMock(
            return_value=_response(SimpleNamespace(type="tool_use", name=REPORT_TOOL_NAME, input=tool_input))
        )
        raw = await _service(create).infer(b"png-bytes", _prompt())

        assert json.loads(raw) == tool_input
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["tool_choice"] == {"type": "tool", "name": REPORT_TOOL_NAME}
        assert kwargs["tools"][0]["input_schema"] == VisionResponse.model_json_schema()
        image, text = kwargs["messages"][0]["content"]
        assert image["source"]["data"] == base64.b64encode(b"png-bytes").decode("ascii")
        assert text["text"] == _prompt().to_text()

    async def test_text_fallback_when_no_tool_call(self):
        create = AsyncMock(return_value=_response(SimpleNamespace(type="text", text="I think so")))
        assert await _service(create).infer(b"x", _prompt()) == "I think so"

    async def test_timeout_mapped(self):
        create = AsyncMock(side_effect=anthropic.APITimeoutError(request=_REQUEST))
        with pytest.raises(InferenceTimeoutError):
            await _service(create).infer(b"x", _prompt())

    async def test_rate_limit_mapped_with_retry_after(self):
        response = httpx.Response(429, headers={"retry-after": "12"}, request=_REQUEST)
        create = AsyncMock(side_effect=anthropic.RateLimitError("slow down", response=response, body=None))
        with pytest.raises(InferenceRateLimitError) as exc_info:
            await _service(create).infer(b"x", _prompt())
        assert exc_info.value.retry_after == 12.0

    async def test_status_error_mapped(self):
        response = httpx.Response(500, request=_REQUEST)
        create = AsyncMock(side_effect=anthropic.InternalServerError("oops", response=response, body=None))
        with pytest.raises(InferenceError, match="vision request failed"):
            await _service(create).infer(b"x", _prompt())

    async def test_connection_error_mapped(self):
        create = AsyncMock(side_effect=anthropic.APIConnectionError(request=_REQUEST))
        with pytest.raises(InferenceError):
            await _service(create).infer(b"x", _prompt())

    async def test_malformed_response_mapped(self):
        response = httpx.Response(200, request=_REQUEST)
        error = anthropic.APIResponseValidationError(response=response, body=None, message="bad body")
        create = AsyncMock(side_effect=error)
        with pytest.raises(InferenceResponseError, match="bad body"):
            await _service(create).infer(b"x", _prompt())

    async def test_other_api_error_mapped(self):
        create = AsyncMock(side_effect=anthropic.APIError("unexpected", _REQUEST, body=None))
        with pytest.raises(InferenceError, match="vision request error"):
            await _service(create).infer(b"x", _prompt())

    async def test_malformed_response_degrades_verdict(self):
        response = httpx.Response(200, request=_REQUEST)
        error = anthropic.APIResponseValidationError(response=response, body=None, message="bad body")
        verifier = VisualVerifier(_service(AsyncMock(side_effect=error)))
        event = EventDefinition("add_to_cart", requires_ui_elements=("add-to-cart button",))

        result = await verifier.verify(event, make_page())

        assert result.degraded is True
        assert result.elements_found is False
        assert result.reason == UNPARSEABLE_REASON

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
            AnthropicVisionService()

    def test_supports_batch(self):
        assert AnthropicVisionService.supports_batch is True
