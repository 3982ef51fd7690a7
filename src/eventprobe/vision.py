# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Vision inference boundary: prompt, response schema, Anthropic client.

The core treats whatever ``infer()`` returns as an untrusted string and
validates it against ``VisionResponse`` (see ``verifier.py``). The Anthropic
client forces a tool call whose input schema *is* ``VisionResponse``, so a
well-behaved model answers with schema-shaped JSON and nothing else.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Literal, Protocol

from anthropic import (
    APIConnectionError,
    APIError,
    APIResponseValidationError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
    RateLimitError,
)
from pydantic import BaseModel, ConfigDict, Field

from .errors import (
    ConfigurationError,
    InferenceError,
    InferenceRateLimitError,
    InferenceResponseError,
    InferenceTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"
REPORT_TOOL_NAME = "report_ui_elements"

# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class UICheck:
    event_name: str
    required_elements: tuple[str, ...]
    description: str = ""


@dataclass(frozen=True, slots=True)
class VisionPrompt:
    """Structured request: which UI elements to look for, per event."""

    page_type: str
    checks: tuple[UICheck, ...]

    @property
    def event_names(self) -> tuple[str, ...]:
        return tuple(c.event_name for c in self.checks)

    def to_text(self) -> str:
        lines = [
            f"This is a screenshot of a {self.page_type} page.",
            "For each event below, decide whether ALL of its required UI elements are visible.",
            "Report one result per event, using the exact event_name given.",
            "",
        ]
        for check in self.checks:
            line = f"- {check.event_name}: {', '.join(check.required_elements)}"
            if check.description:
                line += f" ({check.description})"
            lines.append(line)
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Response schema
# ---------------------------------------------------------------------------


class UIElementVerdict(BaseModel):
    """Model verdict for one event."""

    model_config = ConfigDict(strict=True, extra="forbid")

    event_name: str
    elements_found: bool
    found_elements: list[str] | None = Field(None, description="Visible elements that satisfy the requirement")
    reason: str = Field("", description="Short justification for human review")
    confidence: Literal["high", "medium", "low"] = "medium"


class VisionResponse(BaseModel):
    """Top-level inference response."""

    model_config = ConfigDict(strict=True, extra="forbid")

    results: list[UIElementVerdict]


# ---------------------------------------------------------------------------
# Service boundary
# ---------------------------------------------------------------------------


class VisionInferenceService(Protocol):
    """``supports_batch``: one request may carry checks for several events."""

    supports_batch: bool

    async def infer(self, image: bytes, prompt: VisionPrompt) -> str: ...


class AnthropicVisionService:
    """Vision inference via the Anthropic Messages API."""

    supports_batch = True

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        api_key: str | None = None,
        max_retries: int = 2,
        max_tokens: int = 2048,
        client: AsyncAnthropic | None = None,
    ) -> None:
        """
        Args:
            model_name: Model name (e.g. claude-sonnet-4-5)
            api_key: Anthropic API key (falls back to ANTHROPIC_API_KEY)
            max_retries: SDK-level retries for connection errors and 5xx
            max_tokens: Output token cap per request
            client: Pre-built client (tests)
        """
        self.model_name = model_name
        self.max_tokens = max_tokens
        if client is None:
            api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
            if not api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY is not set")
            client = AsyncAnthropic(api_key=api_key, max_retries=max_retries)
        self._client = client

    async def infer(self, image: bytes, prompt: VisionPrompt) -> str:
        start = time.monotonic()
        try:
            response = await self._client.messages.create(
                model=self.model_name,
                max_tokens=self.max_tokens,
                temperature=0.0,
                tools=[
                    {
                        "name": REPORT_TOOL_NAME,
                        "description": "Report which required UI elements are visible in the screenshot.",
                        "input_schema": VisionResponse.model_json_schema(),
                    }
                ],
                tool_choice={"type": "tool", "name": REPORT_TOOL_NAME},
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": "image/png",
                                    "data": base64.b64encode(image).decode("ascii"),
                                },
                            },
                            {"type": "text", "text": prompt.to_text()},
                        ],
                    }
                ],
            )
        except APITimeoutError as exc:
            raise InferenceTimeoutError(f"vision request timed out: {exc}") from exc
        except RateLimitError as exc:
            retry_after = exc.response.headers.get("retry-after", "0") if exc.response is not None else "0"
            raise InferenceRateLimitError(
                f"vision request rate limited: {exc}", retry_after=_to_float(retry_after)
            ) from exc
        except APIResponseValidationError as exc:
            raise InferenceResponseError(f"vision response malformed: {exc}") from exc
        except (APIConnectionError, APIStatusError) as exc:
            raise InferenceError(f"vision request failed: {exc}") from exc
        except APIError as exc:
            raise InferenceError(f"vision request error: {exc}") from exc

        logger.debug(
            "Vision inference: %d checks, %dms, tokens in=%s out=%s",
            len(prompt.checks),
            int((time.monotonic() - start) * 1000),
            getattr(response.usage, "input_tokens", 0),
            getattr(response.usage, "output_tokens", 0),
        )
        for block in response.content:
            if block.type == "tool_use" and block.name == REPORT_TOOL_NAME:
                return json.dumps(block.input)
        # No tool call: hand back the text and let schema validation reject it.
        return "".join(getattr(block, "text", "") for block in response.content)


def _to_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0
