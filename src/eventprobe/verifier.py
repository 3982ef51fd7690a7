# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""VisualVerifier — confirm required UI elements are on the rendered page.

Only structurally allowed events reach this stage. Events with no visual
precondition are answered locally (present by default). The rest are sent to
the vision service, batched per page when the service supports it, each call
holding one inference-pool slot and one rate-limiter token.

Nothing here raises on a bad inference: a failed call, a timeout, a rate-limit
rejection, or a response that fails schema validation degrades the affected
events to ``elements_found=False`` with a diagnostic reason, and the page's
analysis continues.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from pydantic import ValidationError

from .errors import InferenceError, InferenceResponseError, InferenceTimeoutError
from .models import Confidence, EventDefinition, RenderedPage, UIVerificationResult
from .pools import WorkerPool
from .rate_limiter import RateLimiter
from .vision import UICheck, VisionInferenceService, VisionPrompt, VisionResponse

logger = logging.getLogger(__name__)

UNPARSEABLE_REASON = "inference response unparseable"
MISSING_EVENT_REASON = "inference response missing event"


def parse_vision_response(raw: str) -> VisionResponse:
    """Strictly validate a raw inference payload.

    Raises ``InferenceResponseError``; no partial objects are ever returned.
    """
    try:
        return VisionResponse.model_validate_json(raw)
    except ValidationError as exc:
        raise InferenceResponseError(f"{UNPARSEABLE_REASON}: {exc.error_count()} validation error(s)") from exc


def _chunks(items: Sequence[EventDefinition], size: int) -> list[Sequence[EventDefinition]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class VisualVerifier:
    """Vision-based presence check for events' required UI elements."""

    def __init__(
        self,
        service: VisionInferenceService,
        *,
        pool: WorkerPool | None = None,
        rate_limiter: RateLimiter | None = None,
        inference_timeout: float = 60.0,
        batch_size: int = 8,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._service = service
        self._pool = pool or WorkerPool("inference", 1)
        self._rate_limiter = rate_limiter
        self._inference_timeout = inference_timeout
        self._batch_size = batch_size
        self._calls = 0

    @property
    def inference_calls(self) -> int:
        return self._calls

    async def verify(self, event: EventDefinition, page: RenderedPage) -> UIVerificationResult:
        results = await self.verify_many([event], page)
        return results[0]

    async def verify_many(self, events: Sequence[EventDefinition], page: RenderedPage) -> list[UIVerificationResult]:
        """Verify *events* on *page*; results come back in input order."""
        by_name: dict[str, UIVerificationResult] = {}
        needs_vision: list[EventDefinition] = []
        for event in events:
            if event.requires_ui:
                needs_vision.append(event)
            else:
                by_name[event.event_name] = UIVerificationResult.present_by_default(event.event_name)

        if needs_vision:
            if getattr(self._service, "supports_batch", False):
                groups = _chunks(needs_vision, self._batch_size)
            else:
                groups = [[event] for event in needs_vision]
            outcomes = await asyncio.gather(*(self._infer_group(group, page) for group in groups))
            for outcome in outcomes:
                by_name.update(outcome)

        return [by_name[event.event_name] for event in events]

    async def _infer_group(
        self, events: Sequence[EventDefinition], page: RenderedPage
    ) -> dict[str, UIVerificationResult]:
        prompt = VisionPrompt(
            page_type=page.context.page_type,
            checks=tuple(UICheck(e.event_name, e.requires_ui_elements, e.description) for e in events),
        )
        names = prompt.event_names
        try:
            raw = await self._call(page, prompt)
            response = parse_vision_response(raw)
        except InferenceResponseError as exc:
            logger.warning("Unparseable vision response for %s (%s): %s", page.page_id, ", ".join(names), exc)
            return {n: UIVerificationResult.degraded_result(n, UNPARSEABLE_REASON) for n in names}
        except InferenceError as exc:
            logger.warning("Vision inference failed for %s (%s): %s", page.page_id, ", ".join(names), exc)
            reason = f"inference failed: {type(exc).__name__}: {exc}"
            return {n: UIVerificationResult.degraded_result(n, reason) for n in names}

        answers = {r.event_name: r for r in response.results}
        results: dict[str, UIVerificationResult] = {}
        for name in names:
            answer = answers.get(name)
            if answer is None:
                results[name] = UIVerificationResult.degraded_result(name, MISSING_EVENT_REASON)
                continue
            results[name] = UIVerificationResult(
                event_name=name,
                elements_found=answer.elements_found,
                reason=answer.reason or ("elements visible" if answer.elements_found else "elements not visible"),
                found_elements=tuple(answer.found_elements) if answer.found_elements is not None else None,
                confidence=Confidence(answer.confidence),
            )
        return results

    async def _call(self, page: RenderedPage, prompt: VisionPrompt) -> str:
        """One inference request: pool slot -> rate-limit token -> timed call."""
        async with self._pool.slot():
            if self._rate_limiter is not None:
                await self._rate_limiter.wait()
            self._calls += 1
            try:
                async with asyncio.timeout(self._inference_timeout):
                    return await self._service.infer(page.screenshot, prompt)
            except TimeoutError as exc:
                raise InferenceTimeoutError(f"inference exceeded {self._inference_timeout:g}s") from exc
            except InferenceError:
                raise
            except Exception as exc:
                # untrusted service: any failure degrades like an InferenceError
                raise InferenceError(f"{type(exc).__name__}: {exc}") from exc
