# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""ConcurrencyScheduler — run page tasks through the pipeline on one event loop.

Per task, strictly sequential::

    render slot -> render + context -> release
    rules -> UI verification (inference slots, per call) -> aggregate
    analytics query -> compare

Two independent pools bound the expensive resources: ``render`` (R browser
contexts) and ``inference`` (V in-flight vision calls). Pools are created per
run; a render-heavy backlog never starves inference and vice versa.

Every task ends in exactly one PageResult. A render failure, analytics
failure, task timeout or unexpected error is confined to its page.

Cancellation closes the render pool: tasks that have not been admitted report
``cancelled``, tasks already admitted run to completion.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from .aggregator import PredictionAggregator
from .analytics import AnalyticsQueryService
from .comparator import GroundTruthComparator
from .config import ConfigSnapshot, PipelineConfig
from .errors import AnalyticsQueryError, PoolClosedError, RenderError
from .models import ActualEventSet, PageResult, PageStatus, PageTask
from .pipeline_timer import PipelineTimer
from .pools import PoolHealth, WorkerPool
from .rate_limiter import RateLimitConfig, RateLimiter
from .renderer import PageRenderer, RenderOptions, render_page
from .rules import TriggerRuleEngine
from .summary import RunSummary
from .verifier import VisualVerifier
from .vision import VisionInferenceService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunReport:
    results: list[PageResult]
    summary: RunSummary
    pool_health: dict[str, PoolHealth] = field(default_factory=dict)


@dataclass(slots=True)
class _RunState:
    """Resources scoped to one ``run`` call."""

    config: PipelineConfig
    render_pool: WorkerPool
    inference_pool: WorkerPool
    verifier: VisualVerifier
    render_options: RenderOptions


def _check_unique_ids(tasks: Sequence[PageTask]) -> None:
    seen: set[str] = set()
    for task in tasks:
        if task.id in seen:
            raise ValueError(f"duplicate page task id: {task.id!r}")
        seen.add(task.id)


class ConcurrencyScheduler:
    """Fan page tasks out over bounded render and inference pools."""

    def __init__(
        self,
        snapshot: ConfigSnapshot,
        renderer: PageRenderer,
        vision: VisionInferenceService,
        analytics: AnalyticsQueryService,
        config: PipelineConfig | None = None,
        *,
        full_page_screenshot: bool = False,
    ) -> None:
        self._snapshot = snapshot
        self._renderer = renderer
        self._vision = vision
        self._analytics = analytics
        self._config = config or PipelineConfig()
        self._full_page_screenshot = full_page_screenshot
        self._rules = TriggerRuleEngine(snapshot)
        self._aggregator = PredictionAggregator(snapshot)
        self._comparator = GroundTruthComparator(snapshot)
        self._state: _RunState | None = None
        self._last_health: dict[str, PoolHealth] = {}

    # ── Run control ──────────────────────────────────────────────────

    def cancel(self) -> None:
        """Stop admitting new tasks to the render pool. Idempotent."""
        if self._state is None:
            logger.debug("cancel() with no run in progress")
            return
        logger.info("Run cancellation requested")
        self._state.render_pool.close()

    def pool_health(self) -> dict[str, PoolHealth]:
        """Pool state of the current run, or of the last finished run."""
        if self._state is not None:
            return {
                "render": self._state.render_pool.health(),
                "inference": self._state.inference_pool.health(),
            }
        return dict(self._last_health)

    def _new_state(self, config: PipelineConfig) -> _RunState:
        inference_pool = WorkerPool("inference", config.inference_concurrency)
        limiter = RateLimiter(RateLimitConfig(requests_per_minute=config.inference_requests_per_minute))
        return _RunState(
            config=config,
            render_pool=WorkerPool("render", config.render_concurrency),
            inference_pool=inference_pool,
            verifier=VisualVerifier(
                self._vision,
                pool=inference_pool,
                rate_limiter=limiter,
                inference_timeout=config.inference_timeout,
                batch_size=config.vision_batch_size,
            ),
            render_options=RenderOptions(
                timeout=config.render_timeout,
                full_page_screenshot=self._full_page_screenshot,
            ),
        )

    async def run(self, tasks: Sequence[PageTask], config: PipelineConfig | None = None) -> list[PageResult]:
        """Process *tasks*; results come back in completion order.

        Raises ``ValueError`` for duplicate task ids and ``RuntimeError`` if a
        run is already in progress on this scheduler.
        """
        _check_unique_ids(tasks)
        if self._state is not None:
            raise RuntimeError("a run is already in progress")

        state = self._new_state(config or self._config)
        self._state = state
        # Copied into every page task's context at create_task time
        structlog.contextvars.bind_contextvars(run_id=uuid.uuid4().hex[:12])
        logger.info(
            "Run started: %d tasks, render=%d, inference=%d",
            len(tasks),
            state.config.render_concurrency,
            state.config.inference_concurrency,
        )
        # Created in submission order so the FIFO semaphores admit in that order
        pending = [asyncio.create_task(self._run_one(task, state), name=f"page:{task.id}") for task in tasks]
        results: list[PageResult] = []
        try:
            for next_done in asyncio.as_completed(pending):
                results.append(await next_done)
        finally:
            for t in pending:
                t.cancel()
            self._last_health = {
                "render": state.render_pool.health(),
                "inference": state.inference_pool.health(),
            }
            self._state = None
            structlog.contextvars.unbind_contextvars("run_id")
        return results

    async def run_batch(self, tasks: Sequence[PageTask], config: PipelineConfig | None = None) -> RunReport:
        """``run`` plus the run summary; always returns a report."""
        started = time.monotonic()
        results = await self.run(tasks, config)
        summary = RunSummary.build(results, elapsed_seconds=time.monotonic() - started)
        logger.info(
            "Run finished: %d pages, %d completed, accuracy=%.3f",
            summary.total,
            summary.count(PageStatus.COMPLETED),
            summary.overall_accuracy,
        )
        return RunReport(results=results, summary=summary, pool_health=self.pool_health())

    # ── Per-task pipeline ────────────────────────────────────────────

    async def _run_one(self, task: PageTask, state: _RunState) -> PageResult:
        structlog.contextvars.bind_contextvars(page_id=task.id)
        timer = PipelineTimer()
        progress: dict = {}
        try:
            async with asyncio.timeout(state.config.task_timeout):
                return await self._process(task, state, timer, progress)
        except PoolClosedError:
            logger.info("Task %s cancelled before admission", task.id)
            return self._result(task, PageStatus.CANCELLED, timer, progress, error="run cancelled")
        except RenderError as exc:
            logger.warning("Render failed for %s: %s", task.url, exc)
            return self._result(task, PageStatus.SKIPPED, timer, progress, error=f"{type(exc).__name__}: {exc}")
        except AnalyticsQueryError as exc:
            logger.warning("Analytics query failed for %s: %s", task.page_path, exc)
            return self._result(
                task, PageStatus.COMPARISON_UNAVAILABLE, timer, progress, error=f"{type(exc).__name__}: {exc}"
            )
        except TimeoutError:
            message = timer.timeout_message()
            logger.warning("Task %s: %s", task.id, message)
            return self._result(task, PageStatus.FAILED, timer, progress, error=message)
        except Exception as exc:
            logger.exception("Unexpected failure on task %s", task.id)
            return self._result(task, PageStatus.FAILED, timer, progress, error=f"{type(exc).__name__}: {exc}")
        finally:
            structlog.contextvars.unbind_contextvars("page_id")

    async def _process(self, task: PageTask, state: _RunState, timer: PipelineTimer, progress: dict) -> PageResult:
        timer.stage("queued")
        async with state.render_pool.slot():
            timer.stage("render")
            page = await render_page(self._renderer, task, self._snapshot, state.render_options)
        progress["page_type"] = page.context.page_type

        timer.stage("rules")
        events = self._snapshot.active_events(task.expected_event_names)
        verdicts = self._rules.evaluate_all(events, page.context)

        timer.stage("vision")
        allowed = [e for e, v in zip(events, verdicts, strict=True) if v.structurally_allowed]
        ui_results = await state.verifier.verify_many(allowed, page)

        timer.stage("aggregate")
        predicted = self._aggregator.aggregate(task.id, verdicts, ui_results)
        progress["predicted"] = predicted

        timer.stage("compare")
        observed = await self._analytics.query_events_for_page(task.page_path, state.config.date_range)
        actual = ActualEventSet(page_id=task.id, events=tuple(observed))
        progress["actual"] = actual
        comparison = self._comparator.compare(predicted, actual)

        return self._result(task, PageStatus.COMPLETED, timer, progress, comparison=comparison)

    @staticmethod
    def _result(
        task: PageTask,
        status: PageStatus,
        timer: PipelineTimer,
        progress: dict,
        *,
        error: str | None = None,
        comparison=None,
    ) -> PageResult:
        timer.finalize()
        return PageResult(
            page_id=task.id,
            url=task.url,
            status=status,
            page_type=progress.get("page_type"),
            predicted=progress.get("predicted"),
            actual=progress.get("actual"),
            comparison=comparison,
            error=error,
            timings=timer.elapsed_per_stage(),
        )
