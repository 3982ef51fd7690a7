# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-page stage timer for latency tracking and timeout diagnostics.

Created before the task timeout scope so it survives cancellation and can
say which stage a timed-out page was stuck in.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

STAGES = ("queued", "render", "rules", "vision", "aggregate", "compare")


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0


class PipelineTimer:
    """Track pipeline stage transitions for one page task."""

    __slots__ = ("_stages", "_current", "_start_ns")

    def __init__(self) -> None:
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = time.monotonic_ns()

    def stage(self, name: str) -> None:
        """End previous stage + start new stage."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        """End current stage. Call on success or error."""
        if self._current is not None:
            self._current.end_ns = time.monotonic_ns()
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    def elapsed_per_stage(self) -> dict[str, float]:
        """Return {stage_name: elapsed_ms} for all stages (including current)."""
        now = time.monotonic_ns()
        result: dict[str, float] = {}
        for s in self._stages:
            result[s.name] = round((s.end_ns - s.start_ns) / 1e6, 1)
        if self._current is not None:
            result[self._current.name] = round((now - self._current.start_ns) / 1e6, 1)
        return result

    def total_ms(self) -> float:
        return round((time.monotonic_ns() - self._start_ns) / 1e6, 1)

    def timeout_message(self) -> str:
        """One-line diagnostic for a task that hit its timeout."""
        current = self.current_stage or "unknown"
        return f"task timed out during '{current}' after {self.total_ms():.0f}ms. {self.hint_for_stage(current)}"

    @staticmethod
    def hint_for_stage(stage: str) -> str:
        hints = {
            "queued": "Waiting for a render slot; the render pool is saturated.",
            "render": "Page may be slow to load or have long-polling connections.",
            "vision": "Inference service is slow or the inference pool is saturated.",
            "compare": "Analytics backend query is slow.",
        }
        return hints.get(stage, f"Timed out during '{stage}' stage.")
