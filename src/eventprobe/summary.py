# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Run-level roll-up of per-page results."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

from .comparator import accuracy_of
from .models import PageResult, PageStatus
from .pipeline_timer import STAGES


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Totals per status, accuracy, and per-event error counts for one run.

    ``overall_accuracy`` is micro-averaged over every compared page
    (sum of correct over sum of correct + wrong); ``mean_page_accuracy`` is
    the plain mean of per-page accuracies. Pages without a comparison are
    excluded from both.
    """

    total: int
    by_status: dict[str, int]
    compared: int
    overall_accuracy: float
    mean_page_accuracy: float
    missed_by_event: dict[str, int] = field(default_factory=dict)
    wrong_by_event: dict[str, int] = field(default_factory=dict)
    mean_stage_ms: dict[str, float] = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    def count(self, status: PageStatus) -> int:
        return self.by_status.get(status.value, 0)

    @classmethod
    def build(cls, results: Sequence[PageResult], elapsed_seconds: float = 0.0) -> RunSummary:
        by_status = {status.value: 0 for status in PageStatus}
        missed: Counter[str] = Counter()
        wrong: Counter[str] = Counter()
        correct_total = wrong_total = 0
        page_accuracies: list[float] = []
        stage_samples: dict[str, list[float]] = {}

        for result in results:
            by_status[result.status.value] += 1
            for stage, ms in result.timings.items():
                stage_samples.setdefault(stage, []).append(ms)
            comparison = result.comparison
            if comparison is None:
                continue
            missed.update(comparison.missed)
            wrong.update(comparison.wrong)
            correct_total += len(comparison.correct)
            wrong_total += len(comparison.wrong)
            page_accuracies.append(comparison.accuracy)

        ordered_stages = [s for s in STAGES if s in stage_samples] + sorted(set(stage_samples) - set(STAGES))
        return cls(
            total=len(results),
            by_status=by_status,
            compared=len(page_accuracies),
            overall_accuracy=accuracy_of(correct_total, wrong_total),
            mean_page_accuracy=sum(page_accuracies) / len(page_accuracies) if page_accuracies else 0.0,
            missed_by_event=dict(missed.most_common()),
            wrong_by_event=dict(wrong.most_common()),
            mean_stage_ms={s: round(sum(stage_samples[s]) / len(stage_samples[s]), 1) for s in ordered_stages},
            elapsed_seconds=round(elapsed_seconds, 3),
        )
