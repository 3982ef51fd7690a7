# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""GroundTruthComparator — score a prediction against observed analytics.

Only ``fireable`` counts as a positive prediction. Noise-level observations
are not ground truth: an event seen only at noise level and predicted
fireable is scored as wrong. Session-once events are removed from every
list and from the accuracy denominator. Observed events GA4 collects on its
own that the catalog does not define go to ``auto_collected``, not ``missed``.
"""

from __future__ import annotations

from collections.abc import Iterable

from .config import ConfigSnapshot
from .models import ActualEventSet, ComparisonResult, PredictedEventSet


def accuracy_of(correct: int, wrong: int) -> float:
    """``correct / (correct + wrong)``; 0.0 when nothing was predicted."""
    total = correct + wrong
    return correct / total if total else 0.0


class GroundTruthComparator:
    def __init__(self, snapshot: ConfigSnapshot) -> None:
        self._snapshot = snapshot
        self._order = {name: i for i, name in enumerate(snapshot.event_names)}

    def _sorted(self, names: Iterable[str]) -> tuple[str, ...]:
        # Catalog events first in catalog order, then anything else alphabetically
        return tuple(sorted(names, key=lambda n: (self._order.get(n, len(self._order)), n)))

    def compare(self, predicted: PredictedEventSet, actual: ActualEventSet) -> ComparisonResult:
        if predicted.page_id != actual.page_id:
            raise ValueError(f"page id mismatch: predicted {predicted.page_id!r}, actual {actual.page_id!r}")

        fireable = set(predicted.fireable)
        observed = set(actual.significant_names)

        excluded = {n for n in fireable | observed if self._snapshot.is_session_once(n)}
        fireable -= excluded
        observed -= excluded

        correct = fireable & observed
        missed = observed - fireable
        wrong = fireable - observed
        auto_collected = {n for n in missed if self._snapshot.is_auto_collected(n)}
        missed -= auto_collected

        return ComparisonResult(
            page_id=predicted.page_id,
            correct=self._sorted(correct),
            missed=self._sorted(missed),
            wrong=self._sorted(wrong),
            session_once_excluded=self._sorted(excluded),
            accuracy=accuracy_of(len(correct), len(wrong)),
            noise=self._sorted(actual.noise_names),
            auto_collected=self._sorted(auto_collected),
        )
