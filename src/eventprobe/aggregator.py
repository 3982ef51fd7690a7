# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PredictionAggregator — merge rule verdicts and UI verdicts per page.

Decision table for each active event::

    structurally_allowed  requires UI  UI present   -> bucket
    no                    any          any          -> blocked_by_rule
    yes                   no           n/a          -> fireable
    yes                   yes          yes          -> fireable
    yes                   yes          no/missing   -> blocked_by_ui

Every active event lands in exactly one bucket. Buckets are emitted in catalog
order so the same inputs always yield the same set.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from .config import ConfigSnapshot
from .models import Confidence, PredictedEventSet, TriggerVerdict, UIVerificationResult

logger = logging.getLogger(__name__)

NO_UI_RESULT_REASON = "no ui verification result"


class PredictionAggregator:
    def __init__(self, snapshot: ConfigSnapshot) -> None:
        self._snapshot = snapshot
        self._order = {name: i for i, name in enumerate(snapshot.event_names)}

    def _sorted(self, names: Iterable[str]) -> tuple[str, ...]:
        return tuple(sorted(names, key=self._order.__getitem__))

    def aggregate(
        self,
        page_id: str,
        verdicts: Sequence[TriggerVerdict],
        ui_results: Sequence[UIVerificationResult],
        active_events: Sequence[str] | None = None,
    ) -> PredictedEventSet:
        """Partition the page's active events into the three buckets.

        ``active_events`` defaults to the events that have a verdict. A verdict
        or UI result naming an event outside the catalog, a duplicate verdict,
        or an active event with no verdict raises ``ValueError``.
        """
        by_verdict: dict[str, TriggerVerdict] = {}
        for verdict in verdicts:
            if verdict.event_name not in self._order:
                raise ValueError(f"{page_id}: verdict for unknown event {verdict.event_name!r}")
            if verdict.event_name in by_verdict:
                raise ValueError(f"{page_id}: duplicate verdict for {verdict.event_name!r}")
            by_verdict[verdict.event_name] = verdict

        by_ui: dict[str, UIVerificationResult] = {}
        for result in ui_results:
            if result.event_name not in self._order:
                raise ValueError(f"{page_id}: UI result for unknown event {result.event_name!r}")
            by_ui[result.event_name] = result

        names = list(by_verdict) if active_events is None else list(dict.fromkeys(active_events))
        missing = [n for n in names if n not in by_verdict]
        if missing:
            raise ValueError(f"{page_id}: no rule verdict for {', '.join(missing)}")

        fireable: list[str] = []
        blocked_by_rule: list[str] = []
        blocked_by_ui: list[str] = []
        low_confidence: list[str] = []

        for name in names:
            if not by_verdict[name].structurally_allowed:
                blocked_by_rule.append(name)
                continue
            if not self._snapshot.event(name).requires_ui:
                fireable.append(name)
                continue
            ui = by_ui.get(name) or UIVerificationResult.degraded_result(name, NO_UI_RESULT_REASON)
            if ui.degraded or ui.confidence is Confidence.LOW:
                low_confidence.append(name)
            (fireable if ui.elements_found else blocked_by_ui).append(name)

        predicted = PredictedEventSet(
            page_id=page_id,
            fireable=self._sorted(fireable),
            blocked_by_rule=self._sorted(blocked_by_rule),
            blocked_by_ui=self._sorted(blocked_by_ui),
            low_confidence=self._sorted(low_confidence),
        )
        logger.debug(
            "Aggregated %s: %d fireable, %d blocked by rule, %d blocked by UI",
            page_id,
            len(predicted.fireable),
            len(predicted.blocked_by_rule),
            len(predicted.blocked_by_ui),
        )
        return predicted
