# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""TriggerRuleEngine — structural allowed/blocked verdict per event.

Pure and deterministic: the verdict depends only on the EventDefinition and
the resolved PageContext, never on rendering or model output, so it can be
unit tested without a browser.

Order of checks:
  1. page-type restriction (``allowed_page_types``; ``None`` = every type)
  2. filter predicates, in definition order — the first failure decides
     the blocking reason
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .config import ConfigSnapshot
from .filters import evaluate_filter
from .models import EventDefinition, PageContext, TriggerVerdict

logger = logging.getLogger(__name__)

PAGE_TYPE_MISMATCH = "page-type mismatch"


class TriggerRuleEngine:
    """Evaluate static trigger definitions against a page context."""

    def __init__(self, snapshot: ConfigSnapshot) -> None:
        self._snapshot = snapshot

    def evaluate(self, event: EventDefinition, context: PageContext) -> TriggerVerdict:
        if not event.allows_page_type(context.page_type):
            allowed = ", ".join(sorted(event.allowed_page_types or ()))
            return TriggerVerdict(
                event_name=event.event_name,
                structurally_allowed=False,
                reason=f"{PAGE_TYPE_MISMATCH}: {context.page_type} not in [{allowed}]",
            )

        for filt in event.filters:
            outcome = evaluate_filter(filt, context, self._snapshot.normalize_page_type)
            if not outcome.passed:
                return TriggerVerdict(
                    event_name=event.event_name,
                    structurally_allowed=False,
                    reason=outcome.reason,
                )

        if not event.filters and event.allowed_page_types is None:
            reason = "no structural restriction"
        else:
            reason = f"all conditions satisfied on {context.page_type} page"
        return TriggerVerdict(event_name=event.event_name, structurally_allowed=True, reason=reason)

    def evaluate_all(self, events: Iterable[EventDefinition], context: PageContext) -> list[TriggerVerdict]:
        """Verdicts for *events*, in the given order."""
        verdicts = [self.evaluate(event, context) for event in events]
        logger.debug(
            "Rule evaluation on %s: %d allowed, %d blocked",
            context.page_type,
            sum(v.structurally_allowed for v in verdicts),
            sum(not v.structurally_allowed for v in verdicts),
        )
        return verdicts
