# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Run configuration and the run-scoped configuration snapshot.

``PipelineConfig`` holds the knobs of a run (pool sizes, timeouts, pacing).
``ConfigSnapshot`` is the immutable view of the tag configuration — the event
catalog and the page-type resolution table — loaded once at process start and
passed explicitly into every component constructor. There is no module-level
cache of either.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from .models import EventDefinition

DEFAULT_RENDER_CONCURRENCY = 4
DEFAULT_INFERENCE_CONCURRENCY = 4

# Collected by GA4 itself (automatic and enhanced measurement), no tag needed
GA4_AUTO_COLLECTED_EVENTS = frozenset(
    {
        "page_view",
        "first_visit",
        "session_start",
        "user_engagement",
        "scroll",
        "click",
        "view_search_results",
        "file_download",
        "video_start",
        "video_progress",
        "video_complete",
        "form_start",
        "form_submit",
        "screen_view",
    }
)

# Fire at most once per session whatever the catalog says
GA4_SESSION_ONCE_EVENTS = frozenset({"first_visit", "session_start"})


@dataclass(frozen=True, slots=True)
class DateRange:
    """Analytics query window (GA4 relative or ISO dates)."""

    start_date: str = "7daysAgo"
    end_date: str = "today"


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Immutable configuration for a pipeline run."""

    render_concurrency: int = DEFAULT_RENDER_CONCURRENCY
    inference_concurrency: int = DEFAULT_INFERENCE_CONCURRENCY
    render_timeout: float = 30.0  # seconds, navigation + settle + capture
    inference_timeout: float = 60.0  # seconds, per inference call
    task_timeout: float | None = None  # whole page task; None disables
    inference_requests_per_minute: int = 50
    vision_batch_size: int = 8  # events per batched inference request
    date_range: DateRange = field(default_factory=DateRange)

    def __post_init__(self) -> None:
        if self.render_concurrency < 1:
            raise ValueError(f"render_concurrency must be >= 1, got {self.render_concurrency}")
        if self.inference_concurrency < 1:
            raise ValueError(f"inference_concurrency must be >= 1, got {self.inference_concurrency}")
        if self.render_timeout <= 0:
            raise ValueError(f"render_timeout must be > 0, got {self.render_timeout}")
        if self.inference_timeout <= 0:
            raise ValueError(f"inference_timeout must be > 0, got {self.inference_timeout}")
        if self.task_timeout is not None and self.task_timeout <= 0:
            raise ValueError(f"task_timeout must be > 0, got {self.task_timeout}")
        if self.inference_requests_per_minute < 1:
            raise ValueError(
                f"inference_requests_per_minute must be >= 1, got {self.inference_requests_per_minute}"
            )
        if self.vision_batch_size < 1:
            raise ValueError(f"vision_batch_size must be >= 1, got {self.vision_batch_size}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> PipelineConfig:
        """Build a config from ``EVENTPROBE_*`` variables; blank values are ignored."""
        env = os.environ if environ is None else environ
        values: dict = {}
        for name, key, conv in _ENV_FIELDS:
            raw = env.get(key, "").strip()
            if not raw:
                continue
            try:
                values[name] = conv(raw)
            except ValueError as exc:
                raise ValueError(f"{key}: invalid value {raw!r}") from exc
        values.update(overrides)
        return cls(**values)


_ENV_FIELDS: tuple[tuple[str, str, type], ...] = (
    ("render_concurrency", "EVENTPROBE_RENDER_CONCURRENCY", int),
    ("inference_concurrency", "EVENTPROBE_INFERENCE_CONCURRENCY", int),
    ("render_timeout", "EVENTPROBE_RENDER_TIMEOUT", float),
    ("inference_timeout", "EVENTPROBE_INFERENCE_TIMEOUT", float),
    ("task_timeout", "EVENTPROBE_TASK_TIMEOUT", float),
    ("inference_requests_per_minute", "EVENTPROBE_INFERENCE_RPM", int),
    ("vision_batch_size", "EVENTPROBE_VISION_BATCH_SIZE", int),
)


# ---------------------------------------------------------------------------
# Page-type resolution table
# ---------------------------------------------------------------------------


def canonical_page_type(value: str) -> str:
    """``"product-detail"`` / ``"^prd$"`` -> ``"PRODUCT_DETAIL"`` / ``"PRD"``."""
    return re.sub(r"[\s\-]+", "_", value.strip().strip("^$")).upper()


@dataclass(frozen=True, slots=True)
class UrlPattern:
    pattern: str
    page_type: str

    def __post_init__(self) -> None:
        try:
            re.compile(self.pattern)
        except re.error as exc:
            raise ValueError(f"invalid url pattern {self.pattern!r}: {exc}") from exc

    def matches(self, url: str) -> bool:
        return re.search(self.pattern, url, re.IGNORECASE) is not None


@dataclass(frozen=True, slots=True)
class PageTypeTable:
    """How a rendered page's type and variables are resolved.

    ``marker_expression`` is evaluated on the page (e.g. a data-layer page-type
    variable); ``variable_expressions`` maps page variable names (login state,
    locale, ...) to read-only expressions.
    """

    marker_expression: str | None = None
    variable_expressions: dict[str, str] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)
    url_patterns: tuple[UrlPattern, ...] = ()
    default_page_type: str = "OTHERS"

    def normalize(self, value: str) -> str:
        key = canonical_page_type(value)
        return self.aliases.get(key, key)

    def match_url(self, url: str) -> str | None:
        for rule in self.url_patterns:
            if rule.matches(url):
                return self.normalize(rule.page_type)
        return None


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ConfigSnapshot:
    """Run-scoped, read-only tag configuration.

    ``auto_collected`` names events GA4 records on its own. When observed but
    not in the catalog they are reported apart from missed predictions.
    ``session_once_events`` are treated as session-once even without a catalog
    definition flagging them.
    """

    events: tuple[EventDefinition, ...]
    page_types: PageTypeTable = field(default_factory=PageTypeTable)
    source: str = ""
    auto_collected: frozenset[str] = GA4_AUTO_COLLECTED_EVENTS
    session_once_events: frozenset[str] = GA4_SESSION_ONCE_EVENTS
    _by_name: dict[str, EventDefinition] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_name: dict[str, EventDefinition] = {}
        for event in self.events:
            if event.event_name in by_name:
                raise ValueError(f"duplicate event definition: {event.event_name!r}")
            by_name[event.event_name] = event
        object.__setattr__(self, "_by_name", by_name)

    @property
    def event_names(self) -> tuple[str, ...]:
        return tuple(self._by_name)

    def event(self, name: str) -> EventDefinition:
        return self._by_name[name]

    def has_event(self, name: str) -> bool:
        return name in self._by_name

    def is_session_once(self, name: str) -> bool:
        if name in self.session_once_events:
            return True
        return self.has_event(name) and self._by_name[name].session_once

    def is_auto_collected(self, name: str) -> bool:
        """Observed without a catalog definition, but collected by GA4 itself."""
        return name in self.auto_collected and not self.has_event(name)

    def normalize_page_type(self, value: str) -> str:
        return self.page_types.normalize(value)

    def active_events(self, expected_event_names: tuple[str, ...] = ()) -> tuple[EventDefinition, ...]:
        """Catalog events in play for a page, in catalog order.

        An empty ``expected_event_names`` selects the whole catalog; unknown
        names are ignored.
        """
        if not expected_event_names:
            return self.events
        wanted = set(expected_event_names)
        return tuple(e for e in self.events if e.event_name in wanted)
