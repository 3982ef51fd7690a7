# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Core value objects shared by every pipeline stage.

Everything here is immutable: a PageTask is created by the caller and
consumed once, the catalog (EventDefinition) is shared read-only by all
tasks, and each stage emits a new frozen object for the next one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from urllib.parse import urlparse

from .filters import Filter

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Confidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PageStatus(StrEnum):
    """Terminal state of one page task."""

    COMPLETED = "completed"
    SKIPPED = "skipped"  # render failure, nothing predicted
    COMPARISON_UNAVAILABLE = "comparison_unavailable"  # analytics failure
    FAILED = "failed"  # unexpected error or task timeout
    CANCELLED = "cancelled"  # never admitted, run was cancelled


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PageTask:
    """One page to analyse. Immutable; consumed exactly once per run."""

    id: str
    url: str
    page_type_hint: str | None = None
    expected_event_names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("PageTask.id must be non-empty")
        if not self.url:
            raise ValueError(f"PageTask {self.id!r}: url must be non-empty")
        if not isinstance(self.expected_event_names, tuple):
            object.__setattr__(self, "expected_event_names", tuple(self.expected_event_names))

    @property
    def page_path(self) -> str:
        """URL path used to look the page up in the analytics backend."""
        return urlparse(self.url).path or "/"


@dataclass(frozen=True, slots=True)
class EventDefinition:
    """Static trigger definition for one analytics event.

    ``allowed_page_types=None`` means the event is valid on every page type.
    """

    event_name: str
    category: str = "custom"
    requires_ui_elements: tuple[str, ...] = ()
    requires_user_action: bool = False
    allowed_page_types: frozenset[str] | None = None
    filters: tuple[Filter, ...] = ()
    session_once: bool = False
    description: str = ""

    @property
    def requires_ui(self) -> bool:
        return bool(self.requires_ui_elements)

    def allows_page_type(self, page_type: str) -> bool:
        return self.allowed_page_types is None or page_type in self.allowed_page_types


@dataclass(frozen=True, slots=True)
class PageContext:
    """Resolved, render-independent facts about a page.

    ``variables`` only holds variables that were declared on the page;
    an absent key means "not declared".
    """

    url: str
    page_type: str
    page_type_source: str  # "marker" | "url" | "hint" | "default"
    variables: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RenderedPage:
    """What survives a render once the browser context is closed."""

    page_id: str
    url: str
    screenshot: bytes = field(repr=False)
    context: PageContext


# ---------------------------------------------------------------------------
# Stage outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TriggerVerdict:
    event_name: str
    structurally_allowed: bool
    reason: str


@dataclass(frozen=True, slots=True)
class UIVerificationResult:
    """Vision verdict for one (page, event) pair.

    ``degraded`` marks verdicts produced from an inference failure rather
    than a model answer; they always carry ``elements_found=False``.
    """

    event_name: str
    elements_found: bool
    reason: str
    found_elements: tuple[str, ...] | None = None
    confidence: Confidence = Confidence.MEDIUM
    degraded: bool = False

    @classmethod
    def present_by_default(cls, event_name: str) -> UIVerificationResult:
        return cls(
            event_name=event_name,
            elements_found=True,
            reason="no visual precondition",
            confidence=Confidence.HIGH,
        )

    @classmethod
    def degraded_result(cls, event_name: str, reason: str) -> UIVerificationResult:
        return cls(
            event_name=event_name,
            elements_found=False,
            reason=reason,
            confidence=Confidence.LOW,
            degraded=True,
        )


@dataclass(frozen=True, slots=True)
class PredictedEventSet:
    """Per-page prediction; the three buckets partition the active catalog."""

    page_id: str
    fireable: tuple[str, ...]
    blocked_by_rule: tuple[str, ...]
    blocked_by_ui: tuple[str, ...]
    low_confidence: tuple[str, ...] = ()

    @property
    def active_events(self) -> tuple[str, ...]:
        return self.fireable + self.blocked_by_rule + self.blocked_by_ui


@dataclass(frozen=True, slots=True)
class ActualEvent:
    event_name: str
    count: int
    proportion: float
    is_noise: bool


@dataclass(frozen=True, slots=True)
class ActualEventSet:
    page_id: str
    events: tuple[ActualEvent, ...]

    @property
    def significant_names(self) -> frozenset[str]:
        """Events observed above noise level."""
        return frozenset(e.event_name for e in self.events if not e.is_noise)

    @property
    def noise_names(self) -> frozenset[str]:
        return frozenset(e.event_name for e in self.events if e.is_noise) - self.significant_names


@dataclass(frozen=True, slots=True)
class ComparisonResult:
    """Terminal per-page verdict against ground truth."""

    page_id: str
    correct: tuple[str, ...]
    missed: tuple[str, ...]
    wrong: tuple[str, ...]
    session_once_excluded: tuple[str, ...]
    accuracy: float
    noise: tuple[str, ...] = ()
    auto_collected: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PageResult:
    """Envelope for one page task, whatever its outcome."""

    page_id: str
    url: str
    status: PageStatus
    page_type: str | None = None
    predicted: PredictedEventSet | None = None
    actual: ActualEventSet | None = None
    comparison: ComparisonResult | None = None
    error: str | None = None
    timings: dict[str, float] = field(default_factory=dict)
