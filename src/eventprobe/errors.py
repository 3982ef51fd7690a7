# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""EventProbe exception hierarchy.

All EventProbe-specific errors inherit from EventProbeError, allowing callers
to catch the base class for any EventProbe failure or specific subclasses
for targeted handling.
"""

from __future__ import annotations


class EventProbeError(Exception):
    """Base exception for all EventProbe errors."""


class ConfigurationError(EventProbeError):
    """Tag configuration source unreadable, malformed, or empty (fatal)."""


class RenderError(EventProbeError):
    """Page rendering failed; the page is skipped."""

    def __init__(self, message: str, *, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class RenderTimeoutError(RenderError):
    """Navigation or settle did not finish within the render timeout."""


class NavigationError(RenderError):
    """Navigation failed (DNS, TLS, HTTP error status, crashed target)."""


class InferenceError(EventProbeError):
    """Vision inference call failed; affected UI verdicts are degraded."""


class InferenceTimeoutError(InferenceError):
    """Inference call exceeded the inference timeout."""


class InferenceRateLimitError(InferenceError):
    """Inference service rejected the call due to rate limiting."""

    def __init__(self, message: str, *, retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InferenceResponseError(InferenceError):
    """Inference response did not conform to the expected schema."""


class AnalyticsQueryError(EventProbeError):
    """Analytics backend query failed; the page comparison is unavailable."""

    def __init__(self, message: str, *, page_path: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.page_path = page_path
        self.status_code = status_code


class PoolClosedError(EventProbeError):
    """Worker pool no longer admits new work (run cancelled)."""
