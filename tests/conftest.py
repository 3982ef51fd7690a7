# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import eventprobe  # noqa: F401
except ImportError:
    raise ImportError("eventprobe is not installed. Run: pip install -e '.[dev]'") from None


import pytest
import structlog

from tests._fakes import FakeAnalytics, FakeRenderer, FakeVision, build_snapshot


@pytest.fixture
def snapshot():
    return build_snapshot()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def vision():
    return FakeVision()


@pytest.fixture
def analytics():
    return FakeAnalytics()


@pytest.fixture(autouse=True)
def _reset_contextvars():
    """Keep structlog context bindings from leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()

