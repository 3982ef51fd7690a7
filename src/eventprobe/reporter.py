# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""ResultReporter — flatten a run into a JSON-serialisable report."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from . import __version__
from .models import PageResult
from .summary import RunSummary

logger = logging.getLogger(__name__)


def _page_entry(result: PageResult) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "page_id": result.page_id,
        "url": result.url,
        "status": result.status.value,
        "page_type": result.page_type,
        "error": result.error,
        "timings_ms": dict(result.timings),
    }
    if result.predicted is not None:
        predicted = result.predicted
        entry["predicted"] = {
            "fireable": list(predicted.fireable),
            "blocked_by_rule": list(predicted.blocked_by_rule),
            "blocked_by_ui": list(predicted.blocked_by_ui),
            "low_confidence": list(predicted.low_confidence),
        }
    if result.actual is not None:
        entry["actual"] = [
            {"event_name": e.event_name, "count": e.count, "proportion": e.proportion, "is_noise": e.is_noise}
            for e in result.actual.events
        ]
    if result.comparison is not None:
        comparison = asdict(result.comparison)
        comparison.pop("page_id")
        entry["comparison"] = {k: list(v) if isinstance(v, tuple) else v for k, v in comparison.items()}
    return entry


def build_report(results: Sequence[PageResult], summary: RunSummary) -> dict[str, Any]:
    """Report document: run metadata, summary, then one entry per page."""
    return {
        "generator": f"eventprobe {__version__}",
        "generated_at": datetime.now(UTC).isoformat(timespec="seconds"),
        "summary": asdict(summary),
        "pages": [_page_entry(r) for r in results],
    }


def write_report(path: str | Path, report: dict[str, Any]) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(report, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    logger.info("Report written to %s (%d pages)", out, len(report.get("pages", [])))
    return out
