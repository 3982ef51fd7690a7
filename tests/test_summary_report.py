# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for RunSummary and the JSON run report."""

from __future__ import annotations

import json

import pytest

from eventprobe import __version__
from eventprobe.models import ActualEventSet, ComparisonResult, PageResult, PageStatus, PredictedEventSet
from eventprobe.reporter import build_report, write_report
from eventprobe.summary import RunSummary
from tests._fakes import actual


def _completed(page_id: str, correct, missed, wrong, accuracy, timings=None) -> PageResult:
    return PageResult(
        page_id=page_id,
        url=f"https://shop.example/{page_id}",
        status=PageStatus.COMPLETED,
        page_type="MAIN",
        predicted=PredictedEventSet(page_id, tuple(correct) + tuple(wrong), ("purchase",), ()),
        actual=ActualEventSet(page_id, tuple(actual(n) for n in tuple(correct) + tuple(missed))),
        comparison=ComparisonResult(page_id, tuple(correct), tuple(missed), tuple(wrong), (), accuracy),
        timings=timings or {"render": 100.0, "compare": 10.0},
    )


@pytest.fixture
def results():
    return [
        _completed("a", ["page_view", "scroll"], ["click"], ["view_item"], 2 / 3),
        _completed("b", ["page_view"], ["click"], [], 1.0, {"render": 300.0, "compare": 30.0}),
        PageResult("c", "https://shop.example/c", PageStatus.SKIPPED, error="RenderTimeoutError: slow"),
        PageResult("d", "https://shop.example/d", PageStatus.COMPARISON_UNAVAILABLE, error="AnalyticsQueryError"),
    ]


class TestRunSummary:
    def test_counts_and_accuracy(self, results):
        summary = RunSummary.build(results, elapsed_seconds=1.23456)
        assert summary.total == 4
        assert summary.count(PageStatus.COMPLETED) == 2
        assert summary.count(PageStatus.SKIPPED) == 1
        assert summary.count(PageStatus.CANCELLED) == 0
        assert summary.compared == 2
        # micro: 3 correct / (3 correct + 1 wrong)
        assert summary.overall_accuracy == 0.75
        assert summary.mean_page_accuracy == pytest.approx((2 / 3 + 1.0) / 2)
        assert summary.missed_by_event == {"click": 2}
        assert summary.wrong_by_event == {"view_item": 1}
        assert summary.mean_stage_ms == {"render": 200.0, "compare": 20.0}
        assert summary.elapsed_seconds == 1.235

    def test_all_failed_still_summarised(self):
        summary = RunSummary.build([PageResult("x", "https://x", PageStatus.FAILED, error="boom")])
        assert summary.total == 1
        assert summary.overall_accuracy == 0.0
        assert summary.mean_page_accuracy == 0.0

    def test_empty_run(self):
        summary = RunSummary.build([])
        assert summary.total == 0
        assert set(summary.by_status) == {s.value for s in PageStatus}


class TestReport:
    def test_build_report_shape(self, results):
        report = build_report(results, RunSummary.build(results))
        assert report["generator"] == f"eventprobe {__version__}"
        assert report["summary"]["overall_accuracy"] == 0.75
        pages = {p["page_id"]: p for p in report["pages"]}
        assert pages["a"]["comparison"]["wrong"] == ["view_item"]
        assert pages["a"]["predicted"]["blocked_by_rule"] == ["purchase"]
        assert pages["a"]["actual"][0]["event_name"] == "page_view"
        assert "comparison" not in pages["c"]
        assert pages["c"]["error"].startswith("RenderTimeoutError")
        json.dumps(report)

    def test_write_report(self, tmp_path, results):
        path = write_report(tmp_path / "out" / "report.json", build_report(results, RunSummary.build(results)))
        loaded = json.loads(path.read_text(encoding="utf-8"))
        assert len(loaded["pages"]) == 4
