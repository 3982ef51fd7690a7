# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for PredictionAggregator — bucket partition of the active catalog."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from eventprobe.aggregator import NO_UI_RESULT_REASON, PredictionAggregator
from eventprobe.models import TriggerVerdict, UIVerificationResult
from eventprobe.rules import TriggerRuleEngine
from tests._fakes import build_snapshot, make_context


def _allowed(name: str) -> TriggerVerdict:
    return TriggerVerdict(name, True, "ok")


def _blocked(name: str) -> TriggerVerdict:
    return TriggerVerdict(name, False, "page-type mismatch")


def _ui(name: str, found: bool) -> UIVerificationResult:
    return UIVerificationResult(name, found, "seen" if found else "not seen")


# ── Scenarios ──────────────────────────────────────────────────


class TestScenarios:
    def test_ui_block_on_product_page(self, snapshot):
        ctx = make_context("PRODUCT_DETAIL")
        verdicts = TriggerRuleEngine(snapshot).evaluate_all(snapshot.events, ctx)
        ui = [_ui("add_to_cart", False), _ui("click", True)]

        predicted = PredictionAggregator(snapshot).aggregate("p1", verdicts, ui)

        assert "add_to_cart" in predicted.blocked_by_ui
        assert "add_to_cart" not in predicted.blocked_by_rule
        assert "view_item" in predicted.fireable
        assert "purchase" in predicted.blocked_by_rule

    def test_structural_block_ignores_ui(self, snapshot):
        predicted = PredictionAggregator(snapshot).aggregate(
            "p1", [_blocked("add_to_cart")], [_ui("add_to_cart", True)]
        )
        assert predicted.blocked_by_rule == ("add_to_cart",)
        assert predicted.fireable == ()

    def test_event_without_ui_requirement_fireable(self, snapshot):
        predicted = PredictionAggregator(snapshot).aggregate("p1", [_allowed("page_view")], [])
        assert predicted.fireable == ("page_view",)

    def test_missing_ui_result_is_absent(self, snapshot):
        predicted = PredictionAggregator(snapshot).aggregate("p1", [_allowed("add_to_cart")], [])
        assert predicted.blocked_by_ui == ("add_to_cart",)
        assert predicted.low_confidence == ("add_to_cart",)
        assert NO_UI_RESULT_REASON == "no ui verification result"

    def test_degraded_result_flagged_low_confidence(self, snapshot):
        ui = [UIVerificationResult.degraded_result("click", "inference response unparseable")]
        predicted = PredictionAggregator(snapshot).aggregate("p1", [_allowed("click")], ui)
        assert predicted.blocked_by_ui == ("click",)
        assert predicted.low_confidence == ("click",)

    def test_catalog_order(self, snapshot):
        verdicts = [_allowed("scroll"), _allowed("purchase"), _allowed("page_view")]
        predicted = PredictionAggregator(snapshot).aggregate("p1", verdicts, [])
        assert predicted.fireable == ("page_view", "scroll", "purchase")


class TestErrors:
    def test_unknown_event_verdict(self, snapshot):
        with pytest.raises(ValueError, match="unknown event"):
            PredictionAggregator(snapshot).aggregate("p1", [_allowed("checkout_v2")], [])

    def test_unknown_event_ui_result(self, snapshot):
        with pytest.raises(ValueError, match="unknown event"):
            PredictionAggregator(snapshot).aggregate("p1", [], [_ui("mystery", True)])

    def test_duplicate_verdict(self, snapshot):
        with pytest.raises(ValueError, match="duplicate"):
            PredictionAggregator(snapshot).aggregate("p1", [_allowed("scroll"), _blocked("scroll")], [])

    def test_active_event_without_verdict(self, snapshot):
        with pytest.raises(ValueError, match="no rule verdict"):
            PredictionAggregator(snapshot).aggregate("p1", [_allowed("scroll")], [], active_events=["scroll", "login"])


# ── Properties ─────────────────────────────────────────────────

_SNAPSHOT = build_snapshot()
_NAMES = list(_SNAPSHOT.event_names)


@st.composite
def _page_inputs(draw):
    names = draw(st.lists(st.sampled_from(_NAMES), unique=True))
    verdicts = [TriggerVerdict(n, draw(st.booleans()), "r") for n in names]
    ui = [_ui(n, draw(st.booleans())) for n in names if draw(st.booleans())]
    return names, verdicts, ui


class TestPartitionProperty:
    @settings(max_examples=200)
    @given(_page_inputs())
    def test_every_active_event_in_exactly_one_bucket(self, inputs):
        names, verdicts, ui = inputs
        predicted = PredictionAggregator(_SNAPSHOT).aggregate("p", verdicts, ui)
        buckets = predicted.fireable + predicted.blocked_by_rule + predicted.blocked_by_ui
        assert sorted(buckets) == sorted(names)
        assert len(set(buckets)) == len(buckets)
        assert set(predicted.low_confidence) <= set(buckets)

    @settings(max_examples=100)
    @given(_page_inputs())
    def test_idempotent(self, inputs):
        _, verdicts, ui = inputs
        aggregator = PredictionAggregator(_SNAPSHOT)
        assert aggregator.aggregate("p", verdicts, ui) == aggregator.aggregate("p", list(verdicts), list(ui))

    @settings(max_examples=100)
    @given(_page_inputs())
    def test_blocked_by_rule_matches_verdicts(self, inputs):
        _, verdicts, ui = inputs
        predicted = PredictionAggregator(_SNAPSHOT).aggregate("p", verdicts, ui)
        assert set(predicted.blocked_by_rule) == {v.event_name for v in verdicts if not v.structurally_allowed}
