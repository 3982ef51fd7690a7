# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for eventprobe.rules — structural verdicts."""

from __future__ import annotations

from eventprobe.filters import Equals, PageTypeIn
from eventprobe.models import EventDefinition
from eventprobe.rules import PAGE_TYPE_MISMATCH, TriggerRuleEngine
from tests._fakes import make_context


class TestPageTypeRestriction:
    def test_purchase_blocked_on_main(self, snapshot):
        engine = TriggerRuleEngine(snapshot)
        verdict = engine.evaluate(snapshot.event("purchase"), make_context("MAIN"))
        assert verdict.structurally_allowed is False
        assert verdict.reason.startswith(PAGE_TYPE_MISMATCH)
        assert "MAIN not in [ORDER_COMPLETE]" in verdict.reason

    def test_alias_resolved_at_load(self, snapshot):
        engine = TriggerRuleEngine(snapshot)
        verdict = engine.evaluate(snapshot.event("add_to_cart"), make_context("PRODUCT_DETAIL"))
        assert verdict.structurally_allowed is True

    def test_unrestricted_event_always_allowed(self, snapshot):
        engine = TriggerRuleEngine(snapshot)
        for page_type in ("MAIN", "CART", "OTHERS"):
            verdict = engine.evaluate(snapshot.event("page_view"), make_context(page_type))
            assert verdict.structurally_allowed
            assert verdict.reason == "no structural restriction"


class TestFilters:
    def test_first_failing_filter_decides(self, snapshot):
        event = EventDefinition(
            "promo_click",
            filters=(Equals("locale", "ko"), Equals("login_state", "Y"), PageTypeIn(frozenset({"CART"}))),
        )
        verdict = TriggerRuleEngine(snapshot).evaluate(event, make_context("MAIN", locale="ko", login_state="N"))
        assert not verdict.structurally_allowed
        assert "login_state equals 'Y'" in verdict.reason

    def test_all_filters_pass(self, snapshot):
        verdict = TriggerRuleEngine(snapshot).evaluate(snapshot.event("login"), make_context("MAIN", login_state="Y"))
        assert verdict.structurally_allowed
        assert verdict.reason == "all conditions satisfied on MAIN page"

    def test_undeclared_variable_blocks(self, snapshot):
        verdict = TriggerRuleEngine(snapshot).evaluate(snapshot.event("login"), make_context("MAIN"))
        assert not verdict.structurally_allowed
        assert "login_state" in verdict.reason

    def test_page_type_filter_uses_alias_table(self, snapshot):
        event = EventDefinition("review_view", filters=(PageTypeIn(frozenset({"PRD"})),))
        verdict = TriggerRuleEngine(snapshot).evaluate(event, make_context("PRODUCT_DETAIL"))
        assert verdict.structurally_allowed


class TestEvaluateAll:
    def test_catalog_order_and_determinism(self, snapshot):
        engine = TriggerRuleEngine(snapshot)
        ctx = make_context("PRODUCT_DETAIL", login_state="N")
        first = engine.evaluate_all(snapshot.events, ctx)
        second = engine.evaluate_all(snapshot.events, ctx)
        assert [v.event_name for v in first] == list(snapshot.event_names)
        assert first == second
