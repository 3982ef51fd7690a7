# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for GroundTruthComparator — correct / missed / wrong and accuracy."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from eventprobe.comparator import GroundTruthComparator, accuracy_of
from eventprobe.models import ActualEventSet, PredictedEventSet
from tests._fakes import CATALOG_DOC, actual, build_snapshot


def _predicted(*fireable: str, page_id: str = "p1") -> PredictedEventSet:
    return PredictedEventSet(page_id=page_id, fireable=fireable, blocked_by_rule=(), blocked_by_ui=())


class TestScenario:
    def test_documented_example(self, snapshot):
        predicted = _predicted("scroll", "page_view")
        observed = ActualEventSet("p1", (actual("scroll", 100, 0.98), actual("click", 2, 0.00002, noise=True)))
        result = GroundTruthComparator(snapshot).compare(predicted, observed)

        assert result.correct == ("scroll",)
        assert result.wrong == ("page_view",)
        assert result.missed == ()
        assert result.accuracy == 0.5
        assert result.noise == ("click",)

    def test_noise_only_prediction_counts_as_wrong(self, snapshot):
        observed = ActualEventSet(
            "p1",
            (
                actual("page_view", 5000, 0.6),
                actual("scroll", 3000, 0.4),
                actual("click", 1, 0.00005, noise=True),
                actual("purchase", 2, 0.00003, noise=True),
            ),
        )
        result = GroundTruthComparator(snapshot).compare(_predicted("page_view", "click"), observed)

        assert result.correct == ("page_view",)
        assert result.missed == ("scroll",)
        assert result.wrong == ("click",)
        assert result.accuracy == 0.5
        assert result.noise == ("click", "purchase")

    def test_session_once_excluded(self, snapshot):
        observed = ActualEventSet("p1", (actual("login"), actual("page_view")))
        result = GroundTruthComparator(snapshot).compare(_predicted("login", "page_view"), observed)
        assert result.session_once_excluded == ("login",)
        assert "login" not in result.correct + result.missed + result.wrong
        assert result.accuracy == 1.0

    def test_observed_event_outside_catalog_is_missed(self, snapshot):
        observed = ActualEventSet("p1", (actual("page_view"), actual("sign_up")))
        result = GroundTruthComparator(snapshot).compare(_predicted("page_view"), observed)
        assert result.missed == ("sign_up",)
        assert result.auto_collected == ()

    def test_ga4_auto_collected_events_kept_apart(self, snapshot):
        observed = ActualEventSet(
            "p1",
            (actual("page_view"), actual("session_start"), actual("first_visit"), actual("user_engagement")),
        )
        result = GroundTruthComparator(snapshot).compare(_predicted("page_view"), observed)

        assert result.missed == ()
        assert result.auto_collected == ("user_engagement",)
        assert result.session_once_excluded == ("first_visit", "session_start")
        assert result.accuracy == 1.0

    def test_catalog_event_is_missed_even_if_ga4_collects_it(self, snapshot):
        observed = ActualEventSet("p1", (actual("page_view"), actual("scroll")))
        result = GroundTruthComparator(snapshot).compare(_predicted("page_view"), observed)
        assert result.missed == ("scroll",)
        assert result.auto_collected == ()

    def test_auto_collected_set_from_catalog(self):
        snapshot = build_snapshot({**CATALOG_DOC, "auto_collected": [], "session_once_events": []})
        observed = ActualEventSet("p1", (actual("page_view"), actual("session_start"), actual("user_engagement")))
        result = GroundTruthComparator(snapshot).compare(_predicted("page_view"), observed)

        assert result.missed == ("session_start", "user_engagement")
        assert result.session_once_excluded == ()

    def test_empty_prediction_accuracy_zero(self, snapshot):
        result = GroundTruthComparator(snapshot).compare(_predicted(), ActualEventSet("p1", ()))
        assert result.accuracy == 0.0
        assert result.correct == result.missed == result.wrong == ()

    def test_page_id_mismatch(self, snapshot):
        with pytest.raises(ValueError, match="page id mismatch"):
            GroundTruthComparator(snapshot).compare(_predicted(), ActualEventSet("p2", ()))

    def test_significant_wins_over_duplicate_noise_row(self):
        observed = ActualEventSet("p1", (actual("scroll"), actual("scroll", 1, 0.00001, noise=True)))
        assert observed.significant_names == {"scroll"}
        assert observed.noise_names == frozenset()


class TestAccuracyFormula:
    def test_values(self):
        assert accuracy_of(0, 0) == 0.0
        assert accuracy_of(3, 1) == 0.75
        assert accuracy_of(0, 4) == 0.0


_SNAPSHOT = build_snapshot()
_EXTRA_NAMES = ["first_visit", "session_start", "user_engagement", "sign_up"]
_NAMES = st.sampled_from(list(_SNAPSHOT.event_names) + _EXTRA_NAMES)


class TestComparisonProperty:
    @given(
        fireable=st.sets(_NAMES),
        observed=st.dictionaries(_NAMES, st.booleans()),
    )
    def test_accounting_and_bounds(self, fireable, observed):
        predicted = _predicted(*sorted(fireable))
        actual_set = ActualEventSet("p1", tuple(actual(n, noise=is_noise) for n, is_noise in observed.items()))
        result = GroundTruthComparator(_SNAPSHOT).compare(predicted, actual_set)

        lists = result.correct + result.missed + result.wrong + result.auto_collected
        assert len(lists) == len(set(lists))
        significant = {n for n, is_noise in observed.items() if not is_noise}
        expected = (fireable | significant) - set(result.session_once_excluded)
        assert set(lists) == expected
        assert 0.0 <= result.accuracy <= 1.0
        assert result.accuracy == accuracy_of(len(result.correct), len(result.wrong))
