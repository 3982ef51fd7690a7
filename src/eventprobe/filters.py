# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Trigger filter predicates — a closed set of filter kinds.

Each filter kind is a frozen dataclass; ``Filter`` is their union. The single
``evaluate_filter()`` dispatches with ``match`` and ends in ``assert_never``
so a new kind that is added to ``Filter`` without an evaluation branch is
reported by the type checker.

Variable filters compare against the resolved page variables of a
:class:`~eventprobe.models.PageContext`. A variable that was not declared on
the page fails every predicate except ``Defined(negate=True)``.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, assert_never

if TYPE_CHECKING:
    from .models import PageContext


@dataclass(frozen=True, slots=True)
class Equals:
    variable: str
    value: str
    negate: bool = False


@dataclass(frozen=True, slots=True)
class Contains:
    variable: str
    value: str
    negate: bool = False


@dataclass(frozen=True, slots=True)
class StartsWith:
    variable: str
    value: str
    negate: bool = False


@dataclass(frozen=True, slots=True)
class EndsWith:
    variable: str
    value: str
    negate: bool = False


@dataclass(frozen=True, slots=True)
class MatchesRegex:
    variable: str
    pattern: str
    negate: bool = False
    ignore_case: bool = False

    def __post_init__(self) -> None:
        try:
            re.compile(self.pattern)
        except re.error as exc:
            raise ValueError(f"invalid regex for {self.variable!r}: {exc}") from exc


@dataclass(frozen=True, slots=True)
class Defined:
    """Passes when the variable is declared (``negate``: when it is not)."""

    variable: str
    negate: bool = False


@dataclass(frozen=True, slots=True)
class PageTypeIn:
    """Passes when the resolved page type is one of ``page_types``."""

    page_types: frozenset[str]


Filter = Equals | Contains | StartsWith | EndsWith | MatchesRegex | Defined | PageTypeIn

# YAML/config name -> filter class
FILTER_KINDS: dict[str, type] = {
    "equals": Equals,
    "contains": Contains,
    "starts_with": StartsWith,
    "ends_with": EndsWith,
    "matches_regex": MatchesRegex,
    "defined": Defined,
    "page_type_in": PageTypeIn,
}


@dataclass(frozen=True, slots=True)
class FilterOutcome:
    passed: bool
    reason: str


def describe_filter(filt: Filter) -> str:
    """Human-readable one-liner, used in verdict reasons."""
    match filt:
        case Equals(variable, value, negate):
            op = "does not equal" if negate else "equals"
            return f"{variable} {op} {value!r}"
        case Contains(variable, value, negate):
            op = "does not contain" if negate else "contains"
            return f"{variable} {op} {value!r}"
        case StartsWith(variable, value, negate):
            op = "does not start with" if negate else "starts with"
            return f"{variable} {op} {value!r}"
        case EndsWith(variable, value, negate):
            op = "does not end with" if negate else "ends with"
            return f"{variable} {op} {value!r}"
        case MatchesRegex(variable, pattern, negate, _):
            op = "does not match" if negate else "matches"
            return f"{variable} {op} /{pattern}/"
        case Defined(variable, negate):
            return f"{variable} is {'not ' if negate else ''}defined"
        case PageTypeIn(page_types):
            return f"page type in {sorted(page_types)}"
        case _:
            assert_never(filt)


def _compare(filt: Filter, actual: str) -> bool:
    match filt:
        case Equals(_, value, _):
            return actual == value
        case Contains(_, value, _):
            return value in actual
        case StartsWith(_, value, _):
            return actual.startswith(value)
        case EndsWith(_, value, _):
            return actual.endswith(value)
        case MatchesRegex(_, pattern, _, ignore_case):
            flags = re.IGNORECASE if ignore_case else 0
            return re.search(pattern, actual, flags) is not None
        case Defined() | PageTypeIn():
            raise TypeError(f"{type(filt).__name__} is not a value comparison")
        case _:
            assert_never(filt)


def evaluate_filter(
    filt: Filter,
    context: PageContext,
    normalize_page_type: Callable[[str], str] = str.upper,
) -> FilterOutcome:
    """Evaluate one filter against a resolved page context."""
    match filt:
        case PageTypeIn(page_types):
            allowed = {normalize_page_type(p) for p in page_types}
            if context.page_type in allowed:
                return FilterOutcome(True, f"page type {context.page_type} allowed")
            return FilterOutcome(
                False,
                f"filter '{describe_filter(filt)}' failed: page type is {context.page_type}",
            )
        case Defined(variable, negate):
            declared = variable in context.variables
            if declared != negate:
                return FilterOutcome(True, describe_filter(filt))
            return FilterOutcome(False, f"filter '{describe_filter(filt)}' failed")
        case Equals() | Contains() | StartsWith() | EndsWith() | MatchesRegex():
            actual = context.variables.get(filt.variable)
            if actual is None:
                return FilterOutcome(
                    False,
                    f"variable {filt.variable!r} is not declared on {context.page_type} page",
                )
            if _compare(filt, actual) != filt.negate:
                return FilterOutcome(True, describe_filter(filt))
            return FilterOutcome(
                False,
                f"filter '{describe_filter(filt)}' failed: {filt.variable}={actual!r}",
            )
        case _:
            assert_never(filt)
