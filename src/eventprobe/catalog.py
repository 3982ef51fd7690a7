# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tag configuration loading — YAML catalog -> ConfigSnapshot.

The loader is one-shot: it runs once at process start and its result is the
run-scoped snapshot. Reloading during a run is not supported. Any failure is
a ``ConfigurationError``, which is fatal for the run.

Document layout::

    page_types:
      marker_expression: window.dataLayerPageType
      default: OTHERS
      aliases: {PRD: PRODUCT_DETAIL}
      variables: {login_state: window.isLoggedIn ? "Y" : "N"}
      url_patterns:
        - {pattern: "/product/", page_type: PRODUCT_DETAIL}
    events:
      - name: add_to_cart
        category: ecommerce
        allowed_page_types: [PRODUCT_DETAIL]   # or ALL / omitted
        requires_ui_elements: [add-to-cart-button]
        requires_user_action: true
        session_once: false
        filters:
          - {kind: equals, variable: login_state, value: "Y"}
    auto_collected: [page_view, session_start, first_visit, user_engagement]   # optional
    session_once_events: [session_start, first_visit]                          # optional
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

import yaml

from .config import (
    GA4_AUTO_COLLECTED_EVENTS,
    GA4_SESSION_ONCE_EVENTS,
    ConfigSnapshot,
    PageTypeTable,
    UrlPattern,
    canonical_page_type,
)
from .errors import ConfigurationError
from .filters import FILTER_KINDS, Filter, PageTypeIn
from .models import EventDefinition

logger = logging.getLogger(__name__)

ALL = "ALL"


class TagConfigurationSource(Protocol):
    """One-shot loader of the event catalog and page-type table."""

    def load(self) -> ConfigSnapshot: ...


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _str_tuple(value: Any, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"{where}: expected a list of strings")
    return tuple(value)


def _bool(value: Any, where: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"{where}: expected true or false, got {value!r}")
    return value


def _mapping(value: Any, where: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{where}: expected a mapping")
    return {str(k): str(v) for k, v in value.items()}


def _name_set(value: Any, default: frozenset[str], where: str) -> frozenset[str]:
    if value is None:
        return default
    return frozenset(_str_tuple(value, where))


def _parse_filter(raw: Any, where: str) -> Filter:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}: filter must be a mapping")
    spec = dict(raw)
    for flag in ("negate", "ignore_case"):
        if flag in spec:
            _bool(spec[flag], f"{where}.{flag}")
    kind = spec.pop("kind", None)
    cls = FILTER_KINDS.get(kind)
    if cls is None:
        raise ConfigurationError(f"{where}: unknown filter kind {kind!r}")
    if cls is PageTypeIn:
        spec["page_types"] = frozenset(_str_tuple(spec.get("page_types"), where))
    try:
        return cls(**spec)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{where}: {exc}") from exc


def _parse_page_types(value: Any, table: PageTypeTable, where: str) -> frozenset[str] | None:
    if value is None or value == ALL:
        return None
    names = _str_tuple(value, where)
    if ALL in names:
        return None
    return frozenset(table.normalize(n) for n in names)


def _parse_event(raw: Any, index: int, table: PageTypeTable) -> EventDefinition:
    where = f"events[{index}]"
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}: event must be a mapping")
    name = raw.get("name")
    if not name or not isinstance(name, str):
        raise ConfigurationError(f"{where}: missing event name")
    where = f"event {name!r}"
    filters = raw.get("filters") or []
    if not isinstance(filters, list):
        raise ConfigurationError(f"{where}: filters must be a list")
    return EventDefinition(
        event_name=name,
        category=str(raw.get("category", "custom")),
        requires_ui_elements=_str_tuple(raw.get("requires_ui_elements"), f"{where}.requires_ui_elements"),
        requires_user_action=_bool(raw.get("requires_user_action", False), f"{where}.requires_user_action"),
        allowed_page_types=_parse_page_types(raw.get("allowed_page_types"), table, f"{where}.allowed_page_types"),
        filters=tuple(_parse_filter(f, f"{where}.filters[{i}]") for i, f in enumerate(filters)),
        session_once=_bool(raw.get("session_once", False), f"{where}.session_once"),
        description=str(raw.get("description", "")),
    )


def _parse_page_table(raw: Any) -> PageTypeTable:
    if raw is None:
        return PageTypeTable()
    if not isinstance(raw, dict):
        raise ConfigurationError("page_types must be a mapping")
    aliases = {
        canonical_page_type(k): canonical_page_type(v)
        for k, v in _mapping(raw.get("aliases"), "page_types.aliases").items()
    }
    rules = raw.get("url_patterns") or []
    if not isinstance(rules, list):
        raise ConfigurationError("page_types.url_patterns: expected a list")
    patterns = []
    for i, rule in enumerate(rules):
        where = f"page_types.url_patterns[{i}]"
        if not isinstance(rule, dict) or not isinstance(rule.get("pattern"), str) or "page_type" not in rule:
            raise ConfigurationError(f"{where}: expected a mapping with pattern and page_type")
        try:
            patterns.append(UrlPattern(pattern=rule["pattern"], page_type=str(rule["page_type"])))
        except ValueError as exc:
            raise ConfigurationError(f"{where}: {exc}") from exc
    return PageTypeTable(
        marker_expression=raw.get("marker_expression"),
        variable_expressions=_mapping(raw.get("variables"), "page_types.variables"),
        aliases=aliases,
        url_patterns=tuple(patterns),
        default_page_type=canonical_page_type(str(raw.get("default", "OTHERS"))),
    )


def parse_catalog(document: Any, *, source: str = "") -> ConfigSnapshot:
    """Build a snapshot from an already-decoded YAML/JSON document."""
    if not isinstance(document, dict):
        raise ConfigurationError(f"{source or 'catalog'}: top level must be a mapping")
    table = _parse_page_table(document.get("page_types"))
    raw_events = document.get("events") or []
    if not isinstance(raw_events, list):
        raise ConfigurationError("events must be a list")
    events = tuple(_parse_event(raw, i, table) for i, raw in enumerate(raw_events))
    if not events:
        raise ConfigurationError(f"{source or 'catalog'}: event catalog is empty")
    try:
        return ConfigSnapshot(
            events=events,
            page_types=table,
            source=source,
            auto_collected=_name_set(document.get("auto_collected"), GA4_AUTO_COLLECTED_EVENTS, "auto_collected"),
            session_once_events=_name_set(
                document.get("session_once_events"), GA4_SESSION_ONCE_EVENTS, "session_once_events"
            ),
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


class YamlCatalogSource:
    """Load the catalog from a YAML file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def load(self) -> ConfigSnapshot:
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"cannot read tag configuration {self._path}: {exc}") from exc
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"invalid YAML in {self._path}: {exc}") from exc
        snapshot = parse_catalog(document, source=str(self._path))
        logger.info(
            "Loaded tag configuration: %d events, %d url patterns (%s)",
            len(snapshot.events),
            len(snapshot.page_types.url_patterns),
            self._path,
        )
        return snapshot
