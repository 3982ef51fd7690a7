# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Analytics ground truth — observed event distribution per page path.

``AnalyticsQueryService`` is the collaborator the scheduler talks to; it owns
the noise classification. ``GA4QueryService`` implements it on the GA4 Data
API ``runReport`` endpoint: one report per page (eventName x eventCount,
exact pagePath match), counts summed per event name, proportion of the page
total computed, and events below ``noise_threshold`` flagged as noise.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx

from .config import DateRange
from .errors import AnalyticsQueryError, ConfigurationError
from .models import ActualEvent

logger = logging.getLogger(__name__)

GA4_DATA_API = "https://analyticsdata.googleapis.com/v1beta"
DEFAULT_NOISE_THRESHOLD = 0.0001  # 0.01 % of the page's events
DEFAULT_ROW_LIMIT = 200


class AnalyticsQueryService(Protocol):
    async def query_events_for_page(self, page_path: str, date_range: DateRange) -> list[ActualEvent]: ...


def build_run_report_request(page_path: str, date_range: DateRange, limit: int) -> dict[str, Any]:
    return {
        "dateRanges": [{"startDate": date_range.start_date, "endDate": date_range.end_date}],
        "dimensions": [{"name": "eventName"}],
        "metrics": [{"name": "eventCount"}],
        "dimensionFilter": {
            "filter": {
                "fieldName": "pagePath",
                "stringFilter": {"matchType": "EXACT", "value": page_path},
            }
        },
        "orderBys": [{"metric": {"metricName": "eventCount"}, "desc": True}],
        "limit": limit,
    }


def events_from_report(payload: Mapping[str, Any], noise_threshold: float = DEFAULT_NOISE_THRESHOLD) -> list[ActualEvent]:
    """Turn a ``runReport`` response body into ActualEvents, largest first."""
    counts: dict[str, int] = {}
    for row in payload.get("rows") or []:
        try:
            name = row["dimensionValues"][0]["value"]
            count = int(row["metricValues"][0]["value"])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise AnalyticsQueryError(f"malformed runReport row: {row!r}") from exc
        if name:
            counts[name] = counts.get(name, 0) + count

    total = sum(counts.values())
    events = []
    for name, count in counts.items():
        proportion = count / total if total else 0.0
        events.append(
            ActualEvent(event_name=name, count=count, proportion=proportion, is_noise=proportion < noise_threshold)
        )
    events.sort(key=lambda e: (-e.proportion, e.event_name))
    return events


class GA4QueryService:
    """GA4 Data API client for per-page event counts.

    The caller supplies a bearer token with the ``analytics.readonly`` scope;
    token minting and refresh are out of scope here.
    """

    def __init__(
        self,
        property_id: str,
        access_token: str,
        *,
        client: httpx.AsyncClient | None = None,
        noise_threshold: float = DEFAULT_NOISE_THRESHOLD,
        limit: int = DEFAULT_ROW_LIMIT,
        timeout: float = 30.0,
        base_url: str = GA4_DATA_API,
    ) -> None:
        if not property_id:
            raise ConfigurationError("GA4 property id is required")
        if not access_token:
            raise ConfigurationError("GA4 access token is required")
        if not 0.0 <= noise_threshold < 1.0:
            raise ValueError(f"noise_threshold must be in [0, 1), got {noise_threshold}")
        self._property_id = property_id.removeprefix("properties/")
        self._noise_threshold = noise_threshold
        self._limit = limit
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._url = f"{base_url.rstrip('/')}/properties/{self._property_id}:runReport"
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def __aenter__(self) -> GA4QueryService:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def query_events_for_page(self, page_path: str, date_range: DateRange) -> list[ActualEvent]:
        body = build_run_report_request(page_path, date_range, self._limit)
        try:
            response = await self._client.post(self._url, json=body, headers=self._headers)
        except httpx.HTTPError as exc:
            raise AnalyticsQueryError(f"GA4 request failed: {exc}", page_path=page_path) from exc

        if response.status_code >= 400:
            raise AnalyticsQueryError(
                f"GA4 runReport returned {response.status_code}: {response.text[:200]}",
                page_path=page_path,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise AnalyticsQueryError("GA4 runReport returned invalid JSON", page_path=page_path) from exc

        events = events_from_report(payload, self._noise_threshold)
        logger.info(
            "GA4 %s: %d events (%d noise)",
            page_path,
            len(events),
            sum(e.is_noise for e in events),
        )
        return events
