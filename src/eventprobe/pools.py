# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""WorkerPool — bounded slot pool with scoped acquire/release.

Capacity is gated by ``asyncio.Semaphore`` (CPython FIFO-guaranteed), so slots
are granted in request order. A slot is only ever held inside
``async with pool.slot():`` and is released on every exit path, including
exceptions, timeouts and task cancellation::

    pool = WorkerPool("render", capacity=4)
    async with pool.slot():
        await renderer.open(url, options)

``close()`` stops admission: callers that have not yet been granted a slot get
``PoolClosedError``; holders keep their slot until they leave the block.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from .errors import PoolClosedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PoolHealth:
    """Immutable snapshot of pool state for monitoring."""

    name: str
    capacity: int
    active: int
    waiting: int
    peak_active: int
    total_acquired: int
    closed: bool


class WorkerPool:
    """Counting-semaphore pool that tracks active and peak slot holders."""

    def __init__(self, name: str, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"{name} pool capacity must be >= 1, got {capacity}")
        self._name = name
        self._capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._active = 0
        self._waiting = 0
        self._peak_active = 0
        self._total_acquired = 0
        self._closed = False

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one slot for the duration of the ``async with`` block."""
        if self._closed:
            raise PoolClosedError(f"{self._name} pool is closed")
        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1
        if self._closed:
            self._semaphore.release()
            raise PoolClosedError(f"{self._name} pool is closed")

        self._active += 1
        self._total_acquired += 1
        if self._active > self._peak_active:
            self._peak_active = self._active
        try:
            yield
        finally:
            self._active -= 1
            self._semaphore.release()

    def close(self) -> None:
        """Stop admitting new work. Idempotent."""
        if not self._closed:
            self._closed = True
            logger.info(
                "%s pool closed (active=%d, waiting=%d)",
                self._name,
                self._active,
                self._waiting,
            )

    @property
    def name(self) -> str:
        return self._name

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def peak_active(self) -> int:
        return self._peak_active

    @property
    def closed(self) -> bool:
        return self._closed

    def health(self) -> PoolHealth:
        """Return a snapshot of pool state."""
        return PoolHealth(
            name=self._name,
            capacity=self._capacity,
            active=self._active,
            waiting=self._waiting,
            peak_active=self._peak_active,
            total_acquired=self._total_acquired,
            closed=self._closed,
        )
