"""Single-flight cell: a cache entry that doubles as a cluster-wide mutex.

A cell has three observable states:

* ``ABSENT``  - nothing cached, nobody generating.
* ``PENDING`` - a generation holds the lock and has not finished yet.
* ``READY``   - the final value is cached.

The cell value lives under ``<key>`` and the lock under ``<key>:lock``.  The
lock is taken with ``SET NX EX`` so that across every process sharing the
cache backend at most one ``GenerationLease`` exists per key.  The lock TTL
bounds how long a crashed holder can block others.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import Any
from uuid import uuid4

from woolet_ai.cache.store import CacheStore

logger = logging.getLogger("woolet.cache")

# Returned to callers while a generation is in flight.
PENDING_DIGEST = "__PENDING__"


class CellState(Enum):
    ABSENT = "absent"
    PENDING = "pending"
    READY = "ready"


@dataclass(frozen=True)
class CellValue:
    state: CellState
    value: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.state is CellState.READY


ABSENT = CellValue(CellState.ABSENT)


class SingleFlightCell:
    def __init__(self, cache: CacheStore, key: str, lock_ttl_seconds: int = 180) -> None:
        self._cache = cache
        self.key = key
        self.lock_key = f"{key}:lock"
        self.lock_ttl_seconds = lock_ttl_seconds

    async def read(self) -> CellValue:
        raw: Any = await self._cache.get(self.key)
        if raw is None:
            return ABSENT
        if isinstance(raw, dict):
            state = raw.get("state")
            if state == CellState.PENDING.value:
                return CellValue(CellState.PENDING)
            if state == CellState.READY.value and isinstance(raw.get("value"), str):
                return CellValue(CellState.READY, raw["value"])
            return ABSENT
        # Plain strings come from older writers; the sentinel still means pending.
        if raw == PENDING_DIGEST:
            return CellValue(CellState.PENDING)
        return CellValue(CellState.READY, str(raw))

    async def mark_pending(self) -> None:
        await self._cache.set(
            self.key, {"state": CellState.PENDING.value}, self.lock_ttl_seconds
        )

    async def fill(self, value: str, ttl_seconds: int) -> None:
        await self._cache.set(
            self.key, {"state": CellState.READY.value, "value": value}, ttl_seconds
        )

    async def clear(self) -> None:
        await self._cache.delete(self.key)

    async def clear_if_pending(self) -> None:
        current = await self.read()
        if current.state is CellState.PENDING:
            await self.clear()

    async def lock_ttl(self) -> int:
        return await self._cache.ttl(self.lock_key)

    async def try_acquire(self) -> "GenerationLease | None":
        token = uuid4().hex
        acquired = await self._cache.set_nx(self.lock_key, token, self.lock_ttl_seconds)
        if not acquired:
            return None
        logger.info("single_flight_lock_acquired", extra={"cache_key": self.key})
        return GenerationLease(self, token)

    async def _release(self, token: str) -> None:
        holder = await self._cache.get(self.lock_key)
        if holder is not None and holder != token:
            # Our TTL lapsed and another process owns the lock now.
            logger.warning("single_flight_lock_lost", extra={"cache_key": self.key})
            return
        await self._cache.delete(self.lock_key)
        logger.info("single_flight_lock_released", extra={"cache_key": self.key})


class GenerationLease:
    """Held lock for one generation.

    Use as ``async with lease:``.  The lock is released on every exit; on an
    exceptional exit a still-pending cell is cleared as well so the next
    caller retries immediately instead of waiting out the lock TTL.
    """

    def __init__(self, cell: SingleFlightCell, token: str) -> None:
        self.cell = cell
        self.token = token
        self.released = False

    async def __aenter__(self) -> "GenerationLease":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        try:
            if exc_type is not None:
                await self.cell.clear_if_pending()
        finally:
            await self.release()
        return False

    async def release(self) -> None:
        if self.released:
            return
        self.released = True
        await self.cell._release(self.token)
