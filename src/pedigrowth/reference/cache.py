"""
Time-bounded cache in front of a ReferenceStore.

WHO tables are static reference material, so a table may be served for up to
the TTL after it was loaded. The cache is an explicitly constructed object
with an injected clock; there is no module-level state.
"""

import asyncio
import datetime as dt
import logging
from typing import Callable, Optional, Tuple

from .store import ReferenceStore
from .table import GrowthReferenceTable

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ReferenceCache:
    """
    Memoizes `store.load()` for `ttl`.

    A reload happens when nothing is cached or when now - refreshed_at > ttl.
    The table and its timestamp are swapped together. Concurrent misses share
    one in-flight load.
    """

    def __init__(
        self,
        store: ReferenceStore,
        ttl: dt.timedelta = dt.timedelta(hours=24),
        clock: Clock = utc_now,
    ):
        if ttl <= dt.timedelta(0):
            raise ValueError("ttl must be positive")
        self.store = store
        self.ttl = ttl
        self.clock = clock
        self._entry: Optional[Tuple[GrowthReferenceTable, dt.datetime]] = None
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def _get_lock(self) -> asyncio.Lock:
        # an asyncio.Lock is bound to the loop it first waits on
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    @property
    def refreshed_at(self) -> Optional[dt.datetime]:
        return self._entry[1] if self._entry is not None else None

    def _fresh(self, now: dt.datetime) -> Optional[GrowthReferenceTable]:
        entry = self._entry
        if entry is None:
            return None
        table, refreshed_at = entry
        if now - refreshed_at > self.ttl:
            return None
        return table

    async def get(self) -> GrowthReferenceTable:
        table = self._fresh(self.clock())
        if table is not None:
            return table

        async with self._get_lock():
            # another caller may have refreshed while we waited
            table = self._fresh(self.clock())
            if table is not None:
                return table

            table = await self.store.load()
            self._entry = (table, self.clock())
            logger.info(f"Refreshed {self.store.chart_type.value} reference cache")
            return table

    def invalidate(self) -> None:
        self._entry = None
        logger.info(f"Invalidated {self.store.chart_type.value} reference cache")
