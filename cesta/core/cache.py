"""In-memory snapshot cache with per-key request coalescing."""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from cesta.schemas.prices import Offer, PriceSnapshot, SourceName

logger = logging.getLogger(__name__)

OfferLoader = Callable[[str], Awaitable[List[Offer]]]


def make_cache_key(source: SourceName | str, term: str) -> str:
    name = source.value if isinstance(source, SourceName) else str(source)
    return f"{name}|{term}"


class PriceCache:
    """
    Owns the (source, normalized term) -> PriceSnapshot map.

    At most one fetch per key runs at a time: concurrent callers for the same
    key await the in-flight task instead of starting their own.
    """

    def __init__(self, ttl_seconds: int = 0) -> None:
        self.ttl_seconds = ttl_seconds
        self._store: Dict[str, Tuple[float, PriceSnapshot]] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self.last_update: Optional[datetime] = None
        self._initialized = False

    def init(self, snapshots: Optional[List[PriceSnapshot]] = None, *, last_update: Optional[datetime] = None) -> None:
        """Reset the store, optionally seeding it (e.g. from a persisted file)."""
        self._store.clear()
        for snap in snapshots or []:
            self.put(snap)
        self.last_update = last_update
        self._initialized = True

    def get(self, source: SourceName, term: str) -> Optional[PriceSnapshot]:
        key = make_cache_key(source, term)
        entry = self._store.get(key)
        if entry is None:
            return None
        stored_at, snapshot = entry
        if self.ttl_seconds > 0 and stored_at + self.ttl_seconds < time.monotonic():
            self._store.pop(key, None)
            return None
        return snapshot

    def put(self, snapshot: PriceSnapshot) -> None:
        key = make_cache_key(snapshot.source, snapshot.term)
        self._store[key] = (time.monotonic(), snapshot)
        self._initialized = True
        logger.info("cache_store key=%s offers=%d", key, len(snapshot.offers))

    def snapshots(self) -> List[PriceSnapshot]:
        return [snap for _, snap in self._store.values()]

    def mark_updated(self) -> None:
        self.last_update = datetime.now(timezone.utc)

    async def get_or_fetch(self, source: SourceName, term: str, load: OfferLoader) -> List[Offer]:
        if not self._initialized:
            self.init()

        cached = self.get(source, term)
        if cached is not None:
            return list(cached.offers)
        return await self._join_or_start(source, term, load)

    async def refresh(self, source: SourceName, term: str, load: OfferLoader) -> List[Offer]:
        """
        Reload one key even if it is cached.

        Goes through the same in-flight registry as get_or_fetch, so a miss
        racing a refresh joins it instead of fetching twice. On failure the
        previous snapshot stays in place.
        """
        return await self._join_or_start(source, term, load)

    async def _join_or_start(self, source: SourceName, term: str, load: OfferLoader) -> List[Offer]:
        key = make_cache_key(source, term)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load_and_store(source, term, load))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("cache_join key=%s", key)

        # shield: a cancelled caller must not cancel the fetch other callers share
        offers = await asyncio.shield(task)
        return list(offers)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _load_and_store(self, source: SourceName, term: str, load: OfferLoader) -> List[Offer]:
        offers = await load(term)
        self.put(PriceSnapshot(source=source, term=term, offers=offers))
        return offers
