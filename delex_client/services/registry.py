"""Pool registry — fenced, generation-stamped snapshots of every pool."""
from __future__ import annotations

import asyncio
import logging

from ..errors import normalize_error
from ..models import Pool, Snapshot
from ..protocols.delex.binding import LedgerBinding
from .session import ProviderSession

logger = logging.getLogger(__name__)


class PoolRegistry:
    """Aggregates all pools into one immutable ``Snapshot``.

    Every ``refresh`` and ``invalidate`` takes a new generation. A refresh
    commits only if its generation is still the latest one requested when
    its reads finish; anything older is discarded.
    """

    def __init__(
        self,
        binding: LedgerBinding,
        session: ProviderSession,
        max_concurrency: int = 8,
    ) -> None:
        self._binding = binding
        self._session = session
        self._max_concurrency = max_concurrency
        self._requested_generation = 0
        self._snapshot = Snapshot()

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def requested_generation(self) -> int:
        return self._requested_generation

    def _next_generation(self) -> int:
        self._requested_generation += 1
        return self._requested_generation

    def invalidate(self) -> int:
        """Fence off every in-flight refresh without touching the snapshot."""
        generation = self._next_generation()
        logger.debug("Registry invalidated, generation now %d", generation)
        return generation

    def reset(self) -> None:
        """Fence in-flight refreshes and drop the snapshot (chain-scoped state)."""
        generation = self._next_generation()
        self._snapshot = Snapshot(generation=generation)
        logger.info("Registry reset at generation %d", generation)

    async def _fetch_pool(self, pool_id: str, semaphore: asyncio.Semaphore) -> Pool | None:
        async with semaphore:
            try:
                return await self._binding.get_pool_info(pool_id)
            except Exception as e:
                logger.warning("Error loading pool %s: %s", pool_id, normalize_error(e))
                return None

    async def refresh(self) -> Snapshot | None:
        """Reload every pool; return the committed snapshot, or None if fenced off."""
        generation = self._next_generation()
        session = self._session.current

        pool_ids = await self._binding.get_all_pools()
        logger.debug("Generation %d: fetching %d pools", generation, len(pool_ids))

        semaphore = asyncio.Semaphore(self._max_concurrency)
        results = await asyncio.gather(
            *(self._fetch_pool(pool_id, semaphore) for pool_id in pool_ids)
        )

        if generation != self._requested_generation:
            logger.info(
                "Discarding stale refresh (generation %d, latest %d)",
                generation,
                self._requested_generation,
            )
            return None

        pools = tuple(p for p in results if p is not None)
        if len(pools) < len(pool_ids):
            logger.warning(
                "Generation %d: %d of %d pools failed to load",
                generation,
                len(pool_ids) - len(pools),
                len(pool_ids),
            )

        self._snapshot = Snapshot(
            pools=pools, fetched_at_session=session, generation=generation
        )
        logger.info("Committed snapshot %d with %d pools", generation, len(pools))
        return self._snapshot
