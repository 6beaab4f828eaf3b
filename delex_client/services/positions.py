"""Position aggregation — balances, LP shares and lending positions per account."""
from __future__ import annotations

import asyncio
import logging

from ..models import AccountView, LiquidityShare, Position, Snapshot
from ..protocols.delex.binding import LedgerBinding

logger = logging.getLogger(__name__)


class PositionAggregator:
    """Cross-references a snapshot with one account's holdings.

    Results are keyed by ``(account, generation)``. A different key always
    triggers a full re-read; nothing is patched incrementally.
    """

    def __init__(self, binding: LedgerBinding, max_concurrency: int = 8) -> None:
        self._binding = binding
        self._max_concurrency = max_concurrency
        self._view: AccountView | None = None

    @property
    def view(self) -> AccountView | None:
        return self._view

    def invalidate(self) -> None:
        self._view = None

    def current(self, snapshot: Snapshot, account: str) -> AccountView | None:
        """Return the cached view if it was derived from this snapshot and account."""
        view = self._view
        if view and view.account == account and view.generation == snapshot.generation:
            return view
        return None

    async def aggregate(self, snapshot: Snapshot, account: str) -> AccountView:
        cached = self.current(snapshot, account)
        if cached is not None:
            return cached

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def balance(symbol: str) -> tuple[str, int]:
            async with semaphore:
                return symbol, await self._binding.balance_of(symbol, account)

        async def pool_holdings(pool_id: str) -> tuple[int, Position]:
            async with semaphore:
                shares = await self._binding.user_shares(pool_id, account)
                position = await self._binding.get_user_position(account, pool_id)
            return shares, position

        balances, holdings = await asyncio.gather(
            asyncio.gather(*(balance(symbol) for symbol in self._binding.tokens)),
            asyncio.gather(*(pool_holdings(p.id) for p in snapshot.pools)),
        )

        positions = tuple(position for _, position in holdings if not position.is_empty)
        liquidity = tuple(
            LiquidityShare(pool_id=pool.id, shares=shares)
            for pool, (shares, _) in zip(snapshot.pools, holdings)
            if shares > 0
        )

        view = AccountView(
            account=account,
            generation=snapshot.generation,
            balances=dict(balances),
            positions=positions,
            liquidity=liquidity,
        )
        logger.info(
            "Account %s at generation %d: %d positions, %d LP holdings",
            account,
            snapshot.generation,
            len(positions),
            len(liquidity),
        )

        # A newer aggregate may have finished while this one was in flight.
        latest = self._view
        if latest is None or latest.generation <= view.generation:
            self._view = view
        return view
