"""DeLex client — wires session, binding, registry, positions and orchestrator."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from ..chains.evm import EvmClient, RpcWallet
from ..config import AppConfig
from ..errors import LedgerError
from ..interfaces.wallet import WalletProvider
from ..models import AccountView, IntentKind, Pool, Session, Snapshot, TransactionIntent
from ..protocols.delex import quotes
from ..protocols.delex.binding import LedgerBinding
from .orchestrator import TransactionOrchestrator, build_intent
from .positions import PositionAggregator
from .registry import PoolRegistry
from .session import ProviderSession, SessionEvent, SessionEventKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwapQuote:
    pool: Pool
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    min_amount_out: int


class DelexClient:
    """Reactive pipeline: session change -> bind -> fenced refresh -> positions."""

    def __init__(
        self,
        config: AppConfig,
        wallet: WalletProvider | None = None,
        chain_client: EvmClient | None = None,
    ) -> None:
        self._config = config
        self._chain_client = chain_client or EvmClient(
            config.network.rpc_endpoints, config.network.rpc_timeout
        )
        if wallet is None and config.wallet.endpoints:
            wallet = RpcWallet(config.wallet)
        self._wallet = wallet

        self.session = ProviderSession(wallet, config.network)
        self.binding = LedgerBinding(
            self._chain_client,
            wallet,
            config.contracts,
            config.refresh,
            config.transactions,
        )
        self.registry = PoolRegistry(
            self.binding, self.session, config.refresh.max_concurrency
        )
        self.positions = PositionAggregator(self.binding, config.refresh.max_concurrency)
        # Confirmed writes re-run the full pools -> positions refresh
        self.orchestrator = TransactionOrchestrator(
            self.binding, self.session, on_confirmed=self.refresh
        )

        self._poll_interval = config.refresh.poll_interval_seconds
        self._subscription = self.session.subscribe(self._on_session_event)
        self._reload_lock = asyncio.Lock()
        self._pending: set[asyncio.Task[None]] = set()
        self._poll_task: asyncio.Task[None] | None = None
        self._watch_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------

    def _on_session_event(self, event: SessionEvent) -> None:
        if event.kind in (SessionEventKind.DISCONNECTED, SessionEventKind.CHAIN_CHANGED):
            # Pool state is chain-scoped; drop everything.
            self._stop_polling()
            self.binding.reset()
            self.registry.reset()
            self.positions.invalidate()
        else:
            self.registry.invalidate()
            self.positions.invalidate()

        if event.kind == SessionEventKind.DISCONNECTED:
            return
        if not self.session.on_required_chain:
            logger.warning(
                "Wallet switched to chain %s; expected %s. Reconnect to continue.",
                event.session.chain_id,
                self.session.required_chain_id,
            )
            return

        task = asyncio.ensure_future(self._reload(event.session))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _reload(self, session: Session) -> None:
        async with self._reload_lock:
            if self.session.current != session:
                logger.debug("Skipping reload for superseded session %s", session.account)
                return
            try:
                await self.binding.initialize(session)
                await self.refresh()
            except LedgerError as e:
                logger.error("Reload failed: %s", e)
                return
        self._ensure_polling()

    async def settle(self) -> None:
        """Wait until every scheduled reload has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Refresh & polling
    # ------------------------------------------------------------------

    async def refresh(self) -> AccountView | None:
        """Refresh pools, then the connected account's holdings."""
        snapshot = await self.registry.refresh()
        account = self.session.current.account
        if snapshot is None or not account:
            return None
        return await self.positions.aggregate(snapshot, account)

    def _ensure_polling(self) -> None:
        interval = self._poll_interval
        if interval <= 0:
            return
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.ensure_future(self._poll_loop(interval))

    def _stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll_loop(self, interval: float) -> None:
        logger.info("Starting pool polling (every %.0f seconds)", interval)
        while True:
            await asyncio.sleep(interval)
            if not (self.session.current.connected and self.binding.ready):
                logger.info("Polling stopped: session not connected or not ready")
                return
            try:
                await self.refresh()
            except LedgerError as e:
                logger.error("Error in polling loop: %s", e)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> Session:
        """Attach to wallet signals, connect, and wait for the first load."""
        self.session.attach()
        session = await self.session.connect()
        await self.settle()
        return session

    async def run_forever(self, poll_seconds: float | None = None) -> None:
        """Keep polling pools and watching the wallet until cancelled."""
        if poll_seconds is not None and poll_seconds != self._poll_interval:
            self._poll_interval = poll_seconds
            self._stop_polling()
        if isinstance(self._wallet, RpcWallet) and self._watch_task is None:
            self._watch_task = asyncio.ensure_future(self._wallet.watch())
        self._ensure_polling()
        while True:
            await asyncio.sleep(3600)

    async def stop(self) -> None:
        self._stop_polling()
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None
        self._subscription.close()
        self.session.detach()
        await self.settle()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> Snapshot:
        return self.registry.snapshot

    @property
    def account_view(self) -> AccountView | None:
        account = self.session.current.account
        if not account:
            return None
        return self.positions.current(self.snapshot, account)

    def token_address(self, token: str) -> str:
        return self.binding.token(token).address

    def token_symbol(self, address: str) -> str:
        try:
            return self.binding.token(address).symbol
        except KeyError:
            return "Unknown"

    def quote(self, token_in: str, token_out: str, amount_in: int) -> SwapQuote:
        """Quote a swap against the latest snapshot, with the slippage guard."""
        address_in = self.token_address(token_in)
        address_out = self.token_address(token_out)
        pool = self.snapshot.pool_for_pair(address_in, address_out)
        if pool is None:
            raise LookupError(f"No pool for {token_in}/{token_out}")
        amount_out = quotes.quote_swap(pool, address_in, amount_in)
        return SwapQuote(
            pool=pool,
            token_in=address_in,
            token_out=address_out,
            amount_in=amount_in,
            amount_out=amount_out,
            min_amount_out=quotes.min_amount_out(
                amount_out, self._config.transactions.slippage_bps
            ),
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def submit(self, kind: IntentKind, **params: Any) -> TransactionIntent:
        return await self.orchestrator.execute(build_intent(kind, **params))

    async def swap(self, token_in: str, token_out: str, amount_in: int) -> TransactionIntent:
        quote = self.quote(token_in, token_out, amount_in)
        return await self.submit(
            IntentKind.SWAP,
            pool_id=quote.pool.id,
            token_in=quote.token_in,
            amount_in=amount_in,
            min_amount_out=quote.min_amount_out,
        )

    async def add_liquidity(
        self, token_a: str, token_b: str, amount_a: int, amount_b: int
    ) -> TransactionIntent:
        address_a = self.token_address(token_a)
        address_b = self.token_address(token_b)
        pool = self.snapshot.pool_for_pair(address_a, address_b)
        if pool is None:
            raise LookupError("Pool does not exist. Create it first.")
        # Amounts go in the pool's own token order
        if pool.side_of(address_a) == "b":
            address_a, address_b = address_b, address_a
            amount_a, amount_b = amount_b, amount_a
        return await self.submit(
            IntentKind.ADD_LIQUIDITY,
            pool_id=pool.id,
            token_a=address_a,
            token_b=address_b,
            amount_a=amount_a,
            amount_b=amount_b,
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    @staticmethod
    def _format_wallet(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    @staticmethod
    def _amount(raw: int) -> str:
        return f"{Decimal(raw).scaleb(-18):,.4f}"

    def build_pools_report(self, sort_by: str = "tvl", filter_by: str = "all") -> str:
        pools = quotes.sort_pools(
            quotes.filter_pools(self.snapshot.pools, filter_by), sort_by
        )
        if not pools:
            return "No pools available."

        sections: list[str] = []
        for pool in pools:
            sym_a = self.token_symbol(pool.token_a)
            sym_b = self.token_symbol(pool.token_b)
            sections.append(
                f"{sym_a} / {sym_b} · {quotes.liquidity_tier(pool)}\n"
                f"  Pool: {pool.id}\n"
                f"  TVL: {self._amount(quotes.tvl(pool))}\n"
                f"  Reserves: {self._amount(pool.reserve_a)} {sym_a}"
                f" / {self._amount(pool.reserve_b)} {sym_b}\n"
                f"  Utilization: {quotes.utilization(pool, 'a'):.2f}% {sym_a}"
                f" · {quotes.utilization(pool, 'b'):.2f}% {sym_b}\n"
                f"  Borrow APY: {quotes.apy(pool, 'a'):.2f}% {sym_a}"
                f" · {quotes.apy(pool, 'b'):.2f}% {sym_b}"
            )
        return "\n\n".join(sections)

    def build_stats_report(self) -> str:
        stats = quotes.protocol_stats(self.snapshot)
        return (
            f"Pools: {stats.total_pools}\n"
            f"Total liquidity: {self._amount(stats.total_liquidity)}\n"
            f"Total borrowed: {self._amount(stats.total_borrowed)}"
        )

    async def build_debug_report(self) -> str:
        """Raw contract reads: core owner, token names and wallet balances."""
        session = self.session.current
        lines = [
            f"Account: {session.account or '—'}",
            f"Chain: {session.chain_id} (required {self.session.required_chain_id})",
            f"Core: {self.binding.core_address}",
            f"Owner: {await self.binding.owner()}",
        ]
        for symbol, meta in sorted(self.binding.tokens.items()):
            name = await self.binding.token_name(symbol)
            balance = (
                await self.binding.balance_of(symbol, session.account)
                if session.account
                else 0
            )
            lines.append(f"{symbol} ({name}) {meta.address}: {self._amount(balance)}")
        return "\n".join(lines)

    def build_positions_report(self) -> str:
        view = self.account_view
        if view is None:
            return "No account data loaded."

        lines = [f"Account {self._format_wallet(view.account)}", "", "Balances:"]
        for symbol, balance in sorted(view.balances.items()):
            lines.append(f"  {symbol}: {self._amount(balance)}")

        lines += ["", "Liquidity:"]
        if not view.liquidity:
            lines.append("  —")
        for share in view.liquidity:
            lines.append(f"  {share.pool_id}: {self._amount(share.shares)} shares")

        lines += ["", "Lending positions:"]
        if not view.positions:
            lines.append("  No active positions found.")
        for position in view.positions:
            pool = self.snapshot.pool(position.pool_id)
            sym_a = self.token_symbol(pool.token_a) if pool else "A"
            sym_b = self.token_symbol(pool.token_b) if pool else "B"
            lines.append(
                f"  {sym_a} / {sym_b} · HF: {quotes.health_factor(position)}\n"
                f"    Collateral: {self._amount(position.collateral_a)} {sym_a}"
                f" · {self._amount(position.collateral_b)} {sym_b}\n"
                f"    Borrowed: {self._amount(position.borrowed_a)} {sym_a}"
                f" · {self._amount(position.borrowed_b)} {sym_b}"
            )
        return "\n".join(lines)
