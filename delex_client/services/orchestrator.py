"""Transaction orchestration — allowance check, approve, then act."""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, defaultdict
from contextlib import AsyncExitStack
from dataclasses import replace
from typing import Any, Awaitable, Callable

from ..errors import (
    BindingNotReady,
    LedgerError,
    WrongNetwork,
    normalize_error,
)
from ..models import IntentKind, IntentStatus, Session, TransactionIntent
from ..protocols.delex.binding import LedgerBinding
from .session import ProviderSession

logger = logging.getLogger(__name__)


IntentListener = Callable[[TransactionIntent], None]

# Confirmed and discarded intent ids remembered per orchestrator
HISTORY_LIMIT = 256

# Parameters each intent kind needs, and which of them carry an allowance
_REQUIRED_PARAMS: dict[IntentKind, tuple[str, ...]] = {
    IntentKind.SWAP: ("pool_id", "token_in", "amount_in", "min_amount_out"),
    IntentKind.ADD_LIQUIDITY: ("pool_id", "token_a", "token_b", "amount_a", "amount_b"),
    IntentKind.REMOVE_LIQUIDITY: ("pool_id", "shares"),
    IntentKind.CREATE_POOL: ("token_a", "token_b"),
    IntentKind.DEPOSIT: ("pool_id", "token", "amount"),
    IntentKind.BORROW: ("pool_id", "token", "amount"),
    IntentKind.REPAY: ("pool_id", "token", "amount"),
    IntentKind.WITHDRAW: ("pool_id", "token", "amount"),
    IntentKind.FAUCET: ("token",),
}

_ALLOWANCE_PARAMS: dict[IntentKind, tuple[tuple[str, str], ...]] = {
    IntentKind.SWAP: (("token_in", "amount_in"),),
    IntentKind.ADD_LIQUIDITY: (("token_a", "amount_a"), ("token_b", "amount_b")),
    IntentKind.DEPOSIT: (("token", "amount"),),
    IntentKind.REPAY: (("token", "amount"),),
}

_TOKEN_PARAMS = ("token_in", "token_a", "token_b", "token")


def build_intent(kind: IntentKind, **params: Any) -> TransactionIntent:
    """Create a pending intent and compute the allowance it needs."""
    missing = [name for name in _REQUIRED_PARAMS[kind] if name not in params]
    if missing:
        raise ValueError(f"{kind.value} intent is missing {', '.join(missing)}")

    required: dict[str, int] = {}
    for token_param, amount_param in _ALLOWANCE_PARAMS.get(kind, ()):
        amount = int(params[amount_param])
        if amount < 0:
            raise ValueError(f"{amount_param} must be non-negative")
        token = params[token_param]
        required[token] = required.get(token, 0) + amount

    return TransactionIntent(kind=kind, params=dict(params), required_allowance=required)


class TransactionOrchestrator:
    """Runs every intent through one state machine.

    Pending -> Approving (only when an allowance is short) -> Submitted ->
    Confirmed, or Failed from any state. Failed intents are discarded and
    never retried.

    An intent is bound to the wallet session that was current when it was
    executed. If the account or chain changes while it waits for its token
    locks, it fails instead of acting for the new account.
    """

    def __init__(
        self,
        binding: LedgerBinding,
        session: ProviderSession,
        on_confirmed: Callable[[], Awaitable[Any]] | None = None,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self._binding = binding
        self._session = session
        self._on_confirmed = on_confirmed
        self._history_limit = history_limit
        self._listeners: list[IntentListener] = []
        self._locks: dict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._tasks: dict[str, asyncio.Task[TransactionIntent]] = {}
        self._active: dict[str, TransactionIntent] = {}
        # Recent terminal intents, oldest first
        self._confirmed: OrderedDict[str, TransactionIntent] = OrderedDict()
        self._discarded: OrderedDict[str, None] = OrderedDict()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: IntentListener) -> Callable[[], None]:
        """Register a progress listener; call the returned function to remove it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get(self, intent_id: str) -> TransactionIntent | None:
        return self._active.get(intent_id) or self._confirmed.get(intent_id)

    def _transition(self, intent: TransactionIntent, **changes: Any) -> TransactionIntent:
        updated = replace(intent, **changes)
        self._active[updated.id] = updated
        logger.info(
            "Intent %s (%s): %s -> %s",
            updated.id[:8],
            updated.kind.value,
            intent.status.value,
            updated.status.value,
        )
        for listener in list(self._listeners):
            try:
                listener(updated)
            except Exception as e:
                logger.error("Intent listener failed: %s", e)
        return updated

    def _remember(self, history: OrderedDict[str, Any], intent_id: str, value: Any) -> None:
        self._active.pop(intent_id, None)
        history[intent_id] = value
        history.move_to_end(intent_id)
        while len(history) > self._history_limit:
            history.popitem(last=False)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, intent: TransactionIntent) -> TransactionIntent:
        """Run ``intent`` to a terminal state; re-entry joins the running attempt."""
        known = self._confirmed.get(intent.id)
        if known is not None:
            return known
        if intent.status == IntentStatus.FAILED or intent.id in self._discarded:
            raise ValueError("Failed intents are discarded; create a new intent")

        task = self._tasks.get(intent.id)
        if task is None:
            if intent.status != IntentStatus.PENDING:
                raise ValueError(f"Intent {intent.id} is not pending")
            if self._binding.ready:
                for key in _TOKEN_PARAMS:
                    if key in intent.params:
                        self._address(intent.params[key])
            self._active[intent.id] = intent
            task = asyncio.ensure_future(self._run(intent, self._session.current))
            self._tasks[intent.id] = task
            task.add_done_callback(lambda _: self._tasks.pop(intent.id, None))
        return await asyncio.shield(task)

    def _address(self, token: str) -> str:
        try:
            return self._binding.token(token).address
        except KeyError as e:
            raise ValueError(f"Unknown token: {token}") from e

    def _check_preconditions(self, session: Session) -> str:
        """Return the account ``session`` acts for, if it is still the live one."""
        current = self._session.current
        if not current.connected or not current.account:
            raise BindingNotReady("No connected account")
        if not self._session.on_required_chain:
            raise WrongNetwork(
                f"Connected to chain {current.chain_id}, "
                f"expected {self._session.required_chain_id}"
            )
        if current != session:
            raise BindingNotReady(
                f"Wallet switched to {current.account} before the intent was sent"
            )
        if not self._binding.ready:
            raise BindingNotReady("Contracts are not initialized")
        if (self._binding.session.account or "").lower() != current.account.lower():
            raise BindingNotReady("Contracts are bound to a different account")
        return current.account

    async def _run(self, intent: TransactionIntent, session: Session) -> TransactionIntent:
        try:
            account = self._check_preconditions(session)
            async with AsyncExitStack() as stack:
                # Sorted order so two intents never wait on each other's locks
                tokens = {self._address(t).lower() for t in intent.required_allowance}
                for token in sorted(tokens):
                    await stack.enter_async_context(self._locks[(account.lower(), token)])
                # Queued intents may wake up under another account or chain
                self._check_preconditions(session)
                intent = await self._ensure_allowances(intent, account)
                self._check_preconditions(session)
                tx_hash = await self._dispatch(intent)
                intent = self._transition(
                    intent, status=IntentStatus.SUBMITTED, tx_hash=tx_hash
                )
                await self._binding.wait_for_receipt(tx_hash)
        except Exception as e:
            # Local validation errors are raised as they are
            error = e if isinstance(e, ValueError) else normalize_error(e)
            logger.error("Intent %s (%s) failed: %s", intent.id[:8], intent.kind.value, error)
            failed = self._transition(intent, status=IntentStatus.FAILED, error=error)
            self._remember(self._discarded, failed.id, None)
            if error is e:
                raise
            raise error from e

        intent = self._transition(intent, status=IntentStatus.CONFIRMED)
        self._remember(self._confirmed, intent.id, intent)
        await self._refresh_after_confirm()
        return intent

    async def _ensure_allowances(
        self, intent: TransactionIntent, account: str
    ) -> TransactionIntent:
        spender = self._binding.core_address
        for token, amount in intent.required_allowance.items():
            current = await self._binding.allowance(token, account, spender)
            if current >= amount:
                logger.debug("Allowance for %s already covers %d", token, amount)
                continue
            if intent.status != IntentStatus.APPROVING:
                intent = self._transition(intent, status=IntentStatus.APPROVING)
            logger.info("Approving %s for %d (current %d)", token, amount, current)
            approve_hash = await self._binding.approve(token, spender, amount)
            await self._binding.wait_for_receipt(approve_hash)
        return intent

    def _dispatch(self, intent: TransactionIntent) -> Awaitable[str]:
        b = self._binding
        p = intent.params
        kind = intent.kind

        def address(key: str) -> str:
            return self._address(p[key])

        if kind == IntentKind.SWAP:
            return b.swap(
                p["pool_id"],
                address("token_in"),
                int(p["amount_in"]),
                int(p["min_amount_out"]),
            )
        if kind == IntentKind.ADD_LIQUIDITY:
            return b.add_liquidity(p["pool_id"], int(p["amount_a"]), int(p["amount_b"]))
        if kind == IntentKind.REMOVE_LIQUIDITY:
            return b.remove_liquidity(p["pool_id"], int(p["shares"]))
        if kind == IntentKind.CREATE_POOL:
            return b.create_pool(address("token_a"), address("token_b"))
        if kind == IntentKind.DEPOSIT:
            return b.deposit_collateral(p["pool_id"], address("token"), int(p["amount"]))
        if kind == IntentKind.BORROW:
            return b.borrow(p["pool_id"], address("token"), int(p["amount"]))
        if kind == IntentKind.REPAY:
            return b.repay(p["pool_id"], address("token"), int(p["amount"]))
        if kind == IntentKind.WITHDRAW:
            return b.withdraw_collateral(p["pool_id"], address("token"), int(p["amount"]))
        if kind == IntentKind.FAUCET:
            return b.faucet(address("token"))
        raise ValueError(f"Unsupported intent kind: {kind}")

    async def _refresh_after_confirm(self) -> None:
        if self._on_confirmed is None:
            return
        try:
            await self._on_confirmed()
        except LedgerError as e:
            logger.warning("Refresh after confirmation failed: %s", e)
