"""Provider session — owns the connected account, chain and change events."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from ..config import NetworkConfig
from ..errors import (
    UNRECOGNIZED_CHAIN_CODE,
    LedgerError,
    RpcError,
    UserRejected,
    WalletUnavailable,
    WrongNetwork,
    normalize_error,
)
from ..interfaces.wallet import ACCOUNTS_CHANGED, CHAIN_CHANGED, WalletProvider
from ..models import Session

logger = logging.getLogger(__name__)


class SessionEventKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ACCOUNT_CHANGED = "account_changed"
    CHAIN_CHANGED = "chain_changed"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    session: Session
    previous: Session


SessionListener = Callable[[SessionEvent], None]


class Subscription:
    """Handle returned by ``ProviderSession.subscribe``; closing unsubscribes."""

    def __init__(self, owner: ProviderSession, listener: SessionListener) -> None:
        self._owner = owner
        self._listener = listener
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self._owner._unsubscribe(self._listener)
            self.closed = True

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def _parse_chain_id(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16) if str(value).startswith("0x") else int(value)


class ProviderSession:
    """Explicit session context shared by every component that needs one."""

    def __init__(self, wallet: WalletProvider | None, network: NetworkConfig) -> None:
        self._wallet = wallet
        self._network = network
        self._session = Session.absent()
        self._listeners: list[SessionListener] = []
        self._attached = False

    @property
    def current(self) -> Session:
        return self._session

    @property
    def required_chain_id(self) -> int:
        return self._network.chain_id

    @property
    def on_required_chain(self) -> bool:
        return self._session.chain_id == self._network.chain_id

    # ------------------------------------------------------------------
    # Channel
    # ------------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self, listener)

    def _unsubscribe(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, kind: SessionEventKind, session: Session) -> None:
        previous = self._session
        self._session = session
        event = SessionEvent(kind=kind, session=session, previous=previous)
        logger.info(
            "Session %s: account=%s chain=%s", kind.value, session.account, session.chain_id
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("Session listener failed on %s: %s", kind.value, e)

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    def _require_wallet(self) -> WalletProvider:
        if self._wallet is None:
            raise WalletUnavailable("No wallet provider is configured")
        return self._wallet

    async def _switch_chain(self, wallet: WalletProvider) -> None:
        try:
            await wallet.request(
                "wallet_switchEthereumChain",
                [{"chainId": self._network.chain_id_hex}],
            )
            return
        except RpcError as e:
            if e.code != UNRECOGNIZED_CHAIN_CODE:
                raise self._chain_error(e) from e

        logger.info("Adding chain %s to wallet", self._network.chain_name)
        try:
            await wallet.request(
                "wallet_addEthereumChain", [self._network.as_wallet_chain()]
            )
        except RpcError as e:
            raise self._chain_error(e) from e

    @staticmethod
    def _chain_error(exc: RpcError) -> LedgerError:
        error = normalize_error(exc)
        if isinstance(error, UserRejected):
            return error
        return WrongNetwork(f"Chain switch failed: {exc.message}")

    async def connect(self) -> Session:
        """Request accounts, switch to the required chain and publish the session."""
        wallet = self._require_wallet()

        try:
            accounts = await wallet.request("eth_requestAccounts")
        except Exception as e:
            error = normalize_error(e)
            if not isinstance(error, UserRejected):
                error = WalletUnavailable(f"Wallet did not answer: {error.message}")
            raise error from e
        if not accounts:
            raise UserRejected("Wallet returned no accounts")

        await self._switch_chain(wallet)

        try:
            chain_id = _parse_chain_id(await wallet.request("eth_chainId"))
        except Exception as e:
            raise normalize_error(e) from e
        if chain_id != self._network.chain_id:
            raise WrongNetwork(
                f"Wallet is on chain {chain_id}, expected {self._network.chain_id}"
            )

        session = Session(account=accounts[0], chain_id=chain_id, connected=True)
        self._publish(SessionEventKind.CONNECTED, session)
        return session

    def disconnect(self) -> None:
        if self._session == Session.absent():
            return
        self._publish(SessionEventKind.DISCONNECTED, Session.absent())

    # ------------------------------------------------------------------
    # Wallet signals
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Start listening to the wallet's account and chain signals."""
        wallet = self._require_wallet()
        if self._attached:
            return
        wallet.on(ACCOUNTS_CHANGED, self._handle_accounts_changed)
        wallet.on(CHAIN_CHANGED, self._handle_chain_changed)
        self._attached = True

    def detach(self) -> None:
        if not self._attached or self._wallet is None:
            return
        self._wallet.remove_listener(ACCOUNTS_CHANGED, self._handle_accounts_changed)
        self._wallet.remove_listener(CHAIN_CHANGED, self._handle_chain_changed)
        self._attached = False

    def _handle_accounts_changed(self, accounts: list[str]) -> None:
        if not accounts:
            self.disconnect()
            return
        if not self._session.connected or accounts[0] == self._session.account:
            return
        self._publish(
            SessionEventKind.ACCOUNT_CHANGED,
            Session(account=accounts[0], chain_id=self._session.chain_id, connected=True),
        )

    def _handle_chain_changed(self, chain_id: Any) -> None:
        new_chain = _parse_chain_id(chain_id)
        if not self._session.connected or new_chain == self._session.chain_id:
            return
        self._publish(
            SessionEventKind.CHAIN_CHANGED,
            Session(account=self._session.account, chain_id=new_chain, connected=True),
        )
