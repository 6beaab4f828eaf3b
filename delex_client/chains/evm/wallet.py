"""Wallet provider backed by a JSON-RPC signer endpoint.

The endpoint is expected to answer the EIP-1193 request surface
(``eth_requestAccounts``, ``wallet_switchEthereumChain``,
``eth_sendTransaction`` ...). It has no push channel, so account and chain
changes are detected by polling and re-emitted as ``accountsChanged`` /
``chainChanged`` signals.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable

from ...config import WalletConfig
from ...interfaces.wallet import ACCOUNTS_CHANGED, CHAIN_CHANGED
from .client import EvmClient

logger = logging.getLogger(__name__)


class RpcWallet:
    """EIP-1193-style provider over an HTTP JSON-RPC signer."""

    def __init__(self, config: WalletConfig, client: EvmClient | None = None) -> None:
        self._client = client or EvmClient(config.endpoints, config.timeout)
        self._poll_seconds = config.poll_seconds
        self._listeners: dict[str, list[Callable[[Any], None]]] = defaultdict(list)
        self._last_accounts: list[str] | None = None
        self._last_chain: str | None = None

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        return await self._client.rpc_call(method, params)

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        self._listeners[event].append(handler)

    def remove_listener(self, event: str, handler: Callable[[Any], None]) -> None:
        if handler in self._listeners[event]:
            self._listeners[event].remove(handler)

    def _emit(self, event: str, payload: Any) -> None:
        for handler in list(self._listeners[event]):
            try:
                handler(payload)
            except Exception as e:
                logger.error("Wallet %s handler failed: %s", event, e)

    async def poll_once(self) -> None:
        """Compare accounts and chain with the last observation; emit on change."""
        accounts = list(await self._client.rpc_call("eth_accounts") or [])
        chain = await self._client.rpc_call("eth_chainId")

        if self._last_accounts is not None and accounts != self._last_accounts:
            self._emit(ACCOUNTS_CHANGED, accounts)
        if self._last_chain is not None and chain != self._last_chain:
            self._emit(CHAIN_CHANGED, chain)

        self._last_accounts = accounts
        self._last_chain = chain

    async def watch(self) -> None:
        """Poll for account / chain changes until cancelled."""
        logger.info("Watching wallet every %.1fs", self._poll_seconds)
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.warning("Wallet poll failed: %s", e)
            await asyncio.sleep(self._poll_seconds)
