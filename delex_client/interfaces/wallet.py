"""Wallet provider protocol — injected-wallet abstraction."""
from typing import Any, Callable, Protocol


ACCOUNTS_CHANGED = "accountsChanged"
CHAIN_CHANGED = "chainChanged"


class WalletProvider(Protocol):
    """EIP-1193-style request surface plus change signals."""

    async def request(self, method: str, params: list[Any] | None = None) -> Any: ...

    def on(self, event: str, handler: Callable[[Any], None]) -> None: ...

    def remove_listener(self, event: str, handler: Callable[[Any], None]) -> None: ...
