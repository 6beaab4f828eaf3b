"""Chain client protocol — EVM JSON-RPC abstraction."""
from typing import Any, Protocol


class ChainClient(Protocol):
    """Abstract interface for read-only EVM RPC interactions."""

    async def rpc_call(self, method: str, params: list[Any] | None = None) -> Any: ...

    async def call(self, to: str, data: str, sender: str | None = None) -> str: ...

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None: ...
