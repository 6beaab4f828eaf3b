"""EVM JSON-RPC client with fallback support."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...errors import RpcError, RpcTransportError

logger = logging.getLogger(__name__)


class EvmClient:
    """EVM JSON-RPC client with automatic endpoint fallback.

    Fallback only happens on transport failures. A JSON-RPC error object is a
    definitive answer from the node and is raised as ``RpcError`` at once, so
    a rejected transaction is never resubmitted to another endpoint.
    """

    def __init__(self, endpoints: tuple[str, ...] | list[str], timeout: int = 30) -> None:
        self.endpoints = list(endpoints)
        self.timeout = timeout
        self.current_rpc_index = 0
        self._request_id = 0

    async def rpc_call(self, method: str, params: list[Any] | None = None) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        if not self.endpoints:
            raise RpcTransportError("No RPC endpoints configured")

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json(content_type=None)
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            error = result.get("error")
            if error:
                raise RpcError(error.get("code"), error.get("message", ""), error.get("data"))
            return result.get("result")

        raise RpcTransportError(f"All RPC endpoints failed. Last error: {last_error}")

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def chain_id(self) -> int:
        return int(await self.rpc_call("eth_chainId"), 16)

    async def accounts(self) -> list[str]:
        return list(await self.rpc_call("eth_accounts") or [])

    async def call(self, to: str, data: str, sender: str | None = None) -> str:
        """Execute a read-only ``eth_call`` and return the raw hex result."""
        tx: dict[str, Any] = {"to": to, "data": data}
        if sender:
            tx["from"] = sender
        return await self.rpc_call("eth_call", [tx, "latest"])

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.rpc_call("eth_getTransactionReceipt", [tx_hash])
