"""DeLex ledger binding — typed calls to the core contract and its tokens."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from ...config import ContractsConfig, RefreshConfig, TransactionConfig
from ...errors import BindingNotReady, CallReverted, NetworkTimeout, normalize_error
from ...interfaces.chain import ChainClient
from ...interfaces.wallet import WalletProvider
from ...models import Pool, Position, Session, TokenMeta
from . import abi

logger = logging.getLogger(__name__)


T = TypeVar("T")


class LedgerBinding:
    """Typed, uncached invocation of the DeLex core and token contracts.

    The binding is ready only after every contract answered a read-only
    probe for the current session. Every failure leaves it not-ready.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        wallet: WalletProvider,
        contracts: ContractsConfig,
        refresh: RefreshConfig | None = None,
        transactions: TransactionConfig | None = None,
    ) -> None:
        self._client = chain_client
        self._wallet = wallet
        self._contracts = contracts
        self._refresh = refresh or RefreshConfig()
        self._transactions = transactions or TransactionConfig()
        self._session = Session.absent()
        self._tokens: dict[str, TokenMeta] = {}
        self._ready = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def session(self) -> Session:
        return self._session

    @property
    def core_address(self) -> str:
        return self._contracts.delex_core

    @property
    def tokens(self) -> dict[str, TokenMeta]:
        return dict(self._tokens)

    def reset(self) -> None:
        self._ready = False
        self._tokens = {}
        self._session = Session.absent()

    async def initialize(self, session: Session) -> None:
        """Bind every contract for ``session``; all must answer or none is ready."""
        self.reset()
        if not session.connected or not session.account:
            raise BindingNotReady("No connected account to bind contracts for")

        self._session = session

        async def probe_token(symbol: str, address: str, name: str) -> TokenMeta:
            on_chain_symbol = await self._read(address, abi.SYMBOL)
            on_chain_name = await self._read(address, abi.NAME)
            return TokenMeta(
                symbol=symbol,
                address=address,
                name=on_chain_name[0] or name or on_chain_symbol[0],
            )

        results = await asyncio.gather(
            self._read(self.core_address, abi.OWNER),
            *(probe_token(t.symbol, t.address, t.name) for t in self._contracts.tokens),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            error = normalize_error(failures[0])
            logger.error(
                "Contract binding failed (%d of %d contracts): %s",
                len(failures),
                len(results),
                error,
            )
            self._session = Session.absent()
            raise BindingNotReady(f"Contract binding failed: {error}") from failures[0]

        owner, *metas = results

        self._tokens = {meta.symbol: meta for meta in metas}
        self._ready = True
        logger.info(
            "Bound DeLex core %s (owner %s) and %d tokens for %s",
            self.core_address,
            owner[0],
            len(self._tokens),
            session.account,
        )

    def _require_ready(self) -> None:
        if not self._ready:
            raise BindingNotReady("Contracts are not initialized")

    def token(self, symbol_or_address: str) -> TokenMeta:
        """Look up a bound token by symbol or address."""
        if symbol_or_address in self._tokens:
            return self._tokens[symbol_or_address]
        for meta in self._tokens.values():
            if meta.address.lower() == symbol_or_address.lower():
                return meta
        raise KeyError(f"Unknown token: {symbol_or_address}")

    # ------------------------------------------------------------------
    # Raw invocation
    # ------------------------------------------------------------------

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(
                awaitable, timeout=self._refresh.call_timeout_seconds
            )
        except Exception as e:
            raise normalize_error(e) from e

    async def _call_data(self, to: str, function: abi.ContractFunction, *args: Any) -> str:
        return await self._bounded(
            self._client.call(to, function.encode_call(*args), self._session.account)
        )

    @staticmethod
    def _decode(function: abi.ContractFunction, parse: Callable[[], T]) -> T:
        try:
            return parse()
        except Exception as e:
            raise CallReverted(f"{function.signature} returned undecodable data") from e

    async def _read(self, to: str, function: abi.ContractFunction, *args: Any) -> tuple[Any, ...]:
        data = await self._call_data(to, function, *args)
        return self._decode(function, lambda: function.decode_result(data))

    async def _send(self, to: str, function: abi.ContractFunction, *args: Any) -> str:
        self._require_ready()
        tx = {
            "from": self._session.account,
            "to": to,
            "data": function.encode_call(*args),
        }
        logger.info("Sending %s to %s", function.signature, to)
        try:
            tx_hash = await self._wallet.request("eth_sendTransaction", [tx])
        except Exception as e:
            raise normalize_error(e) from e
        logger.info("Transaction %s submitted", tx_hash)
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        """Poll until ``tx_hash`` is mined; a failed status raises ``CallReverted``."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._transactions.confirmation_timeout_seconds

        while True:
            receipt = await self._bounded(self._client.get_transaction_receipt(tx_hash))
            if receipt:
                status = receipt.get("status", 1)
                if isinstance(status, str):
                    status = int(status, 16)
                if status != 1:
                    raise CallReverted(f"transaction {tx_hash} failed")
                logger.info(
                    "Transaction %s confirmed in block %s",
                    tx_hash,
                    receipt.get("blockNumber"),
                )
                return receipt
            if loop.time() >= deadline:
                raise NetworkTimeout(f"Transaction {tx_hash} not confirmed in time")
            await asyncio.sleep(self._transactions.receipt_poll_seconds)

    # ------------------------------------------------------------------
    # Core reads
    # ------------------------------------------------------------------

    async def owner(self) -> str:
        (owner,) = await self._read(self.core_address, abi.OWNER)
        return owner

    async def get_all_pools(self) -> list[str]:
        self._require_ready()
        data = await self._call_data(self.core_address, abi.GET_ALL_POOLS)
        return self._decode(abi.GET_ALL_POOLS, lambda: abi.parse_pool_ids(data))

    async def get_pool_info(self, pool_id: str) -> Pool:
        self._require_ready()
        data = await self._call_data(
            self.core_address, abi.GET_POOL_INFO, abi.pool_id_to_bytes(pool_id)
        )
        return self._decode(abi.GET_POOL_INFO, lambda: abi.parse_pool_info(pool_id, data))

    async def get_amount_out(self, amount_in: int, reserve_in: int, reserve_out: int) -> int:
        self._require_ready()
        (amount_out,) = await self._read(
            self.core_address, abi.GET_AMOUNT_OUT, amount_in, reserve_in, reserve_out
        )
        return amount_out

    async def user_shares(self, pool_id: str, account: str) -> int:
        self._require_ready()
        (shares,) = await self._read(
            self.core_address, abi.USER_SHARES, abi.pool_id_to_bytes(pool_id), account
        )
        return shares

    async def get_user_position(self, account: str, pool_id: str) -> Position:
        self._require_ready()
        data = await self._call_data(
            self.core_address,
            abi.GET_USER_POSITION,
            account,
            abi.pool_id_to_bytes(pool_id),
        )
        return self._decode(
            abi.GET_USER_POSITION,
            lambda: abi.parse_user_position(account, pool_id, data),
        )

    # ------------------------------------------------------------------
    # Core writes (each returns the transaction hash)
    # ------------------------------------------------------------------

    async def create_pool(self, token_a: str, token_b: str) -> str:
        return await self._send(self.core_address, abi.CREATE_POOL, token_a, token_b)

    async def add_liquidity(self, pool_id: str, amount_a: int, amount_b: int) -> str:
        return await self._send(
            self.core_address,
            abi.ADD_LIQUIDITY,
            abi.pool_id_to_bytes(pool_id),
            amount_a,
            amount_b,
        )

    async def remove_liquidity(self, pool_id: str, shares: int) -> str:
        return await self._send(
            self.core_address, abi.REMOVE_LIQUIDITY, abi.pool_id_to_bytes(pool_id), shares
        )

    async def swap(
        self, pool_id: str, token_in: str, amount_in: int, min_amount_out: int
    ) -> str:
        return await self._send(
            self.core_address,
            abi.SWAP,
            abi.pool_id_to_bytes(pool_id),
            token_in,
            amount_in,
            min_amount_out,
        )

    async def deposit_collateral(self, pool_id: str, token: str, amount: int) -> str:
        return await self._send(
            self.core_address,
            abi.DEPOSIT_COLLATERAL,
            abi.pool_id_to_bytes(pool_id),
            token,
            amount,
        )

    async def borrow(self, pool_id: str, token: str, amount: int) -> str:
        return await self._send(
            self.core_address, abi.BORROW, abi.pool_id_to_bytes(pool_id), token, amount
        )

    async def repay(self, pool_id: str, token: str, amount: int) -> str:
        return await self._send(
            self.core_address, abi.REPAY, abi.pool_id_to_bytes(pool_id), token, amount
        )

    async def withdraw_collateral(self, pool_id: str, token: str, amount: int) -> str:
        return await self._send(
            self.core_address,
            abi.WITHDRAW_COLLATERAL,
            abi.pool_id_to_bytes(pool_id),
            token,
            amount,
        )

    # ------------------------------------------------------------------
    # Token surface
    # ------------------------------------------------------------------

    async def balance_of(self, token: str, account: str) -> int:
        self._require_ready()
        (balance,) = await self._read(self.token(token).address, abi.BALANCE_OF, account)
        return balance

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        self._require_ready()
        (amount,) = await self._read(
            self.token(token).address, abi.ALLOWANCE, owner, spender
        )
        return amount

    async def approve(self, token: str, spender: str, amount: int) -> str:
        return await self._send(self.token(token).address, abi.APPROVE, spender, amount)

    async def faucet(self, token: str) -> str:
        return await self._send(self.token(token).address, abi.FAUCET)

    async def token_name(self, token: str) -> str:
        self._require_ready()
        (name,) = await self._read(self.token(token).address, abi.NAME)
        return name

    async def token_symbol(self, token: str) -> str:
        self._require_ready()
        (symbol,) = await self._read(self.token(token).address, abi.SYMBOL)
        return symbol
