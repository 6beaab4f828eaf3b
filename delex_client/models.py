"""Data models — all frozen (immutable)."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

DECIMALS = 18


@dataclass(frozen=True)
class Session:
    """Active wallet account and chain, as last published by the provider."""

    account: str | None = None
    chain_id: int | None = None
    connected: bool = False

    @classmethod
    def absent(cls) -> Session:
        return cls()


@dataclass(frozen=True)
class TokenMeta:
    symbol: str
    address: str
    name: str = ""
    decimals: int = DECIMALS


@dataclass(frozen=True)
class Pool:
    """On-chain pool state. All amounts are raw 18-decimal integers."""

    id: str
    token_a: str
    token_b: str
    reserve_a: int = 0
    reserve_b: int = 0
    total_liquidity: int = 0
    total_borrowed_a: int = 0
    total_borrowed_b: int = 0
    interest_rate_a: int = 0
    interest_rate_b: int = 0

    def has_token(self, token: str) -> bool:
        return token.lower() in (self.token_a.lower(), self.token_b.lower())

    def side_of(self, token: str) -> str:
        """Return ``"a"`` or ``"b"`` for a token address in this pool."""
        if token.lower() == self.token_a.lower():
            return "a"
        if token.lower() == self.token_b.lower():
            return "b"
        raise ValueError(f"Token {token} is not part of pool {self.id}")


@dataclass(frozen=True)
class Position:
    """Collateral and borrow amounts held by an account in one pool."""

    account: str
    pool_id: str
    collateral_a: int = 0
    collateral_b: int = 0
    borrowed_a: int = 0
    borrowed_b: int = 0

    @property
    def is_empty(self) -> bool:
        return not (
            self.collateral_a or self.collateral_b or self.borrowed_a or self.borrowed_b
        )

    @property
    def total_collateral(self) -> int:
        return self.collateral_a + self.collateral_b

    @property
    def total_borrowed(self) -> int:
        return self.borrowed_a + self.borrowed_b


@dataclass(frozen=True)
class LiquidityShare:
    pool_id: str
    shares: int


@dataclass(frozen=True)
class Snapshot:
    """Generation-stamped view of every pool at one point in time."""

    pools: tuple[Pool, ...] = ()
    fetched_at_session: Session = field(default_factory=Session.absent)
    generation: int = 0

    def pool(self, pool_id: str) -> Pool | None:
        for p in self.pools:
            if p.id.lower() == pool_id.lower():
                return p
        return None

    def pool_for_pair(self, token_x: str, token_y: str) -> Pool | None:
        """Find the pool trading ``token_x`` against ``token_y`` in either order."""
        for p in self.pools:
            if p.has_token(token_x) and p.has_token(token_y) and token_x.lower() != token_y.lower():
                return p
        return None


@dataclass(frozen=True)
class AccountView:
    """Balances and positions of one account, derived from one snapshot."""

    account: str
    generation: int
    balances: dict[str, int] = field(default_factory=dict)
    positions: tuple[Position, ...] = ()
    liquidity: tuple[LiquidityShare, ...] = ()


@dataclass(frozen=True)
class HealthFactor:
    """Health factor; ``value`` is None when nothing is borrowed."""

    value: Decimal | None = None

    @property
    def is_safe(self) -> bool:
        return self.value is None

    @property
    def at_risk(self) -> bool:
        return self.value is not None and self.value < 1

    def __str__(self) -> str:
        if self.value is None:
            return "Safe"
        return f"{self.value:.2f}"


@dataclass(frozen=True)
class ProtocolStats:
    total_pools: int = 0
    total_liquidity: int = 0
    total_borrowed: int = 0


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class IntentKind(str, Enum):
    SWAP = "swap"
    ADD_LIQUIDITY = "add_liquidity"
    REMOVE_LIQUIDITY = "remove_liquidity"
    CREATE_POOL = "create_pool"
    DEPOSIT = "deposit"
    BORROW = "borrow"
    REPAY = "repay"
    WITHDRAW = "withdraw"
    FAUCET = "faucet"


class IntentStatus(str, Enum):
    PENDING = "pending"
    APPROVING = "approving"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (IntentStatus.CONFIRMED, IntentStatus.FAILED)


@dataclass(frozen=True)
class TransactionIntent:
    """One user-initiated write; each state transition is a new value."""

    kind: IntentKind
    params: dict[str, Any] = field(default_factory=dict)
    required_allowance: dict[str, int] = field(default_factory=dict)
    status: IntentStatus = IntentStatus.PENDING
    tx_hash: str | None = None
    error: Exception | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
