"""Pure DeLex math — swap quotes, utilization, APY, TVL, health factor.

Every formula works on raw 18-decimal integers so results match the
contract exactly. Ratios are returned as ``Decimal`` built from integer
WAD values; nothing here touches ``float``.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from ...models import HealthFactor, Pool, Position, ProtocolStats, Snapshot

WAD = 10**18

# 0.3% swap fee, as the contract applies it
FEE_NUMERATOR = 997
FEE_DENOMINATOR = 1000

BPS = 10_000
DEFAULT_SLIPPAGE_BPS = 500

# 75% collateral factor
COLLATERAL_FACTOR_WAD = 75 * 10**16

HIGH_LIQUIDITY = 1000 * WAD
MEDIUM_LIQUIDITY = 100 * WAD


def _from_wad(value: int) -> Decimal:
    return Decimal(value).scaleb(-18)


def _reserves(pool: Pool, token_in: str) -> tuple[int, int]:
    if pool.side_of(token_in) == "a":
        return pool.reserve_a, pool.reserve_b
    return pool.reserve_b, pool.reserve_a


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """Constant-product output after the 0.3% fee, floored.

    amount_out = amount_in*997*reserve_out / (reserve_in*1000 + amount_in*997)
    """
    if amount_in < 0:
        raise ValueError("amount_in must be non-negative")
    if amount_in == 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    amount_in_with_fee = amount_in * FEE_NUMERATOR
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * FEE_DENOMINATOR + amount_in_with_fee
    return numerator // denominator


def quote_swap(pool: Pool, token_in: str, amount_in: int) -> int:
    """Quote the output of swapping ``amount_in`` of ``token_in`` in ``pool``."""
    reserve_in, reserve_out = _reserves(pool, token_in)
    return get_amount_out(amount_in, reserve_in, reserve_out)


def min_amount_out(amount_out: int, slippage_bps: int = DEFAULT_SLIPPAGE_BPS) -> int:
    """Minimum-received guard: ``amount_out * (1 - slippage)``."""
    if not 0 <= slippage_bps <= BPS:
        raise ValueError("slippage_bps must be between 0 and 10000")
    return amount_out * (BPS - slippage_bps) // BPS


def _side_amounts(pool: Pool, side: str) -> tuple[int, int, int]:
    if side == "a":
        return pool.reserve_a, pool.total_borrowed_a, pool.interest_rate_a
    if side == "b":
        return pool.reserve_b, pool.total_borrowed_b, pool.interest_rate_b
    raise ValueError(f"side must be 'a' or 'b', got {side!r}")


def utilization(pool: Pool, side: str) -> Decimal:
    """Borrowed / reserve as a percentage, capped at 100; 0 for an empty reserve."""
    reserve, borrowed, _ = _side_amounts(pool, side)
    if reserve <= 0 or borrowed <= 0:
        return Decimal(0)
    pct_wad = min(borrowed * 100 * WAD // reserve, 100 * WAD)
    return _from_wad(pct_wad)


def apy(pool: Pool, side: str) -> Decimal:
    """Borrow APY in percent; the contract stores it as an 18-decimal value."""
    _, _, rate = _side_amounts(pool, side)
    return _from_wad(rate)


def tvl(pool: Pool) -> int:
    # Reserves are summed 1:1; there is no price oracle.
    return pool.reserve_a + pool.reserve_b


def health_factor(position: Position) -> HealthFactor:
    """(collateral * 0.75) / borrowed, with the safe sentinel when nothing is borrowed.

    Tokens are summed 1:1, like ``tvl``.
    """
    borrowed = position.total_borrowed
    if borrowed <= 0:
        return HealthFactor()
    hf_wad = position.total_collateral * COLLATERAL_FACTOR_WAD // borrowed
    return HealthFactor(_from_wad(hf_wad))


def protocol_stats(snapshot: Snapshot) -> ProtocolStats:
    return ProtocolStats(
        total_pools=len(snapshot.pools),
        total_liquidity=sum(tvl(p) for p in snapshot.pools),
        total_borrowed=sum(
            p.total_borrowed_a + p.total_borrowed_b for p in snapshot.pools
        ),
    )


def liquidity_tier(pool: Pool) -> str:
    value = tvl(pool)
    if value > HIGH_LIQUIDITY:
        return "High Liquidity"
    if value > MEDIUM_LIQUIDITY:
        return "Medium Liquidity"
    return "Low Liquidity"


def filter_pools(pools: Iterable[Pool], by: str = "all") -> list[Pool]:
    if by == "all":
        return list(pools)
    if by == "high-liquidity":
        return [p for p in pools if tvl(p) > MEDIUM_LIQUIDITY]
    raise ValueError(f"Unknown filter: {by}")


def sort_pools(pools: Iterable[Pool], by: str = "tvl") -> list[Pool]:
    """Sort pools for display: TVL and APY descending, name ascending."""
    if by == "tvl":
        return sorted(pools, key=tvl, reverse=True)
    if by == "apy":
        return sorted(
            pools,
            key=lambda p: max(p.interest_rate_a, p.interest_rate_b),
            reverse=True,
        )
    if by == "name":
        return sorted(pools, key=lambda p: p.id)
    raise ValueError(f"Unknown sort key: {by}")
