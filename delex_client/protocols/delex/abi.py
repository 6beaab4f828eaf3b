"""DeLex and token ABI — pure encode/decode helpers, no I/O."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from eth_abi import decode, encode
from eth_utils import decode_hex, encode_hex, keccak, to_checksum_address

from ...models import Pool, Position


@dataclass(frozen=True)
class ContractFunction:
    """One contract method: its argument and return ABI types."""

    name: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return keccak(text=self.signature)[:4]

    def encode_call(self, *args: Any) -> str:
        """Return hex calldata: selector followed by the ABI-encoded args."""
        if len(args) != len(self.inputs):
            raise ValueError(
                f"{self.signature} expects {len(self.inputs)} args, got {len(args)}"
            )
        return encode_hex(self.selector + encode(list(self.inputs), list(args)))

    def decode_result(self, data: str) -> tuple[Any, ...]:
        if not self.outputs:
            return ()
        raw = decode_hex(data) if data else b""
        if not raw:
            raise ValueError(f"{self.signature} returned no data")
        return tuple(decode(list(self.outputs), raw))

_POOL_FIELDS = (
    "address",  # tokenA
    "address",  # tokenB
    "uint256",  # reserveA
    "uint256",  # reserveB
    "uint256",  # totalLiquidity
    "uint256",  # totalBorrowedA
    "uint256",  # totalBorrowedB
    "uint256",  # interestRateA
    "uint256",  # interestRateB
)

# Exchange / lending core
OWNER = ContractFunction("owner", (), ("address",))
GET_ALL_POOLS = ContractFunction("getAllPools", (), ("bytes32[]",))
GET_POOL_INFO = ContractFunction("getPoolInfo", ("bytes32",), _POOL_FIELDS)
GET_AMOUNT_OUT = ContractFunction(
    "getAmountOut", ("uint256", "uint256", "uint256"), ("uint256",)
)
CREATE_POOL = ContractFunction("createPool", ("address", "address"))
ADD_LIQUIDITY = ContractFunction("addLiquidity", ("bytes32", "uint256", "uint256"))
REMOVE_LIQUIDITY = ContractFunction("removeLiquidity", ("bytes32", "uint256"))
SWAP = ContractFunction("swap", ("bytes32", "address", "uint256", "uint256"))
DEPOSIT_COLLATERAL = ContractFunction(
    "depositCollateral", ("bytes32", "address", "uint256")
)
BORROW = ContractFunction("borrow", ("bytes32", "address", "uint256"))
REPAY = ContractFunction("repay", ("bytes32", "address", "uint256"))
WITHDRAW_COLLATERAL = ContractFunction(
    "withdrawCollateral", ("bytes32", "address", "uint256")
)
USER_SHARES = ContractFunction("userShares", ("bytes32", "address"), ("uint256",))
GET_USER_POSITION = ContractFunction(
    "getUserPosition",
    ("address", "bytes32"),
    ("uint256", "uint256", "uint256", "uint256"),
)

# ERC-20 test token
BALANCE_OF = ContractFunction("balanceOf", ("address",), ("uint256",))
ALLOWANCE = ContractFunction("allowance", ("address", "address"), ("uint256",))
APPROVE = ContractFunction("approve", ("address", "uint256"), ("bool",))
FAUCET = ContractFunction("faucet")
NAME = ContractFunction("name", (), ("string",))
SYMBOL = ContractFunction("symbol", (), ("string",))


def pool_id_to_bytes(pool_id: str) -> bytes:
    """Convert a ``0x``-prefixed pool id into the 32 bytes the contract expects."""
    raw = decode_hex(pool_id)
    if len(raw) > 32:
        raise ValueError(f"Pool id {pool_id} is longer than 32 bytes")
    return raw.rjust(32, b"\x00")


def parse_pool_ids(data: str) -> list[str]:
    (ids,) = GET_ALL_POOLS.decode_result(data)
    return [encode_hex(pool_id) for pool_id in ids]


def parse_pool_info(pool_id: str, data: str) -> Pool:
    (
        token_a,
        token_b,
        reserve_a,
        reserve_b,
        total_liquidity,
        borrowed_a,
        borrowed_b,
        rate_a,
        rate_b,
    ) = GET_POOL_INFO.decode_result(data)
    return Pool(
        id=pool_id,
        token_a=to_checksum_address(token_a),
        token_b=to_checksum_address(token_b),
        reserve_a=reserve_a,
        reserve_b=reserve_b,
        total_liquidity=total_liquidity,
        total_borrowed_a=borrowed_a,
        total_borrowed_b=borrowed_b,
        interest_rate_a=rate_a,
        interest_rate_b=rate_b,
    )


def parse_user_position(account: str, pool_id: str, data: str) -> Position:
    collateral_a, collateral_b, borrowed_a, borrowed_b = GET_USER_POSITION.decode_result(
        data
    )
    return Position(
        account=account,
        pool_id=pool_id,
        collateral_a=collateral_a,
        collateral_b=collateral_b,
        borrowed_a=borrowed_a,
        borrowed_b=borrowed_b,
    )


def parse_uint(function: ContractFunction, data: str) -> int:
    (value,) = function.decode_result(data)
    return int(value)
