"""Failure taxonomy and normalization of raw wallet / RPC errors."""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

from eth_abi import decode
from eth_utils import decode_hex

# Error(string) selector used by Solidity require/revert messages
_ERROR_STRING_SELECTOR = "0x08c379a0"

# EIP-1193 / EIP-3326 provider error codes
USER_REJECTED_CODE = 4001
UNAUTHORIZED_CODE = 4100
CHAIN_DISCONNECTED_CODE = 4901
UNRECOGNIZED_CHAIN_CODE = 4902


class FailureKind(str, Enum):
    WALLET_UNAVAILABLE = "WalletUnavailable"
    USER_REJECTED = "UserRejected"
    WRONG_NETWORK = "WrongNetwork"
    BINDING_NOT_READY = "BindingNotReady"
    NETWORK_TIMEOUT = "NetworkTimeout"
    CALL_REVERTED = "CallReverted"
    INSUFFICIENT_ALLOWANCE = "InsufficientAllowance"


# ---------------------------------------------------------------------------
# Raw transport errors
# ---------------------------------------------------------------------------


class RpcError(Exception):
    """JSON-RPC error object returned by a node or wallet."""

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        super().__init__(f"RPC Error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class RpcTransportError(RuntimeError):
    """Every configured endpoint failed before returning a response."""


# ---------------------------------------------------------------------------
# Classified failures
# ---------------------------------------------------------------------------


class LedgerError(Exception):
    """Base class for every classified failure surfaced to callers."""

    kind: FailureKind

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class WalletUnavailable(LedgerError):
    kind = FailureKind.WALLET_UNAVAILABLE


class UserRejected(LedgerError):
    kind = FailureKind.USER_REJECTED


class WrongNetwork(LedgerError):
    kind = FailureKind.WRONG_NETWORK


class BindingNotReady(LedgerError):
    kind = FailureKind.BINDING_NOT_READY


class NetworkTimeout(LedgerError):
    kind = FailureKind.NETWORK_TIMEOUT


class CallReverted(LedgerError):
    kind = FailureKind.CALL_REVERTED

    def __init__(self, reason: str = "") -> None:
        super().__init__(f"execution reverted: {reason}" if reason else "execution reverted")
        self.reason = reason


class InsufficientAllowance(LedgerError):
    kind = FailureKind.INSUFFICIENT_ALLOWANCE

    def __init__(self, message: str = "", token: str = "") -> None:
        super().__init__(message)
        self.token = token


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def decode_revert_reason(data: Any) -> str | None:
    """Decode ``Error(string)`` revert data into its message, if present."""
    if isinstance(data, dict):
        data = data.get("data")
    if not isinstance(data, str) or not data.startswith(_ERROR_STRING_SELECTOR):
        return None
    try:
        (reason,) = decode(["string"], decode_hex(data)[4:])
    except Exception:
        return None
    return reason


def _reverted(reason: str) -> LedgerError:
    if "allowance" in reason.lower():
        return InsufficientAllowance(reason)
    return CallReverted(reason)


def normalize_error(exc: BaseException) -> LedgerError:
    """Map any raw failure onto the ``LedgerError`` taxonomy."""
    if isinstance(exc, LedgerError):
        return exc

    if isinstance(exc, asyncio.TimeoutError):
        return NetworkTimeout("Call timed out")

    if isinstance(exc, RpcTransportError):
        return NetworkTimeout(str(exc))

    if isinstance(exc, RpcError):
        if exc.code in (USER_REJECTED_CODE, UNAUTHORIZED_CODE):
            return UserRejected(exc.message)
        if exc.code in (CHAIN_DISCONNECTED_CODE, UNRECOGNIZED_CHAIN_CODE):
            return WrongNetwork(exc.message)

        reason = decode_revert_reason(exc.data)
        if reason is not None:
            return _reverted(reason)

        message = exc.message or ""
        if "execution reverted" in message.lower():
            _, _, tail = message.partition(":")
            return _reverted(tail.strip())
        if "user denied" in message.lower() or "user rejected" in message.lower():
            return UserRejected(message)
        return CallReverted(message)

    if isinstance(exc, (ConnectionError, OSError)):
        return NetworkTimeout(str(exc))

    return CallReverted(str(exc))
