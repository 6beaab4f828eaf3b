"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from eth_utils import is_hex_address, to_checksum_address

logger = logging.getLogger(__name__)


SEPOLIA_CHAIN_ID = 11155111

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NativeCurrencyConfig:
    name: str = "SepoliaETH"
    symbol: str = "SEP"
    decimals: int = 18


@dataclass(frozen=True)
class NetworkConfig:
    chain_id: int = SEPOLIA_CHAIN_ID
    chain_name: str = "Sepolia Test Network"
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    native_currency: NativeCurrencyConfig = field(default_factory=NativeCurrencyConfig)
    block_explorer_urls: tuple[str, ...] = ()

    @property
    def chain_id_hex(self) -> str:
        return hex(self.chain_id)

    def as_wallet_chain(self) -> dict[str, Any]:
        """Chain definition in the shape ``wallet_addEthereumChain`` expects."""
        return {
            "chainId": self.chain_id_hex,
            "chainName": self.chain_name,
            "nativeCurrency": {
                "name": self.native_currency.name,
                "symbol": self.native_currency.symbol,
                "decimals": self.native_currency.decimals,
            },
            "rpcUrls": list(self.rpc_endpoints),
            "blockExplorerUrls": list(self.block_explorer_urls),
        }


@dataclass(frozen=True)
class WalletConfig:
    endpoints: tuple[str, ...] = ()
    timeout: int = 120
    poll_seconds: float = 4.0


@dataclass(frozen=True)
class TokenConfig:
    symbol: str = ""
    address: str = ""
    name: str = ""


@dataclass(frozen=True)
class ContractsConfig:
    delex_core: str = ""
    tokens: tuple[TokenConfig, ...] = ()


@dataclass(frozen=True)
class RefreshConfig:
    poll_interval_seconds: float = 30.0
    max_concurrency: int = 8
    call_timeout_seconds: float = 20.0


@dataclass(frozen=True)
class TransactionConfig:
    slippage_bps: int = 500
    confirmation_timeout_seconds: float = 180.0
    receipt_poll_seconds: float = 2.0


@dataclass(frozen=True)
class AppConfig:
    network: NetworkConfig = field(default_factory=NetworkConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    contracts: ContractsConfig = field(default_factory=ContractsConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    transactions: TransactionConfig = field(default_factory=TransactionConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------


_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def _checksum(address: str) -> str:
    """Checksum a configured address; anything that is not one passes through."""
    if address and is_hex_address(address):
        return to_checksum_address(address)
    return address


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_network(raw: dict[str, Any]) -> NetworkConfig:
    currency = raw.get("native_currency", {})
    return NetworkConfig(
        chain_id=int(raw.get("chain_id", SEPOLIA_CHAIN_ID)),
        chain_name=raw.get("chain_name", NetworkConfig.chain_name),
        rpc_endpoints=tuple(e for e in raw.get("rpc_endpoints", []) if e),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        native_currency=NativeCurrencyConfig(
            name=currency.get("name", NativeCurrencyConfig.name),
            symbol=currency.get("symbol", NativeCurrencyConfig.symbol),
            decimals=int(currency.get("decimals", 18)),
        ),
        block_explorer_urls=tuple(raw.get("block_explorer_urls", [])),
    )


def _build_wallet(raw: dict[str, Any]) -> WalletConfig:
    return WalletConfig(
        endpoints=tuple(e for e in raw.get("endpoints", []) if e),
        timeout=int(raw.get("timeout", 120)),
        poll_seconds=float(raw.get("poll_seconds", 4.0)),
    )


def _build_contracts(raw: dict[str, Any]) -> ContractsConfig:
    tokens: list[TokenConfig] = []
    for symbol, cfg in raw.get("tokens", {}).items():
        tokens.append(
            TokenConfig(
                symbol=symbol,
                address=_checksum(cfg.get("address", "")),
                name=cfg.get("name", ""),
            )
        )
    return ContractsConfig(
        delex_core=_checksum(raw.get("delex_core", "")),
        tokens=tuple(tokens),
    )


def _build_refresh(raw: dict[str, Any]) -> RefreshConfig:
    return RefreshConfig(
        poll_interval_seconds=float(raw.get("poll_interval_seconds", 30.0)),
        max_concurrency=int(raw.get("max_concurrency", 8)),
        call_timeout_seconds=float(raw.get("call_timeout_seconds", 20.0)),
    )


def _build_transactions(raw: dict[str, Any]) -> TransactionConfig:
    return TransactionConfig(
        slippage_bps=int(raw.get("slippage_bps", 500)),
        confirmation_timeout_seconds=float(
            raw.get("confirmation_timeout_seconds", 180.0)
        ),
        receipt_poll_seconds=float(raw.get("receipt_poll_seconds", 2.0)),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        network=_build_network(raw.get("network", {})),
        wallet=_build_wallet(raw.get("wallet", {})),
        contracts=_build_contracts(raw.get("contracts", {})),
        refresh=_build_refresh(raw.get("refresh", {})),
        transactions=_build_transactions(raw.get("transactions", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.network.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")

    if not cfg.contracts.delex_core:
        raise ValueError("DeLex core contract address is not configured")
    if not is_hex_address(cfg.contracts.delex_core):
        raise ValueError(
            f"DeLex core address '{cfg.contracts.delex_core}' is not a valid address"
        )

    if not cfg.contracts.tokens:
        raise ValueError("At least one token must be configured")
    for token in cfg.contracts.tokens:
        if not is_hex_address(token.address):
            raise ValueError(f"Token '{token.symbol}' has no valid address")

    if not 0 <= cfg.transactions.slippage_bps <= 10_000:
        raise ValueError("slippage_bps must be between 0 and 10000")

    if cfg.refresh.max_concurrency < 1:
        raise ValueError("max_concurrency must be at least 1")
