"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from delex_client.config import (
    AppConfig,
    ContractsConfig,
    NetworkConfig,
    RefreshConfig,
    TokenConfig,
    TransactionConfig,
    WalletConfig,
)
from delex_client.models import Pool, Position, Session
from tests.fakes import (
    ACCOUNT,
    CORE,
    POOL_1,
    POOL_2,
    TKNA,
    TKNB,
    WAD,
    FakeLedger,
    FakeWallet,
)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_network_config() -> NetworkConfig:
    return NetworkConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def sample_contracts_config() -> ContractsConfig:
    return ContractsConfig(
        delex_core=CORE,
        tokens=(
            TokenConfig(symbol="TKNA", address=TKNA, name="Token A"),
            TokenConfig(symbol="TKNB", address=TKNB, name="Token B"),
        ),
    )


@pytest.fixture()
def sample_app_config(
    sample_network_config: NetworkConfig,
    sample_contracts_config: ContractsConfig,
) -> AppConfig:
    return AppConfig(
        network=sample_network_config,
        wallet=WalletConfig(endpoints=("http://127.0.0.1:8545",)),
        contracts=sample_contracts_config,
        refresh=RefreshConfig(
            poll_interval_seconds=0, max_concurrency=4, call_timeout_seconds=1
        ),
        transactions=TransactionConfig(
            confirmation_timeout_seconds=1, receipt_poll_seconds=0
        ),
    )


@pytest.fixture()
def connected_session() -> Session:
    return Session(account=ACCOUNT, chain_id=11155111, connected=True)


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_pool() -> Pool:
    return Pool(
        id=POOL_1,
        token_a=TKNA,
        token_b=TKNB,
        reserve_a=1000 * WAD,
        reserve_b=1000 * WAD,
        total_liquidity=1000 * WAD,
        total_borrowed_a=250 * WAD,
        total_borrowed_b=0,
        interest_rate_a=5 * WAD,
        interest_rate_b=2 * WAD,
    )


@pytest.fixture()
def sample_position() -> Position:
    return Position(
        account=ACCOUNT,
        pool_id=POOL_1,
        collateral_a=100 * WAD,
        collateral_b=100 * WAD,
        borrowed_a=50 * WAD,
        borrowed_b=50 * WAD,
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    network:
      chain_id: 11155111
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    wallet:
      endpoints: ["http://127.0.0.1:8545"]
    contracts:
      delex_core: "{CORE.lower()}"
      tokens:
        TKNA:
          address: "{TKNA}"
          name: Token A
        TKNB:
          address: "{TKNB}"
    refresh:
      poll_interval_seconds: 15
      max_concurrency: 4
    transactions:
      slippage_bps: 100
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Fake ledger / wallet fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def ledger(sample_pool: Pool) -> FakeLedger:
    fake = FakeLedger()
    fake.add_pool(sample_pool)
    fake.add_pool(
        Pool(
            id=POOL_2,
            token_a=TKNB,
            token_b=TKNA,
            reserve_a=50 * WAD,
            reserve_b=80 * WAD,
            total_liquidity=60 * WAD,
        )
    )
    fake.balances[(TKNA.lower(), ACCOUNT.lower())] = 500 * WAD
    fake.balances[(TKNB.lower(), ACCOUNT.lower())] = 250 * WAD
    return fake


@pytest.fixture()
def wallet(ledger: FakeLedger) -> FakeWallet:
    return FakeWallet(ledger)
