"""Integration tests for the client pipeline — session events drive reloads."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import AsyncIterator

import pytest
import pytest_asyncio

from delex_client.config import AppConfig
from delex_client.interfaces.wallet import ACCOUNTS_CHANGED, CHAIN_CHANGED
from delex_client.models import IntentKind, IntentStatus, Position
from delex_client.protocols.delex import quotes
from delex_client.services.client import DelexClient
from tests.fakes import (
    ACCOUNT,
    OTHER_ACCOUNT,
    POOL_1,
    TKNA,
    TKNB,
    WAD,
    FakeLedger,
    FakeWallet,
    drain,
)

POLL_SECONDS = 0.01


@pytest.fixture()
def client(
    sample_app_config: AppConfig, ledger: FakeLedger, wallet: FakeWallet
) -> DelexClient:
    return DelexClient(sample_app_config, wallet=wallet, chain_client=ledger)


@pytest_asyncio.fixture()
async def started(client: DelexClient) -> AsyncIterator[DelexClient]:
    await client.start()
    yield client
    await client.stop()


@pytest_asyncio.fixture()
async def polling(
    sample_app_config: AppConfig, ledger: FakeLedger, wallet: FakeWallet
) -> AsyncIterator[DelexClient]:
    config = replace(
        sample_app_config,
        refresh=replace(sample_app_config.refresh, poll_interval_seconds=POLL_SECONDS),
    )
    polled = DelexClient(config, wallet=wallet, chain_client=ledger)
    await polled.start()
    yield polled
    await polled.stop()


class TestPipeline:
    @pytest.mark.asyncio
    async def test_start_loads_pools_and_account(self, started: DelexClient) -> None:
        assert started.binding.ready
        assert len(started.snapshot.pools) == 2
        view = started.account_view
        assert view is not None
        assert view.account == ACCOUNT
        assert view.generation == started.snapshot.generation
        assert view.balances["TKNA"] == 500 * WAD

    @pytest.mark.asyncio
    async def test_account_change_reaggregates(
        self, started: DelexClient, wallet: FakeWallet
    ) -> None:
        before = started.snapshot.generation

        wallet.emit(ACCOUNTS_CHANGED, [OTHER_ACCOUNT])
        assert started.account_view is None
        await started.settle()

        assert started.snapshot.generation > before
        assert started.account_view.account == OTHER_ACCOUNT
        assert started.account_view.balances == {"TKNA": 0, "TKNB": 0}

    @pytest.mark.asyncio
    async def test_rapid_account_changes_settle_on_latest(
        self, started: DelexClient, wallet: FakeWallet
    ) -> None:
        wallet.emit(ACCOUNTS_CHANGED, [OTHER_ACCOUNT])
        wallet.emit(ACCOUNTS_CHANGED, [ACCOUNT])
        await started.settle()

        view = started.account_view
        assert view.account == ACCOUNT
        assert view.generation == started.snapshot.generation

    @pytest.mark.asyncio
    async def test_chain_change_drops_state(
        self, started: DelexClient, wallet: FakeWallet
    ) -> None:
        wallet.emit(CHAIN_CHANGED, "0x1")
        await started.settle()

        assert not started.binding.ready
        assert started.snapshot.pools == ()
        assert started.account_view is None

    @pytest.mark.asyncio
    async def test_disconnect_drops_state(self, started: DelexClient) -> None:
        started.session.disconnect()
        await started.settle()

        assert not started.binding.ready
        assert started.snapshot.pools == ()
        assert started.account_view is None

    @pytest.mark.asyncio
    async def test_failed_binding_leaves_client_unready(
        self, client: DelexClient, ledger: FakeLedger
    ) -> None:
        ledger.failing.add("owner")
        await client.start()

        assert client.session.current.connected
        assert not client.binding.ready
        assert client.snapshot.pools == ()
        await client.stop()

    @pytest.mark.asyncio
    async def test_stop_detaches_from_wallet(
        self, client: DelexClient, wallet: FakeWallet
    ) -> None:
        await client.start()
        await client.stop()
        assert wallet.listener_count(ACCOUNTS_CHANGED) == 0


class TestPolling:
    @pytest.mark.asyncio
    async def test_no_polling_when_interval_is_zero(self, started: DelexClient) -> None:
        assert started._poll_task is None

    @pytest.mark.asyncio
    async def test_refreshes_on_interval(self, polling: DelexClient) -> None:
        before = polling.snapshot.generation
        assert polling._poll_task is not None

        await asyncio.sleep(POLL_SECONDS * 10)

        assert polling.snapshot.generation > before

    @pytest.mark.asyncio
    async def test_account_removal_stops_polling(
        self, polling: DelexClient, wallet: FakeWallet, ledger: FakeLedger
    ) -> None:
        wallet.emit(ACCOUNTS_CHANGED, [])
        await polling.settle()
        await drain()

        assert polling._poll_task is None
        calls = len(ledger.calls)
        await asyncio.sleep(POLL_SECONDS * 10)
        assert len(ledger.calls) == calls
        assert polling.snapshot.pools == ()

    @pytest.mark.asyncio
    async def test_chain_change_stops_polling(
        self, polling: DelexClient, wallet: FakeWallet, ledger: FakeLedger
    ) -> None:
        wallet.emit(CHAIN_CHANGED, "0x1")
        await polling.settle()
        await drain()

        assert polling._poll_task is None
        calls = len(ledger.calls)
        await asyncio.sleep(POLL_SECONDS * 10)
        assert len(ledger.calls) == calls

    @pytest.mark.asyncio
    async def test_polling_resumes_after_reconnect(
        self, polling: DelexClient, wallet: FakeWallet
    ) -> None:
        polling.session.disconnect()
        await polling.settle()
        assert polling._poll_task is None

        await polling.session.connect()
        await polling.settle()
        before = polling.snapshot.generation
        await asyncio.sleep(POLL_SECONDS * 10)

        assert polling._poll_task is not None
        assert polling.snapshot.generation > before


class TestQuotesAndActions:
    @pytest.mark.asyncio
    async def test_quote_uses_snapshot_pool(self, started: DelexClient) -> None:
        quote = started.quote("TKNA", "TKNB", 100 * WAD)

        pool = started.snapshot.pool(POOL_1)
        assert quote.pool == pool
        assert quote.token_in == TKNA
        assert quote.token_out == TKNB
        assert quote.amount_out == quotes.quote_swap(pool, TKNA, 100 * WAD)
        assert quote.min_amount_out == quotes.min_amount_out(quote.amount_out, 500)

    @pytest.mark.asyncio
    async def test_quote_without_pool(self, started: DelexClient) -> None:
        with pytest.raises(LookupError):
            started.quote("TKNA", "TKNA", WAD)

    @pytest.mark.asyncio
    async def test_swap_approves_then_swaps(
        self, started: DelexClient, wallet: FakeWallet
    ) -> None:
        result = await started.swap("TKNA", "TKNB", 10 * WAD)

        assert result.status == IntentStatus.CONFIRMED
        assert wallet.sent == ["approve", "swap"]

    @pytest.mark.asyncio
    async def test_add_liquidity_to_existing_pool(
        self, started: DelexClient, wallet: FakeWallet
    ) -> None:
        result = await started.add_liquidity("TKNB", "TKNA", WAD, 2 * WAD)

        assert result.status == IntentStatus.CONFIRMED
        assert result.params["pool_id"] == POOL_1
        assert wallet.sent == ["approve", "approve", "addLiquidity"]

    @pytest.mark.asyncio
    async def test_confirmed_write_recomputes_positions(
        self, started: DelexClient, ledger: FakeLedger
    ) -> None:
        before = started.snapshot.generation
        ledger.balances[(TKNA.lower(), ACCOUNT.lower())] = 490 * WAD

        await started.swap("TKNA", "TKNB", 10 * WAD)

        view = started.account_view
        assert view is not None
        assert started.snapshot.generation > before
        assert view.generation == started.snapshot.generation
        assert view.balances["TKNA"] == 490 * WAD
        assert started.build_positions_report() != "No account data loaded."

    @pytest.mark.asyncio
    async def test_borrow_needs_no_approval(
        self, started: DelexClient, wallet: FakeWallet
    ) -> None:
        await started.submit(IntentKind.BORROW, pool_id=POOL_1, token="TKNB", amount=WAD)
        assert wallet.sent == ["borrow"]


class TestReports:
    @pytest.mark.asyncio
    async def test_pools_report(self, started: DelexClient) -> None:
        report = started.build_pools_report()
        assert "TKNA / TKNB" in report
        assert "TKNB / TKNA" in report
        assert f"Pool: {POOL_1}" in report
        assert "Utilization: 25.00% TKNA" in report

    @pytest.mark.asyncio
    async def test_pools_report_before_load(self, client: DelexClient) -> None:
        assert client.build_pools_report() == "No pools available."

    @pytest.mark.asyncio
    async def test_stats_report(self, started: DelexClient) -> None:
        report = started.build_stats_report()
        assert report.startswith("Pools: 2")

    @pytest.mark.asyncio
    async def test_positions_report(
        self, client: DelexClient, ledger: FakeLedger, sample_position: Position
    ) -> None:
        ledger.positions[(ACCOUNT.lower(), POOL_1)] = sample_position
        await client.start()

        report = client.build_positions_report()

        assert "TKNA: 500.0000" in report
        assert "TKNA / TKNB · HF: 1.50" in report
        await client.stop()

    @pytest.mark.asyncio
    async def test_positions_report_without_account(self, client: DelexClient) -> None:
        assert client.build_positions_report() == "No account data loaded."

    @pytest.mark.asyncio
    async def test_debug_report(self, started: DelexClient) -> None:
        report = await started.build_debug_report()
        assert "Owner: 0x3333333333333333333333333333333333333333" in report
        assert "TKNA (Token A)" in report
