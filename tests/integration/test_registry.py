"""Integration tests for the pool registry and its generation fencing."""
from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from delex_client.config import ContractsConfig, NetworkConfig
from delex_client.errors import BindingNotReady, CallReverted
from delex_client.protocols.delex.binding import LedgerBinding
from delex_client.services.registry import PoolRegistry
from delex_client.services.session import ProviderSession
from tests.fakes import POOL_1, POOL_2, TKNA, FakeLedger, FakeWallet


@pytest_asyncio.fixture()
async def session(wallet: FakeWallet, sample_network_config: NetworkConfig) -> ProviderSession:
    provider = ProviderSession(wallet, sample_network_config)
    await provider.connect()
    return provider


@pytest_asyncio.fixture()
async def registry(
    ledger: FakeLedger,
    wallet: FakeWallet,
    sample_contracts_config: ContractsConfig,
    session: ProviderSession,
) -> PoolRegistry:
    binding = LedgerBinding(ledger, wallet, sample_contracts_config)
    await binding.initialize(session.current)
    return PoolRegistry(binding, session, max_concurrency=2)


class TestRefresh:
    @pytest.mark.asyncio
    async def test_commits_snapshot(
        self, registry: PoolRegistry, session: ProviderSession
    ) -> None:
        snapshot = await registry.refresh()

        assert snapshot is registry.snapshot
        assert [p.id for p in snapshot.pools] == [POOL_1, POOL_2]
        assert snapshot.generation == 1
        assert snapshot.fetched_at_session == session.current
        assert snapshot.pool(POOL_1).token_a == TKNA

    @pytest.mark.asyncio
    async def test_generation_increases(self, registry: PoolRegistry) -> None:
        first = await registry.refresh()
        second = await registry.refresh()
        assert second.generation > first.generation
        assert first.pools == second.pools

    @pytest.mark.asyncio
    async def test_failed_pool_is_excluded(
        self, registry: PoolRegistry, ledger: FakeLedger
    ) -> None:
        ledger.failing.add(POOL_2)

        snapshot = await registry.refresh()

        assert [p.id for p in snapshot.pools] == [POOL_1]

    @pytest.mark.asyncio
    async def test_pool_list_failure_propagates(
        self, registry: PoolRegistry, ledger: FakeLedger
    ) -> None:
        await registry.refresh()
        before = registry.snapshot
        ledger.failing.add("getAllPools")

        with pytest.raises(CallReverted):
            await registry.refresh()
        assert registry.snapshot is before

    @pytest.mark.asyncio
    async def test_unbound(
        self,
        ledger: FakeLedger,
        wallet: FakeWallet,
        sample_contracts_config: ContractsConfig,
        session: ProviderSession,
    ) -> None:
        binding = LedgerBinding(ledger, wallet, sample_contracts_config)
        with pytest.raises(BindingNotReady):
            await PoolRegistry(binding, session).refresh()


class TestFencing:
    @pytest.mark.asyncio
    async def test_invalidate_discards_in_flight_refresh(
        self, registry: PoolRegistry, ledger: FakeLedger
    ) -> None:
        committed = await registry.refresh()

        release = asyncio.Event()
        entered: list[str] = []

        async def gate(pool_id: str) -> None:
            entered.append(pool_id)
            await release.wait()

        ledger.pool_gate = gate
        task = asyncio.create_task(registry.refresh())
        while len(entered) < 2:
            await asyncio.sleep(0)

        # Account change while both pool reads are in flight
        registry.invalidate()
        release.set()

        assert await task is None
        assert registry.snapshot is committed

    @pytest.mark.asyncio
    async def test_only_latest_concurrent_refresh_commits(
        self, registry: PoolRegistry, ledger: FakeLedger
    ) -> None:
        release = asyncio.Event()

        async def gate(pool_id: str) -> None:
            await release.wait()

        ledger.pool_gate = gate
        older = asyncio.create_task(registry.refresh())
        await asyncio.sleep(0)
        newer = asyncio.create_task(registry.refresh())
        await asyncio.sleep(0)
        release.set()

        results = await asyncio.gather(older, newer)

        assert results[0] is None
        assert results[1] is registry.snapshot
        assert registry.snapshot.generation == registry.requested_generation

    @pytest.mark.asyncio
    async def test_reset_drops_snapshot(self, registry: PoolRegistry) -> None:
        await registry.refresh()
        registry.reset()

        assert registry.snapshot.pools == ()
        assert registry.snapshot.generation == registry.requested_generation
