"""
Tests for the Connection Health Guard.
"""
import pytest

from pwmarket.application.health import ConnectionHealthGuard
from pwmarket.domain import HealthState

from tests.conftest import MARKET, FakeClock, FakeLedgerClient


def build_guard(primary: FakeLedgerClient, fallback: FakeLedgerClient, clock: FakeClock) -> ConnectionHealthGuard:
    built = {fallback.endpoint: fallback}
    return ConnectionHealthGuard(
        primary,
        lambda endpoint: built[endpoint],
        expected_chain_id=56,
        contract_address=MARKET,
        fallback_endpoint=fallback.endpoint,
        connect_timeout=1.0,
        recheck_interval=60.0,
        clock=clock,
    )


class TestHealthChecks:
    """Tests for the individual readiness probes."""

    @pytest.mark.asyncio
    async def test_ready(self, guard, ledger):
        status = await guard.ensure_usable()
        assert status.state is HealthState.READY
        assert status.endpoint == ledger.endpoint

    @pytest.mark.asyncio
    async def test_transport_failure_is_unusable(self, guard, ledger):
        ledger.unreachable = True
        status = await guard.ensure_usable()
        assert status.state is HealthState.UNUSABLE
        assert status.reason == "transport"

    @pytest.mark.asyncio
    async def test_wrong_network(self, guard, ledger):
        ledger.chain_id = 1
        status = await guard.ensure_usable()
        assert not status.usable
        assert status.reason == "wrong_network"

    @pytest.mark.asyncio
    async def test_contract_not_deployed(self, guard, ledger):
        ledger.code = b""
        status = await guard.ensure_usable()
        assert status.reason == "contract_not_deployed"

    @pytest.mark.asyncio
    async def test_uninitialized_contract_is_degraded_but_usable(self, guard, ledger):
        ledger.initialized = False
        status = await guard.ensure_usable()
        assert status.state is HealthState.DEGRADED
        assert status.usable


class TestHealthCaching:
    """Tests for the cached Ready verdict."""

    @pytest.mark.asyncio
    async def test_ready_verdict_reused_within_interval(self, guard, ledger, clock):
        await guard.ensure_usable()
        ledger.unreachable = True
        clock.advance(30)
        assert (await guard.ensure_usable()).state is HealthState.READY

    @pytest.mark.asyncio
    async def test_rechecked_after_interval(self, guard, ledger, clock):
        await guard.ensure_usable()
        ledger.unreachable = True
        clock.advance(61)
        assert (await guard.ensure_usable()).state is HealthState.UNUSABLE

    @pytest.mark.asyncio
    async def test_force_and_reset_bypass_cache(self, guard, ledger):
        await guard.ensure_usable()
        ledger.unreachable = True
        assert not (await guard.ensure_usable(force=True)).usable
        ledger.unreachable = False
        await guard.ensure_usable()
        ledger.unreachable = True
        guard.reset()
        assert not (await guard.ensure_usable()).usable


class TestFallback:
    """Tests for the single fallback attempt."""

    @pytest.mark.asyncio
    async def test_swaps_to_usable_fallback(self, clock):
        primary = FakeLedgerClient("https://primary.example")
        fallback = FakeLedgerClient("https://fallback.example")
        primary.unreachable = True
        guard = build_guard(primary, fallback, clock)

        status = await guard.ensure_usable()

        assert status.state is HealthState.READY
        assert status.endpoint == fallback.endpoint
        assert guard.client is fallback
        assert primary.closed

    @pytest.mark.asyncio
    async def test_both_unusable_keeps_primary(self, clock):
        primary = FakeLedgerClient("https://primary.example")
        fallback = FakeLedgerClient("https://fallback.example")
        primary.unreachable = True
        fallback.unreachable = True
        guard = build_guard(primary, fallback, clock)

        status = await guard.ensure_usable()

        assert not status.usable
        assert status.endpoint == primary.endpoint
        assert guard.client is primary
        assert fallback.closed

    @pytest.mark.asyncio
    async def test_no_fallback_configured(self, guard, ledger):
        ledger.chain_id = 97
        status = await guard.ensure_usable()
        assert status.reason == "wrong_network"
        assert guard.client is ledger

    @pytest.mark.asyncio
    async def test_returns_to_primary_when_fallback_fails(self, clock):
        primary = FakeLedgerClient("https://primary.example")
        fallback = FakeLedgerClient("https://fallback.example")
        rebuilt_primary = FakeLedgerClient("https://primary.example")
        built = {fallback.endpoint: fallback, primary.endpoint: rebuilt_primary}
        guard = ConnectionHealthGuard(
            primary,
            lambda endpoint: built[endpoint],
            expected_chain_id=56,
            contract_address=MARKET,
            fallback_endpoint=fallback.endpoint,
            connect_timeout=1.0,
            recheck_interval=60.0,
            clock=clock,
        )
        primary.unreachable = True
        await guard.ensure_usable()
        assert guard.client is fallback
        assert guard.alternate_endpoint() == "https://primary.example"

        fallback.unreachable = True
        status = await guard.ensure_usable(force=True)

        assert status.usable
        assert guard.client is rebuilt_primary
        assert fallback.closed
