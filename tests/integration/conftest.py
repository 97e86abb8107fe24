"""Fixtures wiring the full deposit service graph against SQLite."""

import pytest
import pytest_asyncio

from custody.services.container import build_deposit_services


@pytest_asyncio.fixture
async def services(test_settings, session_factory, ledger, encryption):
    """Worker graph: scanner, coordinator and gateway (coordinator running)."""
    services = build_deposit_services(test_settings, session_factory, ledger, encryption)
    services.coordinator.start()
    yield services
    await services.close()


@pytest_asyncio.fixture
async def reconciliation_services(test_settings, session_factory, ledger, encryption):
    """Reconciliation graph: single-attempt verifier, inline sweeps, no pollers."""
    services = build_deposit_services(
        test_settings, session_factory, ledger, encryption, with_coordinator=False
    )
    yield services
    await services.close()


@pytest.fixture
def run_tick():
    """Run one scanner tick and everything it triggered."""

    async def _run_tick(services) -> None:
        services.coordinator.request_tick()
        await services.coordinator.drain()
        await services.sweep_engine.wait_for_pollers()

    return _run_tick


@pytest_asyncio.fixture
async def priced_services(test_settings, session_factory, ledger, encryption):
    """Worker graph charging 10**15 wei per ticket."""
    config = test_settings.model_copy(update={"ticket_price_wei": 10**15})
    services = build_deposit_services(config, session_factory, ledger, encryption)
    services.coordinator.start()
    yield services
    await services.close()
