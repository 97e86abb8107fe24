"""Integration tests for client payment notifications and the deposit gateway."""

import asyncio

import pytest

from custody.models import DepositStatus, SweepStatus
from custody.utils.exceptions import CustodialAccountNotFoundError, UserNotFoundError


async def settle_background(services) -> None:
    await services.coordinator.drain()
    await services.sweep_engine.wait_for_pollers()


class TestDepositAddress:
    """get_deposit_address()."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_get_one_address(self, services, create_user):
        user_id = await create_user()

        addresses = await asyncio.gather(
            *(services.gateway.get_deposit_address(user_id) for _ in range(5))
        )

        assert len(set(addresses)) == 1

    @pytest.mark.asyncio
    async def test_unknown_user(self, services):
        with pytest.raises(UserNotFoundError):
            await services.gateway.get_deposit_address(31337)


class TestPaymentNotification:
    """on_external_payment_notification()."""

    @pytest.mark.asyncio
    async def test_notification_triggers_verification(self, services, ledger, create_user):
        user_id = await create_user()
        address = await services.gateway.get_deposit_address(user_id)
        ledger.deliver(address, 10**16, "buy:4:pay-1")

        result = await services.gateway.on_external_payment_notification(user_id, "pay-1", 4)

        assert result.accepted
        assert result.status == DepositStatus.PENDING
        assert result.balance == 0

        await settle_background(services)

        assert await services.gateway.get_balance(user_id) == 4
        assert await services.gateway.get_sweep_status("pay-1") == SweepStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_notification_is_not_trusted(self, services, create_user):
        """Nothing on chain: the deposit stays pending and nothing is credited."""
        user_id = await create_user()
        await services.gateway.get_deposit_address(user_id)

        await services.gateway.on_external_payment_notification(user_id, "pay-2", 100)
        await settle_background(services)

        assert await services.gateway.get_balance(user_id) == 0
        assert await services.gateway.get_deposit_status("pay-2") == DepositStatus.PENDING

    @pytest.mark.asyncio
    async def test_chain_amount_wins(self, services, ledger, create_user):
        user_id = await create_user()
        address = await services.gateway.get_deposit_address(user_id)
        ledger.deliver(address, 10**16, "buy:2:pay-3")

        await services.gateway.on_external_payment_notification(user_id, "pay-3", 50)
        await settle_background(services)

        assert await services.gateway.get_balance(user_id) == 2

    @pytest.mark.asyncio
    async def test_repeated_notification(self, services, ledger, create_user):
        user_id = await create_user()
        address = await services.gateway.get_deposit_address(user_id)
        ledger.deliver(address, 10**16, "buy:4:pay-4")

        await services.gateway.on_external_payment_notification(user_id, "pay-4", 4)
        await settle_background(services)
        again = await services.gateway.on_external_payment_notification(user_id, "pay-4", 4)

        assert again.accepted
        assert again.balance == 4
        assert again.status == DepositStatus.SWEEP_CONFIRMED
        assert len(ledger.submitted) == 1

    @pytest.mark.asyncio
    async def test_notification_and_scanner_credit_once(self, services, ledger, create_user):
        user_id = await create_user()
        address = await services.gateway.get_deposit_address(user_id)
        services.coordinator.request_tick()
        await settle_background(services)
        ledger.deliver(address, 10**16, "buy:4:pay-5")

        await services.gateway.on_external_payment_notification(user_id, "pay-5", 4)
        services.coordinator.request_tick()
        await settle_background(services)

        assert await services.gateway.get_balance(user_id) == 4
        assert len(await services.credit_ledger.get_history(user_id)) == 1

    @pytest.mark.asyncio
    async def test_key_owned_by_another_user(self, services, ledger, create_user):
        owner = await create_user()
        other = await create_user()
        address = await services.gateway.get_deposit_address(owner)
        await services.gateway.get_deposit_address(other)
        ledger.deliver(address, 10**16, "buy:1:pay-6")
        await services.gateway.on_external_payment_notification(owner, "pay-6", 1)

        result = await services.gateway.on_external_payment_notification(other, "pay-6", 1)

        assert not result.accepted
        await settle_background(services)
        assert await services.gateway.get_balance(other) == 0
        assert await services.gateway.get_balance(owner) == 1

    @pytest.mark.asyncio
    async def test_invalid_notification(self, services, create_user):
        user_id = await create_user()
        await services.gateway.get_deposit_address(user_id)

        with pytest.raises(ValueError):
            await services.gateway.on_external_payment_notification(user_id, "bad key", 1)
        with pytest.raises(ValueError):
            await services.gateway.on_external_payment_notification(user_id, "pay-7", 0)

    @pytest.mark.asyncio
    async def test_user_without_deposit_address(self, services, create_user):
        user_id = await create_user()

        with pytest.raises(CustodialAccountNotFoundError):
            await services.gateway.on_external_payment_notification(user_id, "pay-8", 1)


class TestUnderpaidDeposit:
    """Transfers below the ticket price."""

    @pytest.mark.asyncio
    async def test_underpaid_notification_is_never_credited(
        self, priced_services, ledger, create_user
    ):
        services = priced_services
        user_id = await create_user()
        address = await services.gateway.get_deposit_address(user_id)
        services.coordinator.request_tick()
        await settle_background(services)
        ledger.deliver(address, 1, "buy:1000:cheap1")

        services.coordinator.request_tick()
        await settle_background(services)
        assert await services.gateway.get_balance(user_id) == 0

        result = await services.gateway.on_external_payment_notification(
            user_id, "cheap1", 1000
        )
        await settle_background(services)

        assert result.accepted
        assert await services.gateway.get_balance(user_id) == 0
        assert await services.gateway.get_deposit_status("cheap1") == DepositStatus.PENDING
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_paid_in_full_is_credited(self, priced_services, ledger, create_user):
        services = priced_services
        user_id = await create_user()
        address = await services.gateway.get_deposit_address(user_id)
        services.coordinator.request_tick()
        await settle_background(services)

        ledger.deliver(address, 3 * 10**15, "buy:3:paid1")
        services.coordinator.request_tick()
        await settle_background(services)

        assert await services.gateway.get_balance(user_id) == 3
