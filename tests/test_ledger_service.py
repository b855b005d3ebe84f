"""
Ledger tests: non-negative balances, append-only entries, derived balance
"""

import asyncio

import pytest

from models import LedgerEntryKind
from utils.exception_handler import InsufficientFunds, NotFound, ValidationFailed


class TestLedgerHold:
    """hold / top_up / release / withdraw against one account"""

    @pytest.mark.asyncio
    async def test_hold_fails_on_empty_balance_then_succeeds_after_topup(self, services, factory):
        """Balance 0: hold(2000) fails; after topUp(5000) it succeeds leaving 3000"""
        requester = await factory.create_requester()

        with pytest.raises(InsufficientFunds) as exc_info:
            await services.ledger.hold(requester.id, 2000)
        assert exc_info.value.required_cents == 2000
        assert exc_info.value.available_cents == 0
        assert await services.ledger.get_balance(requester.id) == 0
        assert await services.ledger.list_entries(requester.id) == []

        await services.ledger.top_up(requester.id, 5000)
        await services.ledger.hold(requester.id, 2000)

        assert await services.ledger.get_balance(requester.id) == 3000

    @pytest.mark.asyncio
    async def test_release_always_credits(self, services, factory):
        provider = await factory.create_provider()
        entry = await services.ledger.release(provider.id, 1500, order_id=None)

        assert entry.kind == LedgerEntryKind.RELEASE.value
        assert await services.ledger.get_balance(provider.id) == 1500

    @pytest.mark.asyncio
    async def test_withdraw_cannot_overdraw(self, services, factory):
        provider = await factory.create_provider()
        await services.ledger.top_up(provider.id, 1000)

        with pytest.raises(InsufficientFunds):
            await services.ledger.withdraw(provider.id, 1001)

        await services.ledger.withdraw(provider.id, 1000)
        assert await services.ledger.get_balance(provider.id) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, 10.5])
    async def test_rejects_non_positive_or_fractional_amounts(self, services, factory, amount):
        requester = await factory.create_requester()
        with pytest.raises(ValidationFailed):
            await services.ledger.top_up(requester.id, amount)

    @pytest.mark.asyncio
    async def test_unknown_account(self, services):
        with pytest.raises(NotFound):
            await services.ledger.hold(424242, 100)


class TestLedgerConsistency:
    """The materialized balance always equals the sum of signed entries"""

    @pytest.mark.asyncio
    async def test_materialized_balance_matches_entries(self, services, factory):
        requester = await factory.create_requester()
        await services.ledger.top_up(requester.id, 10000)
        await services.ledger.hold(requester.id, 3270)
        await services.ledger.release(requester.id, 3270)
        await services.ledger.hold(requester.id, 5000)
        with pytest.raises(InsufficientFunds):
            await services.ledger.hold(requester.id, 6000)

        assert await services.ledger.get_balance(requester.id) == 5000
        assert await services.ledger.balance_from_entries(requester.id) == 5000
        assert await services.ledger.verify_balance(requester.id) is True

        kinds = [entry.kind for entry in reversed(await services.ledger.list_entries(requester.id))]
        assert kinds == ["topup", "hold", "release", "hold"]

    @pytest.mark.asyncio
    async def test_concurrent_holds_never_go_negative(self, services, factory):
        """Ten concurrent holds of 1000 against a balance of 4500: exactly four succeed"""
        requester = await factory.create_requester(balance_cents=4500)

        results = await asyncio.gather(
            *[services.ledger.hold(requester.id, 1000) for _ in range(10)],
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, InsufficientFunds)]
        assert len(succeeded) == 4
        assert len(failed) == 6
        assert await services.ledger.get_balance(requester.id) == 500
        assert await services.ledger.verify_balance(requester.id) is True
