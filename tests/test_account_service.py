"""
Account onboarding and provider approval tests
"""

import pytest

from models import AccountRole, ApprovalStatus
from utils.exception_handler import NotFound, NotOwner, ValidationFailed


class TestOnboarding:

    @pytest.mark.asyncio
    async def test_first_contact_creates_account_once(self, services):
        first = await services.accounts.get_or_create_account(4242, "alice")
        second = await services.accounts.get_or_create_account(4242, "alice_renamed")

        assert first.id == second.id
        assert second.username == "alice_renamed"
        assert second.role is None
        assert second.balance_cents == 0

    @pytest.mark.asyncio
    async def test_configured_operator_gets_operator_role(self, services, operator_ids):
        account = await services.accounts.get_or_create_account(operator_ids[0])
        assert account.role == AccountRole.OPERATOR.value
        assert account.is_operator

    @pytest.mark.asyncio
    async def test_operator_role_cannot_be_chosen(self, services):
        account = await services.accounts.get_or_create_account(4243)
        with pytest.raises(NotOwner):
            await services.accounts.choose_role(account.id, AccountRole.OPERATOR)

    @pytest.mark.asyncio
    async def test_role_is_chosen_once(self, services):
        account = await services.accounts.get_or_create_account(4244)
        await services.accounts.choose_role(account.id, AccountRole.REQUESTER)
        # Choosing the same role again is harmless
        await services.accounts.choose_role(account.id, AccountRole.REQUESTER)
        with pytest.raises(ValidationFailed):
            await services.accounts.choose_role(account.id, AccountRole.PROVIDER)

    @pytest.mark.asyncio
    async def test_provider_starts_pending_and_operators_are_told(self, services, notifier):
        account = await services.accounts.get_or_create_account(4245, "bob")
        provider = await services.accounts.choose_role(account.id, AccountRole.PROVIDER)

        assert provider.approval_status == ApprovalStatus.PENDING.value
        assert not provider.is_approved
        assert len(notifier.operator_messages) == 1
        message, actions = notifier.operator_messages[0]
        assert "awaiting approval" in message
        assert [a.callback_data for a in actions] == [f"approve:{account.id}", f"reject:{account.id}"]

    @pytest.mark.asyncio
    async def test_accept_terms_keeps_first_timestamp(self, services, clock):
        account = await services.accounts.get_or_create_account(4246)
        first = await services.accounts.accept_terms(account.id)
        clock.advance(minutes=5)
        again = await services.accounts.accept_terms(account.id)
        assert again.terms_accepted_at == first.terms_accepted_at


class TestApproval:

    @pytest.mark.asyncio
    async def test_operator_approves_provider(self, services, factory, notifier):
        provider = await factory.create_provider(approved=False)
        operator = await factory.create_operator()

        approved = await services.accounts.set_approval(operator.id, provider.id, True)

        assert approved.is_approved
        assert any("approved" in m for m in notifier.messages_for(provider.id))

    @pytest.mark.asyncio
    async def test_non_operator_cannot_approve(self, services, factory):
        provider = await factory.create_provider(approved=False)
        requester = await factory.create_requester()
        with pytest.raises(NotOwner):
            await services.accounts.set_approval(requester.id, provider.id, True)

    @pytest.mark.asyncio
    async def test_reject_provider(self, services, factory):
        provider = await factory.create_provider(approved=False)
        operator = await factory.create_operator()
        rejected = await services.accounts.set_approval(operator.id, provider.id, False)
        assert rejected.approval_status == ApprovalStatus.REJECTED.value

    @pytest.mark.asyncio
    async def test_availability_only_for_providers(self, services, factory):
        requester = await factory.create_requester()
        with pytest.raises(NotOwner):
            await services.accounts.set_availability(requester.id, False)

    @pytest.mark.asyncio
    async def test_unknown_account(self, services):
        with pytest.raises(NotFound):
            await services.accounts.get_account(987654)


class TestProfile:

    @pytest.mark.asyncio
    async def test_photo_kept_when_not_given(self, services, factory):
        provider = await factory.create_provider()
        await services.accounts.update_profile(provider.id, "Dr. Bob", "photo-1")
        updated = await services.accounts.update_profile(provider.id, "Bob")
        assert updated.display_name == "Bob"
        assert updated.photo_file_id == "photo-1"
