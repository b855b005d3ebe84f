"""
Anonymous order chat tests - who may open a chat, timeouts, and relaying
ordinary messages through the input router
"""

from unittest.mock import AsyncMock

import pytest
from telegram.error import TelegramError

from config import Config
from handlers.command_router import input_router, slash_command_router
from utils.exception_handler import NotFound, NotOwner, ValidationFailed


async def _accepted_order(services, factory):
    requester = await factory.create_requester(balance_cents=5000)
    provider = await factory.create_provider()
    service = await factory.create_service(provider)
    order = await services.orders.create(requester.id, service_id=service.id)
    await services.orders.accept(order.id, provider.id)
    return requester, provider, order


class TestChatRelayManager:

    @pytest.mark.asyncio
    async def test_both_parties_reach_each_other(self, services, factory):
        requester, provider, order = await _accepted_order(services, factory)

        await services.chats.open_chat(requester.id, order.id)
        await services.chats.open_chat(provider.id, order.id)

        relay, other = await services.chats.counterpart(requester.id)
        assert relay.order_id == order.id
        assert other.id == provider.id
        _, other = await services.chats.counterpart(provider.id)
        assert other.id == requester.id

    @pytest.mark.asyncio
    async def test_outsiders_are_refused(self, services, factory):
        _, _, order = await _accepted_order(services, factory)
        stranger = await factory.create_requester()
        other_provider = await factory.create_provider()
        operator = await factory.create_operator()

        for account in (stranger, other_provider, operator):
            with pytest.raises(NotOwner):
                await services.chats.open_chat(account.id, order.id)
        assert len(services.chats) == 0

    @pytest.mark.asyncio
    async def test_requester_waits_for_a_provider(self, services, factory):
        requester = await factory.create_requester(balance_cents=5000)
        provider = await factory.create_provider()
        service = await factory.create_service(provider)
        order = await services.orders.create(requester.id, service_id=service.id)

        with pytest.raises(ValidationFailed):
            await services.chats.open_chat(requester.id, order.id)
        with pytest.raises(NotFound):
            await services.chats.open_chat(requester.id, 999999)

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, services, factory):
        requester, _, order = await _accepted_order(services, factory)
        await services.chats.open_chat(requester.id, order.id)

        assert services.chats.stop_chat(requester.id)
        assert not services.chats.stop_chat(requester.id)
        assert await services.chats.counterpart(requester.id) is None

    @pytest.mark.asyncio
    async def test_idle_chat_times_out(self, services, factory, clock):
        requester, provider, order = await _accepted_order(services, factory)
        await services.chats.open_chat(requester.id, order.id)
        await services.chats.open_chat(provider.id, order.id)
        clock.advance(minutes=Config.CHAT_RELAY_TIMEOUT_MINUTES - 1)
        await services.chats.counterpart(provider.id)

        clock.advance(minutes=2)
        assert services.chats.get_active(requester.id) is None
        assert services.chats.cleanup_expired() == 0
        assert services.chats.get_active(provider.id) is not None


class TestChatCommands:

    def _relay_update(self, telegram_factory, account, text, message_id=77):
        update = telegram_factory.create_update(account.telegram_id, text=text)
        update.effective_chat.id = account.telegram_id
        update.effective_message.message_id = message_id
        return update

    @pytest.mark.asyncio
    async def test_messages_are_copied_to_the_other_party(self, services, factory, telegram_factory):
        requester, provider, order = await _accepted_order(services, factory)
        context = telegram_factory.create_context(services)
        context.bot.copy_message = AsyncMock()

        opened = telegram_factory.create_update(requester.telegram_id, text=f"/chat_{order.id}")
        await slash_command_router(opened, context)
        assert telegram_factory.replies(opened)[0].startswith(f"💬 Chat open for order #{order.id}")

        message = self._relay_update(telegram_factory, requester, "Is 6pm fine?")
        await input_router(message, context)

        context.bot.copy_message.assert_awaited_once()
        kwargs = context.bot.copy_message.call_args.kwargs
        assert kwargs["chat_id"] == provider.telegram_id
        assert kwargs["from_chat_id"] == requester.telegram_id
        assert kwargs["message_id"] == 77
        assert telegram_factory.replies(message) == []

    @pytest.mark.asyncio
    async def test_stop_chat_returns_to_menu_hint(self, services, factory, telegram_factory):
        requester, _, order = await _accepted_order(services, factory)
        context = telegram_factory.create_context(services)
        context.bot.copy_message = AsyncMock()
        await slash_command_router(telegram_factory.create_update(requester.telegram_id, text=f"/chat {order.id}"), context)

        stop = telegram_factory.create_update(requester.telegram_id, text="/stop_chat")
        await slash_command_router(stop, context)
        assert telegram_factory.replies(stop) == ["💬 Chat closed."]

        again = telegram_factory.create_update(requester.telegram_id, text="/stop_chat")
        await slash_command_router(again, context)
        assert telegram_factory.replies(again) == ["No chat is open."]

        message = self._relay_update(telegram_factory, requester, "hello?")
        await input_router(message, context)
        context.bot.copy_message.assert_not_awaited()
        assert telegram_factory.replies(message) == ["Use /menu to see what you can do."]

    @pytest.mark.asyncio
    async def test_stranger_cannot_open_chat(self, services, factory, telegram_factory):
        _, _, order = await _accepted_order(services, factory)
        stranger = await factory.create_requester()

        update = telegram_factory.create_update(stranger.telegram_id, text=f"/chat_{order.id}")
        await slash_command_router(update, telegram_factory.create_context(services))

        assert telegram_factory.replies(update) == ["❌ This is not your order."]
        assert services.chats.get_active(stranger.id) is None

    @pytest.mark.asyncio
    async def test_delivery_failure_is_reported(self, services, factory, telegram_factory):
        requester, _, order = await _accepted_order(services, factory)
        await services.chats.open_chat(requester.id, order.id)
        context = telegram_factory.create_context(services)
        context.bot.copy_message = AsyncMock(side_effect=TelegramError("Forbidden: bot was blocked by the user"))

        message = self._relay_update(telegram_factory, requester, "still there?")
        await input_router(message, context)

        assert telegram_factory.replies(message) == ["❌ The message could not be forwarded."]
