from types import SimpleNamespace

import pytest

from core.gate import GateState
from transports.telegram_bot import TelegramTransport


class FakeAgent:
    def __init__(self):
        self.turns = []
        self.state = GateState.UNCONVINCED

    async def handle_turn(self, user_id, text):
        self.turns.append((user_id, text))
        return f"echo {text}"

    async def trading_status(self, user_id):
        return self.state


class FakeMessage:
    def __init__(self, text):
        self.text = text
        self.replies = []

    async def reply_text(self, text):
        self.replies.append(text)


def make_update(text, *, user_id=42, chat_type="private", is_bot=False):
    message = FakeMessage(text)
    return SimpleNamespace(
        effective_message=message,
        effective_user=SimpleNamespace(id=user_id, is_bot=is_bot),
        effective_chat=SimpleNamespace(type=chat_type),
    )


@pytest.mark.asyncio
async def test_private_message_is_routed_to_agent():
    agent = FakeAgent()
    transport = TelegramTransport(agent, "123456:TEST-TOKEN")
    update = make_update("hello")

    await transport.handle_message(update, None)

    assert agent.turns == [("telegram:42", "hello")]
    assert update.effective_message.replies == ["echo hello"]


@pytest.mark.asyncio
async def test_group_chats_bots_and_strangers_are_ignored():
    agent = FakeAgent()
    transport = TelegramTransport(agent, "123456:TEST-TOKEN", allowed_users={"42"})

    await transport.handle_message(make_update("hi", chat_type="group"), None)
    await transport.handle_message(make_update("hi", is_bot=True), None)
    await transport.handle_message(make_update("hi", user_id=7), None)

    assert agent.turns == []


@pytest.mark.asyncio
async def test_status_command_reports_gate_state():
    agent = FakeAgent()
    transport = TelegramTransport(agent, "123456:TEST-TOKEN")
    update = make_update("/status")

    await transport.trading_status(update, None)
    agent.state = GateState.CONVINCED
    await transport.trading_status(update, None)

    assert update.effective_message.replies == [
        "Trading is not yet enabled. Convince me first!",
        "Trading is enabled.",
    ]
