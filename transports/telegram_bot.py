import asyncio
import logging
from typing import AbstractSet, Optional

from telegram import Update
from telegram.constants import ChatType
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from core.errors import StorageError
from core.gate import GateState

log = logging.getLogger(__name__)


class TelegramTransport:
    """Telegram front end. Turns from all chats are processed one at a time."""

    def __init__(self, agent, token: str, *, allowed_users: Optional[AbstractSet[str]] = None):
        self.agent = agent
        self.allowed_users = frozenset(allowed_users or ())
        self.application = Application.builder().token(token).build()
        self._register_handlers()
        self._turn_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    def _register_handlers(self):
        self.application.add_handler(CommandHandler("status", self.trading_status))
        self.application.add_handler(
            MessageHandler(filters.TEXT & (~filters.COMMAND), self.handle_message)
        )

    def is_allowed(self, telegram_user_id: int) -> bool:
        if not self.allowed_users:
            return True
        return str(telegram_user_id) in self.allowed_users

    @staticmethod
    def agent_user_id(telegram_user_id: int) -> str:
        return f"telegram:{telegram_user_id}"

    async def handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        user = update.effective_user
        chat = update.effective_chat
        if not message or not message.text or not user or user.is_bot or not chat:
            return
        if chat.type != ChatType.PRIVATE or not self.is_allowed(user.id):
            return
        async with self._turn_lock:
            try:
                result = await self.agent.handle_turn(self.agent_user_id(user.id), message.text)
            except Exception as exc:
                log.exception("Agent error: %s", exc)
                result = "I'm not available right now."
        if result:
            await message.reply_text(result)

    async def trading_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        user = update.effective_user
        if not user or not self.is_allowed(user.id):
            return
        try:
            state = await self.agent.trading_status(self.agent_user_id(user.id))
        except StorageError as exc:
            log.warning("Trading state unavailable for %s: %s", user.id, exc)
            await update.effective_message.reply_text("Trading state is unavailable right now.")
            return
        if state is GateState.CONVINCED:
            text = "Trading is enabled."
        else:
            text = "Trading is not yet enabled. Convince me first!"
        await update.effective_message.reply_text(text)

    async def start(self):
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling()
        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()

    async def stop(self):
        self._stop_event.set()
