import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiohttp

from .config import TOKEN_DECIMALS, TokenContract
from .errors import AgentError, InitializationError, LedgerError, StorageError
from .gate import GateState, TradingGate
from .memory import HistoryLoad, MemoryReconciler
from .models import HistoryEntry
from .persona import PersonaConfig
from .trade import (
    CONFIRMATION_DELAY_SECONDS,
    DEFAULT_TRADE_AMOUNT,
    FeeOptions,
    SwapRoute,
    TradeOutcome,
    TradePipeline,
    TradeRejected,
)

log = logging.getLogger(__name__)

TRADE_TRIGGER = "you have convinced me"
BALANCE_QUERY = "query wallet balances"
TRADE_PREAMBLE = "Excellent! I will begin trading now."
INTERNAL_ERROR_REPLY = "Sorry, I encountered an internal error."
STATE_ERROR_REPLY = "Sorry, I couldn't update your trading state right now."
BALANCE_FORMAT_ERROR = "Error formatting balance"

QUOTE_KEYWORD = "kanye"
QUOTE_URL = "https://api.kanye.rest/"
QUOTE_FALLBACK = "Kanye is beyond words."
QUOTE_TIMEOUT_SECONDS = 15

_INTEGER = re.compile(r"-?[0-9]+")


def format_balance(amount: str, decimals: int = TOKEN_DECIMALS) -> str:
    """Render a raw integer token amount with a fixed number of decimals.

    Upstream error strings pass through unchanged; anything else that is not
    an integer becomes ``"Error formatting balance"``.
    """
    if amount.startswith("Error"):
        return amount
    if not _INTEGER.fullmatch(amount.strip()):
        return BALANCE_FORMAT_ERROR
    value = int(amount.strip())
    sign = "-" if value < 0 else ""
    whole, remainder = divmod(abs(value), 10 ** decimals)
    return f"{sign}{whole}.{str(remainder).zfill(decimals)}"


def text_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if content is None:
        return ""
    return json.dumps(content, default=str)


@dataclass
class PersistOutcome:
    stored_locally: bool = False
    ledger_id: Optional[str] = None
    errors: List[AgentError] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.stored_locally and self.ledger_id is not None


class TradingAgent:
    """Per-turn controller for the persuasion dialogue and the gated swap."""

    def __init__(
        self,
        *,
        llm,
        store,
        ledger,
        chain,
        route: SwapRoute,
        tokens: Sequence[TokenContract] = (),
        persona: Optional[PersonaConfig] = None,
        trade_amount: str = DEFAULT_TRADE_AMOUNT,
        fee: Optional[FeeOptions] = None,
        confirmation_delay: float = CONFIRMATION_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        quote_url: str = QUOTE_URL,
    ) -> None:
        self.llm = llm
        self.store = store
        self.ledger = ledger
        self.chain = chain
        self.tokens = list(tokens)
        self.persona = persona or PersonaConfig()
        self.quote_url = quote_url
        self.gate = TradingGate(store)
        self.memory = MemoryReconciler(ledger, store)
        self.trader = TradePipeline(
            self.gate,
            chain,
            route=route,
            amount=trade_amount,
            fee=fee,
            confirmation_delay=confirmation_delay,
            sleep=sleep,
        )

    async def initialize(self) -> None:
        log.info("Initializing trading agent...")
        try:
            await self.store.connection()
        except StorageError as exc:
            raise InitializationError(f"local store unavailable: {exc}") from exc
        await self.llm.initialize()
        try:
            await self.ledger.ready()
        except LedgerError as exc:
            raise InitializationError(f"ledger client initialization failed: {exc}") from exc
        await self.chain.connect()
        log.info("Trading agent initialized. Wallet address: %s", self.chain.address)

    async def close(self) -> None:
        try:
            await self.llm.close()
        except Exception as exc:
            log.warning("failed to close LLM client: %s", exc)
        try:
            await self.chain.close()
        except Exception as exc:
            log.warning("failed to close chain client: %s", exc)
        self.store.close()

    async def trading_status(self, user_id: str) -> GateState:
        return await self.gate.state(user_id)

    async def handle_turn(self, user_id: str, text: str) -> str:
        try:
            return await self._dispatch(user_id, text)
        except Exception as exc:
            log.exception("Error during chat turn for %s: %s", user_id, exc)
            return INTERNAL_ERROR_REPLY

    async def _dispatch(self, user_id: str, text: str) -> str:
        command = text.lower()
        if command == TRADE_TRIGGER:
            return await self._handle_trigger(user_id, text)
        if command == BALANCE_QUERY:
            return await self._handle_balances(user_id, text)
        return await self._handle_chat(user_id, text)

    async def _handle_trigger(self, user_id: str, text: str) -> str:
        try:
            await self.gate.mark_convinced(user_id)
        except StorageError as exc:
            log.error("Could not mark %s as convinced: %s", user_id, exc)
            return STATE_ERROR_REPLY
        outcome: TradeOutcome = await self.trader.execute(user_id)
        reply = f"{TRADE_PREAMBLE}\n\n{outcome.describe()}"
        if not isinstance(outcome, TradeRejected):
            await self._save_turn(user_id, text, reply)
        return reply

    async def _token_balance(self, token: TokenContract) -> str:
        try:
            return await self.chain.token_balance(token.address, token.viewing_key)
        except Exception as exc:
            log.error("Error querying balance for %s: %s", token.address, exc)
            return f"Error querying balance ({exc})"

    async def _handle_balances(self, user_id: str, text: str) -> str:
        lines = []
        for token in self.tokens:
            raw = await self._token_balance(token)
            lines.append(f"{token.symbol} Balance: {format_balance(raw, token.decimals)}")
        reply = "\n".join(lines)
        await self._save_turn(user_id, text, reply)
        return reply

    def _build_messages(self, history: Sequence[HistoryEntry], text: str) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.persona.get_prompt()}]
        for entry in history:
            messages.append({"role": "user", "content": entry.message})
            messages.append({"role": "assistant", "content": entry.response})
        messages.append({"role": "user", "content": text})
        return messages

    async def _handle_chat(self, user_id: str, text: str) -> str:
        loaded: HistoryLoad = await self.memory.load(user_id)
        if loaded.error is not None:
            log.warning(
                "Degraded history for %s: %d entries from %s (%s)",
                user_id,
                len(loaded.entries),
                loaded.source.value,
                loaded.error,
            )
        messages = self._build_messages(loaded.entries, text)
        try:
            reply = await self.llm.invoke(messages)
            content = text_content(reply.content)
            if QUOTE_KEYWORD in text.lower():
                quote = await self._fetch_quote()
                content += f'\n\nKanye says: "{quote}"'
        except Exception as exc:
            log.exception("Error invoking LLM: %s", exc)
            content = f"Sorry, I encountered an error: {exc}"
        await self._save_turn(user_id, text, content)
        return content

    async def _fetch_quote(self) -> str:
        try:
            timeout = aiohttp.ClientTimeout(total=QUOTE_TIMEOUT_SECONDS)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.quote_url) as resp:
                    resp.raise_for_status()
                    payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            log.warning("Failed to fetch Kanye quote: %s", exc)
            return QUOTE_FALLBACK
        quote = payload.get("quote") if isinstance(payload, dict) else None
        return str(quote) if quote else QUOTE_FALLBACK

    async def _save_turn(self, user_id: str, message: str, response: str) -> None:
        outcome = await self._persist(user_id, message, response)
        if not outcome.complete:
            log.warning(
                "Turn for %s saved partially (local=%s, ledger=%s): %s",
                user_id,
                outcome.stored_locally,
                outcome.ledger_id or "-",
                "; ".join(str(exc) for exc in outcome.errors),
            )

    async def _persist(self, user_id: str, message: str, response: str) -> PersistOutcome:
        outcome = PersistOutcome()
        try:
            await self.store.record(user_id, message, response)
            outcome.stored_locally = True
        except StorageError as exc:
            log.warning("Failed to store turn locally for %s: %s", user_id, exc)
            outcome.errors.append(exc)
        try:
            outcome.ledger_id = await self.ledger.store(user_id, message, response)
        except LedgerError as exc:
            log.warning("Failed to store turn on ledger for %s: %s", user_id, exc)
            outcome.errors.append(exc)
        return outcome
