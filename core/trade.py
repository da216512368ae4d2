"""Swap execution: gate check, broadcast, fixed wait, one confirmation attempt.

The chain collaborator is duck-typed and must provide:

* ``address`` -- the wallet's account address
* ``async broadcast(calls, fee) -> BroadcastResult``
* ``async get_transaction(tx_hash) -> Any``

Confirmation is a single best-effort lookup after a flat delay. It never decides
success: the broadcast result code does.
"""

import asyncio
import base64
import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .errors import StorageError

log = logging.getLogger(__name__)

DEFAULT_TRADE_AMOUNT = "400000"
DEFAULT_GAS_LIMIT = 3_500_000
DEFAULT_GAS_PRICE = 0.1
DEFAULT_FEE_DENOM = "uscrt"
CONFIRMATION_DELAY_SECONDS = 8.0

NOT_CONVINCED_REASON = "Trading is not yet enabled. Convince me first!"


@dataclass(frozen=True)
class FeeOptions:
    gas_limit: int = DEFAULT_GAS_LIMIT
    gas_price: float = DEFAULT_GAS_PRICE
    fee_denom: str = DEFAULT_FEE_DENOM

    @property
    def gas_prices(self) -> str:
        return f"{self.gas_price}{self.fee_denom}"


@dataclass(frozen=True)
class SwapRoute:
    """Where the offered token is sent and which pair it is swapped through."""

    offer_token: str
    router_address: str = ""
    pair_address: str = ""
    offer_token_code_hash: Optional[str] = None
    router_code_hash: Optional[str] = None
    pair_code_hash: Optional[str] = None
    expected_return: str = "0"

    @property
    def configured(self) -> bool:
        return bool(self.offer_token and self.router_address and self.pair_address)


@dataclass(frozen=True)
class ContractCall:
    sender: str
    contract: str
    msg: Dict[str, Any]
    code_hash: Optional[str] = None


@dataclass(frozen=True)
class BroadcastResult:
    tx_hash: str
    code: int
    raw_log: str = ""


class ConfirmationStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    UNKNOWN_TIMEOUT = "unknown-timeout"


@dataclass
class PendingTrade:
    user_id: str
    amount: str
    broadcast_hash: Optional[str] = None
    result_code: Optional[int] = None
    confirmation_status: ConfirmationStatus = ConfirmationStatus.PENDING
    tx_info: Any = None


@dataclass(frozen=True)
class TradeSuccess:
    tx_hash: str
    raw_log: str
    confirmation: ConfirmationStatus
    tx_info: Any = field(default=None, compare=False)

    def describe(self) -> str:
        if self.tx_info is not None:
            info = json.dumps(self.tx_info, default=str)
        else:
            info = "Not available yet"
        return (
            "Transaction executed successfully!\n"
            f"Hash: {self.tx_hash}\n"
            f"Raw Log: {self.raw_log}\n"
            f"TxInfo: {info}"
        )


@dataclass(frozen=True)
class TradeFailure:
    code: int
    tx_hash: str
    raw_log: str

    def describe(self) -> str:
        return (
            f"Transaction failed with code {self.code}.\n"
            f"Hash: {self.tx_hash}\n"
            f"Raw Log: {self.raw_log}"
        )


@dataclass(frozen=True)
class TradeRejected:
    reason: str

    def describe(self) -> str:
        return self.reason


@dataclass(frozen=True)
class TradeErrored:
    message: str

    def describe(self) -> str:
        return f"Error executing transaction: {self.message}"


TradeOutcome = Union[TradeSuccess, TradeFailure, TradeRejected, TradeErrored]


def build_swap_msg(sender: str, amount: str, route: SwapRoute) -> ContractCall:
    """SNIP-20 ``send`` of the offered token to the router, swapping through one pair."""
    hop: Dict[str, Any] = {"addr": route.pair_address}
    if route.pair_code_hash:
        hop["code_hash"] = route.pair_code_hash
    swap = {
        "swap_tokens_for_exact": {
            "expected_return": route.expected_return,
            "path": [hop],
        }
    }
    send: Dict[str, Any] = {
        "recipient": route.router_address,
        "amount": str(amount),
        "msg": base64.b64encode(json.dumps(swap).encode("utf-8")).decode("ascii"),
    }
    if route.router_code_hash:
        send["recipient_code_hash"] = route.router_code_hash
    return ContractCall(
        sender=sender,
        contract=route.offer_token,
        msg={"send": send},
        code_hash=route.offer_token_code_hash,
    )


class TradePipeline:
    def __init__(
        self,
        gate,
        chain,
        *,
        route: SwapRoute,
        amount: str = DEFAULT_TRADE_AMOUNT,
        fee: Optional[FeeOptions] = None,
        confirmation_delay: float = CONFIRMATION_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.gate = gate
        self.chain = chain
        self.route = route
        self.amount = str(amount)
        self.fee = fee or FeeOptions()
        self.confirmation_delay = confirmation_delay
        self._sleep = sleep

    async def execute(self, user_id: str) -> TradeOutcome:
        try:
            convinced = await self.gate.is_convinced(user_id)
        except StorageError as exc:
            log.error("Could not read trading state for %s: %s", user_id, exc)
            return TradeErrored(str(exc))
        if not convinced:
            return TradeRejected(NOT_CONVINCED_REASON)
        if not self.route.configured:
            return TradeErrored("swap route is not configured")

        trade = PendingTrade(user_id=user_id, amount=self.amount)
        log.info("Executing transaction for %s (amount=%s)...", user_id, trade.amount)
        calls: List[ContractCall] = [build_swap_msg(self.chain.address, trade.amount, self.route)]
        try:
            result = await self.chain.broadcast(calls, self.fee)
        except Exception as exc:  # signing and transport failures alike
            log.error("Error executing transaction: %s", exc)
            return TradeErrored(str(exc) or exc.__class__.__name__)
        trade.broadcast_hash = result.tx_hash
        trade.result_code = result.code
        log.info("Transaction broadcasted: %s", result.tx_hash)

        await self._confirm(trade)

        if result.code == 0:
            return TradeSuccess(
                tx_hash=result.tx_hash,
                raw_log=result.raw_log,
                confirmation=trade.confirmation_status,
                tx_info=trade.tx_info,
            )
        return TradeFailure(code=result.code, tx_hash=result.tx_hash, raw_log=result.raw_log)

    async def _confirm(self, trade: PendingTrade) -> None:
        log.info(
            "Waiting for transaction confirmation (approx %s seconds)...",
            self.confirmation_delay,
        )
        await self._sleep(self.confirmation_delay)
        try:
            info = await self.chain.get_transaction(trade.broadcast_hash)
        except Exception as exc:
            log.warning(
                "Could not fetch tx info after %ss: %s. Transaction might still be processing.",
                self.confirmation_delay,
                exc,
            )
            trade.confirmation_status = ConfirmationStatus.UNKNOWN_TIMEOUT
            return
        if info is None:
            trade.confirmation_status = ConfirmationStatus.UNKNOWN_TIMEOUT
            return
        trade.tx_info = info
        trade.confirmation_status = ConfirmationStatus.CONFIRMED
        log.info("Transaction info: %s", info)
