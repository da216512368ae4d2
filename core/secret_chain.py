import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, Callable, List, Optional

from secret_sdk.client.lcd import AsyncLCDClient
from secret_sdk.client.lcd.api.tx import CreateTxOptions
from secret_sdk.key.mnemonic import MnemonicKey

from .errors import InitializationError, TradeError
from .guard import InitGuard
from .trade import BroadcastResult, ContractCall, FeeOptions

log = logging.getLogger(__name__)


def _to_data(value: Any) -> Any:
    to_data = getattr(value, "to_data", None)
    if callable(to_data):
        return to_data()
    return value


class SecretChainClient:
    """Secret Network wallet for SNIP-20 balance queries and contract execution.

    ``AsyncLCDClient`` fetches the chain's encryption key with a blocking
    ``run_until_complete`` while it is being constructed, so it cannot be built
    on a loop that is already running. The client therefore owns a private event
    loop on a background thread: the LCD client is constructed there before the
    loop starts, and every SDK coroutine is submitted to it with
    ``run_coroutine_threadsafe``.
    """

    def __init__(
        self,
        *,
        mnemonic: str,
        lcd_url: str,
        chain_id: str,
    ) -> None:
        if not mnemonic:
            raise InitializationError("MNEMONIC environment variable is not set.")
        try:
            self._key = MnemonicKey(mnemonic=mnemonic)
        except Exception as exc:
            raise InitializationError(f"invalid wallet mnemonic: {exc}") from exc
        self.chain_id = chain_id
        self.lcd_url = lcd_url
        self.address: str = self._key.acc_address
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._wallet = None
        self._guard = InitGuard(self._start, name="secret-lcd")

    def _serve(self, loop: asyncio.AbstractEventLoop, started: concurrent.futures.Future) -> None:
        asyncio.set_event_loop(loop)
        try:
            lcd = AsyncLCDClient(url=self.lcd_url, chain_id=self.chain_id, loop=loop)
        except Exception as exc:
            started.set_exception(exc)
            loop.close()
            return
        started.set_result(lcd)
        try:
            loop.run_forever()
        finally:
            loop.close()

    async def _start(self) -> AsyncLCDClient:
        log.info("Connecting to Secret Network LCD (%s, %s)...", self.lcd_url, self.chain_id)
        loop = asyncio.new_event_loop()
        started: concurrent.futures.Future = concurrent.futures.Future()
        thread = threading.Thread(
            target=self._serve, args=(loop, started), name="secret-sdk", daemon=True
        )
        thread.start()
        try:
            lcd = await asyncio.wrap_future(started)
        except Exception as exc:
            await asyncio.get_running_loop().run_in_executor(None, thread.join)
            raise InitializationError(f"failed to connect to Secret Network LCD: {exc}") from exc
        self._loop = loop
        self._thread = thread
        self._wallet = lcd.wallet(self._key)
        log.info("Secret Network wallet ready: %s", self.address)
        return lcd

    async def connect(self) -> None:
        await self._guard.get()

    async def _call(self, func: Callable[[AsyncLCDClient], Awaitable[Any]]) -> Any:
        lcd = await self._guard.get()
        future = asyncio.run_coroutine_threadsafe(func(lcd), self._loop)
        return await asyncio.wrap_future(future)

    async def token_balance(self, contract_address: str, viewing_key: Optional[str]) -> str:
        """Raw SNIP-20 balance as an integer string, or a message starting with ``Error``."""
        if not viewing_key:
            return "Error: Viewing key not set"
        query = {"balance": {"address": self.address, "key": viewing_key}}
        try:
            result = await self._call(lambda lcd: lcd.wasm.contract_query(contract_address, query))
            return str(result["balance"]["amount"])
        except Exception as exc:
            log.error("Error querying balance for %s: %s", contract_address, exc)
            return f"Error querying balance ({exc})"

    async def broadcast(self, calls: List[ContractCall], fee: FeeOptions) -> BroadcastResult:
        """Sign and broadcast in sync mode; a nonzero check-tx code is returned, not raised."""
        if len(calls) != 1:
            raise TradeError("only single-message transactions are supported")
        call = calls[0]

        async def _sign_and_send(lcd: AsyncLCDClient) -> Any:
            msg = await lcd.wasm.contract_execute_msg(
                call.sender, call.contract, call.msg, None, call.code_hash
            )
            options = CreateTxOptions(
                msgs=[msg],
                gas=str(fee.gas_limit),
                gas_prices=fee.gas_prices,
                fee_denoms=[fee.fee_denom],
            )
            signed = await self._wallet.create_and_sign_tx(options)
            return await lcd.tx.broadcast_sync(await lcd.tx.encode(signed))

        result = await self._call(_sign_and_send)
        if not result.txhash:
            raise TradeError("broadcast returned no transaction hash")
        return BroadcastResult(
            tx_hash=str(result.txhash),
            code=int(result.code or 0),
            raw_log=str(result.raw_log or ""),
        )

    async def get_transaction(self, tx_hash: str) -> Any:
        info = await self._call(lambda lcd: lcd.tx.tx_info(tx_hash))
        return _to_data(info)

    async def close(self) -> None:
        if not self._guard.ready:
            return
        lcd = self._guard.reset()
        loop, thread = self._loop, self._thread
        self._loop = self._thread = self._wallet = None
        try:
            await asyncio.wrap_future(asyncio.run_coroutine_threadsafe(lcd.session.close(), loop))
        except Exception as exc:
            log.warning("Error closing LCD session: %s", exc)
        loop.call_soon_threadsafe(loop.stop)
        await asyncio.get_running_loop().run_in_executor(None, thread.join)
        log.info("Secret Network client closed.")
