import asyncio
import logging
import signal

from dotenv import load_dotenv

from core.agent import TradingAgent
from core.config import AgentConfig
from core.errors import InitializationError
from core.ledger import LedgerClient, StorageApi
from core.llm import ChatModel
from core.local_store import ConversationStore
from core.persona import PersonaConfig
from core.secret_chain import SecretChainClient
from transports.console import ConsoleTransport
from transports.telegram_bot import TelegramTransport


def build_agent(config: AgentConfig) -> TradingAgent:
    llm = ChatModel(
        api_key=config.openai_api_key,
        model=config.llm_model,
        base_url=config.llm_base_url,
        temperature=config.llm_temperature,
    )
    storage_api = StorageApi(
        base_url=config.storage_api_url,
        private_key=config.storage_private_key,
        gateway_url=config.gateway_url,
        endpoints=config.storage_endpoints,
    )
    chain = SecretChainClient(
        mnemonic=config.mnemonic,
        lcd_url=config.lcd_url,
        chain_id=config.chain_id,
    )
    return TradingAgent(
        llm=llm,
        store=ConversationStore(config.memory_db),
        ledger=LedgerClient(storage_api),
        chain=chain,
        route=config.swap_route,
        tokens=[config.sscrt, config.susdc],
        persona=PersonaConfig(override_path=config.persona_override_path),
        trade_amount=config.trade_amount,
        fee=config.fee,
        confirmation_delay=config.confirmation_delay,
    )


async def run_telegram(agent: TradingAgent, config: AgentConfig) -> None:
    transport = TelegramTransport(
        agent, config.telegram_token, allowed_users=config.telegram_allowed_users
    )
    stop_event = asyncio.Event()

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    telegram_task = asyncio.create_task(transport.start())
    await stop_event.wait()
    await transport.stop()
    await telegram_task


async def main():
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s :: %(message)s")

    try:
        config = AgentConfig.from_env()
        if config.transport == "telegram" and not config.telegram_token:
            raise InitializationError("TELEGRAM_TOKEN is required for the telegram transport.")
        agent = build_agent(config)
    except InitializationError as exc:
        raise SystemExit(f"Failed to initialize agent: {exc}")

    print("Initializing agent...")
    try:
        await agent.initialize()
    except InitializationError as exc:
        await agent.close()
        raise SystemExit(f"Failed to initialize agent: {exc}")

    try:
        if config.transport == "telegram":
            await run_telegram(agent, config)
        else:
            await ConsoleTransport(agent, config.chat_user_id).run()
    finally:
        await agent.close()


if __name__ == "__main__":
    asyncio.run(main())
