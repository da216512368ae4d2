import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Mapping, Optional

from .errors import InitializationError
from .ledger import DEFAULT_GATEWAY_URL, StorageEndpoints
from .trade import (
    CONFIRMATION_DELAY_SECONDS,
    DEFAULT_FEE_DENOM,
    DEFAULT_GAS_LIMIT,
    DEFAULT_GAS_PRICE,
    DEFAULT_TRADE_AMOUNT,
    FeeOptions,
    SwapRoute,
)

log = logging.getLogger(__name__)

DEFAULT_LCD_URL = "https://secretnetwork-api.lavenderfive.com"
DEFAULT_CHAIN_ID = "secret-4"
SSCRT_ADDRESS = "secret1k0jntykt7e4g3y88ltc60czgjuqdy4c9e8fzek"
SUSDC_ADDRESS = "secret1vkq022x4q8t8kx9de3r84u669l65xnwf2lg3e6"
TOKEN_DECIMALS = 6
TRANSPORTS = ("console", "telegram")


@dataclass(frozen=True)
class TokenContract:
    symbol: str
    address: str
    viewing_key: Optional[str] = None
    decimals: int = TOKEN_DECIMALS


@dataclass
class AgentConfig:
    openai_api_key: str
    mnemonic: str
    storage_api_url: str
    storage_private_key: str
    llm_model: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_temperature: float = 1.0
    lcd_url: str = DEFAULT_LCD_URL
    chain_id: str = DEFAULT_CHAIN_ID
    gateway_url: str = DEFAULT_GATEWAY_URL
    storage_endpoints: StorageEndpoints = field(default_factory=StorageEndpoints)
    sscrt: TokenContract = field(default_factory=lambda: TokenContract("sSCRT", SSCRT_ADDRESS))
    susdc: TokenContract = field(default_factory=lambda: TokenContract("sUSDC", SUSDC_ADDRESS))
    router_address: str = ""
    router_code_hash: Optional[str] = None
    pair_address: str = ""
    pair_code_hash: Optional[str] = None
    trade_amount: str = DEFAULT_TRADE_AMOUNT
    gas_limit: int = DEFAULT_GAS_LIMIT
    gas_price: float = DEFAULT_GAS_PRICE
    fee_denom: str = DEFAULT_FEE_DENOM
    confirmation_delay: float = CONFIRMATION_DELAY_SECONDS
    memory_db: str = "memory.db"
    mem_dir: str = "mem"
    transport: str = "console"
    chat_user_id: str = "seanrad_py"
    telegram_token: Optional[str] = None
    telegram_allowed_users: FrozenSet[str] = frozenset()

    @property
    def swap_route(self) -> SwapRoute:
        return SwapRoute(
            offer_token=self.susdc.address,
            router_address=self.router_address,
            router_code_hash=self.router_code_hash,
            pair_address=self.pair_address,
            pair_code_hash=self.pair_code_hash,
        )

    @property
    def fee(self) -> FeeOptions:
        return FeeOptions(
            gas_limit=self.gas_limit,
            gas_price=self.gas_price,
            fee_denom=self.fee_denom,
        )

    @property
    def persona_override_path(self) -> Path:
        return Path(self.mem_dir) / "persona.yaml"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        env = os.environ if env is None else env

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            value = env.get(name)
            if value is None or not value.strip():
                return default
            return value.strip()

        required = {
            "OPENAI_API_KEY": get("OPENAI_API_KEY"),
            "MNEMONIC": get("MNEMONIC"),
            "STORAGE_API_URL": get("STORAGE_API_URL"),
            "STORAGE_PRIVATE_KEY": get("STORAGE_PRIVATE_KEY"),
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise InitializationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        sscrt_key = get("SSCRT_VIEWING_KEY")
        susdc_key = get("SUSDC_VIEWING_KEY")
        if not sscrt_key:
            log.warning("SSCRT_VIEWING_KEY environment variable is not set. Balance queries for sSCRT will fail.")
        if not susdc_key:
            log.warning("SUSDC_VIEWING_KEY environment variable is not set. Balance queries for sUSDC will fail.")

        try:
            temperature = float(get("LLM_TEMPERATURE", "1.0"))
            confirmation_delay = float(get("CONFIRMATION_DELAY", str(CONFIRMATION_DELAY_SECONDS)))
        except ValueError as exc:
            raise InitializationError(f"invalid numeric setting: {exc}") from exc
        trade_amount = get("TRADE_AMOUNT", DEFAULT_TRADE_AMOUNT)
        if not trade_amount.isdigit():
            raise InitializationError(f"TRADE_AMOUNT must be an integer amount, got {trade_amount!r}")

        transport = get("TRANSPORT", "console").lower()
        if transport not in TRANSPORTS:
            raise InitializationError(f"TRANSPORT must be one of {', '.join(TRANSPORTS)}, got {transport!r}")

        allowed_raw = get("TELEGRAM_ALLOWED_USERS", "")
        allowed = frozenset(x.strip() for x in allowed_raw.split(",") if x.strip().isdigit())

        return cls(
            openai_api_key=required["OPENAI_API_KEY"],
            mnemonic=required["MNEMONIC"],
            storage_api_url=required["STORAGE_API_URL"],
            storage_private_key=required["STORAGE_PRIVATE_KEY"],
            llm_model=get("MODEL"),
            llm_base_url=get("LLM_BASE_URL"),
            llm_temperature=temperature,
            lcd_url=get("LCD_URL", DEFAULT_LCD_URL),
            chain_id=get("CHAIN_ID", DEFAULT_CHAIN_ID),
            gateway_url=get("ARWEAVE_GATEWAY_URL", DEFAULT_GATEWAY_URL),
            storage_endpoints=StorageEndpoints(
                nonce=get("STORAGE_NONCE_PATH", StorageEndpoints.nonce),
                login=get("STORAGE_LOGIN_PATH", StorageEndpoints.login),
                uploads=get("STORAGE_UPLOAD_PATH", StorageEndpoints.uploads),
            ),
            sscrt=TokenContract("sSCRT", SSCRT_ADDRESS, sscrt_key),
            susdc=TokenContract("sUSDC", SUSDC_ADDRESS, susdc_key),
            router_address=get("SHADE_ROUTER_ADDRESS", ""),
            router_code_hash=get("SHADE_ROUTER_CODE_HASH"),
            pair_address=get("SHADE_PAIR_ADDRESS", ""),
            pair_code_hash=get("SHADE_PAIR_CODE_HASH"),
            trade_amount=trade_amount,
            confirmation_delay=confirmation_delay,
            memory_db=get("MEMORY_DB", "memory.db"),
            mem_dir=get("MEM_DIR", "mem"),
            transport=transport,
            chat_user_id=get("CHAT_USER_ID", "seanrad_py"),
            telegram_token=get("TELEGRAM_TOKEN"),
            telegram_allowed_users=allowed,
        )
