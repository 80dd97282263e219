"""Application configuration management."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Optional

from pydantic import AnyHttpUrl, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USDC_ADDRESS = "0xf8850b62ae017c55be7f571bbad840b4f3da7d49"
DEFAULT_NATIVE_USD_PRICE = 11.51


class Settings(BaseSettings):
    """Runtime configuration loaded from environment or `.env`."""

    model_config = SettingsConfigDict(
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    telegram_bot_token: str = Field(..., alias="TELEGRAM_BOT_TOKEN")
    rpc_endpoint: str = Field(..., alias="RPC_ENDPOINT")

    router_address: str = Field(..., alias="DEX_ROUTER_ADDRESS")
    wrapped_native_address: str = Field(..., alias="WETH_ADDRESS")
    stablecoin_address: str = Field(
        default=DEFAULT_USDC_ADDRESS,
        alias="USDC_ADDRESS",
    )
    native_symbol: str = Field(default="PAX", alias="NATIVE_CURRENCY_SYMBOL")
    native_usd_fallback_price: float = Field(
        default=DEFAULT_NATIVE_USD_PRICE,
        alias="NATIVE_USD_FALLBACK_PRICE",
        gt=0,
    )

    hlpmm_event_emitter_address: Optional[str] = Field(
        default=None, alias="HLPMM_EVENT_EMITTER_ADDRESS"
    )
    hlpmm_factory_address: Optional[str] = Field(
        default=None, alias="HLPMM_FACTORY_ADDRESS"
    )
    hlpmm_usid_address: Optional[str] = Field(default=None, alias="HLPMM_USID_ADDRESS")
    hlpmm_quoter_address: Optional[str] = Field(
        default=None, alias="HLPMM_QUOTER_ADDRESS"
    )

    portfolio_api_url: Optional[AnyHttpUrl] = Field(
        default=None, alias="PORTFOLIO_API_URL"
    )
    explorer_api_url: Optional[AnyHttpUrl] = Field(
        default=None, alias="EXPLORER_API_URL"
    )
    block_explorer_url: str = Field(
        default="https://etherscan.io",
        alias="BLOCK_EXPLORER_URL",
    )
    http_timeout_seconds: float = Field(
        default=10.0, alias="HTTP_TIMEOUT_SECONDS", gt=0, le=120
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./.tmp/buybot.db",
        alias="DATABASE_URL",
    )
    monitor_lock_name: str = Field(default="buybot-monitor", alias="MONITOR_LOCK_NAME")

    poll_interval_seconds: float = Field(
        default=3.0,
        alias="POLL_INTERVAL_SECONDS",
        ge=0.5,
        le=300,
    )
    history_window_blocks: int = Field(
        default=1000,
        alias="HISTORY_WINDOW_BLOCKS",
        ge=1,
        le=100_000,
    )
    status_updates_enabled: bool = Field(default=True, alias="STATUS_UPDATES_ENABLED")

    alert_website_url: Optional[str] = Field(default=None, alias="ALERT_WEBSITE_URL")
    alert_telegram_url: Optional[str] = Field(default=None, alias="ALERT_TELEGRAM_URL")
    alert_x_url: Optional[str] = Field(default=None, alias="ALERT_X_URL")
    get_funded_url: Optional[str] = Field(
        default="https://hyperpaxeer.com/", alias="GET_FUNDED_URL"
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator(
        "router_address",
        "wrapped_native_address",
        "stablecoin_address",
        "hlpmm_event_emitter_address",
        "hlpmm_factory_address",
        "hlpmm_usid_address",
        "hlpmm_quoter_address",
        mode="before",
    )
    @classmethod
    def _normalize_address(cls, value: Any) -> Optional[str]:
        if value in (None, ""):
            return None
        text = str(value).strip().lower()
        if not text.startswith("0x") or len(text) != 42:
            raise ValueError(f"not an EVM address: {value!r}")
        return text

    @property
    def hlpmm_enabled(self) -> bool:
        return bool(
            self.hlpmm_event_emitter_address
            and self.hlpmm_factory_address
            and self.hlpmm_usid_address
        )


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Return cached Settings instance, raising a helpful message on failure."""
    try:
        return Settings()
    except (
        ValidationError
    ) as exc:  # pragma: no cover - configuration failure visible on boot
        raise RuntimeError(f"Invalid configuration: {exc}") from exc


__all__ = ["Settings", "load_settings"]
