"""Centralized configuration via pydantic-settings, loaded from .env."""

from __future__ import annotations

import functools
from decimal import Decimal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NetworkSettings(BaseModel):
    """Per-network endpoint list and source priority."""

    chain_id: int
    keeper_urls: list[str] = Field(default_factory=list)
    # Only the first keeper URL is registered when pinned.
    pin_endpoint: bool = False
    quote_sources: list[str] = Field(default_factory=lambda: ["onchain", "keeper", "fallback"])
    candle_sources: list[str] = Field(default_factory=lambda: ["keeper", "stats", "subgraph", "fallback"])
    onchain_enabled: bool = False
    stats_url: str = ""
    subgraph_url: str = ""
    feed_ids: dict[str, str] = Field(default_factory=dict)


def _default_networks() -> dict[str, NetworkSettings]:
    return {
        "arbitrum": NetworkSettings(
            chain_id=42161,
            keeper_urls=["https://arbitrum-api.gmxinfra.io", "https://arbitrum-api.gmxinfra2.io"],
            stats_url="https://stats.gmx.io/api",
            subgraph_url="https://api.thegraph.com/subgraphs/name/deividask/chainlink",
            feed_ids={
                "BTC": "0xae74faa92cb67a95ebcab07358bc222e33a34da7",
                "ETH": "0x37bc7498f4ff12c19678ee8fe19d713b87f6a9e6",
            },
        ),
        "avalanche": NetworkSettings(
            chain_id=43114,
            keeper_urls=["https://avalanche-api.gmxinfra.io", "https://avalanche-api.gmxinfra2.io"],
            stats_url="https://stats.gmx.io/api",
        ),
        "avalanche_fuji": NetworkSettings(
            chain_id=43113,
            keeper_urls=["https://synthetics-api-avax-fuji-upovm.ondigitalocean.app"],
        ),
        "world": NetworkSettings(
            chain_id=480,
            keeper_urls=["https://oracle-keeper.kevin8396.workers.dev"],
            pin_endpoint=True,
            candle_sources=["keeper", "fallback"],
        ),
    }


def _default_fallback_prices() -> dict[str, Decimal]:
    # Emergency values; quotes built from these are tagged FALLBACK.
    return {
        "WLD": Decimal("1.24"),
        "ETH": Decimal("2481.08"),
        "BTC": Decimal("65430.50"),
        "MAG": Decimal("0.00041212"),
        "USDC": Decimal("1"),
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Infrastructure ─────────────────────────────────────────────────
    redis_url: str = ""
    log_level: str = "INFO"

    # ── API Server (keeper service) ────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 3001

    # ── Networks & sources ─────────────────────────────────────────────
    networks: dict[str, NetworkSettings] = Field(default_factory=_default_networks)
    default_network: str = "world"
    fallback_prices: dict[str, Decimal] = Field(default_factory=_default_fallback_prices)

    # ── Cache ──────────────────────────────────────────────────────────
    quote_ttl_seconds: float = 30.0
    candle_ttl_seconds: float = 60.0
    time_sensitive_ttl_seconds: float = 5.0
    # Single staleness policy for keeper quotes, signed packages and candle stats.
    max_data_age_seconds: float = 1800.0

    # ── Transport ──────────────────────────────────────────────────────
    transport_max_attempts: int = 3
    transport_timeout_seconds: float = 5.0
    transport_backoff_seconds: float = 0.3
    transport_max_connections: int = 20

    # ── Endpoint rotation ──────────────────────────────────────────────
    rotation_cooldown_seconds: float = 5.0
    endpoint_ban_seconds: float = 0.0

    # ── On-chain oracle ────────────────────────────────────────────────
    unique_signers_threshold: int = 1
    price_decimals: int = 8

    # ── Keeper service ─────────────────────────────────────────────────
    supported_tokens: list[str] = Field(default_factory=lambda: ["WLD", "ETH", "BTC"])
    keeper_refresh_interval_seconds: float = 30.0
    keeper_history_size: int = 2880

    def network(self, name: str | None = None) -> NetworkSettings:
        """Return settings for ``name`` (or the default network)."""
        key = name or self.default_network
        try:
            return self.networks[key]
        except KeyError:
            raise KeyError(f"Unknown network '{key}'. Available: {sorted(self.networks)}") from None


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton accessor for the global settings."""
    return Settings()
