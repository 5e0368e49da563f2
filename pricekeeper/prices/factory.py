"""Wire a ``PriceResolver`` from ``Settings``."""

from __future__ import annotations

import logging

from pricekeeper.config import Settings
from pricekeeper.keeper.service import KeeperService
from pricekeeper.prices.adapters import (
    DataPackageSource,
    FallbackAdapter,
    KeeperAdapter,
    OnChainAdapter,
    SignedPriceFeed,
    SourceAdapter,
    StatsCandleAdapter,
    SubgraphCandleAdapter,
)
from pricekeeper.prices.cache import QuoteCache
from pricekeeper.prices.endpoints import EndpointRegistry, RedisEndpointPreferences
from pricekeeper.prices.resolver import PriceResolver
from pricekeeper.prices.transport import RetryableTransport

logger = logging.getLogger(__name__)


def build_transport(settings: Settings) -> RetryableTransport:
    return RetryableTransport(
        max_attempts=settings.transport_max_attempts,
        timeout_seconds=settings.transport_timeout_seconds,
        backoff_seconds=settings.transport_backoff_seconds,
        max_connections=settings.transport_max_connections,
    )


def build_registry(settings: Settings) -> EndpointRegistry:
    endpoints: dict[str, list[str]] = {}
    for name, net in settings.networks.items():
        if not net.keeper_urls:
            continue
        endpoints[name] = net.keeper_urls[:1] if net.pin_endpoint else list(net.keeper_urls)
    preferences = RedisEndpointPreferences(settings.redis_url) if settings.redis_url else None
    return EndpointRegistry(
        endpoints,
        cooldown_seconds=settings.rotation_cooldown_seconds,
        preferences=preferences,
    )


def build_onchain(
    settings: Settings,
    packages: DataPackageSource | None,
    feeds: dict[str, SignedPriceFeed] | None,
) -> OnChainAdapter | None:
    wanted = [name for name, net in settings.networks.items() if net.onchain_enabled]
    if not wanted:
        return None
    if packages is None or not feeds:
        logger.warning("On-chain source enabled for %s but no oracle client was provided", wanted)
        return None
    return OnChainAdapter(
        packages,
        {name: feed for name, feed in feeds.items() if name in wanted},
        unique_signers_threshold=settings.unique_signers_threshold,
        price_decimals=settings.price_decimals,
        max_data_age_seconds=settings.max_data_age_seconds,
        timeout_seconds=settings.transport_timeout_seconds,
    )


def build_resolver(
    settings: Settings,
    *,
    packages: DataPackageSource | None = None,
    feeds: dict[str, SignedPriceFeed] | None = None,
) -> PriceResolver:
    """Construct a resolver owning its own transport, registry and cache."""
    transport = build_transport(settings)
    registry = build_registry(settings)
    networks = settings.networks

    adapters: list[SourceAdapter] = [
        KeeperAdapter(
            registry,
            transport,
            max_data_age_seconds=settings.max_data_age_seconds,
            ban_seconds=settings.endpoint_ban_seconds,
        ),
        StatsCandleAdapter(
            transport,
            {name: net.stats_url for name, net in networks.items()},
            {name: net.chain_id for name, net in networks.items()},
            max_data_age_seconds=settings.max_data_age_seconds,
        ),
        SubgraphCandleAdapter(
            transport,
            {name: net.subgraph_url for name, net in networks.items()},
            {name: net.feed_ids for name, net in networks.items()},
        ),
        FallbackAdapter(settings.fallback_prices),
    ]
    onchain = build_onchain(settings, packages, feeds)
    if onchain is not None:
        adapters.insert(0, onchain)

    cache = QuoteCache(
        quote_ttl=settings.quote_ttl_seconds,
        candle_ttl=settings.candle_ttl_seconds,
        time_sensitive_ttl=settings.time_sensitive_ttl_seconds,
    )
    return PriceResolver(
        adapters,
        cache=cache,
        registry=registry,
        transport=transport,
        quote_sources={name: list(net.quote_sources) for name, net in networks.items()},
        candle_sources={name: list(net.candle_sources) for name, net in networks.items()},
        disabled={name: set() if net.onchain_enabled else {"onchain"} for name, net in networks.items()},
    )


def build_keeper_service(
    settings: Settings,
    *,
    packages: DataPackageSource | None = None,
    feeds: dict[str, SignedPriceFeed] | None = None,
) -> KeeperService:
    """Keeper service reading on-chain first (when wired) and the fallback table last."""
    from pricekeeper import __version__

    sources: list[SourceAdapter] = []
    onchain = build_onchain(settings, packages, feeds)
    if onchain is not None:
        sources.append(onchain)
    sources.append(FallbackAdapter(settings.fallback_prices))
    return KeeperService(
        sources,
        supported_tokens=settings.supported_tokens,
        upstream_network=settings.default_network,
        cache=QuoteCache(quote_ttl=settings.keeper_refresh_interval_seconds),
        refresh_interval_seconds=settings.keeper_refresh_interval_seconds,
        history_size=settings.keeper_history_size,
        version=__version__,
    )
