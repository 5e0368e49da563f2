"""pricekeeper: CLI entrypoint.

Serve the keeper API or resolve prices from the command line::

    python -m pricekeeper.main --server
    python -m pricekeeper.main --once
    python -m pricekeeper.main --quote WLD ETH --network world
    python -m pricekeeper.main --candles ETH --period 1h --limit 50 --network arbitrum
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from pricekeeper import __version__
from pricekeeper.config import get_settings
from pricekeeper.prices.errors import NoPriceAvailable
from pricekeeper.prices.models import CHART_PERIODS, normalize_symbol
from pricekeeper.utils import setup_logging

logger = logging.getLogger("pricekeeper")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pricekeeper",
        description="pricekeeper: multi-source token price resolution",
    )
    group = parser.add_argument_group("modes")
    group.add_argument("--server", action="store_true", help="Run the keeper service and HTTP API")
    group.add_argument("--once", action="store_true", help="Run one keeper refresh, print it, exit")
    group.add_argument("--quote", nargs="+", metavar="SYMBOL", help="Resolve current quotes")
    group.add_argument("--candles", metavar="SYMBOL", help="Resolve a candle series")

    parser.add_argument("--network", default=None, help="Network name (default from settings)")
    parser.add_argument("--period", default="1h", choices=list(CHART_PERIODS), help="Candle period")
    parser.add_argument("--limit", type=int, default=100, help="Number of candles")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


async def _resolve(args: argparse.Namespace) -> int:
    from pricekeeper.prices.factory import build_resolver

    settings = get_settings()
    network = args.network or settings.default_network
    settings.network(network)

    resolver = build_resolver(settings)
    await resolver.registry.load_preferences()
    try:
        if args.quote:
            quotes = await resolver.resolve_many(network, args.quote)
            out = {sym: q.to_dict() for sym, q in quotes.items()}
            missing = sorted(set(normalize_symbol(s) for s in args.quote) - set(quotes))
            if missing:
                logger.warning("No price for %s on %s", missing, network)
            print(json.dumps(out, indent=2))
        if args.candles:
            try:
                series = await resolver.resolve_candles(network, args.candles, args.period, limit=args.limit)
            except NoPriceAvailable as exc:
                logger.error("%s", exc)
                return 1
            print(json.dumps(series.to_dict(), indent=2))
        logger.info("Resolver stats: %s", resolver.stats())
    finally:
        await resolver.aclose()
    return 0


async def _refresh_once() -> int:
    from pricekeeper.prices.factory import build_keeper_service

    service = build_keeper_service(get_settings())
    try:
        await service.refresh()
        print(json.dumps(
            {
                "prices": {sym: q.to_dict() for sym, q in service.prices().items()},
                "health": service.health(),
            },
            indent=2,
        ))
    finally:
        await service.aclose()
    return 0 if service.status != "error" else 1


async def _serve() -> int:
    import uvicorn

    from pricekeeper.api.app import create_app

    settings = get_settings()
    app = create_app()
    config = uvicorn.Config(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    await server.serve()
    return 0


async def _run(args: argparse.Namespace) -> int:
    if args.quote or args.candles:
        return await _resolve(args)
    if args.once:
        return await _refresh_once()
    return await _serve()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        code = asyncio.run(_run(args))
    except KeyError as exc:
        logger.error("%s", exc.args[0] if exc.args else exc)
        code = 2
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
