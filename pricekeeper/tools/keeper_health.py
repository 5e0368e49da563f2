"""CLI: probe every keeper endpoint and print health plus current selection."""

from __future__ import annotations

import argparse
import asyncio
import json

from pricekeeper.config import get_settings
from pricekeeper.prices.adapters import KeeperAdapter
from pricekeeper.prices.factory import build_registry, build_transport


async def _amain(networks: list[str]) -> None:
    settings = get_settings()
    registry = build_registry(settings)
    transport = build_transport(settings)
    adapter = KeeperAdapter(registry, transport, ban_seconds=settings.endpoint_ban_seconds)
    await registry.load_preferences()
    try:
        report = {}
        for network in networks or registry.networks:
            report[network] = {
                "current": registry.current(network),
                "endpoints": await adapter.probe(network),
            }
        print(json.dumps(report, indent=2, default=str))
    finally:
        await transport.aclose()
        await registry.aclose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Keeper endpoint health")
    parser.add_argument("networks", nargs="*", help="Networks to probe (default: all)")
    asyncio.run(_amain(parser.parse_args().networks))
