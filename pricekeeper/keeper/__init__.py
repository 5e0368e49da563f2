"""Keeper service: periodically refreshed price cache served over HTTP."""

from pricekeeper.keeper.service import KeeperService

__all__ = ["KeeperService"]
