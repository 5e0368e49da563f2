"""System endpoints: health and metrics."""

from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(request: Request):
    return request.app.state.keeper.health()


@router.get("/metrics")
async def metrics(request: Request):
    return request.app.state.keeper.metrics()
