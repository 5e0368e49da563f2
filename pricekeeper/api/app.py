"""FastAPI application for the keeper service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pricekeeper import __version__
from pricekeeper.keeper.service import KeeperService
from pricekeeper.utils import utc_now

logger = logging.getLogger(__name__)


def create_app(service: KeeperService | None = None, *, refresh_on_startup: bool = True) -> FastAPI:
    """Build the app around ``service`` (or one wired from settings)."""
    if service is None:
        from pricekeeper.config import get_settings
        from pricekeeper.prices.factory import build_keeper_service

        service = build_keeper_service(get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        keeper: KeeperService = app.state.keeper
        if refresh_on_startup:
            keeper.start()
        logger.info("Keeper API started (tokens=%s)", keeper.supported_tokens)
        yield
        await keeper.aclose()
        logger.info("Keeper API stopped")

    app = FastAPI(
        title="pricekeeper",
        description="Oracle keeper price API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.keeper = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def count_requests(request: Request, call_next):
        response = await call_next(request)
        request.app.state.keeper.record_request(response.status_code)
        return response

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Error in %s: %s", request.url.path, exc, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": str(exc), "timestamp": utc_now().isoformat()})

    from pricekeeper.api.routes.prices import router as prices_router
    from pricekeeper.api.routes.system import router as system_router

    app.include_router(system_router)
    app.include_router(prices_router)

    return app
