"""
FastAPI application entry point for the marketplace API.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from agrobridge.config import Settings, get_settings
from agrobridge.db import MarketStore
from agrobridge.dependencies import build_store
from agrobridge.errors import InternalError, MarketplaceError, OriginNotAllowedError
from agrobridge.routes import router

logger = logging.getLogger(__name__)


def _error_response(error: MarketplaceError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content={"message": error.message})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceError)
    async def handle_marketplace_error(request: Request, exc: MarketplaceError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(
        request: Request, exc: RequestValidationError
    ):
        return JSONResponse(
            status_code=400,
            content={
                "message": "Invalid request payload",
                "detail": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return _error_response(InternalError())


def install_origin_policy(app: FastAPI, allowed_origins: list[str]) -> None:
    """Refuse requests from origins outside ``allowed_origins`` (if any).

    The policy middleware is added last so it wraps ``CORSMiddleware`` and
    also answers preflight requests.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def enforce_allowed_origins(request: Request, call_next):
        origin = request.headers.get("origin")
        if allowed_origins and origin and origin not in allowed_origins:
            return _error_response(OriginNotAllowedError())
        return await call_next(request)


def create_app(
    settings: Settings | None = None, store: MarketStore | None = None
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    store = store if store is not None else build_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.connect()
        try:
            yield
        finally:
            store.close()

    app = FastAPI(
        title="AgroBridge Marketplace API", version="0.1.0", lifespan=lifespan
    )
    app.state.settings = settings
    app.state.store = store

    register_exception_handlers(app)
    install_origin_policy(app, settings.allowed_origin_list)
    app.include_router(router, prefix=settings.api_prefix)

    @app.get("/", response_class=PlainTextResponse, include_in_schema=False)
    def banner():
        return "AgroBridge Server is running"

    return app


app = create_app()
