# main.py

"""FastAPI application wiring the restaurant core services together."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings, validate_settings

from .db import build_engine, init_models, session_factory
from .errors import DomainError
from .events import EventBus
from .middlewares import RequestIdMiddleware
from .obs import configure_logging
from .repos_sqlalchemy import (
    SqlIdentityRepo,
    SqlInventoryRepo,
    SqlKitchenRepo,
    SqlOrdersRepo,
)
from .routes_auth import router as auth_router
from .routes_inventory import router as inventory_router
from .routes_kitchen import router as kitchen_router
from .routes_orders import router as orders_router
from .services import (
    InventoryService,
    KitchenService,
    OrderService,
    build_identity_service,
    register_order_handlers,
)
from .utils.responses import domain_err, err, ok

logger = logging.getLogger("bistro")


def create_app(settings: Settings | None = None, engine: AsyncEngine | None = None) -> FastAPI:
    """Build the application.

    Services are constructed eagerly and attached to ``app.state`` so tests can
    drive them without running the lifespan; the lifespan only creates tables,
    seeds the default roles and disposes the engine.
    """

    settings = settings or get_settings()
    validate_settings(settings)
    engine = engine or build_engine(settings.sqlalchemy_url, settings)
    sessions = session_factory(engine)
    bus = EventBus()

    kitchen = KitchenService(SqlKitchenRepo(sessions), bus)
    register_order_handlers(bus, kitchen)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        await init_models(engine)
        await app.state.identity.seed_default_roles()
        logger.info("bistro core started (env=%s)", settings.env.value)
        try:
            yield
        finally:
            await engine.dispose()
            logger.info("bistro core stopped")

    app = FastAPI(title="bistro core", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.bus = bus
    app.state.identity = build_identity_service(SqlIdentityRepo(sessions), settings)
    app.state.inventory = InventoryService(SqlInventoryRepo(sessions), bus)
    app.state.kitchen = kitchen
    app.state.orders = OrderService(SqlOrdersRepo(sessions), bus)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials="*" not in settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(
            "%s failed: %s",
            exc.op or request.url.path,
            exc.message,
            extra={"status": exc.status_code, "route": request.url.path},
        )
        return JSONResponse(domain_err(exc), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = {
            ".".join(str(p) for p in e["loc"] if p != "body"): e["msg"] for e in exc.errors()
        }
        return JSONResponse(
            err("VALIDATION_FAILED", "invalid request", details=details), status_code=400
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(exc.detail, extra={"status": exc.status_code, "route": request.url.path})
        return JSONResponse(err(exc.status_code, exc.detail), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", extra={"status": 500, "route": request.url.path})
        return JSONResponse(err("INTERNAL_ERROR", "Internal Server Error"), status_code=500)

    @app.get("/health")
    async def health() -> dict:
        return ok({"status": "ok"})

    app.include_router(auth_router)
    app.include_router(inventory_router)
    app.include_router(kitchen_router)
    app.include_router(orders_router)
    return app
