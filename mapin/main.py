from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from time import perf_counter

from fastapi import FastAPI, Request
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

from mapin.api.v1.router import api_router
from mapin.core.errors import add_exception_handlers, success_response
from mapin.core.logging import configure_logging
from mapin.core.settings import get_settings
from mapin.db.session import get_session_factory, init_db
from mapin.realtime import ChangeDispatcher, ChangeFeed, ChangePublisher, ConnectionManager

settings = get_settings()
configure_logging(debug=settings.debug)
logger = logging.getLogger(__name__)


def _open_db_session():
    return get_session_factory()()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup started")
    init_db()
    app.state.change_feed = ChangeFeed()
    app.state.connection_manager = ConnectionManager(
        max_subscriptions_per_connection=settings.ws_max_subscriptions_per_connection
    )
    app.state.change_publisher = ChangePublisher(app.state.change_feed)
    app.state.change_dispatcher = ChangeDispatcher(
        publisher=app.state.change_publisher,
        session_factory=_open_db_session,
        poll_interval_sec=settings.change_dispatcher_poll_ms / 1000.0,
        batch_size=settings.change_dispatcher_batch_size,
        max_attempts=settings.change_dispatcher_max_attempts,
    )
    if settings.change_dispatcher_enabled:
        await app.state.change_dispatcher.start()
    logger.info("Application startup completed")
    yield
    await app.state.change_dispatcher.stop()
    logger.info("Application shutdown completed")


def create_app() -> FastAPI:
    logger.debug("Creating FastAPI app with API prefix: %s", settings.api_v1_prefix)
    app = FastAPI(
        title=settings.app_name,
        lifespan=lifespan,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=settings.cors_origins,
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            )
        ],
    )

    if settings.debug:
        @app.middleware("http")
        async def request_timing_logger(request: Request, call_next) -> Response:
            start = perf_counter()
            response = await call_next(request)
            logger.debug(
                "HTTP request method=%s path=%s status=%s duration_ms=%.2f",
                request.method,
                request.url.path,
                response.status_code,
                (perf_counter() - start) * 1000,
            )
            return response

    add_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/health")
    async def health_check(request: Request):
        connections = await request.app.state.connection_manager.connection_count()
        return success_response({"ok": True, "websocket_connections": connections})

    return app


app = create_app()
