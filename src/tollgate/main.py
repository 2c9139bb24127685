import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

import structlog
import uvicorn
from fastapi import FastAPI

from tollgate.config import Settings, get_settings
from tollgate.api import gateway
from tollgate.api.middleware import RateLimitMiddleware
from tollgate.api.routes import landing_router, router
from tollgate.core.backends.base import AtomicStore
from tollgate.core.backends.redis import RedisBackend
from tollgate.core.logging import setup_logging
from tollgate.core.strategies.selector import resolve

logger = structlog.get_logger()


def create_app(
    settings: Settings | None = None,
    backend: AtomicStore | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; read from the environment when omitted.
        backend: Atomic store to use instead of connecting to Redis.
        clock: Time source handed to the strategy.
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifecycle manager.
        Connects the store (fatal if unreachable) and wires the guard.
        Whatever was opened is closed again, even when startup fails.
        """
        # 1. Initialize Infrastructure
        store = backend or RedisBackend.from_url(
            settings.redis_url,
            timeout=settings.redis_timeout,
            scripting=settings.redis_scripting,
            max_attempts=settings.redis_max_attempts,
        )
        upstream = None
        try:
            await store.ping()
            logger.info("store_connected", store=type(store).__name__)

            # 2. Initialize Core Logic (Dependency Injection)
            app.state.guard = resolve(
                settings.rate_limit_mode,
                store,
                limit=settings.rate_limit,
                window_seconds=settings.window_seconds,
                timeout=settings.check_timeout,
                clock=clock,
            )

            if settings.upstream_url:
                upstream = gateway.build_upstream_client(
                    settings.upstream_url, settings.upstream_timeout
                )
                app.state.upstream = upstream

            logger.info(
                "tollgate_started",
                mode=app.state.guard.mode,
                limit=settings.rate_limit,
                window_seconds=settings.window_seconds,
                upstream=settings.upstream_url,
            )
            yield
        finally:
            # 3. Cleanup
            if upstream is not None:
                await upstream.aclose()
            if backend is None:
                await store.close()
            logger.info("tollgate_stopped")

    app = FastAPI(
        title=settings.app_name,
        lifespan=lifespan,
    )

    app.add_middleware(
        RateLimitMiddleware,
        fail_policy=settings.fail_policy,
        trust_forwarded_for=settings.trust_forwarded_for,
        exempt_paths=settings.exempt_paths,
    )

    app.include_router(router)
    if settings.upstream_url:
        # Everything but /health goes upstream
        app.include_router(gateway.router)
    else:
        app.include_router(landing_router)

    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run("tollgate.main:create_app", factory=True, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
