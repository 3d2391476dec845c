import logging
import secrets
import socket
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import Settings, get_settings
from app.core.context import AppContext
from app.core.exceptions import register_exception_handlers
from app.core.logging_config import setup_logging
from app.database import database_health
from app.deps import ContextDep
from app.routers import tasks

logger = logging.getLogger(__name__)

# Distinguishes instances running behind a load balancer.
INSTANCE_ID = f"app-{socket.gethostname()[-4:]}-{secrets.token_hex(2)}"


def create_app(
    settings: Settings | None = None, context: AppContext | None = None
) -> FastAPI:
    settings = settings or get_settings()
    context = context or AppContext(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting Taskboard API instance {INSTANCE_ID}")
        await context.startup()
        yield
        await context.shutdown()
        logger.info(f"Instance {INSTANCE_ID} shut down")

    app = FastAPI(
        title="Taskboard API",
        description="Task tracking API with PostgreSQL and a Redis cache-aside layer",
        swagger_ui_parameters={"displayRequestDuration": True},
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"{elapsed_ms:.1f}ms"
        )
        return response

    register_exception_handlers(app, settings)

    # Include routers
    app.include_router(tasks.router)

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to Taskboard API",
            "docs": "/docs",
            "version": "1.0.0",
        }

    @app.get("/api/health")
    async def health_check(context: ContextDep):
        cache_stats = context.cache.get_stats()
        return {
            "status": "ok",
            "instanceId": INSTANCE_ID,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "database": await database_health(context.engine),
            "redis": await context.cache.health(),
            "cache": {
                "hits": cache_stats["hits"],
                "misses": cache_stats["misses"],
                "hitRate": f"{cache_stats['hitRate']}%",
            },
        }

    return app


app = create_app()


def run():
    settings = get_settings()
    setup_logging(settings)
    uvicorn.run(
        create_app(settings),
        host=settings.app_host,
        port=settings.app_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
