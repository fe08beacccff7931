"""FastAPI application wiring for the hookbot webhook service.

The application receives webhooks from the configured channels, hands each
verified message to a bounded dispatch pool and answers immediately. The
dispatcher then matches trigger keywords, runs the analysis and replies on
the originating channel.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .channels import ChannelRegistry, build_default_registry
from .config import AppConfig, load_config
from .dispatch import Dispatcher, DispatchRunner
from .routers import webhooks
from .storage import (
    DispatchRepository,
    InMemoryDispatchRepository,
    PostgresDispatchRepository,
    SettingsStore,
)

logger = logging.getLogger(__name__)


def _default_repository(config: AppConfig) -> DispatchRepository:
    if config.database_url:
        return PostgresDispatchRepository(config.database_url)
    logger.warning("DATABASE_URL not configured; using in-memory storage")
    return InMemoryDispatchRepository()


def create_app(
    repository: Optional[DispatchRepository] = None,
    registry: Optional[ChannelRegistry] = None,
    runner: Optional[DispatchRunner] = None,
    config: Optional[AppConfig] = None,
) -> FastAPI:
    """Build the application; collaborators may be injected for tests."""

    config = config or load_config()
    repository = repository or _default_repository(config)
    settings = SettingsStore(repository)
    registry = registry or build_default_registry(settings)
    if runner is None:
        dispatcher = Dispatcher(repository, registry, settings)
        runner = DispatchRunner(
            dispatcher.handle_message,
            max_workers=config.dispatch_max_workers,
            queue_size=config.dispatch_queue_size,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "hookbot %s started with channels: %s",
            __version__,
            ", ".join(sorted(t.value for t in registry.all())),
        )
        yield
        logger.info("Draining dispatch pool")
        runner.shutdown(wait=True)

    app = FastAPI(title="hookbot", version=__version__, lifespan=lifespan)
    init_logging(app)
    app.state.repository = repository
    app.state.settings = settings
    app.state.registry = registry
    app.state.runner = runner
    app.include_router(webhooks.router)

    @app.get("/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )
    return app


app = create_app()
