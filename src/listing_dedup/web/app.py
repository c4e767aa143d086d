"""FastAPI application factory."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from listing_dedup.config import Settings
from listing_dedup.db import DedupStorage
from listing_dedup.logging import configure_logging, get_logger
from listing_dedup.service import DuplicateDetectionService, ModerationHook

logger = get_logger(__name__)


def create_app(settings: Settings | None = None, *, hook: ModerationHook | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Engine settings. Loaded from env if not provided.
        hook: Workflow invoked when a duplicate is confirmed.
    """
    if settings is None:
        settings = Settings()

    configure_logging(json_output=settings.json_logs)

    storage = DedupStorage(settings.database_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await storage.initialize()
        app.state.storage = storage
        app.state.settings = settings
        app.state.service = DuplicateDetectionService.from_storage(storage, settings, hook=hook)
        logger.info("web_server_started", database=settings.database_path)

        yield

        await storage.close()
        logger.info("web_server_stopped")

    app = FastAPI(title="Listing Duplicate Detection", lifespan=lifespan)

    from listing_dedup.web.routes import router

    app.include_router(router)

    return app
