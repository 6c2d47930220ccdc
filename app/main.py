from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.pipeline import build_default_pipeline
from settings import get_settings
from storage.reading_feed import build_default_feed

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    pipeline = build_default_pipeline()
    pipeline.attach(build_default_feed(), latest_only=settings.feed_latest_only)
    logger.info(
        "Listening for new readings (latest_only=%s)", settings.feed_latest_only
    )
    try:
        yield
    finally:
        pipeline.shutdown()
        build_default_pipeline.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Water Quality Alert Listener",
        description="Evaluates sensor readings and pushes threshold alerts to registered recipients.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
