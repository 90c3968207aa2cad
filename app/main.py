from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from messaging.bus import build_default_bus
from services.usage import build_default_service
from settings import get_settings
from storage.timeseries import build_default_store


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    service = build_default_service()
    service.start(schedule=get_settings().aggregation_enabled)
    try:
        yield
    finally:
        service.shutdown()
        build_default_service.cache_clear()
        build_default_store.cache_clear()
        build_default_bus.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Energy Usage Service",
        description="Stores device energy readings, raises threshold alerts and serves usage reports.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
