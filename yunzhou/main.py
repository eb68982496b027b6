"""Yunzhou import service — FastAPI application entry point.

Builds the pipeline collaborators on startup and registers API routers.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from yunzhou.api import connection, health, imports, schemas, shops, tables
from yunzhou.core.config import settings
from yunzhou.core.config_store import ConfigStore, create_redis_client
from yunzhou.core.exceptions import ConnectionUnavailableError
from yunzhou.core.hot_cache import HotCache
from yunzhou.core.ingestion_engine import SyncOrchestrator
from yunzhou.core.schema_registry import SchemaRegistry
from yunzhou.core.store_client import create_store_client

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build collaborators on startup, close clients on shutdown."""
    logger.info("Starting Yunzhou backend...")

    config_store = ConfigStore(create_redis_client())
    app.state.config_store = config_store

    try:
        store = create_store_client()
    except ConnectionUnavailableError as e:
        logger.error(f"Remote store unavailable: {e.message}")
        store = None

    app.state.schema_registry = SchemaRegistry(config_store=config_store)
    logger.info("Schema registry initialized")

    orchestrator = SyncOrchestrator(
        store=store,
        config_store=config_store,
        schema_registry=app.state.schema_registry,
        hot_cache=HotCache(),
    )
    app.state.orchestrator = orchestrator
    orchestrator.try_refresh_metadata()

    logger.info("Yunzhou backend ready")
    yield

    # Shutdown
    logger.info("Shutting down Yunzhou backend...")
    orchestrator.reset_store()
    config_store.close()
    logger.info("Yunzhou backend stopped")


app = FastAPI(
    title="Yunzhou Data Import Service",
    version="0.1.0",
    description="Imports e-commerce spreadsheet exports into a remote "
                "relational store and serves recent rows from a hot cache.",
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(imports.router, prefix="/api", tags=["imports"])
app.include_router(tables.router, prefix="/api", tags=["tables"])
app.include_router(schemas.router, prefix="/api", tags=["schemas"])
app.include_router(shops.router, prefix="/api", tags=["shops"])
app.include_router(connection.router, prefix="/api", tags=["connection"])


def run() -> None:
    uvicorn.run("yunzhou.main:app", host=settings.backend_host, port=settings.backend_port)
