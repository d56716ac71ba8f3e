"""
Linear Sync Engine — application entry point.

The host application passes its ``LocalEntitySource`` to ``create_app``;
without one only the connector routes are usable.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.middleware import register_error_handlers, register_middleware
from api.routes import router as sync_router
from config.settings import config
from connectors.credential_store import CredentialStore
from connectors.registry import ConnectorRegistry
from connectors.routes import router as connectors_router
from connectors.token_manager import TokenManager
from database.session import async_session_factory, create_tables, engine
from sync.local import LocalEntitySource
from sync.mapping_store import EntityMappingStore
from sync.orchestrator import SyncOrchestrator
from tracker.client import LinearClient

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "hpack"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(
    entity_source: Optional[LocalEntitySource] = None,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    registry: Optional[ConnectorRegistry] = None,
    client: Optional[LinearClient] = None,
) -> FastAPI:
    app = FastAPI(
        title="Linear Sync Engine",
        version="1.0.0",
        description="Keeps HR tasks, projects and departments in sync with Linear.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    register_error_handlers(app)

    # Collaborators
    sessions = session_factory or async_session_factory
    registry = registry or ConnectorRegistry()
    credentials = CredentialStore(sessions)
    tokens = TokenManager(credentials, registry)
    app.state.connector_registry = registry
    app.state.credential_store = credentials
    app.state.token_manager = tokens
    app.state.orchestrator = None
    if entity_source is not None:
        app.state.orchestrator = SyncOrchestrator(
            credentials,
            tokens,
            client or LinearClient(),
            EntityMappingStore(sessions),
            entity_source,
        )

    # Routes
    app.include_router(connectors_router, prefix="/api/v1/connectors")
    app.include_router(sync_router, prefix="/api/v1/sync")

    @app.on_event("startup")
    async def on_startup():
        if session_factory is None:
            logger.info("Ensuring database tables exist…")
            await create_tables(engine)

        registry.discover()
        configured = registry.list_configured()
        if configured:
            logger.info("OAuth connectors: %s", configured)
        else:
            logger.warning("No OAuth connector configured; Linear cannot be connected")
        if app.state.orchestrator is None:
            logger.warning("No local entity source supplied; sync routes will answer 503")

        logger.info("Application ready to accept requests.")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
