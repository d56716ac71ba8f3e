"""
FastAPI dependencies (shared across routes).

Collaborators are built once in ``main.create_app`` and kept on
``app.state``; routes pull them from there.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from connectors.credential_store import CredentialStore
from connectors.registry import ConnectorRegistry
from sync.orchestrator import SyncOrchestrator


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credential_store


def get_connector_registry(request: Request) -> ConnectorRegistry:
    return request.app.state.connector_registry


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """The sync orchestrator; 503 when the host app supplied no entity source."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync is unavailable: no local entity source is configured",
        )
    return orchestrator
