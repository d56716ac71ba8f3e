"""
Sync API routes — trigger pushes, pulls and reconciles, read sync status,
receive Linear webhooks and link departments to Linear teams.

Route prefix: /api/v1/sync
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError

from api.dependencies import get_orchestrator
from config.settings import config
from sync.orchestrator import SyncOrchestrator
from tracker.schemas import LinearTeam, LinearWebhookEvent
from utils.schemas import (
    EntityKind,
    MappingView,
    ProjectSyncMetrics,
    PullSummary,
    ReconcileSummary,
    SyncStatusReport,
    TeamLink,
    WebhookResult,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


# ── Webhook signature ──────────────────────────────────────────────────


def _verify_signature(body: bytes, signature: Optional[str]) -> None:
    """Check ``Linear-Signature`` (hex HMAC-SHA256 of the raw body)."""
    secret = config.linear_webhook_secret
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Linear webhooks are not configured (set LINEAR_WEBHOOK_SECRET)",
        )
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    if not signature or not hmac.compare_digest(expected, signature.strip()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Linear-Signature")


def _verify_freshness(event: LinearWebhookEvent) -> None:
    max_age = config.linear_webhook_max_age_seconds
    if max_age <= 0 or event.webhook_timestamp is None:
        return
    age = abs(time.time() - event.webhook_timestamp / 1000.0)
    if age > max_age:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Stale Linear webhook ({age:.0f}s old)",
        )


# Fixed paths are registered before the generic /{kind}/{local_id} ones
# so "projects", "webhooks" and "teams" are never parsed as entity kinds.


@router.post("/webhooks/linear", response_model=WebhookResult)
async def linear_webhook(
    request: Request,
    linear_signature: Optional[str] = Header(default=None),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> WebhookResult:
    """Apply an Issue / Project change pushed by Linear."""
    body = await request.body()
    _verify_signature(body, linear_signature)
    try:
        event = LinearWebhookEvent.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Malformed Linear webhook: {exc.error_count()} error(s)",
        ) from exc
    _verify_freshness(event)
    return await orchestrator.apply_webhook(event)


@router.get("/teams", response_model=List[LinearTeam])
async def linear_teams(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> List[LinearTeam]:
    """Teams of the connected Linear workspace."""
    return await orchestrator.list_linear_teams()


@router.put("/department/{department_id}/team", response_model=MappingView)
async def link_department(
    department_id: str,
    link: TeamLink,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> MappingView:
    """Link a department to an existing Linear team."""
    mapping = await orchestrator.link_department(department_id, link.team_id)
    return MappingView.model_validate(mapping)


@router.post("/projects/{project_id}/reconcile", response_model=ReconcileSummary)
async def reconcile_project(
    project_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> ReconcileSummary:
    """Push the project, then every task in it."""
    return await orchestrator.reconcile_project_and_children(project_id)


@router.post("/projects/{project_id}/pull", response_model=PullSummary)
async def pull_project(
    project_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> PullSummary:
    """Update and import tasks from the issues of the mapped Linear project."""
    return await orchestrator.pull_project_issues(project_id)


@router.get("/projects/{project_id}/metrics", response_model=ProjectSyncMetrics)
async def project_metrics(
    project_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> ProjectSyncMetrics:
    return await orchestrator.get_project_sync_metrics(project_id)


@router.post("/{kind}/retry-failed", response_model=ReconcileSummary)
async def retry_failed(
    kind: EntityKind,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> ReconcileSummary:
    """Re-push every entity of *kind* whose last sync failed."""
    return await orchestrator.retry_failed(kind)


@router.post("/{kind}/{local_id}", response_model=MappingView)
async def push_entity(
    kind: EntityKind,
    local_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> MappingView:
    mapping = await orchestrator.sync_entity_to_external(local_id, kind)
    return MappingView.model_validate(mapping)


@router.post("/{kind}/{local_id}/pull", response_model=MappingView)
async def pull_entity(
    kind: EntityKind,
    local_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> MappingView:
    mapping = await orchestrator.pull_entity_from_external(local_id, kind)
    return MappingView.model_validate(mapping)


@router.get("/{kind}/{local_id}/status", response_model=SyncStatusReport)
async def entity_status(
    kind: EntityKind,
    local_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncStatusReport:
    return await orchestrator.get_sync_status(local_id, kind)
