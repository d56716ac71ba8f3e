"""
Pydantic schemas and enums shared by the connectors, the tracker client
and the sync orchestrator.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ═══════════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════════


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    ACTIVE = "active"
    EXPIRED = "expired"


class EntityKind(str, Enum):
    """Local entity kinds and the Linear entity each one maps to."""

    TASK = "task"               # → issue
    PROJECT = "project"         # → project
    DEPARTMENT = "department"   # → team


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


class OperationKind(str, Enum):
    PUSH = "push"
    PULL = "pull"
    FULL_RECONCILE = "full-reconcile"


class Outcome(str, Enum):
    PUSHED = "pushed"
    PULLED = "pulled"
    IMPORTED = "imported"
    SKIPPED = "skipped"
    IGNORED = "ignored"
    FAILED = "failed"


# ═══════════════════════════════════════════════════════════════════════════════
# OAuth
# ═══════════════════════════════════════════════════════════════════════════════


class OAuthGrant(BaseModel):
    """Token endpoint response for both the authorization-code and refresh grants."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    scope: str = ""
    expires_in: Optional[int] = None

    @field_validator("scope", mode="before")
    @classmethod
    def _join_scopes(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return str(value)


class WorkspaceStatus(BaseModel):
    """Connection summary exposed to operators. Never carries secrets."""

    connected: bool
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    scope: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_refreshed_at: Optional[datetime] = None
    last_error: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Sync results
# ═══════════════════════════════════════════════════════════════════════════════


class EntityRef(BaseModel):
    kind: EntityKind
    local_id: str


class SyncOperation(BaseModel):
    """
    One unit of sync work, kept for logging and summaries only.

    A ``full-reconcile`` operation holds the project push and every child
    push as ``children``; each child reports on its own.
    """

    target: EntityRef
    operation: OperationKind
    outcome: Optional[Outcome] = None
    external_id: Optional[str] = None
    error: Optional[str] = None
    children: List["SyncOperation"] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        if self.outcome == Outcome.FAILED:
            return False
        return all(child.succeeded for child in self.children)


SyncOperation.model_rebuild()


class FailedChild(BaseModel):
    local_id: str
    reason: str


class ReconcileSummary(BaseModel):
    pushed: int = 0
    failed: List[FailedChild] = Field(default_factory=list)
    skipped: int = 0
    operation: Optional[SyncOperation] = None


class PullSummary(BaseModel):
    updated: int = 0
    imported: int = 0
    failed: List[FailedChild] = Field(default_factory=list)


class MappingView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    local_id: str
    local_kind: EntityKind
    external_id: Optional[str] = None
    external_key: Optional[str] = None
    external_parent_id: Optional[str] = None
    sync_status: SyncStatus
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None


class SyncStatusReport(BaseModel):
    connected: bool
    mapping: Optional[MappingView] = None
    last_error: Optional[str] = None
    workspace_state: Optional[ConnectionState] = None


class ProjectSyncMetrics(BaseModel):
    project_id: str
    mapping: Optional[MappingView] = None
    issue_count: int = 0
    synced: int = 0
    pending: int = 0
    errors: int = 0
    unmapped: int = 0
    counts_by_status: Dict[str, int] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# Webhooks / team links
# ═══════════════════════════════════════════════════════════════════════════════


class WebhookResult(BaseModel):
    """What one Linear webhook delivery did on the HR side."""

    outcome: Outcome
    kind: Optional[EntityKind] = None
    local_id: Optional[str] = None
    action: Optional[str] = None
    type: Optional[str] = None


class TeamLink(BaseModel):
    team_id: str = Field(min_length=1)
