"""
Typed shapes crossing the Linear API boundary.

Outbound payloads are a tagged union keyed on ``kind`` (one schema per
Linear entity); inbound results are parsed into read models that ignore
fields we do not use.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ═══════════════════════════════════════════════════════════════════════════════
# Outbound payloads
# ═══════════════════════════════════════════════════════════════════════════════


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def to_input(self) -> Dict[str, Any]:
        """Linear's camelCase input object, without unset fields or the tag."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"kind"})


class IssuePayload(_Payload):
    kind: Literal["issue"] = "issue"
    title: str = Field(min_length=1)
    description: Optional[str] = None
    team_id: Optional[str] = Field(default=None, alias="teamId")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    state_id: Optional[str] = Field(default=None, alias="stateId")
    priority: Optional[int] = Field(default=None, ge=0, le=4)
    assignee_id: Optional[str] = Field(default=None, alias="assigneeId")
    label_ids: Optional[List[str]] = Field(default=None, alias="labelIds")
    due_date: Optional[str] = Field(default=None, alias="dueDate")


class ProjectPayload(_Payload):
    kind: Literal["project"] = "project"
    name: str = Field(min_length=1)
    description: Optional[str] = None
    team_ids: List[str] = Field(default_factory=list, alias="teamIds")
    state: Optional[str] = None
    start_date: Optional[str] = Field(default=None, alias="startDate")
    target_date: Optional[str] = Field(default=None, alias="targetDate")
    lead_id: Optional[str] = Field(default=None, alias="leadId")


class TeamPayload(_Payload):
    kind: Literal["team"] = "team"
    name: str = Field(min_length=1)
    key: Optional[str] = None
    description: Optional[str] = None


ExternalPayload = Annotated[
    Union[IssuePayload, ProjectPayload, TeamPayload],
    Field(discriminator="kind"),
]


# ═══════════════════════════════════════════════════════════════════════════════
# Inbound read models
# ═══════════════════════════════════════════════════════════════════════════════


class _LinearModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WorkflowState(_LinearModel):
    id: str
    name: str
    type: Optional[str] = None


class LinearUser(_LinearModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class TeamRef(_LinearModel):
    id: str
    key: Optional[str] = None
    name: Optional[str] = None


class ProjectRef(_LinearModel):
    id: str


class LinearIssue(_LinearModel):
    id: str
    identifier: str
    title: str
    description: Optional[str] = None
    priority: int = 0
    url: Optional[str] = None
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    state: Optional[WorkflowState] = None
    assignee: Optional[LinearUser] = None
    team: Optional[TeamRef] = None
    project: Optional[ProjectRef] = None

    @property
    def external_key(self) -> str:
        return self.identifier


class LinearProject(_LinearModel):
    id: str
    name: str
    description: Optional[str] = None
    state: Optional[str] = None
    url: Optional[str] = None
    slug_id: Optional[str] = Field(default=None, alias="slugId")
    start_date: Optional[str] = Field(default=None, alias="startDate")
    target_date: Optional[str] = Field(default=None, alias="targetDate")
    progress: float = 0.0
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    teams: List[TeamRef] = Field(default_factory=list)

    @field_validator("state", mode="before")
    @classmethod
    def _state_name(cls, value: Any) -> Any:
        # webhooks deliver the project state as an object
        if isinstance(value, dict):
            return value.get("type") or value.get("name")
        return value

    @field_validator("teams", mode="before")
    @classmethod
    def _unwrap_connection(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("nodes") or []
        return value or []

    @property
    def external_key(self) -> str:
        return self.slug_id or self.id


class LinearTeam(_LinearModel):
    id: str
    key: str
    name: str
    description: Optional[str] = None

    @property
    def external_key(self) -> str:
        return self.key


# ═══════════════════════════════════════════════════════════════════════════════
# Webhooks
# ═══════════════════════════════════════════════════════════════════════════════


class LinearWebhookEvent(_LinearModel):
    """Envelope of one Linear webhook delivery."""

    action: str                     # create | update | remove
    type: str                       # Issue | Project | Comment | ...
    data: Dict[str, Any] = Field(default_factory=dict)
    organization_id: Optional[str] = Field(default=None, alias="organizationId")
    webhook_timestamp: Optional[int] = Field(default=None, alias="webhookTimestamp")
    webhook_id: Optional[str] = Field(default=None, alias="webhookId")
