"""
Translation between the HR vocabulary and Linear's.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from typing import Any, Dict, Optional

from sync.local import LocalDepartment, LocalProject, LocalTask
from tracker.schemas import IssuePayload, LinearIssue, LinearProject, ProjectPayload, TeamPayload

PROJECT_STATUS_TO_LINEAR = {
    "planning": "planned",
    "active": "started",
    "on_hold": "paused",
    "completed": "completed",
    "cancelled": "canceled",
}
LINEAR_STATE_TO_PROJECT_STATUS = {v: k for k, v in PROJECT_STATUS_TO_LINEAR.items()}
LINEAR_STATE_TO_PROJECT_STATUS["backlog"] = "planning"

# Linear: 0 none, 1 urgent, 2 high, 3 medium, 4 low
TASK_PRIORITY_TO_LINEAR = {
    "urgent": 1,
    "high": 2,
    "medium": 3,
    "low": 4,
}
LINEAR_TO_TASK_PRIORITY = {v: k for k, v in TASK_PRIORITY_TO_LINEAR.items()}
LINEAR_TO_TASK_PRIORITY[0] = "medium"

# keyed by lower-cased workflow state name, then by state type
LINEAR_STATE_TO_TASK_STATUS = {
    "backlog": "todo",
    "todo": "todo",
    "in progress": "in_progress",
    "in review": "review",
    "done": "completed",
    "canceled": "completed",
    "cancelled": "completed",
}
LINEAR_STATE_TYPE_TO_TASK_STATUS = {
    "triage": "todo",
    "backlog": "todo",
    "unstarted": "todo",
    "started": "in_progress",
    "completed": "completed",
    "canceled": "completed",
}

# webhook "remove" actions; tasks have no cancelled status
REMOVED_ISSUE_TASK_STATUS = LINEAR_STATE_TYPE_TO_TASK_STATUS["canceled"]
REMOVED_PROJECT_STATUS = "cancelled"


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value[:10])


# ── Outbound ─────────────────────────────────────────────────────────────


def task_to_issue_payload(
    task: LocalTask, *, team_id: str, project_id: Optional[str] = None
) -> IssuePayload:
    return IssuePayload(
        title=task.title,
        description=task.description,
        team_id=team_id,
        project_id=project_id,
        priority=TASK_PRIORITY_TO_LINEAR.get(task.priority, 0),
        due_date=_iso(task.due_date),
    )


def project_to_payload(project: LocalProject, *, team_id: str) -> ProjectPayload:
    return ProjectPayload(
        name=project.name,
        description=project.description,
        team_ids=[team_id],
        state=PROJECT_STATUS_TO_LINEAR.get(project.status, "planned"),
        start_date=_iso(project.start_date),
        target_date=_iso(project.end_date),
    )


def department_to_team_payload(department: LocalDepartment) -> TeamPayload:
    return TeamPayload(
        name=department.name,
        key=department.code.upper() if department.code else None,
        description=department.description,
    )


def payload_hash(payload: Any) -> str:
    """Stable digest of what would be sent to Linear, used to skip no-op pushes."""
    body = payload.to_input() if hasattr(payload, "to_input") else payload
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ── Inbound ──────────────────────────────────────────────────────────────


def task_status_from_issue(issue: LinearIssue) -> Optional[str]:
    if issue.state is None:
        return None
    status = LINEAR_STATE_TO_TASK_STATUS.get(issue.state.name.strip().lower())
    if status is None and issue.state.type:
        status = LINEAR_STATE_TYPE_TO_TASK_STATUS.get(issue.state.type)
    return status


def issue_to_task_changes(issue: LinearIssue) -> Dict[str, Any]:
    changes: Dict[str, Any] = {
        "title": issue.title,
        "description": issue.description,
        "priority": LINEAR_TO_TASK_PRIORITY.get(issue.priority, "medium"),
        "due_date": _parse_date(issue.due_date),
    }
    status = task_status_from_issue(issue)
    if status is not None:
        changes["status"] = status
    return changes


def project_to_local_changes(project: LinearProject) -> Dict[str, Any]:
    changes: Dict[str, Any] = {
        "name": project.name,
        "description": project.description,
        "start_date": _parse_date(project.start_date),
        "end_date": _parse_date(project.target_date),
        "progress": round(project.progress * 100),
    }
    if project.state:
        status = LINEAR_STATE_TO_PROJECT_STATUS.get(project.state.lower())
        if status is not None:
            changes["status"] = status
    return changes
