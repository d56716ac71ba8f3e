"""
Local entity source — the HR application's side of the sync.

The engine never touches the HR database directly; it reads entities and
writes remote changes back through a ``LocalEntitySource`` implementation
supplied by the host application.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class LocalTask(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: str = "todo"            # todo | in_progress | review | completed | blocked
    priority: str = "medium"        # low | medium | high | urgent
    project_id: Optional[str] = None
    department_id: Optional[str] = None
    due_date: Optional[date] = None
    updated_at: Optional[datetime] = None


class LocalProject(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    status: str = "planning"        # planning | active | on_hold | completed | cancelled
    priority: str = "medium"
    department_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    progress: int = 0
    updated_at: Optional[datetime] = None


class LocalDepartment(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    code: Optional[str] = None      # becomes the Linear team key


class LocalEntitySource(ABC):
    """Read/write access to the HR application's tasks, projects and departments."""

    @abstractmethod
    async def get_task(self, local_id: str) -> Optional[LocalTask]:
        ...

    @abstractmethod
    async def get_project(self, local_id: str) -> Optional[LocalProject]:
        ...

    @abstractmethod
    async def get_department(self, local_id: str) -> Optional[LocalDepartment]:
        ...

    @abstractmethod
    async def list_project_tasks(self, project_id: str) -> List[LocalTask]:
        ...

    @abstractmethod
    async def apply_remote_task(self, local_id: str, changes: Dict[str, Any]) -> None:
        """Write fields pulled from Linear onto an existing task."""

    @abstractmethod
    async def apply_remote_project(self, local_id: str, changes: Dict[str, Any]) -> None:
        """Write fields pulled from Linear onto an existing project."""

    @abstractmethod
    async def import_remote_task(self, project_id: Optional[str], fields: Dict[str, Any]) -> str:
        """
        Create a task for a Linear issue that has no local counterpart; return its id.

        ``project_id`` is None for issues outside every mapped project.
        """
