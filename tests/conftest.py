"""
Shared fixtures: SQLite-backed stores, an in-memory HR entity source and
a fake Linear GraphQL server served through ``httpx.MockTransport``.
"""

import itertools
import json
import re
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlencode

import httpx
import pytest
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from connectors.base import BaseConnector
from connectors.credential_store import CredentialStore
from connectors.encryption import TokenCipher
from connectors.registry import ConnectorRegistry
from connectors.token_manager import TokenManager
from database.models import Base
from sync.local import LocalDepartment, LocalEntitySource, LocalProject, LocalTask
from sync.mapping_store import EntityMappingStore
from sync.orchestrator import SyncOrchestrator
from tracker.client import LinearClient
from utils.errors import OAuthError
from utils.schemas import OAuthGrant

API_URL = "https://api.linear.test/graphql"


# ── Database ─────────────────────────────────────────────────────────────


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def cipher():
    return TokenCipher(Fernet.generate_key().decode())


@pytest.fixture
def credential_store(session_factory, cipher):
    return CredentialStore(session_factory, cipher)


@pytest.fixture
def mapping_store(session_factory):
    return EntityMappingStore(session_factory)


# ── OAuth ────────────────────────────────────────────────────────────────


class FakeConnector(BaseConnector):
    """Stand-in for the Linear OAuth endpoints."""

    def __init__(self):
        self.refresh_calls: List[str] = []
        self.fail_refresh: Optional[Exception] = None
        self._issued = itertools.count(2)
        self.revoked: List[str] = []

    @property
    def provider_name(self) -> str:
        return "linear"

    @property
    def display_name(self) -> str:
        return "Linear"

    @property
    def scopes(self) -> List[str]:
        return ["read", "write"]

    def get_auth_url(self, state: str) -> str:
        return "https://linear.test/oauth/authorize?" + urlencode({"state": state})

    async def exchange_code(self, code: str) -> OAuthGrant:
        if code == "bad-code":
            raise OAuthError("invalid_grant")
        return OAuthGrant(access_token="tok-1", refresh_token="ref-1", expires_in=3600, scope="read,write")

    async def refresh_access_token(self, refresh_token: str) -> OAuthGrant:
        self.refresh_calls.append(refresh_token)
        if self.fail_refresh is not None:
            raise self.fail_refresh
        n = next(self._issued)
        return OAuthGrant(access_token=f"tok-{n}", refresh_token=f"ref-{n}", expires_in=3600)

    async def fetch_workspace(self, access_token: str):
        return "org-1", "Acme"

    async def revoke_token(self, access_token: str) -> bool:
        self.revoked.append(access_token)
        return True


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def registry(connector):
    ConnectorRegistry.reset()
    reg = ConnectorRegistry()
    reg.discover([])
    reg.register(connector)
    yield reg
    ConnectorRegistry.reset()


@pytest.fixture
def token_manager(credential_store, registry):
    return TokenManager(credential_store, registry)


async def connect_workspace(store: CredentialStore, **grant: Any):
    fields = {"access_token": "tok-1", "refresh_token": "ref-1", "expires_in": 3600}
    fields.update(grant)
    return await store.save_authorization(
        "linear",
        OAuthGrant(**fields),
        external_workspace_id="org-1",
        workspace_name="Acme",
    )


# ── HR side ──────────────────────────────────────────────────────────────


class InMemoryEntitySource(LocalEntitySource):
    def __init__(self):
        self.tasks: Dict[str, LocalTask] = {}
        self.projects: Dict[str, LocalProject] = {}
        self.departments: Dict[str, LocalDepartment] = {}
        self._imported = itertools.count(1)

    def add(self, entity: Union[LocalTask, LocalProject, LocalDepartment]):
        table = {
            LocalTask: self.tasks,
            LocalProject: self.projects,
            LocalDepartment: self.departments,
        }[type(entity)]
        table[entity.id] = entity
        return entity

    async def get_task(self, local_id):
        return self.tasks.get(local_id)

    async def get_project(self, local_id):
        return self.projects.get(local_id)

    async def get_department(self, local_id):
        return self.departments.get(local_id)

    async def list_project_tasks(self, project_id):
        return [t for t in self.tasks.values() if t.project_id == project_id]

    async def apply_remote_task(self, local_id, changes):
        self.tasks[local_id] = self.tasks[local_id].model_copy(update=changes)

    async def apply_remote_project(self, local_id, changes):
        self.projects[local_id] = self.projects[local_id].model_copy(update=changes)

    async def import_remote_task(self, project_id, fields):
        local_id = f"imported-{next(self._imported)}"
        self.tasks[local_id] = LocalTask(id=local_id, project_id=project_id, **fields)
        return local_id


@pytest.fixture
def source():
    return InMemoryEntitySource()


# ── Linear ───────────────────────────────────────────────────────────────

Responder = Callable[[httpx.Request], httpx.Response]


def graphql_error(code: str, message: str = "error", status: int = 200) -> Responder:
    body = {"data": None, "errors": [{"message": message, "extensions": {"code": code}}]}
    return lambda request: httpx.Response(status, json=body)


def http_status(status: int, **headers: str) -> Responder:
    return lambda request: httpx.Response(status, json={"errors": [{"message": f"HTTP {status}"}]}, headers=headers)


def raises(exc_type) -> Responder:
    def _raise(request):
        raise exc_type("simulated", request=request)

    return _raise


class FakeLinear:
    """
    Minimal in-memory Linear GraphQL API.

    Responses for an operation can be overridden per call with
    :meth:`fail`; queued responders are consumed before the normal handler.
    """

    def __init__(self):
        self.issues: Dict[str, Dict[str, Any]] = {}
        self.projects: Dict[str, Dict[str, Any]] = {}
        self.teams: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.tokens: List[str] = []
        self.inputs: List[Dict[str, Any]] = []
        self._queued: Dict[str, List[Responder]] = {}
        self.reject_titles: set = set()
        self._seq = itertools.count(1)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail(self, operation: str, *responders: Responder) -> None:
        self._queued.setdefault(operation, []).extend(responders)

    def count(self, operation: str) -> int:
        return self.calls.count(operation)

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        operation = re.search(r"(?:query|mutation)\s+(\w+)", body["query"]).group(1)
        self.calls.append(operation)
        self.tokens.append(request.headers.get("Authorization", ""))
        variables = body.get("variables") or {}
        if "input" in variables:
            self.inputs.append(variables["input"])

        queued = self._queued.get(operation)
        if queued:
            return queued.pop(0)(request)
        result = getattr(self, f"_{operation}")(variables)
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json={"data": result})

    # ── issues ──

    def _issue(self, issue_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        issue = self.issues.setdefault(
            issue_id,
            {
                "id": issue_id,
                "identifier": f"ENG-{len(self.issues) + 1}",
                "title": "",
                "description": None,
                "priority": 0,
                "url": None,
                "dueDate": None,
                "updatedAt": None,
                "state": {"id": "state-todo", "name": "Todo", "type": "unstarted"},
                "assignee": None,
                "team": None,
                "project": None,
            },
        )
        for key in ("title", "description", "priority", "dueDate"):
            if key in data:
                issue[key] = data[key]
        if "teamId" in data:
            issue["team"] = {"id": data["teamId"], "key": "ENG", "name": "Engineering"}
        if "projectId" in data:
            issue["project"] = {"id": data["projectId"]}
        return issue

    def _GetIssue(self, variables):
        return {"issue": self.issues.get(variables["id"])}

    def _CreateIssue(self, variables):
        if variables["input"].get("title") in self.reject_titles:
            return graphql_error("INVALID_INPUT", "title rejected")(None)
        issue = self._issue(f"issue-{next(self._seq)}", variables["input"])
        return {"issueCreate": {"success": True, "issue": issue}}

    def _UpdateIssue(self, variables):
        if variables["id"] not in self.issues:
            return graphql_error("ENTITY_NOT_FOUND", "Entity not found")(None)
        issue = self._issue(variables["id"], variables["input"])
        return {"issueUpdate": {"success": True, "issue": issue}}

    def _GetProjectIssues(self, variables):
        project = self.projects.get(variables["projectId"])
        if project is None:
            return {"project": None}
        nodes = [
            issue for issue in self.issues.values()
            if (issue.get("project") or {}).get("id") == project["id"]
        ]
        return {
            "project": {
                "issues": {"nodes": nodes, "pageInfo": {"hasNextPage": False, "endCursor": None}}
            }
        }

    # ── projects ──

    def _project(self, project_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        project = self.projects.setdefault(
            project_id,
            {
                "id": project_id,
                "name": "",
                "description": None,
                "state": "planned",
                "url": None,
                "slugId": f"slug{len(self.projects) + 1}",
                "startDate": None,
                "targetDate": None,
                "progress": 0.0,
                "updatedAt": None,
                "teams": {"nodes": []},
            },
        )
        for key in ("name", "description", "state", "startDate", "targetDate"):
            if key in data:
                project[key] = data[key]
        if "teamIds" in data:
            project["teams"] = {"nodes": [{"id": t} for t in data["teamIds"]]}
        return project

    def _GetProject(self, variables):
        return {"project": self.projects.get(variables["id"])}

    def _CreateProject(self, variables):
        project = self._project(f"project-{next(self._seq)}", variables["input"])
        return {"projectCreate": {"success": True, "project": project}}

    def _UpdateProject(self, variables):
        if variables["id"] not in self.projects:
            return graphql_error("ENTITY_NOT_FOUND", "Entity not found")(None)
        project = self._project(variables["id"], variables["input"])
        return {"projectUpdate": {"success": True, "project": project}}

    # ── teams ──

    def _team(self, team_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        team = self.teams.setdefault(
            team_id, {"id": team_id, "key": "T", "name": "", "description": None}
        )
        for key in ("name", "key", "description"):
            if key in data:
                team[key] = data[key]
        return team

    def _GetTeam(self, variables):
        return {"team": self.teams.get(variables["id"])}

    def _GetTeams(self, variables):
        return {"teams": {"nodes": list(self.teams.values())}}

    def _CreateTeam(self, variables):
        team = self._team(f"team-{next(self._seq)}", variables["input"])
        return {"teamCreate": {"success": True, "team": team}}

    def _UpdateTeam(self, variables):
        if variables["id"] not in self.teams:
            return graphql_error("ENTITY_NOT_FOUND", "Entity not found")(None)
        team = self._team(variables["id"], variables["input"])
        return {"teamUpdate": {"success": True, "team": team}}


class NoSleep:
    """Records backoff delays instead of sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def linear():
    return FakeLinear()


@pytest.fixture
def sleeper():
    return NoSleep()


@pytest.fixture
def client(linear, sleeper):
    return LinearClient(
        API_URL,
        max_attempts=3,
        backoff_base=0.5,
        backoff_max=4.0,
        transport=linear.transport,
        sleep=sleeper,
    )


@pytest.fixture
def orchestrator(credential_store, token_manager, client, mapping_store, source):
    return SyncOrchestrator(
        credential_store,
        token_manager,
        client,
        mapping_store,
        source,
        default_team_id="team-default",
        max_concurrency=4,
    )
