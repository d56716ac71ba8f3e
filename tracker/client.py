"""
LinearClient — a thin, retrying transport over Linear's GraphQL API.

Architecture:
  • Stateless per call: every operation takes the bearer token as its first
    argument.  The client never stores or refreshes credentials; the
    orchestrator gets tokens from the TokenManager and passes them through.
  • Payloads are validated into the tagged models of ``tracker.schemas``
    and otherwise forwarded untouched — Linear is the schema authority.
  • Failures are classified into ``utils.errors`` types and raised.
    RateLimited / Unavailable are retried here with bounded backoff;
    everything else propagates on the first occurrence.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from config.settings import config
from tracker import queries
from tracker.schemas import (
    ExternalPayload,
    IssuePayload,
    LinearIssue,
    LinearProject,
    LinearTeam,
    ProjectPayload,
    TeamPayload,
)
from utils.errors import (
    Invalid,
    NotFound,
    RateLimited,
    TrackerError,
    Unauthorized,
    Unavailable,
)

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)

_AUTH_CODES = {"AUTHENTICATION_ERROR", "UNAUTHENTICATED", "FORBIDDEN"}
_NOT_FOUND_CODES = {"ENTITY_NOT_FOUND", "NOT_FOUND"}
_UNAVAILABLE_CODES = {"INTERNAL_SERVER_ERROR", "SERVICE_UNAVAILABLE"}

_payload_adapter: TypeAdapter = TypeAdapter(ExternalPayload)


class LinearClient:
    def __init__(
        self,
        api_url: Optional[str] = None,
        *,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._api_url = api_url or config.linear_api_url
        self._max_attempts = max(1, max_attempts or config.sync_max_attempts)
        self._backoff_base = config.sync_backoff_base if backoff_base is None else backoff_base
        self._backoff_max = config.sync_backoff_max if backoff_max is None else backoff_max
        self._timeout = timeout or config.sync_request_timeout
        self._transport = transport
        self._sleep = sleep

    # ── Issues ──────────────────────────────────────────────────────────

    async def fetch_issue(self, token: str, issue_id: str) -> LinearIssue:
        data = await self._execute(token, queries.GET_ISSUE, {"id": issue_id})
        return parse_linear(LinearIssue, "issue", _entity(data, "issue", issue_id))

    async def create_issue(self, token: str, payload: Union[IssuePayload, Dict[str, Any]]) -> LinearIssue:
        body = _coerce(IssuePayload, payload).to_input()
        data = await self._execute(token, queries.CREATE_ISSUE, {"input": body}, mutation=True)
        return parse_linear(LinearIssue, "issue", _mutation_entity(data, "issueCreate", "issue"))

    async def update_issue(
        self, token: str, issue_id: str, payload: Union[IssuePayload, Dict[str, Any]]
    ) -> LinearIssue:
        body = _coerce(IssuePayload, payload).to_input()
        data = await self._execute(
            token, queries.UPDATE_ISSUE, {"id": issue_id, "input": body}, mutation=True
        )
        return parse_linear(LinearIssue, "issue", _mutation_entity(data, "issueUpdate", "issue", issue_id))

    async def list_project_issues(self, token: str, project_id: str) -> List[LinearIssue]:
        issues: List[LinearIssue] = []
        after: Optional[str] = None
        while True:
            data = await self._execute(
                token, queries.GET_PROJECT_ISSUES, {"projectId": project_id, "after": after}
            )
            connection = _entity(data, "project", project_id).get("issues") or {}
            issues.extend(parse_linear(LinearIssue, "issue", node) for node in connection.get("nodes") or [])
            page = connection.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                return issues
            after = page.get("endCursor")

    # ── Projects ────────────────────────────────────────────────────────

    async def fetch_project(self, token: str, project_id: str) -> LinearProject:
        data = await self._execute(token, queries.GET_PROJECT, {"id": project_id})
        return parse_linear(LinearProject, "project", _entity(data, "project", project_id))

    async def create_project(
        self, token: str, payload: Union[ProjectPayload, Dict[str, Any]]
    ) -> LinearProject:
        body = _coerce(ProjectPayload, payload).to_input()
        data = await self._execute(token, queries.CREATE_PROJECT, {"input": body}, mutation=True)
        return parse_linear(LinearProject, "project", _mutation_entity(data, "projectCreate", "project"))

    async def update_project(
        self, token: str, project_id: str, payload: Union[ProjectPayload, Dict[str, Any]]
    ) -> LinearProject:
        body = _coerce(ProjectPayload, payload).to_input()
        data = await self._execute(
            token, queries.UPDATE_PROJECT, {"id": project_id, "input": body}, mutation=True
        )
        return parse_linear(
            LinearProject, "project", _mutation_entity(data, "projectUpdate", "project", project_id)
        )

    # ── Teams ───────────────────────────────────────────────────────────

    async def fetch_team(self, token: str, team_id: str) -> LinearTeam:
        data = await self._execute(token, queries.GET_TEAM, {"id": team_id})
        return parse_linear(LinearTeam, "team", _entity(data, "team", team_id))

    async def list_teams(self, token: str) -> List[LinearTeam]:
        data = await self._execute(token, queries.GET_TEAMS, {})
        nodes = (data.get("teams") or {}).get("nodes") or []
        return [parse_linear(LinearTeam, "team", node) for node in nodes]

    async def create_team(self, token: str, payload: Union[TeamPayload, Dict[str, Any]]) -> LinearTeam:
        body = _coerce(TeamPayload, payload).to_input()
        data = await self._execute(token, queries.CREATE_TEAM, {"input": body}, mutation=True)
        return parse_linear(LinearTeam, "team", _mutation_entity(data, "teamCreate", "team"))

    async def update_team(
        self, token: str, team_id: str, payload: Union[TeamPayload, Dict[str, Any]]
    ) -> LinearTeam:
        body = _coerce(TeamPayload, payload).to_input()
        data = await self._execute(
            token, queries.UPDATE_TEAM, {"id": team_id, "input": body}, mutation=True
        )
        return parse_linear(LinearTeam, "team", _mutation_entity(data, "teamUpdate", "team", team_id))

    # ── Transport ───────────────────────────────────────────────────────

    async def _execute(
        self,
        token: str,
        query: str,
        variables: Dict[str, Any],
        *,
        mutation: bool = False,
    ) -> Dict[str, Any]:
        """POST one GraphQL document, retrying RateLimited / Unavailable."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._post(token, query, variables, mutation=mutation)
            except (RateLimited, Unavailable) as exc:
                if attempt >= self._max_attempts or getattr(exc, "ambiguous", False):
                    raise
                delay = self._backoff(exc, attempt)
                logger.warning(
                    "Linear call attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt, self._max_attempts, exc.reason, delay,
                )
                await self._sleep(delay)
        raise Unavailable("Linear call exhausted its attempts")

    def _backoff(self, exc: TrackerError, attempt: int) -> float:
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            return min(max(exc.retry_after, 0.0), self._backoff_max)
        return min(self._backoff_base * (2 ** (attempt - 1)), self._backoff_max)

    async def _post(
        self,
        token: str,
        query: str,
        variables: Dict[str, Any],
        *,
        mutation: bool,
    ) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                resp = await client.post(
                    self._api_url,
                    json={"query": query, "variables": variables},
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Content-Type": "application/json",
                    },
                )
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            raise Unavailable(f"Linear unreachable: {exc!r}") from exc
        except httpx.TimeoutException as exc:
            # the request went out; a mutation may have been applied
            raise Unavailable(f"Linear request timed out: {exc!r}", ambiguous=mutation) from exc
        except httpx.TransportError as exc:
            raise Unavailable(f"Linear transport error: {exc!r}", ambiguous=mutation) from exc
        return parse_response(resp)


# ── Response classification ──────────────────────────────────────────────


def parse_response(resp: httpx.Response) -> Dict[str, Any]:
    """Return the GraphQL ``data`` object or raise the classified error."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    errors = body.get("errors") if isinstance(body, dict) else None
    status = resp.status_code

    if status in (401, 403):
        raise Unauthorized(_error_message(errors, resp), status_code=status)
    if status == 404:
        raise NotFound(_error_message(errors, resp), status_code=status)
    if status == 429:
        raise RateLimited(_error_message(errors, resp), retry_after=_retry_after(resp), status_code=status)
    if status >= 500:
        raise Unavailable(_error_message(errors, resp), status_code=status)
    if errors:
        raise _classify_graphql(errors, resp)
    if resp.is_error:
        raise Invalid(_error_message(errors, resp), status_code=status)
    if not isinstance(body, dict) or "data" not in body:
        raise Unavailable("Malformed Linear response (no data)", status_code=status)
    return body["data"] or {}


def _classify_graphql(errors: List[Dict[str, Any]], resp: httpx.Response) -> TrackerError:
    first = errors[0] if errors else {}
    extensions = first.get("extensions") or {}
    code = str(extensions.get("code") or "").upper()
    message = _error_message(errors, resp)
    status = resp.status_code

    if code in _AUTH_CODES:
        return Unauthorized(message, status_code=status)
    if code == "RATELIMITED":
        return RateLimited(message, retry_after=_retry_after(resp), status_code=status)
    if code in _NOT_FOUND_CODES or "not found" in message.lower():
        return NotFound(message, status_code=status)
    if code in _UNAVAILABLE_CODES:
        return Unavailable(message, status_code=status)
    return Invalid(message, status_code=status)


def _error_message(errors: Optional[List[Dict[str, Any]]], resp: httpx.Response) -> str:
    if errors:
        first = errors[0]
        extensions = first.get("extensions") or {}
        return str(extensions.get("userPresentableMessage") or first.get("message") or "Linear error")
    return f"HTTP {resp.status_code}: {resp.text[:200]}"


def _retry_after(resp: httpx.Response) -> Optional[float]:
    header = resp.headers.get("Retry-After")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    reset = resp.headers.get("X-RateLimit-Requests-Reset")
    if reset:
        try:
            return max(0.0, int(reset) / 1000.0 - time.time())
        except ValueError:
            pass
    return None


def _entity(data: Dict[str, Any], field: str, entity_id: str) -> Dict[str, Any]:
    entity = data.get(field)
    if entity is None:
        raise NotFound(f"Linear {field} {entity_id} not found")
    return entity


def _mutation_entity(
    data: Dict[str, Any],
    operation: str,
    field: str,
    entity_id: Optional[str] = None,
) -> Dict[str, Any]:
    result = data.get(operation)
    if result is None and entity_id is not None:
        raise NotFound(f"Linear {field} {entity_id} not found")
    if not result or not result.get("success"):
        raise Invalid(f"Linear {operation} reported success=false")
    entity = result.get(field)
    if entity is None:
        raise Invalid(f"Linear {operation} returned no {field}")
    return entity


def _coerce(model: Type[P], payload: Union[P, Dict[str, Any]]) -> P:
    if isinstance(payload, model):
        return payload
    tag = model.model_fields["kind"].default
    candidate = _payload_adapter.validate_python({**payload, "kind": tag})
    return candidate  # type: ignore[return-value]


def parse_linear(model: Type[P], what: str, raw: Any) -> P:
    """Validate one Linear object; a shape we cannot read is a permanent failure."""
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(part) for part in first["loc"]) or what
        raise Invalid(f"Malformed Linear {what}: {where} {first['msg']}") from exc
