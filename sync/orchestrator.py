"""
SyncOrchestrator — reconciles local tasks, projects and departments with
their Linear issues, projects and teams.

Every operation follows the same shape:
  1. Resolve the connected workspace and a usable token (TokenManager).
  2. Under a per-entity lock, read the local entity, build the payload and
     resolve its Linear parent (pushing an unmapped parent first).
  3. Update when a mapping exists, create otherwise; a stale mapping
     (NotFound on update) falls back to create.
  4. Record the outcome in the mapping store — ``synced`` on success,
     ``error`` with the reason otherwise; the previous external id is kept.

Multi-entity operations (reconcile, pull, retry sweeps) fan out with
``asyncio.gather(return_exceptions=True)`` bounded by a semaphore, so one
child's failure never aborts its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar, Union

from config.settings import config
from connectors.credential_store import CredentialStore
from connectors.token_manager import TokenManager
from database.models import EntityMapping, WorkspaceCredential
from sync.local import LocalDepartment, LocalEntitySource, LocalProject, LocalTask
from sync.mapping_store import EntityMappingStore
from sync.translate import (
    REMOVED_ISSUE_TASK_STATUS,
    REMOVED_PROJECT_STATUS,
    department_to_team_payload,
    issue_to_task_changes,
    payload_hash,
    project_to_local_changes,
    project_to_payload,
    task_to_issue_payload,
)
from tracker.client import LinearClient, parse_linear
from tracker.schemas import (
    IssuePayload,
    LinearIssue,
    LinearProject,
    LinearTeam,
    LinearWebhookEvent,
    ProjectPayload,
    TeamPayload,
)
from utils.errors import (
    AuthExpired,
    Invalid,
    LocalEntityNotFound,
    NoActiveWorkspace,
    NotFound,
    SyncFailed,
    TrackerError,
    Unauthorized,
)
from utils.keyed_lock import KeyedLock
from utils.schemas import (
    ConnectionState,
    EntityKind,
    EntityRef,
    FailedChild,
    MappingView,
    OperationKind,
    Outcome,
    ProjectSyncMetrics,
    PullSummary,
    ReconcileSummary,
    SyncOperation,
    SyncStatus,
    SyncStatusReport,
    WebhookResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Payload = Union[IssuePayload, ProjectPayload, TeamPayload]
KindLike = Union[EntityKind, str]

_CANCELLED_REASON = "ambiguous: sync cancelled before Linear confirmed the write"


@dataclass
class _Auth:
    """The workspace credential and the token currently in use for it."""

    credential: WorkspaceCredential
    token: str


class SyncOrchestrator:
    def __init__(
        self,
        credentials: CredentialStore,
        tokens: TokenManager,
        client: LinearClient,
        mappings: EntityMappingStore,
        source: LocalEntitySource,
        *,
        provider: str = "linear",
        default_team_id: Optional[str] = None,
        max_concurrency: Optional[int] = None,
    ):
        self._credentials = credentials
        self._tokens = tokens
        self._client = client
        self._mappings = mappings
        self._source = source
        self._provider = provider
        self._default_team_id = default_team_id or config.linear_default_team_id
        self._concurrency = asyncio.Semaphore(max(1, max_concurrency or config.sync_max_concurrency))
        self._entity_locks = KeyedLock()

    # ── Push ────────────────────────────────────────────────────────────

    async def sync_entity_to_external(
        self, local_id: str, kind: KindLike = EntityKind.TASK
    ) -> EntityMapping:
        """
        Push one local entity to Linear and return its mapping.

        Raises NoActiveWorkspace / AuthExpired before any API call when the
        workspace is unusable, SyncFailed when the push itself fails.
        """
        auth = await self._authorize()
        return await self._push(auth, EntityKind(kind), local_id)

    async def reconcile_project_and_children(self, project_id: str) -> ReconcileSummary:
        """
        Push the project, then every task in it.

        The project must succeed (SyncFailed otherwise).  Tasks are pushed
        concurrently and each reports on its own; tasks whose payload is
        unchanged since their last successful push are skipped.
        """
        auth = await self._authorize()
        operation = SyncOperation(
            target=EntityRef(kind=EntityKind.PROJECT, local_id=project_id),
            operation=OperationKind.FULL_RECONCILE,
        )
        project_op = SyncOperation(
            target=EntityRef(kind=EntityKind.PROJECT, local_id=project_id),
            operation=OperationKind.PUSH,
        )
        operation.children.append(project_op)

        try:
            project_mapping = await self._push(auth, EntityKind.PROJECT, project_id)
        except SyncFailed as exc:
            project_op.outcome = Outcome.FAILED
            project_op.error = exc.reason
            operation.outcome = Outcome.FAILED
            logger.error("Reconcile of project %s aborted: %s", project_id, exc.reason)
            raise
        project_op.outcome = Outcome.PUSHED
        project_op.external_id = project_mapping.external_id

        tasks = await self._source.list_project_tasks(project_id)
        results = await self._gather_bounded(self._reconcile_task(auth, task) for task in tasks)

        summary = ReconcileSummary(operation=operation)
        for task, result in zip(tasks, results):
            child = SyncOperation(
                target=EntityRef(kind=EntityKind.TASK, local_id=task.id),
                operation=OperationKind.PUSH,
            )
            if isinstance(result, BaseException):
                reason = _describe(result)
                child.outcome = Outcome.FAILED
                child.error = reason
                summary.failed.append(FailedChild(local_id=task.id, reason=reason))
            else:
                child.outcome, child.external_id = result
                if child.outcome == Outcome.SKIPPED:
                    summary.skipped += 1
                else:
                    summary.pushed += 1
            operation.children.append(child)

        operation.outcome = Outcome.PUSHED if not summary.failed else Outcome.FAILED
        logger.info(
            "Reconciled project %s: %d pushed, %d skipped, %d failed",
            project_id, summary.pushed, summary.skipped, len(summary.failed),
        )
        return summary

    async def retry_failed(self, kind: KindLike = EntityKind.TASK) -> ReconcileSummary:
        """Re-push every mapping of *kind* currently in ``error`` state."""
        kind = EntityKind(kind)
        auth = await self._authorize()
        failed = await self._mappings.list_by_kind(kind, status=SyncStatus.ERROR)
        if not failed:
            return ReconcileSummary()

        logger.info("Retrying %d failed %s mapping(s)", len(failed), kind.value)
        results = await self._gather_bounded(
            self._push(auth, kind, mapping.local_id) for mapping in failed
        )
        summary = ReconcileSummary()
        for mapping, result in zip(failed, results):
            if isinstance(result, BaseException):
                summary.failed.append(FailedChild(local_id=mapping.local_id, reason=_describe(result)))
            else:
                summary.pushed += 1
        return summary

    # ── Pull ────────────────────────────────────────────────────────────

    async def pull_entity_from_external(
        self, local_id: str, kind: KindLike = EntityKind.TASK
    ) -> EntityMapping:
        """Copy the Linear side of an already-mapped entity onto the local one."""
        kind = EntityKind(kind)
        auth = await self._authorize()

        async with self._entity_locks.acquire((kind.value, local_id)):
            mapping = await self._mappings.find(local_id, kind)
            if mapping is None or not mapping.is_linked:
                raise SyncFailed(f"{kind.value} {local_id} has no Linear counterpart to pull from")

            try:
                if kind == EntityKind.TASK:
                    remote = await self._call(auth, self._client.fetch_issue, mapping.external_id)
                    await self._source.apply_remote_task(local_id, issue_to_task_changes(remote))
                elif kind == EntityKind.PROJECT:
                    remote = await self._call(auth, self._client.fetch_project, mapping.external_id)
                    await self._source.apply_remote_project(local_id, project_to_local_changes(remote))
                else:
                    remote = await self._call(auth, self._client.fetch_team, mapping.external_id)
            except asyncio.CancelledError:
                await asyncio.shield(self._mappings.mark_error(local_id, kind, _CANCELLED_REASON))
                raise
            except (AuthExpired, NoActiveWorkspace):
                raise
            except TrackerError as exc:
                raise await self._fail(local_id, kind, exc.reason) from exc
            except Exception as exc:
                logger.error("Unexpected error pulling %s %s", kind.value, local_id, exc_info=True)
                raise await self._fail(local_id, kind, f"{type(exc).__name__}: {exc}") from exc

            mapping = await asyncio.shield(
                self._mappings.upsert(
                    local_id,
                    kind,
                    remote.id,
                    remote.external_key,
                    external_parent_id=mapping.external_parent_id,
                    payload_hash=mapping.payload_hash,
                )
            )
        logger.info("Pulled %s %s from Linear %s", kind.value, local_id, mapping.external_key)
        return mapping

    async def pull_project_issues(self, project_id: str) -> PullSummary:
        """
        Bring the issues of a mapped Linear project into the HR app.

        Issues with a task mapping update that task; the rest are imported
        as new tasks and mapped.
        """
        auth = await self._authorize()
        project_mapping = await self._mappings.find(project_id, EntityKind.PROJECT)
        if project_mapping is None or not project_mapping.is_linked:
            raise SyncFailed(f"project {project_id} has no Linear counterpart to pull from")

        try:
            issues = await self._call(
                auth, self._client.list_project_issues, project_mapping.external_id
            )
        except TrackerError as exc:
            raise await self._fail(project_id, EntityKind.PROJECT, exc.reason) from exc

        results = await self._gather_bounded(
            self._receive_issue(issue, project_id, project_mapping.external_id) for issue in issues
        )
        summary = PullSummary()
        for issue, result in zip(issues, results):
            if isinstance(result, BaseException):
                summary.failed.append(FailedChild(local_id=issue.identifier, reason=_describe(result)))
            elif result[0] == Outcome.IMPORTED:
                summary.imported += 1
            else:
                summary.updated += 1

        logger.info(
            "Pulled %d issue(s) for project %s: %d updated, %d imported, %d failed",
            len(issues), project_id, summary.updated, summary.imported, len(summary.failed),
        )
        return summary

    # ── Webhooks ────────────────────────────────────────────────────────

    async def apply_webhook(self, event: LinearWebhookEvent) -> WebhookResult:
        """
        Apply one Linear webhook delivery to the HR side.

        Handled: Issue create / update / remove and Project update / remove.
        Issues created in Linear are imported; every other action touches
        only entities that already have a mapping.  Anything else is
        acknowledged and ignored.  No Linear API call is made.
        """
        credential = await self._credentials.get_current(self._provider)
        if (
            credential is not None
            and event.organization_id
            and credential.external_workspace_id
            and event.organization_id != credential.external_workspace_id
        ):
            logger.warning("Ignoring Linear webhook for foreign organization %s", event.organization_id)
            return WebhookResult(outcome=Outcome.IGNORED, action=event.action, type=event.type)

        try:
            if event.type == "Issue":
                if event.action == "remove":
                    result = await self._remove_issue(str(event.data.get("id") or ""))
                elif event.action in ("create", "update"):
                    issue = parse_linear(LinearIssue, "issue", event.data)
                    outcome, local_id = await self._receive_issue(
                        issue, await self._local_project_for(issue), None,
                        import_missing=event.action == "create",
                    )
                    result = WebhookResult(
                        outcome=outcome,
                        kind=EntityKind.TASK if local_id else None,
                        local_id=local_id,
                    )
                else:
                    result = WebhookResult(outcome=Outcome.IGNORED)
            elif event.type == "Project" and event.action in ("update", "remove"):
                result = await self._receive_project(event.data, removed=event.action == "remove")
            else:
                result = WebhookResult(outcome=Outcome.IGNORED)
        except Invalid as exc:
            logger.warning("Ignoring malformed Linear %s webhook: %s", event.type, exc.message)
            result = WebhookResult(outcome=Outcome.IGNORED)

        result.action, result.type = event.action, event.type
        logger.info(
            "Linear webhook %s/%s → %s %s",
            event.type, event.action, result.outcome.value, result.local_id or "",
        )
        return result

    async def _local_project_for(self, issue: LinearIssue) -> Optional[str]:
        if issue.project is None:
            return None
        mapping = await self._mappings.find_by_external(issue.project.id, EntityKind.PROJECT)
        return mapping.local_id if mapping is not None else None

    async def _remove_issue(self, issue_id: str) -> WebhookResult:
        mapping = await self._mappings.find_by_external(issue_id, EntityKind.TASK) if issue_id else None
        if mapping is None:
            return WebhookResult(outcome=Outcome.IGNORED)
        async with self._entity_locks.acquire((EntityKind.TASK.value, mapping.local_id)):
            await self._source.apply_remote_task(mapping.local_id, {"status": REMOVED_ISSUE_TASK_STATUS})
            await self._refresh_mapping(mapping)
        return WebhookResult(outcome=Outcome.PULLED, kind=EntityKind.TASK, local_id=mapping.local_id)

    async def _receive_project(self, data: Dict[str, Any], *, removed: bool) -> WebhookResult:
        project_id = str(data.get("id") or "")
        mapping = await self._mappings.find_by_external(project_id, EntityKind.PROJECT) if project_id else None
        if mapping is None:
            return WebhookResult(outcome=Outcome.IGNORED)
        if removed:
            changes = {"status": REMOVED_PROJECT_STATUS}
        else:
            changes = project_to_local_changes(parse_linear(LinearProject, "project", data))
        async with self._entity_locks.acquire((EntityKind.PROJECT.value, mapping.local_id)):
            await self._source.apply_remote_project(mapping.local_id, changes)
            await self._refresh_mapping(mapping)
        return WebhookResult(outcome=Outcome.PULLED, kind=EntityKind.PROJECT, local_id=mapping.local_id)

    async def _refresh_mapping(self, mapping: EntityMapping) -> EntityMapping:
        return await asyncio.shield(
            self._mappings.upsert(
                mapping.local_id,
                mapping.local_kind,
                mapping.external_id,
                mapping.external_key,
                external_parent_id=mapping.external_parent_id,
                payload_hash=mapping.payload_hash,
            )
        )

    # ── Teams ───────────────────────────────────────────────────────────

    async def list_linear_teams(self) -> List[LinearTeam]:
        """Teams of the connected workspace, for choosing department links."""
        auth = await self._authorize()
        try:
            return await self._call(auth, self._client.list_teams)
        except TrackerError as exc:
            raise SyncFailed(exc.reason) from exc

    async def link_department(self, department_id: str, team_id: str) -> EntityMapping:
        """
        Map a department onto an existing Linear team instead of creating one.

        The team must exist in the connected workspace.  A failed check
        leaves any previous department mapping untouched.
        """
        auth = await self._authorize()
        if await self._source.get_department(department_id) is None:
            raise LocalEntityNotFound(EntityKind.DEPARTMENT.value, department_id)

        async with self._entity_locks.acquire((EntityKind.DEPARTMENT.value, department_id)):
            try:
                team = await self._call(auth, self._client.fetch_team, team_id)
            except NotFound as exc:
                raise SyncFailed(f"Linear team {team_id} does not exist in this workspace") from exc
            except TrackerError as exc:
                raise SyncFailed(exc.reason) from exc

            mapping = await asyncio.shield(
                self._mappings.upsert(department_id, EntityKind.DEPARTMENT, team.id, team.external_key)
            )
        logger.info("Linked department %s to Linear team %s", department_id, team.key)
        return mapping

    # ── Status ──────────────────────────────────────────────────────────

    async def get_sync_status(
        self, local_id: str, kind: KindLike = EntityKind.TASK
    ) -> SyncStatusReport:
        credential = await self._credentials.get_current(self._provider)
        mapping = await self._mappings.find(local_id, kind)
        state = credential.state if credential is not None else None
        connected = (
            mapping is not None
            and mapping.is_linked
            and mapping.sync_status != SyncStatus.ERROR.value
            and state == ConnectionState.ACTIVE
        )
        return SyncStatusReport(
            connected=connected,
            mapping=MappingView.model_validate(mapping) if mapping is not None else None,
            last_error=mapping.last_error if mapping is not None else None,
            workspace_state=state,
        )

    async def get_project_sync_metrics(self, project_id: str) -> ProjectSyncMetrics:
        project = await self._source.get_project(project_id)
        if project is None:
            raise LocalEntityNotFound(EntityKind.PROJECT.value, project_id)

        project_mapping = await self._mappings.find(project_id, EntityKind.PROJECT)
        tasks = await self._source.list_project_tasks(project_id)
        counts = await self._mappings.status_counts([task.id for task in tasks], EntityKind.TASK)
        return ProjectSyncMetrics(
            project_id=project_id,
            mapping=MappingView.model_validate(project_mapping) if project_mapping else None,
            issue_count=len(tasks),
            synced=counts.get(SyncStatus.SYNCED.value, 0),
            pending=counts.get(SyncStatus.PENDING.value, 0),
            errors=counts.get(SyncStatus.ERROR.value, 0),
            unmapped=len(tasks) - sum(counts.values()),
            counts_by_status=counts,
        )

    # ── Workspace / token ───────────────────────────────────────────────

    async def _authorize(self) -> _Auth:
        credential = await self._credentials.get_current(self._provider)
        if credential is None:
            raise NoActiveWorkspace(f"No {self._provider} workspace is connected")
        token = await self._tokens.ensure_valid_token(credential)
        return _Auth(credential=credential, token=token)

    async def _call(self, auth: _Auth, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Run one client call; on Unauthorized refresh once and retry once."""
        token = auth.token
        try:
            return await fn(token, *args)
        except Unauthorized:
            logger.info("Linear rejected the access token; refreshing and retrying once")
            auth.token = await self._tokens.force_refresh(auth.credential, token)
            return await fn(auth.token, *args)

    # ── Push internals ──────────────────────────────────────────────────

    async def _push(
        self,
        auth: _Auth,
        kind: EntityKind,
        local_id: str,
        entity: Any = None,
    ) -> EntityMapping:
        async with self._entity_locks.acquire((kind.value, local_id)):
            mapping = await self._mappings.find(local_id, kind)
            try:
                payload, parent_id = await self._build_payload(auth, kind, local_id, entity)
                remote = await self._write_remote(auth, kind, mapping, payload)
            except asyncio.CancelledError:
                await asyncio.shield(self._mappings.mark_error(local_id, kind, _CANCELLED_REASON))
                raise
            except LocalEntityNotFound as exc:
                raise SyncFailed(str(exc)) from exc
            except (AuthExpired, NoActiveWorkspace):
                raise
            except SyncFailed as exc:
                raise await self._fail(local_id, kind, exc.reason) from exc
            except TrackerError as exc:
                raise await self._fail(local_id, kind, exc.reason) from exc
            except Exception as exc:
                logger.error("Unexpected error syncing %s %s", kind.value, local_id, exc_info=True)
                raise await self._fail(local_id, kind, f"{type(exc).__name__}: {exc}") from exc

            # Linear has confirmed the write; the mapping must land even if we are cancelled now
            mapping = await asyncio.shield(
                self._mappings.upsert(
                    local_id,
                    kind,
                    remote.id,
                    remote.external_key,
                    external_parent_id=parent_id,
                    payload_hash=payload_hash(payload),
                )
            )
        logger.info("Synced %s %s → Linear %s", kind.value, local_id, mapping.external_key)
        return mapping

    async def _write_remote(
        self,
        auth: _Auth,
        kind: EntityKind,
        mapping: Optional[EntityMapping],
        payload: Payload,
    ) -> Any:
        create, update = self._writers(kind)
        if mapping is not None and mapping.is_linked:
            try:
                return await self._call(auth, update, mapping.external_id, payload)
            except NotFound:
                logger.warning(
                    "Linear %s %s for %s %s no longer exists; creating a new one",
                    kind.value, mapping.external_id, kind.value, mapping.local_id,
                )
        return await self._call(auth, create, payload)

    def _writers(self, kind: EntityKind) -> Tuple[Callable[..., Awaitable[Any]], Callable[..., Awaitable[Any]]]:
        if kind == EntityKind.TASK:
            return self._client.create_issue, self._client.update_issue
        if kind == EntityKind.PROJECT:
            return self._client.create_project, self._client.update_project
        return self._client.create_team, self._client.update_team

    async def _build_payload(
        self,
        auth: _Auth,
        kind: EntityKind,
        local_id: str,
        entity: Any = None,
    ) -> Tuple[Payload, Optional[str]]:
        """Payload for the entity plus the Linear id of its parent."""
        if kind == EntityKind.TASK:
            task: Optional[LocalTask] = entity or await self._source.get_task(local_id)
            if task is None:
                raise LocalEntityNotFound(kind.value, local_id)
            team_id, project_external_id = await self._issue_parents(auth, task)
            payload = task_to_issue_payload(task, team_id=team_id, project_id=project_external_id)
            return payload, project_external_id or team_id

        if kind == EntityKind.PROJECT:
            project: Optional[LocalProject] = entity or await self._source.get_project(local_id)
            if project is None:
                raise LocalEntityNotFound(kind.value, local_id)
            team_id = await self._team_for(auth, project.department_id, f"project {local_id}")
            return project_to_payload(project, team_id=team_id), team_id

        department: Optional[LocalDepartment] = entity or await self._source.get_department(local_id)
        if department is None:
            raise LocalEntityNotFound(kind.value, local_id)
        return department_to_team_payload(department), None

    async def _issue_parents(self, auth: _Auth, task: LocalTask) -> Tuple[str, Optional[str]]:
        if task.project_id:
            project_mapping = await self._linked(auth, EntityKind.PROJECT, task.project_id)
            team_id = project_mapping.external_parent_id or await self._team_for(
                auth, task.department_id, f"task {task.id}"
            )
            return team_id, project_mapping.external_id
        return await self._team_for(auth, task.department_id, f"task {task.id}"), None

    async def _team_for(self, auth: _Auth, department_id: Optional[str], owner: str) -> str:
        if department_id:
            return (await self._linked(auth, EntityKind.DEPARTMENT, department_id)).external_id
        if self._default_team_id:
            return self._default_team_id
        raise SyncFailed(
            f"No Linear team for {owner}: assign a department or set LINEAR_DEFAULT_TEAM_ID"
        )

    async def _linked(self, auth: _Auth, kind: EntityKind, local_id: str) -> EntityMapping:
        """The parent's mapping, pushing the parent first when it has none."""
        mapping = await self._mappings.find(local_id, kind)
        if mapping is not None and mapping.is_linked:
            return mapping
        logger.info("Parent %s %s is not in Linear yet; pushing it first", kind.value, local_id)
        try:
            return await self._push(auth, kind, local_id)
        except SyncFailed as exc:
            raise SyncFailed(f"parent {kind.value} {local_id} could not be synced: {exc.reason}") from exc

    async def _reconcile_task(self, auth: _Auth, task: LocalTask) -> Tuple[Outcome, Optional[str]]:
        mapping = await self._mappings.find(task.id, EntityKind.TASK)
        if (
            mapping is not None
            and mapping.is_linked
            and mapping.sync_status == SyncStatus.SYNCED.value
            and mapping.payload_hash
        ):
            payload, _ = await self._build_payload(auth, EntityKind.TASK, task.id, task)
            if payload_hash(payload) == mapping.payload_hash:
                logger.debug("Task %s unchanged since last sync; skipping", task.id)
                return Outcome.SKIPPED, mapping.external_id

        mapping = await self._push(auth, EntityKind.TASK, task.id, task)
        return Outcome.PUSHED, mapping.external_id

    async def _fail(self, local_id: str, kind: EntityKind, reason: str) -> SyncFailed:
        mapping = await self._mappings.mark_error(local_id, kind, reason)
        logger.warning("Sync of %s %s failed: %s", kind.value, local_id, reason)
        return SyncFailed(reason, last_error=mapping.last_error)

    # ── Pull internals ──────────────────────────────────────────────────

    async def _receive_issue(
        self,
        issue: LinearIssue,
        project_id: Optional[str],
        parent_external_id: Optional[str],
        *,
        import_missing: bool = True,
    ) -> Tuple[Outcome, Optional[str]]:
        """Apply a Linear issue to its task, importing it when it has none."""
        changes = issue_to_task_changes(issue)
        # serializes imports of one issue so it never becomes two tasks
        async with self._entity_locks.acquire(("external-issue", issue.id)):
            mapping = await self._mappings.find_by_external(issue.id, EntityKind.TASK)
            if mapping is None:
                if not import_missing:
                    return Outcome.IGNORED, None
                parent = issue.project or issue.team
                if parent_external_id is None and parent is not None:
                    parent_external_id = parent.id
                local_id = await self._source.import_remote_task(project_id, changes)
                await asyncio.shield(
                    self._mappings.upsert(
                        local_id,
                        EntityKind.TASK,
                        issue.id,
                        issue.identifier,
                        external_parent_id=parent_external_id,
                    )
                )
                logger.info("Imported Linear issue %s as task %s", issue.identifier, local_id)
                return Outcome.IMPORTED, local_id

        async with self._entity_locks.acquire((EntityKind.TASK.value, mapping.local_id)):
            await self._source.apply_remote_task(mapping.local_id, changes)
            await asyncio.shield(
                self._mappings.upsert(
                    mapping.local_id,
                    EntityKind.TASK,
                    issue.id,
                    issue.identifier,
                    external_parent_id=mapping.external_parent_id,
                    payload_hash=mapping.payload_hash,
                )
            )
        return Outcome.PULLED, mapping.local_id

    # ── Fan-out ─────────────────────────────────────────────────────────

    async def _gather_bounded(self, coros: Iterable[Awaitable[T]]) -> List[Union[T, BaseException]]:
        async def _bounded(coro: Awaitable[T]) -> T:
            async with self._concurrency:
                return await coro

        return await asyncio.gather(*(_bounded(c) for c in coros), return_exceptions=True)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, SyncFailed):
        return exc.reason
    if isinstance(exc, TrackerError):
        return exc.reason
    if not isinstance(exc, (AuthExpired, LocalEntityNotFound)):
        logger.error("Unexpected error during sync: %r", exc, exc_info=exc)
    return f"{type(exc).__name__}: {exc}"
