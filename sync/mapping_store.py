"""
Entity mapping store — durable correlation between local entities and
Linear entities, keyed by ``(local_id, local_kind)``.

Every write is a single ``INSERT … ON CONFLICT DO UPDATE`` so concurrent
writers for different entities never touch each other's rows and
concurrent writers for the same entity resolve last-write-wins.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import EntityMapping, utcnow
from utils.schemas import EntityKind, SyncStatus

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

_KEY = ["local_id", "local_kind"]

KindLike = Union[EntityKind, str]


def _kind(kind: KindLike) -> str:
    return EntityKind(kind).value


class EntityMappingStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def upsert(
        self,
        local_id: str,
        kind: KindLike,
        external_id: str,
        external_key: Optional[str],
        *,
        external_parent_id: Optional[str] = None,
        sync_status: SyncStatus = SyncStatus.SYNCED,
        payload_hash: Optional[str] = None,
    ) -> EntityMapping:
        """
        Replace the row for ``(local_id, kind)`` with the given values.

        Idempotent; callers pass the full desired row.  ``last_synced_at``
        moves only when the new status is ``synced``.
        """
        now = utcnow()
        values: Dict[str, Any] = {
            "external_id": external_id,
            "external_key": external_key,
            "external_parent_id": external_parent_id,
            "sync_status": SyncStatus(sync_status).value,
            "last_error": None,
            "payload_hash": payload_hash,
            "updated_at": now,
        }
        if sync_status == SyncStatus.SYNCED:
            values["last_synced_at"] = now
        return await self._write(local_id, kind, values)

    async def mark_error(self, local_id: str, kind: KindLike, message: str) -> EntityMapping:
        """
        Flag the mapping as failed without touching its external ids.

        An entity that never synced gets a placeholder row (no external id)
        so the failure is visible and picked up by retry sweeps.
        """
        values = {
            "sync_status": SyncStatus.ERROR.value,
            "last_error": message,
            "updated_at": utcnow(),
        }
        return await self._write(local_id, kind, values)

    async def mark_pending(self, local_id: str, kind: KindLike) -> EntityMapping:
        return await self._write(
            local_id, kind, {"sync_status": SyncStatus.PENDING.value, "updated_at": utcnow()}
        )

    async def find(self, local_id: str, kind: KindLike) -> Optional[EntityMapping]:
        async with self._sessions() as session:
            result = await session.execute(
                select(EntityMapping).where(
                    EntityMapping.local_id == local_id,
                    EntityMapping.local_kind == _kind(kind),
                )
            )
            return result.scalar_one_or_none()

    async def find_by_external(self, external_id: str, kind: KindLike) -> Optional[EntityMapping]:
        async with self._sessions() as session:
            result = await session.execute(
                select(EntityMapping)
                .where(
                    EntityMapping.external_id == external_id,
                    EntityMapping.local_kind == _kind(kind),
                )
                .order_by(EntityMapping.updated_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_by_kind(
        self, kind: KindLike, status: Optional[SyncStatus] = None
    ) -> List[EntityMapping]:
        stmt = select(EntityMapping).where(EntityMapping.local_kind == _kind(kind))
        if status is not None:
            stmt = stmt.where(EntityMapping.sync_status == SyncStatus(status).value)
        async with self._sessions() as session:
            result = await session.execute(stmt.order_by(EntityMapping.local_id))
            return list(result.scalars().all())

    async def status_counts(self, local_ids: Iterable[str], kind: KindLike) -> Dict[str, int]:
        ids = list(local_ids)
        if not ids:
            return {}
        async with self._sessions() as session:
            result = await session.execute(
                select(EntityMapping.sync_status, func.count())
                .where(
                    EntityMapping.local_kind == _kind(kind),
                    EntityMapping.local_id.in_(ids),
                )
                .group_by(EntityMapping.sync_status)
            )
            return {status: count for status, count in result.all()}

    # ── Internals ───────────────────────────────────────────────────────

    async def _write(self, local_id: str, kind: KindLike, values: Dict[str, Any]) -> EntityMapping:
        kind_value = _kind(kind)
        async with self._sessions() as session:
            insert = _INSERTS.get(session.bind.dialect.name)
            if insert is None:
                raise RuntimeError(f"Unsupported database dialect: {session.bind.dialect.name}")
            stmt = (
                insert(EntityMapping)
                .values(local_id=local_id, local_kind=kind_value, **values)
                .on_conflict_do_update(index_elements=_KEY, set_=values)
            )
            await session.execute(stmt)
            result = await session.execute(
                select(EntityMapping)
                .where(
                    EntityMapping.local_id == local_id,
                    EntityMapping.local_kind == kind_value,
                )
                .execution_options(populate_existing=True)
            )
            mapping = result.scalar_one()
            await session.commit()
        logger.debug(
            "Mapping %s/%s → %s (%s)", kind_value, local_id, mapping.external_id, mapping.sync_status
        )
        return mapping
