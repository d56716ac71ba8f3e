"""
Tests for the entity mapping store — atomic upsert keyed by (local_id, kind).
"""

import asyncio

import pytest
from sqlalchemy import func, select

from database.models import EntityMapping
from utils.schemas import EntityKind, SyncStatus


async def _row_count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(EntityMapping))).scalar_one()


class TestUpsert:
    @pytest.mark.asyncio
    async def test_insert_then_update_keeps_one_row(self, mapping_store, session_factory):
        first = await mapping_store.upsert("T1", EntityKind.TASK, "issue-1", "ENG-1")
        second = await mapping_store.upsert("T1", EntityKind.TASK, "issue-2", "ENG-2")

        assert first.mapping_id == second.mapping_id
        assert second.external_id == "issue-2"
        assert second.sync_status == SyncStatus.SYNCED.value
        assert second.last_synced_at is not None
        assert await _row_count(session_factory) == 1

    @pytest.mark.asyncio
    async def test_same_local_id_different_kinds(self, mapping_store, session_factory):
        await mapping_store.upsert("X", EntityKind.TASK, "issue-1", "ENG-1")
        await mapping_store.upsert("X", EntityKind.PROJECT, "project-1", "slug")
        assert await _row_count(session_factory) == 2

    @pytest.mark.asyncio
    async def test_concurrent_upserts_never_duplicate(self, mapping_store, session_factory):
        await asyncio.gather(
            *(mapping_store.upsert("T1", EntityKind.TASK, f"issue-{n}", f"ENG-{n}") for n in range(10))
        )

        assert await _row_count(session_factory) == 1
        mapping = await mapping_store.find("T1", EntityKind.TASK)
        assert mapping.external_id.startswith("issue-")

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, mapping_store):
        await mapping_store.mark_error("T1", EntityKind.TASK, "Unavailable: down")
        mapping = await mapping_store.upsert("T1", EntityKind.TASK, "issue-1", "ENG-1")
        assert mapping.last_error is None
        assert mapping.sync_status == SyncStatus.SYNCED.value


class TestMarkError:
    @pytest.mark.asyncio
    async def test_keeps_external_id(self, mapping_store):
        synced = await mapping_store.upsert("T1", EntityKind.TASK, "issue-1", "ENG-1")
        failed = await mapping_store.mark_error("T1", EntityKind.TASK, "Invalid: bad title")

        assert failed.external_id == "issue-1"
        assert failed.external_key == "ENG-1"
        assert failed.sync_status == SyncStatus.ERROR.value
        assert failed.last_error == "Invalid: bad title"
        assert failed.last_synced_at == synced.last_synced_at

    @pytest.mark.asyncio
    async def test_placeholder_for_never_synced_entity(self, mapping_store):
        failed = await mapping_store.mark_error("T9", EntityKind.TASK, "Unavailable: down")

        assert failed.external_id is None
        assert not failed.is_linked
        assert failed.sync_status == SyncStatus.ERROR.value

    @pytest.mark.asyncio
    async def test_mark_pending(self, mapping_store):
        await mapping_store.upsert("T1", EntityKind.TASK, "issue-1", "ENG-1")
        pending = await mapping_store.mark_pending("T1", EntityKind.TASK)
        assert pending.sync_status == SyncStatus.PENDING.value
        assert pending.external_id == "issue-1"


class TestQueries:
    @pytest.mark.asyncio
    async def test_find_by_external(self, mapping_store):
        await mapping_store.upsert("T1", EntityKind.TASK, "issue-1", "ENG-1")
        mapping = await mapping_store.find_by_external("issue-1", EntityKind.TASK)
        assert mapping.local_id == "T1"
        assert await mapping_store.find_by_external("issue-1", EntityKind.PROJECT) is None

    @pytest.mark.asyncio
    async def test_list_by_kind_and_status(self, mapping_store):
        await mapping_store.upsert("T1", EntityKind.TASK, "issue-1", "ENG-1")
        await mapping_store.mark_error("T2", EntityKind.TASK, "boom")
        await mapping_store.upsert("P1", EntityKind.PROJECT, "project-1", "slug")

        assert [m.local_id for m in await mapping_store.list_by_kind(EntityKind.TASK)] == ["T1", "T2"]
        failed = await mapping_store.list_by_kind("task", status=SyncStatus.ERROR)
        assert [m.local_id for m in failed] == ["T2"]

    @pytest.mark.asyncio
    async def test_status_counts(self, mapping_store):
        await mapping_store.upsert("T1", EntityKind.TASK, "issue-1", "ENG-1")
        await mapping_store.upsert("T2", EntityKind.TASK, "issue-2", "ENG-2")
        await mapping_store.mark_error("T3", EntityKind.TASK, "boom")

        counts = await mapping_store.status_counts(["T1", "T2", "T3", "T4"], EntityKind.TASK)
        assert counts == {"synced": 2, "error": 1}
        assert await mapping_store.status_counts([], EntityKind.TASK) == {}
