"""
SQLAlchemy ORM models for the workspace credential and the entity mapping tables.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from utils.errors import InvalidStateTransition
from utils.schemas import ConnectionState, SyncStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    pass


# disconnected → active → expired → active, and back to disconnected from anywhere live
_TRANSITIONS = {
    ConnectionState.DISCONNECTED: {ConnectionState.ACTIVE, ConnectionState.DISCONNECTED},
    ConnectionState.ACTIVE: {ConnectionState.ACTIVE, ConnectionState.EXPIRED, ConnectionState.DISCONNECTED},
    ConnectionState.EXPIRED: {ConnectionState.ACTIVE, ConnectionState.EXPIRED, ConnectionState.DISCONNECTED},
}


class WorkspaceCredential(Base):
    __tablename__ = "workspace_credentials"
    __table_args__ = (
        Index(
            "uq_workspace_credentials_active_provider",
            "provider",
            unique=True,
            postgresql_where=text("connection_state = 'active'"),
            sqlite_where=text("connection_state = 'active'"),
        ),
    )

    workspace_id = Column(String(36), primary_key=True, default=_new_id)
    provider = Column(String(32), nullable=False, default="linear")
    external_workspace_id = Column(String(128))
    workspace_name = Column(String(255))
    access_token = Column(Text, nullable=False, default="")
    refresh_token = Column(Text, nullable=False, default="")
    token_type = Column(String(32), default="Bearer")
    scope = Column(String(255), default="")
    issued_at = Column(UTCDateTime)
    expires_in_seconds = Column(Integer, nullable=True)
    absolute_expiry = Column(UTCDateTime, nullable=True)
    connection_state = Column(String(16), nullable=False, default=ConnectionState.DISCONNECTED.value)
    last_refreshed_at = Column(UTCDateTime)
    last_error = Column(Text)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    @property
    def state(self) -> ConnectionState:
        return ConnectionState(self.connection_state)

    def transition_to(self, target: ConnectionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state.value, target.value)
        self.connection_state = target.value

    def effective_expiry(self) -> Optional[datetime]:
        """
        Absolute expiry when recorded, else ``issued_at + expires_in_seconds``.

        The absolute value wins when both exist and disagree.
        """
        if self.absolute_expiry is not None:
            return self.absolute_expiry
        if self.issued_at is not None and self.expires_in_seconds is not None:
            return self.issued_at + timedelta(seconds=self.expires_in_seconds)
        return None


class EntityMapping(Base):
    __tablename__ = "entity_mappings"
    __table_args__ = (
        UniqueConstraint("local_id", "local_kind", name="uq_entity_mappings_local"),
        Index("ix_entity_mappings_external", "local_kind", "external_id"),
        Index("ix_entity_mappings_status", "local_kind", "sync_status"),
    )

    mapping_id = Column(String(36), primary_key=True, default=_new_id)
    local_id = Column(String(128), nullable=False)
    local_kind = Column(String(16), nullable=False)
    external_id = Column(String(128))
    external_key = Column(String(128))
    external_parent_id = Column(String(128))
    sync_status = Column(String(16), nullable=False, default=SyncStatus.PENDING.value)
    last_synced_at = Column(UTCDateTime)
    last_error = Column(Text)
    payload_hash = Column(String(64))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_linked(self) -> bool:
        return bool(self.external_id)
