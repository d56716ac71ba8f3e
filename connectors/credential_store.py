"""
Credential store — durable record of the Linear workspace's OAuth grant.

One row per provider is live at a time (single-workspace installation).
Secrets are encrypted with :mod:`connectors.encryption` before they reach
the database and decrypted only when a caller asks for them.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import TokenCipher, default_cipher
from database.models import WorkspaceCredential, utcnow
from utils.schemas import ConnectionState, OAuthGrant, WorkspaceStatus

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: Optional[TokenCipher] = None,
    ):
        self._sessions = session_factory
        self._cipher = cipher or default_cipher()

    # ── Reads ───────────────────────────────────────────────────────────

    async def get(self, workspace_id: str) -> Optional[WorkspaceCredential]:
        async with self._sessions() as session:
            return await session.get(WorkspaceCredential, workspace_id, populate_existing=True)

    async def get_current(self, provider: str) -> Optional[WorkspaceCredential]:
        """
        The active credential for *provider*, else the most recently touched
        expired one (so callers can tell "expired" from "never connected").
        """
        async with self._sessions() as session:
            result = await session.execute(
                select(WorkspaceCredential)
                .where(
                    WorkspaceCredential.provider == provider,
                    WorkspaceCredential.connection_state.in_(
                        [ConnectionState.ACTIVE.value, ConnectionState.EXPIRED.value]
                    ),
                )
                .order_by(WorkspaceCredential.updated_at.desc())
            )
            rows = result.scalars().all()
        for row in rows:
            if row.state == ConnectionState.ACTIVE:
                return row
        return rows[0] if rows else None

    def decrypted_access_token(self, credential: WorkspaceCredential) -> str:
        return self._cipher.decrypt(credential.access_token or "")

    def decrypted_refresh_token(self, credential: WorkspaceCredential) -> str:
        return self._cipher.decrypt(credential.refresh_token or "")

    async def status(self, provider: str) -> WorkspaceStatus:
        credential = await self.get_current(provider)
        if credential is None:
            return WorkspaceStatus(connected=False)
        return WorkspaceStatus(
            connected=credential.state == ConnectionState.ACTIVE,
            workspace_id=credential.workspace_id,
            workspace_name=credential.workspace_name,
            connection_state=credential.state,
            scope=credential.scope,
            expires_at=credential.effective_expiry(),
            last_refreshed_at=credential.last_refreshed_at,
            last_error=credential.last_error,
        )

    # ── Writes ──────────────────────────────────────────────────────────

    async def save_authorization(
        self,
        provider: str,
        grant: OAuthGrant,
        *,
        external_workspace_id: Optional[str] = None,
        workspace_name: Optional[str] = None,
    ) -> WorkspaceCredential:
        """Store the grant from a completed authorization-code exchange."""
        async with self._sessions() as session:
            result = await session.execute(
                select(WorkspaceCredential)
                .where(WorkspaceCredential.provider == provider)
                .order_by(WorkspaceCredential.updated_at.desc())
                .limit(1)
            )
            credential = result.scalar_one_or_none()
            if credential is None:
                credential = WorkspaceCredential(
                    provider=provider,
                    connection_state=ConnectionState.DISCONNECTED.value,
                )
                session.add(credential)
                await session.flush()

            # single active workspace per provider
            await session.execute(
                update(WorkspaceCredential)
                .where(
                    WorkspaceCredential.provider == provider,
                    WorkspaceCredential.workspace_id != credential.workspace_id,
                    WorkspaceCredential.connection_state == ConnectionState.ACTIVE.value,
                )
                .values(connection_state=ConnectionState.DISCONNECTED.value, updated_at=utcnow())
            )
            await session.flush()

            self._apply_grant(credential, grant, keep_refresh_token=False)
            credential.external_workspace_id = external_workspace_id or credential.external_workspace_id
            credential.workspace_name = workspace_name or credential.workspace_name
            credential.transition_to(ConnectionState.ACTIVE)
            await session.commit()
            logger.info(
                "Stored %s authorization for workspace %s (%s)",
                provider, credential.workspace_id, credential.workspace_name or "unnamed",
            )
            return credential

    async def save_refreshed(self, workspace_id: str, grant: OAuthGrant) -> WorkspaceCredential:
        """Persist a refreshed grant; committed before the caller may use it."""
        async with self._sessions() as session:
            credential = await session.get(WorkspaceCredential, workspace_id, with_for_update=True)
            if credential is None:
                raise LookupError(f"Workspace credential {workspace_id} not found")
            self._apply_grant(credential, grant, keep_refresh_token=True)
            credential.last_refreshed_at = credential.issued_at
            credential.transition_to(ConnectionState.ACTIVE)
            await session.commit()
            logger.info("Refreshed %s token for workspace %s", credential.provider, workspace_id)
            return credential

    async def mark_expired(self, workspace_id: str, reason: str) -> Optional[WorkspaceCredential]:
        """Tokens are kept for diagnostics; only re-authorization revives the row."""
        async with self._sessions() as session:
            credential = await session.get(WorkspaceCredential, workspace_id)
            if credential is None:
                return None
            credential.transition_to(ConnectionState.EXPIRED)
            credential.last_error = reason
            await session.commit()
            logger.warning("Workspace %s credential expired: %s", workspace_id, reason)
            return credential

    async def disconnect(self, provider: str) -> int:
        """Clear tokens on every live row of *provider*. Rows are kept."""
        async with self._sessions() as session:
            result = await session.execute(
                select(WorkspaceCredential).where(
                    WorkspaceCredential.provider == provider,
                    WorkspaceCredential.connection_state != ConnectionState.DISCONNECTED.value,
                )
            )
            rows = result.scalars().all()
            for credential in rows:
                credential.transition_to(ConnectionState.DISCONNECTED)
                credential.access_token = ""
                credential.refresh_token = ""
                credential.scope = ""
                credential.expires_in_seconds = None
                credential.absolute_expiry = None
            await session.commit()
        logger.info("Disconnected %d %s workspace(s)", len(rows), provider)
        return len(rows)

    # ── Internals ───────────────────────────────────────────────────────

    def _apply_grant(
        self,
        credential: WorkspaceCredential,
        grant: OAuthGrant,
        *,
        keep_refresh_token: bool,
    ) -> None:
        now = utcnow()
        credential.access_token = self._cipher.encrypt(grant.access_token)
        if grant.refresh_token or not keep_refresh_token:
            credential.refresh_token = self._cipher.encrypt(grant.refresh_token or "")
        credential.token_type = grant.token_type or "Bearer"
        if grant.scope:
            credential.scope = grant.scope
        credential.issued_at = now
        credential.expires_in_seconds = grant.expires_in
        credential.absolute_expiry = (
            now + timedelta(seconds=grant.expires_in) if grant.expires_in is not None else None
        )
        credential.last_error = None
