"""
Token manager — hand out a usable Linear access token, refreshing it when
it has expired.

This is the single interface the sync orchestrator uses to get a token for
the connected workspace.  Refreshes are serialized per workspace: Linear
rotates the refresh token on use, so a second concurrent refresh would
invalidate the first caller's grant.  Waiters re-read the credential after
taking the lock and reuse whatever the winner stored.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx

from config.settings import config
from connectors.credential_store import CredentialStore
from connectors.registry import ConnectorRegistry
from database.models import WorkspaceCredential
from utils.errors import AuthExpired, OAuthError
from utils.keyed_lock import KeyedLock
from utils.schemas import ConnectionState

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    def __init__(
        self,
        store: CredentialStore,
        registry: Optional[ConnectorRegistry] = None,
        *,
        skew_seconds: int = config.token_expiry_skew_seconds,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._registry = registry or ConnectorRegistry()
        self._skew = timedelta(seconds=skew_seconds)
        self._clock = clock
        self._refresh_locks = KeyedLock()

    def is_usable(self, credential: WorkspaceCredential) -> bool:
        """True when the stored access token has not reached its expiry."""
        if credential.state != ConnectionState.ACTIVE or not credential.access_token:
            return False
        expiry = credential.effective_expiry()
        return expiry is not None and expiry - self._skew > self._clock()

    async def ensure_valid_token(self, credential: WorkspaceCredential) -> str:
        """
        Return a usable access token for *credential*.

        1. Stored token still inside its expiry → returned as-is, no I/O.
        2. Otherwise refresh under the workspace lock and persist the grant
           before returning.
        3. No refresh token, or the refresh fails → credential marked
           ``expired`` and ``AuthExpired`` raised.
        """
        if credential.state != ConnectionState.ACTIVE:
            raise AuthExpired(
                f"Workspace {credential.workspace_id} is {credential.state.value}; re-authorize Linear"
            )
        if self.is_usable(credential):
            return self._store.decrypted_access_token(credential)

        async with self._refresh_locks.acquire(credential.workspace_id):
            current = await self._reload(credential)
            if self.is_usable(current):
                logger.debug("Workspace %s already refreshed by a concurrent caller", current.workspace_id)
                return self._store.decrypted_access_token(current)
            return await self._refresh(current)

    async def force_refresh(self, credential: WorkspaceCredential, rejected_token: str) -> str:
        """
        Refresh after Linear rejected *rejected_token* (401/403).

        If the stored token already differs from the rejected one, another
        caller refreshed in the meantime and its token is returned.
        """
        async with self._refresh_locks.acquire(credential.workspace_id):
            current = await self._reload(credential)
            stored = self._store.decrypted_access_token(current)
            if stored and stored != rejected_token and self.is_usable(current):
                return stored
            return await self._refresh(current)

    async def _reload(self, credential: WorkspaceCredential) -> WorkspaceCredential:
        current = await self._store.get(credential.workspace_id)
        if current is None or current.state != ConnectionState.ACTIVE:
            state = current.state.value if current is not None else "missing"
            raise AuthExpired(f"Workspace {credential.workspace_id} is {state}; re-authorize Linear")
        return current

    async def _refresh(self, credential: WorkspaceCredential) -> str:
        refresh_token = self._store.decrypted_refresh_token(credential)
        if not refresh_token:
            await self._store.mark_expired(
                credential.workspace_id, "Token expired and no refresh token available"
            )
            raise AuthExpired("Linear token expired and no refresh token is stored")

        connector = self._registry.get(credential.provider)
        if connector is None:
            await self._store.mark_expired(
                credential.workspace_id, f"No connector configured for {credential.provider}"
            )
            raise AuthExpired(f"No OAuth connector configured for provider {credential.provider}")

        try:
            grant = await connector.refresh_access_token(refresh_token)
        except (OAuthError, httpx.HTTPError) as exc:
            await self._store.mark_expired(credential.workspace_id, f"Refresh failed: {exc}")
            raise AuthExpired(f"Linear token refresh failed: {exc}") from exc

        await self._store.save_refreshed(credential.workspace_id, grant)
        return grant.access_token
