"""
BaseConnector — abstract interface for OAuth2 connectors.

A connector knows a provider's OAuth endpoints: it builds the consent URL,
exchanges an authorization code, refreshes and revokes tokens.  It holds
client configuration only, never a user's tokens.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Tuple

from utils.schemas import OAuthGrant


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'linear'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """OAuth scopes requested at authorization time."""
        ...

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def get_auth_url(self, state: str) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        state : str
            Opaque, signed state string (CSRF protection).
        """
        ...

    @abstractmethod
    async def exchange_code(self, code: str) -> OAuthGrant:
        """Authorization-code grant. Raises ``OAuthError`` on refusal."""
        ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> OAuthGrant:
        """
        Refresh-token grant.

        Providers may rotate the refresh token; ``OAuthGrant.refresh_token``
        is None when they did not.
        """
        ...

    @abstractmethod
    async def fetch_workspace(self, access_token: str) -> Tuple[str, str]:
        """Return ``(external_workspace_id, workspace_name)`` for a fresh grant."""
        ...

    async def revoke_token(self, access_token: str) -> bool:
        """
        Revoke the token at the provider (optional).
        Returns True on success, False if unsupported or refused.
        """
        return False

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """True when client id / secret are present."""
        return True
