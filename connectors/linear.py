"""
LinearConnector — OAuth2 for the Linear API.

Linear's token endpoint expects form-encoded bodies for both the
authorization-code and refresh-token grants.  Access tokens are used as
``Authorization: Bearer`` against the GraphQL endpoint.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from config.settings import config
from connectors.base import BaseConnector
from utils.errors import OAuthError
from utils.schemas import OAuthGrant

logger = logging.getLogger(__name__)

# Linear OAuth2 endpoints
_LINEAR_AUTH_URL = "https://linear.app/oauth/authorize"
_LINEAR_TOKEN_URL = "https://api.linear.app/oauth/token"
_LINEAR_REVOKE_URL = "https://api.linear.app/oauth/revoke"

_ORGANIZATION_QUERY = "query Organization { organization { id name urlKey } }"


class LinearConnector(BaseConnector):
    """OAuth2 connector for Linear."""

    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        api_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client_id = config.linear_client_id if client_id is None else client_id
        self._client_secret = config.linear_client_secret if client_secret is None else client_secret
        self._redirect_uri = redirect_uri or config.linear_redirect_uri
        self._scopes = list(scopes or config.linear_scopes)
        self._api_url = api_url or config.linear_api_url
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "linear"

    @property
    def display_name(self) -> str:
        return "Linear"

    @property
    def scopes(self) -> List[str]:
        return self._scopes

    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=config.sync_request_timeout)

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "scope": ",".join(self._scopes),
            "response_type": "code",
            "state": state,
            "prompt": "consent",
        }
        return f"{_LINEAR_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthGrant:
        return await self._token_request(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self._redirect_uri,
                "code": code,
                "grant_type": "authorization_code",
            },
            "code exchange",
        )

    async def refresh_access_token(self, refresh_token: str) -> OAuthGrant:
        return await self._token_request(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            "token refresh",
        )

    async def _token_request(self, data: Dict[str, str], action: str) -> OAuthGrant:
        async with self._http() as client:
            resp = await client.post(
                _LINEAR_TOKEN_URL,
                data=data,
                headers={"Accept": "application/json"},
            )
        body = _json_or_empty(resp)
        if resp.is_error or "error" in body:
            detail = body.get("error_description") or body.get("error") or resp.text[:200]
            raise OAuthError(f"Linear {action} failed ({resp.status_code}): {detail}")
        return OAuthGrant.model_validate(body)

    async def fetch_workspace(self, access_token: str) -> Tuple[str, str]:
        async with self._http() as client:
            resp = await client.post(
                self._api_url,
                json={"query": _ORGANIZATION_QUERY},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        body = _json_or_empty(resp)
        org = (body.get("data") or {}).get("organization")
        if resp.is_error or not org:
            raise OAuthError(
                f"Linear organization lookup failed ({resp.status_code}): {body.get('errors') or resp.text[:200]}"
            )
        return str(org["id"]), org.get("name") or org.get("urlKey") or ""

    async def revoke_token(self, access_token: str) -> bool:
        """Revoke the token via Linear's OAuth revoke endpoint."""
        try:
            async with self._http() as client:
                resp = await client.post(
                    _LINEAR_REVOKE_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            return resp.status_code == 200
        except httpx.HTTPError:
            logger.warning("Linear token revocation failed", exc_info=True)
            return False


def _json_or_empty(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
