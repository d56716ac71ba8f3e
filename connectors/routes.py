"""
Connector API routes — Linear OAuth connect/callback, status, disconnect.

Route prefix: /api/v1/connectors
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import time
from base64 import b64decode, b64encode
from typing import Any, Dict

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse

from api.dependencies import get_connector_registry, get_credential_store
from config.settings import config
from connectors.credential_store import CredentialStore
from connectors.registry import ConnectorRegistry
from utils.errors import OAuthError
from utils.schemas import WorkspaceStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])

PROVIDER = "linear"

# ── State token helpers (CSRF protection) ──────────────────────────────

_STATE_TTL = 600  # seconds


def _sign(raw: bytes) -> str:
    return hmac.new(config.oauth_state_secret.encode(), raw, hashlib.sha256).hexdigest()[:16]


def _create_state() -> str:
    """Create an opaque state string carrying a nonce + expiry."""
    payload = json.dumps({"nonce": secrets.token_urlsafe(8), "exp": int(time.time()) + _STATE_TTL})
    raw = payload.encode()
    return b64encode(raw).decode() + "." + _sign(raw)


def _verify_state(state: str) -> None:
    """Verify the state token. Raises HTTP 400 on failure."""
    try:
        parts = state.split(".", 1)
        if len(parts) != 2:
            raise ValueError("bad format")
        raw = b64decode(parts[0])
        if not hmac.compare_digest(parts[1], _sign(raw)):
            raise ValueError("bad signature")
        payload = json.loads(raw)
        if payload.get("exp", 0) < time.time():
            raise ValueError("state expired")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid or expired OAuth state: {exc}",
        ) from exc


def _connector(registry: ConnectorRegistry):
    connector = registry.get(PROVIDER)
    if connector is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Linear connector is not configured (set LINEAR_CLIENT_ID / LINEAR_CLIENT_SECRET)",
        )
    return connector


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/linear/auth-url")
async def get_auth_url(
    registry: ConnectorRegistry = Depends(get_connector_registry),
) -> Dict[str, str]:
    """
    Get the Linear authorization URL.

    The operator opens this URL in a popup window.
    """
    connector = _connector(registry)
    return {"auth_url": connector.get_auth_url(_create_state()), "provider": PROVIDER}


@router.get("/linear/callback")
async def oauth_callback(
    code: str = Query(...),
    state: str = Query(...),
    registry: ConnectorRegistry = Depends(get_connector_registry),
    store: CredentialStore = Depends(get_credential_store),
) -> HTMLResponse:
    """
    OAuth callback — Linear redirects here after consent.

    Exchanges the code for tokens, looks up the workspace, stores the
    grant, and returns a small HTML page that notifies the opener window.
    """
    _verify_state(state)
    connector = _connector(registry)

    try:
        grant = await connector.exchange_code(code)
        workspace_id, workspace_name = await connector.fetch_workspace(grant.access_token)
    except (OAuthError, httpx.HTTPError) as exc:
        logger.error("Linear OAuth callback failed: %s", exc)
        return HTMLResponse(
            content=_callback_html(success=False, message=f"Connection failed: {exc}"),
            status_code=200,
        )

    credential = await store.save_authorization(
        PROVIDER,
        grant,
        external_workspace_id=workspace_id,
        workspace_name=workspace_name,
    )
    logger.info("Linear connected: workspace=%s (%s)", credential.workspace_id, workspace_name)
    return HTMLResponse(
        content=_callback_html(
            success=True,
            message=f"Connected {connector.display_name} workspace {workspace_name or workspace_id}",
        ),
        status_code=200,
    )


@router.get("/linear/status", response_model=WorkspaceStatus)
async def connection_status(
    store: CredentialStore = Depends(get_credential_store),
) -> WorkspaceStatus:
    return await store.status(PROVIDER)


@router.post("/linear/disconnect")
async def disconnect(
    registry: ConnectorRegistry = Depends(get_connector_registry),
    store: CredentialStore = Depends(get_credential_store),
) -> Dict[str, Any]:
    """Revoke the token (best effort) and clear the stored grant."""
    revoked = False
    credential = await store.get_current(PROVIDER)
    connector = registry.get(PROVIDER)
    if credential is not None and connector is not None:
        access_token = store.decrypted_access_token(credential)
        if access_token:
            revoked = await connector.revoke_token(access_token)

    cleared = await store.disconnect(PROVIDER)
    if not cleared and credential is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No Linear workspace is connected")
    return {"status": "disconnected", "revoked": revoked, "workspaces": cleared}


# ── Callback HTML template ─────────────────────────────────────────────


def _callback_html(success: bool, message: str) -> str:
    """
    Small HTML page shown in the OAuth popup after redirect.
    Sends a postMessage to the opener and auto-closes.
    """
    status_text = "Connected!" if success else "Failed"
    color = "#00d992" if success else "#ef4444"
    safe_message = json.dumps(message)

    return f"""<!DOCTYPE html>
<html>
<head>
    <title>Linear {status_text}</title>
    <style>
        body {{
            font-family: system-ui, sans-serif;
            display: flex; align-items: center; justify-content: center;
            height: 100vh; margin: 0;
        }}
        h2 {{ color: {color}; }}
    </style>
</head>
<body>
    <div>
        <h2>{status_text}</h2>
        <p id="message"></p>
    </div>
    <script>
        const message = {safe_message};
        document.getElementById('message').textContent = message;
        if (window.opener) {{
            window.opener.postMessage({{
                type: 'oauth-callback',
                provider: '{PROVIDER}',
                success: {'true' if success else 'false'},
                message: message,
            }}, '*');
        }}
        setTimeout(() => window.close(), 2000);
    </script>
</body>
</html>"""
