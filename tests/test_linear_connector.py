"""
Tests for the Linear OAuth connector and the connector registry.
"""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from connectors.linear import LinearConnector
from connectors.registry import ConnectorRegistry
from utils.errors import OAuthError


def _connector(handler) -> LinearConnector:
    return LinearConnector(
        client_id="cid",
        client_secret="secret",
        redirect_uri="http://localhost:8000/api/v1/connectors/linear/callback",
        scopes=["read", "write"],
        api_url="https://api.linear.test/graphql",
        transport=httpx.MockTransport(handler),
    )


class TestLinearConnector:
    def test_auth_url(self):
        connector = _connector(lambda request: httpx.Response(500))
        url = urlparse(connector.get_auth_url("state-123"))
        params = parse_qs(url.query)

        assert url.netloc == "linear.app"
        assert params["scope"] == ["read,write"]
        assert params["state"] == ["state-123"]
        assert params["response_type"] == ["code"]
        assert params["client_id"] == ["cid"]

    @pytest.mark.asyncio
    async def test_exchange_code_posts_form(self):
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["Content-Type"]
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(
                200,
                json={"access_token": "tok", "token_type": "Bearer", "expires_in": 86399, "scope": ["read", "write"]},
            )

        grant = await _connector(handler).exchange_code("the-code")

        assert seen["content_type"].startswith("application/x-www-form-urlencoded")
        assert seen["form"]["grant_type"] == ["authorization_code"]
        assert seen["form"]["code"] == ["the-code"]
        assert grant.access_token == "tok"
        assert grant.expires_in == 86399
        assert grant.scope == "read,write"

    @pytest.mark.asyncio
    async def test_refresh_grant(self):
        def handler(request):
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["refresh_token"]
            assert form["refresh_token"] == ["ref-1"]
            return httpx.Response(200, json={"access_token": "tok-2", "refresh_token": "ref-2", "expires_in": 60})

        grant = await _connector(handler).refresh_access_token("ref-1")
        assert grant.refresh_token == "ref-2"

    @pytest.mark.asyncio
    async def test_rejected_grant_raises(self):
        connector = _connector(
            lambda request: httpx.Response(400, json={"error": "invalid_grant", "error_description": "revoked"})
        )
        with pytest.raises(OAuthError, match="revoked"):
            await connector.refresh_access_token("ref-1")

    @pytest.mark.asyncio
    async def test_fetch_workspace(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer tok"
            assert "organization" in json.loads(request.content)["query"]
            return httpx.Response(200, json={"data": {"organization": {"id": "org-1", "name": "Acme", "urlKey": "acme"}}})

        assert await _connector(handler).fetch_workspace("tok") == ("org-1", "Acme")

    @pytest.mark.asyncio
    async def test_revoke_is_best_effort(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        assert await _connector(handler).revoke_token("tok") is False


class TestConnectorRegistry:
    def setup_method(self):
        ConnectorRegistry.reset()

    def teardown_method(self):
        ConnectorRegistry.reset()

    def test_singleton(self):
        assert ConnectorRegistry() is ConnectorRegistry()

    def test_unconfigured_connector_skipped(self):
        registry = ConnectorRegistry()
        registry.discover([LinearConnector(client_id="", client_secret="")])
        assert registry.get("linear") is None

    def test_configured_connector_registered(self):
        registry = ConnectorRegistry()
        registry.discover([_connector(lambda request: httpx.Response(200))])
        assert registry.list_configured() == ["linear"]
        assert registry.describe() == [{"provider": "linear", "display_name": "Linear"}]
