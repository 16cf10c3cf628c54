"""Tests for the httpx device flow client against a mock transport."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from gateway.errors import ProviderError, ProviderUnavailable
from gateway.oauth_provider import DEVICE_CODE_GRANT_TYPE, OAuthDeviceFlowClient

DEVICE_URL = "https://login.example.com/common/oauth2/v2.0/devicecode"
TOKEN_URL = "https://login.example.com/common/oauth2/v2.0/token"


def make_client(handler):
    return OAuthDeviceFlowClient(
        device_authorization_url=DEVICE_URL,
        token_url=TOKEN_URL,
        client_id="client-123",
        scope="api://gateway/.default",
        transport=httpx.MockTransport(handler),
    )


def form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.mark.asyncio
async def test_request_device_code_posts_client_and_scope():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["form"] = form(request)
        return httpx.Response(200, json={
            "device_code": "dc-1",
            "user_code": "WXYZ-1234",
            "verification_uri": "https://microsoft.com/devicelogin",
            "expires_in": 900,
            "interval": 5,
            "message": "Go sign in",
        })

    grant = await make_client(handler).request_device_code()

    assert seen["url"] == DEVICE_URL
    assert seen["form"] == {"client_id": "client-123", "scope": "api://gateway/.default"}
    assert grant.device_code == "dc-1"
    assert grant.user_code == "WXYZ-1234"
    assert grant.message == "Go sign in"


@pytest.mark.asyncio
async def test_device_code_rejected():
    def handler(request):
        return httpx.Response(400, json={"error": "invalid_client", "error_description": "unknown client"})

    with pytest.raises(ProviderError) as exc_info:
        await make_client(handler).request_device_code()
    assert exc_info.value.error_code == "invalid_client"
    assert not isinstance(exc_info.value, ProviderUnavailable)


@pytest.mark.asyncio
async def test_poll_token_success():
    def handler(request):
        assert str(request.url) == TOKEN_URL
        assert form(request) == {
            "grant_type": DEVICE_CODE_GRANT_TYPE,
            "client_id": "client-123",
            "device_code": "dc-1",
        }
        return httpx.Response(200, json={"access_token": "at-1", "token_type": "Bearer"})

    response = await make_client(handler).poll_token("dc-1")
    assert response.access_token == "at-1"
    assert response.error is None


@pytest.mark.asyncio
async def test_poll_token_pending_is_returned_not_raised():
    def handler(request):
        return httpx.Response(400, json={"error": "authorization_pending"})

    response = await make_client(handler).poll_token("dc-1")
    assert response.error == "authorization_pending"


@pytest.mark.asyncio
async def test_server_error_is_unavailable():
    def handler(request):
        return httpx.Response(503, text="maintenance")

    with pytest.raises(ProviderUnavailable):
        await make_client(handler).poll_token("dc-1")


@pytest.mark.asyncio
async def test_network_error_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderUnavailable):
        await make_client(handler).poll_token("dc-1")


@pytest.mark.asyncio
async def test_non_json_body_is_unavailable():
    def handler(request):
        return httpx.Response(200, content=b"<html>", headers={"content-type": "text/html"})

    with pytest.raises(ProviderUnavailable):
        await make_client(handler).poll_token("dc-1")


@pytest.mark.asyncio
async def test_error_status_without_error_code():
    def handler(request):
        return httpx.Response(401, content=json.dumps({"detail": "nope"}).encode())

    response = await make_client(handler).poll_token("dc-1")
    assert response.error == "http_401"
