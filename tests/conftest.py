"""Shared fixtures: a scripted OAuth provider, a controllable clock and a wired gateway."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from config import Settings
from gateway import build_gateway, get_gateway
from gateway.errors import ProviderUnavailable
from models.auth import DeviceCodeGrant, TokenPollResponse


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProvider:
    """Device flow provider answering polls from a script.

    Each script entry is a TokenPollResponse, or an exception instance to raise.
    The last entry repeats once the script runs out.
    """

    def __init__(self, script=None, expires_in: int = 900, interval: int = 5):
        self.script = list(script or [TokenPollResponse(error="authorization_pending")])
        self.expires_in = expires_in
        self.interval = interval
        self.device_code_requests = 0
        self.poll_calls = 0
        self.fail_start = False

    async def request_device_code(self) -> DeviceCodeGrant:
        self.device_code_requests += 1
        if self.fail_start:
            raise ProviderUnavailable("connection refused")
        return DeviceCodeGrant(
            device_code=f"device-{self.device_code_requests}",
            user_code="ABCD-EFGH",
            verification_uri="https://microsoft.com/devicelogin",
            expires_in=self.expires_in,
            interval=self.interval,
        )

    async def poll_token(self, device_code: str) -> TokenPollResponse:
        self.poll_calls += 1
        entry = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(entry, Exception):
            raise entry
        return entry


def pending():
    return TokenPollResponse(error="authorization_pending")


def granted(token: str = "access-token-1"):
    return TokenPollResponse(access_token=token)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        API_KEYS=["test-api-key"],
        STREAM_ITEM_DELAY_MS=0,
        AUTH_REQUIRED=True,
        AUTH_PUBLIC_LISTING=False,
    )


@pytest.fixture
def gateway(settings, provider, clock):
    return build_gateway(settings, provider=provider, clock=clock)


@pytest.fixture
def client(gateway):
    from main import app

    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def api_key_headers():
    return {"Authorization": "Bearer test-api-key"}
