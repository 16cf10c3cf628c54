from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from enum import Enum
from datetime import datetime
from typing import Optional


class SessionState(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    EXPIRED = "expired"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SessionState.AUTHORIZED, SessionState.EXPIRED, SessionState.FAILED})


class PollOutcome(str, Enum):
    AUTHORIZED = "authorized"
    STILL_PENDING = "pending"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class DeviceCodeGrant(BaseModel):
    """Raw device authorization response from the OAuth provider."""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: Optional[str] = None
    expires_in: int = 900
    interval: int = 5
    message: Optional[str] = None


class TokenPollResponse(BaseModel):
    """Token endpoint answer for one device-code poll: either a token or an OAuth error code."""

    access_token: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class DeviceCodeChallenge(BaseModel):
    """What the end user needs to complete sign-in out of band."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    user_code: str
    verification_uri: str
    verification_uri_complete: Optional[str] = None
    expires_in: int
    interval: int
    message: str


class AuthSession(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    device_code: str
    user_code: str
    verification_uri: str
    created_at: datetime
    expires_at: datetime
    poll_interval: int
    state: SessionState = SessionState.PENDING
    access_token: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
