"""
Per-request authentication gate.

Methods fall into three classes:

  HANDSHAKE   initialize, initialized, ping, notifications/initialized
  PROTECTED   tools/*, resources/*, prompts/*   (case-insensitive prefix)
  PUBLIC      everything else

Handshake and public methods always pass. A protected method passes only with
a credential the gate recognizes:

  Authorization: Bearer <api key>            configured in API_KEYS
  Authorization: Bearer <access token>       issued to an authorized device session
  Mcp-Session-Id / X-Session-Id: <id>        names an authorized device session

Denials carry remediation data telling the client how to run the device-code
flow, so an MCP client can surface sign-in instructions to its user.
"""
import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

HANDSHAKE_METHODS = frozenset({
    "initialize",
    "initialized",
    "ping",
    "notifications/initialized",
})

PROTECTED_PREFIXES = ("tools/", "resources/", "prompts/")

LISTING_METHODS = frozenset({"tools/list", "prompts/list", "resources/list"})


class MethodClass(str, Enum):
    PUBLIC = "public"
    HANDSHAKE = "handshake"
    PROTECTED = "protected"


class SessionAuthority(Protocol):
    def is_authorized(self, session_id: str) -> bool: ...

    def is_token_authorized(self, token: str) -> bool: ...


@dataclass(frozen=True)
class Credentials:
    bearer_token: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def present(self) -> bool:
        return bool(self.bearer_token or self.session_id)


def credentials_from_headers(headers: Mapping[str, str]) -> Credentials:
    """Extract credentials from request headers (case-insensitive mapping)."""
    bearer = None
    authorization = headers.get("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        bearer = token.strip()

    session_id = (headers.get("mcp-session-id") or headers.get("x-session-id") or "").strip()
    return Credentials(bearer_token=bearer, session_id=session_id or None)


class AuthError:
    """Structured denial. Rendered as a -32001 JSON-RPC error by the dispatcher."""

    def __init__(self, message: str, data: dict[str, Any]):
        self.message = message
        self.data = data

    def __repr__(self) -> str:
        return f"AuthError({self.message!r})"


@dataclass(frozen=True)
class AuthDecision:
    allowed: bool
    error: Optional[AuthError] = None

    @classmethod
    def allow(cls) -> "AuthDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, error: AuthError) -> "AuthDecision":
        return cls(allowed=False, error=error)


class AuthGate:
    def __init__(
        self,
        sessions: Optional[SessionAuthority],
        api_keys: Iterable[str] = (),
        server_url: str = "",
        enabled: bool = True,
        public_listing: bool = False,
    ):
        self._sessions = sessions
        self._api_keys = [key for key in api_keys if key]
        self._server_url = server_url.rstrip("/")
        self.enabled = enabled
        self.public_listing = public_listing

    def classify(self, method: str) -> MethodClass:
        if method in HANDSHAKE_METHODS:
            return MethodClass.HANDSHAKE
        lowered = method.lower()
        if self.public_listing and lowered in LISTING_METHODS:
            return MethodClass.PUBLIC
        if lowered.startswith(PROTECTED_PREFIXES):
            return MethodClass.PROTECTED
        return MethodClass.PUBLIC

    def is_authenticated(self, credentials: Credentials) -> bool:
        token = credentials.bearer_token
        if token:
            if any(hmac.compare_digest(token, key) for key in self._api_keys):
                return True
            if self._sessions is not None and self._sessions.is_token_authorized(token):
                return True
        if credentials.session_id and self._sessions is not None:
            return self._sessions.is_authorized(credentials.session_id)
        return False

    def authorize(self, method: str, credentials: Credentials) -> AuthDecision:
        if not self.enabled or self.classify(method) != MethodClass.PROTECTED:
            return AuthDecision.allow()
        if self.is_authenticated(credentials):
            return AuthDecision.allow()

        if credentials.present:
            logger.info(f"AuthGate: rejected credentials for '{method}'")
            message = "Authentication required: the supplied credentials are not valid or not yet authorized."
        else:
            logger.info(f"AuthGate: no credentials for protected method '{method}'")
            message = "Authentication required. Complete the device code flow to access this method."
        return AuthDecision.deny(AuthError(message, self.remediation(method)))

    def remediation(self, method: str) -> dict[str, Any]:
        base = self._server_url
        return {
            "method": method,
            "auth_flow": "device_code",
            "authorize_endpoint": f"{base}/auth/device/start",
            "token_endpoint": f"{base}/auth/device/poll",
            "status_endpoint": f"{base}/auth/device/status/{{session_id}}",
            "instructions": [
                "POST /auth/device/start with {\"session_id\": \"<your-id>\"} to get a user code.",
                "Open the verification URL and enter the user code.",
                "POST /auth/device/poll with the same session_id until the state is 'authorized'.",
                "Retry this request with the header 'Mcp-Session-Id: <your-id>'"
                " or 'Authorization: Bearer <access token>'.",
            ],
        }
