"""
Device-code OAuth sessions — the state machine that authorizes gated methods.

Lifecycle of one session (keyed by a caller-chosen session id):

    start()  ──►  PENDING ──poll: token──────────►  AUTHORIZED
                     │    ──poll: now > expiresAt ─►  EXPIRED
                     │    ──poll: provider refuses ►  FAILED
                     └─ poll: authorization_pending / slow_down → stays PENDING

Terminal states never change. Expiry is evaluated lazily on every access, so
no background timer is needed for correctness; `reaper_loop` only reclaims
memory for sessions nobody touches again.

The store is the sole owner of AuthSession objects: callers receive copies.
All access happens on the event loop. A poll re-reads its session after the
provider round trip, so a concurrent poll that settled it first wins.
"""
import asyncio
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from models.auth import (
    AuthSession,
    DeviceCodeChallenge,
    DeviceCodeGrant,
    PollOutcome,
    SessionState,
    TokenPollResponse,
)

from .errors import ProviderError, ProviderUnavailable

logger = logging.getLogger(__name__)

# RFC 8628 §3.5: each slow_down adds 5 seconds to the polling interval
SLOW_DOWN_INCREMENT_SECONDS = 5

_TERMINAL_OUTCOMES = {
    SessionState.AUTHORIZED: PollOutcome.AUTHORIZED,
    SessionState.EXPIRED: PollOutcome.EXPIRED,
    SessionState.FAILED: PollOutcome.FAILED,
}


class DeviceFlowProvider(Protocol):
    """The two provider round trips a device-code flow needs."""

    async def request_device_code(self) -> DeviceCodeGrant: ...

    async def poll_token(self, device_code: str) -> TokenPollResponse: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceAuthSessionStore:
    """In-memory AuthStateStore driving the device-code flow per session id."""

    def __init__(
        self,
        provider: DeviceFlowProvider,
        grace_seconds: int = 300,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._provider = provider
        self._grace = timedelta(seconds=grace_seconds)
        self._clock = clock or _utcnow
        self._sessions: dict[str, AuthSession] = {}

    # ── Flow operations ────────────────────────────────────────────────────────

    async def start(self, session_id: str) -> DeviceCodeChallenge:
        """
        Ask the provider for a device code and store a new PENDING session.
        Nothing is stored when the provider call fails.
        """
        logger.info(f"DeviceAuth: starting device code flow for session {session_id}")
        try:
            grant = await self._provider.request_device_code()
        except ProviderUnavailable:
            logger.error(f"DeviceAuth: provider unavailable while starting session {session_id}")
            raise
        except ProviderError as e:
            logger.error(f"DeviceAuth: provider rejected device code request for {session_id}: {e}")
            raise ProviderUnavailable(str(e), error_code=e.error_code) from e

        now = self._clock()
        self._sessions[session_id] = AuthSession(
            session_id=session_id,
            device_code=grant.device_code,
            user_code=grant.user_code,
            verification_uri=grant.verification_uri,
            created_at=now,
            expires_at=now + timedelta(seconds=grant.expires_in),
            poll_interval=grant.interval,
        )

        return DeviceCodeChallenge(
            session_id=session_id,
            user_code=grant.user_code,
            verification_uri=grant.verification_uri,
            verification_uri_complete=grant.verification_uri_complete,
            expires_in=grant.expires_in,
            interval=grant.interval,
            message=grant.message
            or f"To sign in, visit {grant.verification_uri} and enter the code {grant.user_code}.",
        )

    async def poll(self, session_id: str) -> PollOutcome:
        """
        Advance the session by at most one provider round trip.

        Spacing calls by the poll interval is the caller's job.

        Raises:
            ProviderError: the provider refused the flow; the session is now FAILED.
            ProviderUnavailable: the provider could not be reached; state unchanged.
        """
        session = self._lookup(session_id)
        if session is None:
            logger.warning(f"DeviceAuth: session {session_id} not found")
            return PollOutcome.NOT_FOUND

        if session.is_terminal:
            return _TERMINAL_OUTCOMES[session.state]
        if self._expire_if_due(session):
            return PollOutcome.EXPIRED

        response = await self._provider.poll_token(session.device_code)

        current = self._sessions.get(session_id)
        if current is not session:
            # restarted or reaped while the provider call was in flight
            return PollOutcome.NOT_FOUND if current is None else PollOutcome.STILL_PENDING
        if session.is_terminal:
            # a concurrent poll already settled this session
            return _TERMINAL_OUTCOMES[session.state]

        # expiry takes precedence over a success that arrived too late
        if self._expire_if_due(session):
            return PollOutcome.EXPIRED

        if response.access_token:
            session.access_token = response.access_token
            session.state = SessionState.AUTHORIZED
            logger.info(f"DeviceAuth: session {session_id} authorized")
            return PollOutcome.AUTHORIZED

        error = response.error or "unknown_error"
        if error == "authorization_pending":
            return PollOutcome.STILL_PENDING
        if error == "slow_down":
            session.poll_interval += SLOW_DOWN_INCREMENT_SECONDS
            logger.debug(f"DeviceAuth: slow_down for {session_id}, interval={session.poll_interval}s")
            return PollOutcome.STILL_PENDING
        if error == "expired_token":
            session.state = SessionState.EXPIRED
            logger.info(f"DeviceAuth: provider reports device code expired for {session_id}")
            return PollOutcome.EXPIRED

        session.state = SessionState.FAILED
        session.error = error
        logger.warning(f"DeviceAuth: session {session_id} failed: {error}")
        detail = f": {response.error_description}" if response.error_description else ""
        raise ProviderError(f"Device authorization failed ({error}){detail}", error_code=error)

    # ── Lookups ────────────────────────────────────────────────────────────────

    def is_authorized(self, session_id: str) -> bool:
        session = self._lookup(session_id)
        if session is None:
            return False
        self._expire_if_due(session)
        return session.state == SessionState.AUTHORIZED and bool(session.access_token)

    def get_access_token(self, session_id: str) -> Optional[str]:
        if not self.is_authorized(session_id):
            return None
        return self._sessions[session_id].access_token

    def is_token_authorized(self, token: str) -> bool:
        """True if `token` was issued to a currently authorized session."""
        if not token:
            return False
        for session_id in list(self._sessions):
            session = self._lookup(session_id)
            if session is None or session.state != SessionState.AUTHORIZED or not session.access_token:
                continue
            if hmac.compare_digest(session.access_token, token):
                return True
        return False

    def get(self, session_id: str) -> Optional[AuthSession]:
        session = self._lookup(session_id)
        if session is None:
            return None
        self._expire_if_due(session)
        return session.model_copy()

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # ── Housekeeping ───────────────────────────────────────────────────────────

    def purge_expired(self) -> int:
        """Expire overdue pending sessions and drop those past the grace window."""
        removed = 0
        for session_id in list(self._sessions):
            session = self._sessions[session_id]
            if self._past_grace(session):
                del self._sessions[session_id]
                removed += 1
            else:
                self._expire_if_due(session)
        if removed:
            logger.info(f"DeviceAuth: purged {removed} stale session(s)")
        return removed

    async def reaper_loop(self, interval_seconds: float, stop_event: asyncio.Event) -> None:
        logger.info(f"DeviceAuth: session reaper started — interval={interval_seconds}s")
        while not stop_event.is_set():
            self.purge_expired()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass

    # ── Internals ──────────────────────────────────────────────────────────────

    def _lookup(self, session_id: str) -> Optional[AuthSession]:
        session = self._sessions.get(session_id)
        if session is not None and self._past_grace(session):
            del self._sessions[session_id]
            return None
        return session

    def _past_grace(self, session: AuthSession) -> bool:
        return self._clock() > session.expires_at + self._grace

    def _expire_if_due(self, session: AuthSession) -> bool:
        if session.state == SessionState.PENDING and self._clock() > session.expires_at:
            session.state = SessionState.EXPIRED
            logger.info(f"DeviceAuth: session {session.session_id} expired")
            return True
        return session.state == SessionState.EXPIRED
