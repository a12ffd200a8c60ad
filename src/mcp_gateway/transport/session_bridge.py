"""
Session Bridge Transport

Server-push transport for clients that cannot keep a bidirectional connection
open. A GET opens an SSE stream and receives an ``endpoint`` event carrying the
call URL. Calls POSTed to that URL are processed like direct calls, but their
envelopes are pushed to the relay store and delivered by the stream's poll
loop as ``message`` events.

A handler started by a call-relay POST is not cancelled when its session
closes. It runs to completion and its result is dropped.
"""

from __future__ import annotations

import asyncio
import json
import secrets
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

import structlog
from starlette.responses import Response

from mcp_gateway.auth.models import AuthContext
from mcp_gateway.monitoring.metrics import (
    ACTIVE_SESSIONS,
    RELAY_FAILURES,
    RELAY_MESSAGES,
    SESSIONS_CLOSED,
)
from mcp_gateway.protocol.dispatcher import SESSION_SETUP_METHODS, McpMethod
from mcp_gateway.protocol.errors import (
    GatewayError,
    InternalError,
    InvalidRequestError,
    SessionNotFoundError,
)
from mcp_gateway.protocol.models import JsonRpcResponse
from mcp_gateway.relay.store import RelayStore
from mcp_gateway.transport.direct import CallRejected, DirectTransport
from mcp_gateway.transport.responses import accepted_response, error_response

logger = structlog.get_logger()


class SessionState(str, Enum):
    """Lifecycle of a bridged session."""

    OPEN = "open"
    ACTIVE = "active"
    CLOSED = "closed"


class CloseReason(str, Enum):
    """Why a poll loop ended."""

    IDLE_TIMEOUT = "idle_timeout"
    DISCONNECTED = "disconnected"
    RELAY_UNAVAILABLE = "relay_unavailable"
    CLOSED_BY_CLIENT = "closed_by_client"
    CANCELLED = "cancelled"


@dataclass
class Session:
    """Server-side record of one bridged stream."""

    session_id: str
    tenant_id: str
    user_id: str
    created_at: float
    last_activity_at: float
    state: SessionState = SessionState.OPEN
    protocol_version: str | None = None
    initialized: bool = False

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["state"] = self.state.value
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Session:
        return cls(**{**record, "state": SessionState(record.get("state", SessionState.OPEN.value))})

    def belongs_to(self, auth: AuthContext) -> bool:
        return self.tenant_id == auth.tenant_id and self.user_id == auth.user_id


class SessionBridge:
    """
    Session-bridge transport.

    Owns the session lifecycle. The relay store is only the hand-off point
    between call-relay POSTs and the stream's poll loop.
    """

    def __init__(
        self,
        direct: DirectTransport,
        relay: RelayStore,
        poll_interval: float = 0.2,
        session_timeout: float = 300.0,
        failure_backoff: float = 1.0,
        max_consecutive_failures: int = 5,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the bridge.

        Args:
            direct: Direct transport used to prepare and dispatch relayed calls
            relay: Relay store shared by streams and call-relay POSTs
            poll_interval: Sleep between relay drains, in seconds
            session_timeout: Idle time after which a stream closes, in seconds
            failure_backoff: Sleep after a failed relay drain, in seconds
            max_consecutive_failures: Failed drains in a row before the stream closes
            clock: Wall clock, injectable for tests
            sleep: Sleep coroutine, injectable for tests
        """
        self.direct = direct
        self.relay = relay
        self.poll_interval = poll_interval
        self.session_timeout = session_timeout
        self.failure_backoff = failure_backoff
        self.max_consecutive_failures = max_consecutive_failures
        self._clock = clock
        self._sleep = sleep

        # Streams polling in this process, and those asked to close
        self._streams: set[str] = set()
        self._closed: set[str] = set()

    # Stream side

    async def open_session(self, auth: AuthContext) -> Session:
        """Create and register a new session for an opening stream."""
        now = self._clock()
        session = Session(
            session_id=secrets.token_urlsafe(32),
            tenant_id=auth.tenant_id,
            user_id=auth.user_id,
            created_at=now,
            last_activity_at=now,
        )
        await self.relay.register(session.session_id, session.to_record())

        logger.info(
            "Session opened",
            session_id=session.session_id,
            tenant_id=session.tenant_id,
            user_id=session.user_id,
        )
        return session

    async def stream_events(
        self,
        session: Session,
        endpoint_url: str,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[dict[str, str]]:
        """
        Event generator for an open stream.

        Yields the ``endpoint`` event first, then one ``message`` event per
        relayed envelope. Ends on idle timeout, client disconnect, an explicit
        close, or persistent relay failure. No relay reads happen after it ends.
        """
        reason = CloseReason.CANCELLED
        consecutive_failures = 0
        last_activity = session.last_activity_at

        self._streams.add(session.session_id)
        ACTIVE_SESSIONS.inc()
        try:
            yield {"event": "endpoint", "data": endpoint_url}
            await self._mark_active(session)

            while True:
                if session.session_id in self._closed:
                    reason = CloseReason.CLOSED_BY_CLIENT
                    break

                if is_disconnected is not None and await is_disconnected():
                    reason = CloseReason.DISCONNECTED
                    break

                if self._clock() - last_activity > self.session_timeout:
                    # Call-relay POSTs served elsewhere record their activity in the store
                    last_activity = await self._last_recorded_activity(session, last_activity)
                    if self._clock() - last_activity > self.session_timeout:
                        reason = CloseReason.IDLE_TIMEOUT
                        break

                try:
                    messages = await self.relay.drain(session.session_id)
                except Exception as e:
                    consecutive_failures += 1
                    RELAY_FAILURES.inc()
                    logger.warning(
                        "Relay drain failed",
                        session_id=session.session_id,
                        consecutive_failures=consecutive_failures,
                        error=str(e),
                    )
                    if consecutive_failures >= self.max_consecutive_failures:
                        reason = CloseReason.RELAY_UNAVAILABLE
                        break
                    await self._sleep(self.failure_backoff)
                    continue

                consecutive_failures = 0
                if messages:
                    RELAY_MESSAGES.labels(direction="delivered").inc(len(messages))
                    last_activity = self._clock()
                    for message in messages:
                        yield {"event": "message", "data": message}

                await self._sleep(self.poll_interval)
        finally:
            await self._finish(session, reason)

    async def _merge_record(self, session_id: str, **fields: Any) -> None:
        # Stream and call side both write the record, so only the given fields change
        record = await self.relay.get_record(session_id)
        if record is None:
            return
        record.update(fields)
        await self.relay.update_record(session_id, record)

    async def _mark_active(self, session: Session) -> None:
        session.state = SessionState.ACTIVE
        try:
            await self._merge_record(session.session_id, state=SessionState.ACTIVE.value)
        except Exception as e:
            logger.warning("Session state update failed", session_id=session.session_id, error=str(e))

    async def _last_recorded_activity(self, session: Session, fallback: float) -> float:
        try:
            record = await self.relay.get_record(session.session_id)
        except Exception as e:
            logger.warning("Session record lookup failed", session_id=session.session_id, error=str(e))
            return fallback
        if record is None:
            return fallback
        return max(fallback, float(record.get("last_activity_at", fallback)))

    async def _finish(self, session: Session, reason: CloseReason) -> None:
        session.state = SessionState.CLOSED
        self._streams.discard(session.session_id)
        self._closed.discard(session.session_id)
        ACTIVE_SESSIONS.dec()
        SESSIONS_CLOSED.labels(reason=reason.value).inc()

        try:
            await self.relay.unregister(session.session_id)
        except Exception as e:
            logger.warning("Session unregister failed", session_id=session.session_id, error=str(e))

        logger.info(
            "Session closed",
            session_id=session.session_id,
            reason=reason.value,
            duration=self._clock() - session.created_at,
        )

    # Call side

    def _relay_unavailable(self, session_id: str, error: Exception) -> InternalError:
        RELAY_FAILURES.inc()
        logger.error("Relay store unavailable", session_id=session_id, error=str(error))
        return InternalError("Relay store unavailable")

    async def _load_session(self, session_id: str, auth: AuthContext) -> Session:
        try:
            record = await self.relay.get_record(session_id)
        except Exception as e:
            raise self._relay_unavailable(session_id, e) from e
        if record is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        session = Session.from_record(record)
        if not session.belongs_to(auth):
            logger.warning(
                "Session ownership mismatch",
                session_id=session_id,
                tenant_id=auth.tenant_id,
                user_id=auth.user_id,
            )
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return session

    async def relay_call(self, session_id: str, raw_body: bytes | str, auth: AuthContext) -> Response:
        """
        Process a call for an open session and push its outcome to the stream.

        Errors raised before dispatch (envelope, session and quota errors) are
        answered directly, as is a relay store failure. Everything else is
        acknowledged with 202. Streaming tools are aggregated into one reply so
        the stream carries exactly one envelope per call id.
        """
        try:
            request = self.direct.parse(raw_body)

            try:
                session = await self._load_session(session_id, auth)
            except GatewayError as e:
                raise CallRejected(e, request.id) from e

            if not session.initialized and request.method not in SESSION_SETUP_METHODS:
                raise CallRejected(
                    InvalidRequestError("Session not initialized. Call initialize first."),
                    request.id,
                )

            prepared = await self.direct.admit(request, auth)
        except CallRejected as rejection:
            return rejection.to_response()

        context = self.direct.context_for(
            auth,
            supports_streaming=False,
            session_id=session_id,
            protocol_version=session.protocol_version,
        )
        result = await self.direct.dispatcher.dispatch(request, context)

        try:
            if result is not None:
                self._note_initialize(session, request.method, result)
            # Record initialization before the reply can reach the client
            await self._touch(session)
            if result is not None:
                await self._push(session_id, result)
        except Exception as e:
            return error_response(self._relay_unavailable(session_id, e), request.id, prepared.headers)

        return accepted_response(prepared.headers)

    def _note_initialize(self, session: Session, method: str, response: JsonRpcResponse) -> None:
        if method == McpMethod.INITIALIZE.value and not response.is_error:
            session.initialized = True
            session.protocol_version = response.result.get("protocolVersion")

    async def _push(self, session_id: str, envelope: JsonRpcResponse) -> None:
        if session_id in self._closed or not await self.relay.exists(session_id):
            logger.info("Session closed before delivery; dropping result", session_id=session_id, request_id=envelope.id)
            return
        await self.relay.push(session_id, json.dumps(envelope.to_wire(), default=str))
        RELAY_MESSAGES.labels(direction="pushed").inc()

    async def _touch(self, session: Session) -> None:
        fields: dict[str, Any] = {"last_activity_at": self._clock()}
        if session.initialized:
            fields["initialized"] = True
            fields["protocol_version"] = session.protocol_version
        await self._merge_record(session.session_id, **fields)

    async def close_session(self, session_id: str, auth: AuthContext) -> None:
        """
        Explicitly close a session.

        Raises:
            SessionNotFoundError: Unknown session or owned by another caller
            InternalError: Relay store unavailable
        """
        await self._load_session(session_id, auth)
        if session_id in self._streams:
            self._closed.add(session_id)
        try:
            await self.relay.unregister(session_id)
        except Exception as e:
            raise self._relay_unavailable(session_id, e) from e
        logger.info("Session close requested", session_id=session_id)
