"""
Session transport: the persistent agent websocket.

Responsibilities:
- Owns the single VoiceSession (create on connect, destroy on disconnect)
- Resolves the connection target (signed URL first, direct auth fallback)
- Opens the socket, sends initiation, waits for the acknowledgement
- Gates outbound sends on the confirmed flag
- Runs the receive loop and hands every inbound frame to the attached handler
- Tears down idempotently

NOT responsible for:
- Interpreting inbound messages (ProtocolStateMachine)
- CallState transitions (CallRuntime + reducer)
- Audio conversion or gating decisions

Failure policy:
- Single attempt. No retry, no backoff, no reconnect; the user must call
  connect() again. Failures are reported once.

Serialization:
- Session state mutations happen under one asyncio.Lock. The lock is never
  held across a network await, so the receive loop, audio sends and user
  actions interleave but never mutate concurrently.
"""

from __future__ import annotations

import asyncio
import time
import urllib.parse
from typing import Any, Awaitable, Callable
from uuid import uuid4

from websockets.asyncio.client import connect as ws_connect

from audio.vad import VoiceActivityGate
from config import AppConfig
from constants import (
    AUDIO_LOG_SAMPLE_EVERY,
    CONNECT_ACK_POLL_INTERVAL_MS,
    CONNECT_ACK_TIMEOUT_S,
    CONVAI_WS_URL,
    WS_CLOSE_CODE_GOING_AWAY,
    WS_CLOSE_REASON_CANCELLED,
    WS_CLOSE_REASON_LOST,
    WS_CLOSE_REASON_TIMEOUT,
    WS_CLOSE_REASON_USER,
    WS_MAX_MESSAGE_BYTES,
)
from observability.logger import log_event
from observability.metrics import emit_counters, timed
from protocol.messages import build_initiation, build_user_audio_chunk, encode
from session.connection_status import ConnectionStatus
from session.errors import (
    ConnectFailed,
    ConnectTimeout,
    NotConnected,
    SendError,
    SendFailed,
    SessionAlreadyActive,
    TransportLost,
)
from session.voice_session import VoiceSession


FrameHandler = Callable[[Any], Awaitable[None]]
LostHandler = Callable[[TransportLost], Awaitable[None]]
SignedUrlProvider = Callable[[], Awaitable[str | None]]


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


class SessionTransport:
    """
    One transport, at most one live VoiceSession.

    Wiring (done by CallRuntime):
    - attach_handler(fn): receives each inbound frame (str or bytes)
    - attach_lost_callback(fn): called once when the link drops unexpectedly
    - attach_signed_url_provider(fn): optional token-exchange pre-step
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        connector: Callable[..., Awaitable[Any]] = ws_connect,
        ack_timeout_s: float = CONNECT_ACK_TIMEOUT_S,
        ack_poll_interval_s: float = CONNECT_ACK_POLL_INTERVAL_MS / 1000.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._connector = connector
        self._ack_timeout_s = ack_timeout_s
        self._ack_poll_interval_s = ack_poll_interval_s
        self._clock = clock

        self.session: VoiceSession | None = None
        self._lock = asyncio.Lock()

        self._handler: FrameHandler | None = None
        self._on_lost: LostHandler | None = None
        self._signed_url_provider: SignedUrlProvider | None = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach_handler(self, handler: FrameHandler) -> None:
        """Attach the inbound frame dispatcher."""
        self._handler = handler

    def attach_lost_callback(self, on_lost: LostHandler) -> None:
        """Attach the callback invoked once on an unexpected drop."""
        self._on_lost = on_lost

    def attach_signed_url_provider(self, provider: SignedUrlProvider) -> None:
        """Attach the short-lived URL provider tried before direct auth."""
        self._signed_url_provider = provider

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_confirmed(self) -> bool:
        """True while a session exists and the server acknowledged it."""
        return self.session is not None and self.session.confirmed

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    def _direct_target(self) -> tuple[str, dict[str, str]]:
        qs = urllib.parse.urlencode({"agent_id": self._config.elevenlabs_agent_id or ""})
        headers = {"Authorization": f"Bearer {self._config.elevenlabs_api_key}"}
        return f"{CONVAI_WS_URL}?{qs}", headers

    async def _resolve_target(self, session: VoiceSession) -> tuple[str, dict[str, str]]:
        """
        Signed URL when available, else the direct URL with a bearer header.

        Both paths are permanently supported; the signed URL carries its
        own authorization, so no header is added to it.
        """
        if self._config.use_signed_url and self._signed_url_provider is not None:
            signed_url = await self._signed_url_provider()
            if signed_url:
                log_event({
                    "event_type": "CONNECT_TARGET_RESOLVED",
                    "method": "signed_url",
                    **session.log_context(),
                })
                return signed_url, {}
            log_event({
                "event_type": "SIGNED_URL_UNAVAILABLE",
                "fallback": "direct",
                **session.log_context(),
            })

        log_event({
            "event_type": "CONNECT_TARGET_RESOLVED",
            "method": "direct",
            **session.log_context(),
        })
        return self._direct_target()

    async def connect(self) -> VoiceSession:
        """
        Establish a confirmed session.

        Raises:
            SessionAlreadyActive if a session exists
            ConnectFailed if the socket cannot be opened or initiated
            ConnectTimeout if no acknowledgement arrives in time
        """
        async with self._lock:
            if self.session is not None:
                raise SessionAlreadyActive(
                    f"session {self.session.session_id} is already active"
                )
            session = VoiceSession(
                session_id=_new_session_id(),
                gate=VoiceActivityGate(clock=self._clock),
            )
            session.connection_status = ConnectionStatus.CONNECTING
            self.session = session

        log_event({"event_type": "CONNECT_STARTED", **session.log_context()})

        try:
            return await self._establish(session)
        except asyncio.CancelledError:
            # Caller gave up mid-setup; the session must not outlive it
            log_event({"event_type": "CONNECT_CANCELLED", **session.log_context()})
            await self.disconnect(reason=WS_CLOSE_REASON_CANCELLED)
            raise

    async def _establish(self, session: VoiceSession) -> VoiceSession:
        try:
            url, headers = await self._resolve_target(session)
            ws = await self._connector(
                url,
                additional_headers=headers,
                max_size=WS_MAX_MESSAGE_BYTES,
                ping_interval=None,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CONNECT_FAILED",
                "error": repr(e),
                **session.log_context(),
            })
            await self.disconnect(reason=WS_CLOSE_REASON_LOST)
            raise ConnectFailed(f"Failed to connect: {e}") from e

        session.websocket = ws
        session.receive_task = asyncio.create_task(self._receive_loop(session))

        try:
            await self._send_raw(session, encode(build_initiation(
                self._config.elevenlabs_agent_id or ""
            )))
        except SendFailed as e:
            await self.disconnect(reason=WS_CLOSE_REASON_LOST)
            raise ConnectFailed(f"Failed to send initiation: {e}") from e

        with timed("connect_handshake", session_id=session.session_id) as metric:
            confirmed = await self._await_confirmation(session)
            metric["confirmed"] = confirmed

        if not confirmed and (session.closing or self.session is not session):
            # Torn down underneath us (transport lost before the ack)
            raise ConnectFailed("Connection closed before acknowledgement")

        if not confirmed:
            log_event({
                "event_type": "CONNECT_TIMEOUT",
                "timeout_s": self._ack_timeout_s,
                **session.log_context(),
            })
            await self.disconnect(reason=WS_CLOSE_REASON_TIMEOUT)
            raise ConnectTimeout(
                "Connection timeout - no acknowledgement from the agent"
            )

        log_event({
            "event_type": "CONNECT_CONFIRMED",
            "conversation_id": session.conversation_id,
            **session.log_context(),
        })
        return session

    async def _await_confirmation(self, session: VoiceSession) -> bool:
        """Poll the confirmed flag until it is set or the wait expires."""
        attempts = max(1, int(round(self._ack_timeout_s / self._ack_poll_interval_s)))
        for _ in range(attempts):
            if session.confirmed:
                return True
            if session.closing or self.session is not session:
                return False
            await asyncio.sleep(self._ack_poll_interval_s)
        return session.confirmed

    def mark_confirmed(self) -> None:
        """
        Open the send gate. Called on the initiation acknowledgement.

        Runs on the event loop with no await, so it cannot interleave with
        another mutation.
        """
        session = self.session
        if session is None or session.closing:
            return
        session.confirmed = True
        session.connection_status = ConnectionStatus.UP

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def _send_raw(self, session: VoiceSession, message: str | bytes) -> None:
        ws = session.websocket
        if ws is None:
            raise SendFailed("connection handle released")
        try:
            await ws.send(message)
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise SendFailed(repr(e)) from e
        session.next_seq()
        session.counters.messages_sent += 1

    async def send(self, message: str | bytes) -> None:
        """
        Transmit one frame if and only if the session is confirmed.

        Raises:
            NotConnected if there is no confirmed session
            SendFailed if the socket rejects the frame
        """
        async with self._lock:
            session = self.session
            if session is None or not session.confirmed or session.closing:
                raise NotConnected("session not confirmed")

        await self._send_raw(session, message)

    async def send_control(self, payload: dict[str, Any]) -> None:
        """Send a JSON control message. Errors propagate to the caller."""
        await self.send(encode(payload))

    async def send_audio(self, pcm16_bytes: bytes) -> bool:
        """
        Best-effort upload of one wire-format audio frame.

        Returns True if sent. Failures are counted and dropped.
        """
        try:
            await self.send(encode(build_user_audio_chunk(pcm16_bytes)))
        except SendError as e:
            session = self.session
            if session is not None:
                session.counters.frames_dropped += 1
                if session.counters.frames_dropped % AUDIO_LOG_SAMPLE_EVERY == 1:
                    log_event({
                        "event_type": "AUDIO_SEND_DROPPED",
                        "error": repr(e),
                        "dropped_total": session.counters.frames_dropped,
                        **session.log_context(),
                    })
            return False
        return True

    # ------------------------------------------------------------------
    # Receive
    # ------------------------------------------------------------------

    async def _receive_loop(self, session: VoiceSession) -> None:
        """
        Read one frame at a time and dispatch it.

        session.closing is the cancellation token, checked every iteration.
        Handler errors are logged and the loop continues.
        """
        ws = session.websocket
        while not session.closing:
            try:
                raw = await ws.recv()
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught
                if session.closing:
                    log_event({
                        "event_type": "WS_CLOSED_EXPECTED",
                        **session.log_context(),
                    })
                    return
                await self._handle_lost(session, TransportLost(repr(e)))
                return

            session.counters.messages_received += 1

            if self._handler is None:
                continue
            try:
                await self._handler(raw)
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "DISPATCH_ERROR",
                    "error": repr(e),
                    **session.log_context(),
                })

    async def _handle_lost(self, session: VoiceSession, error: TransportLost) -> None:
        log_event({
            "event_type": "TRANSPORT_LOST",
            "reason": str(error),
            "was_confirmed": session.confirmed,
            **session.log_context(),
        })
        await self.disconnect(reason=WS_CLOSE_REASON_LOST)
        if self._on_lost is not None:
            await self._on_lost(error)

    # ------------------------------------------------------------------
    # Disconnect
    # ------------------------------------------------------------------

    async def disconnect(self, reason: str = WS_CLOSE_REASON_USER) -> None:
        """
        Tear the session down. Idempotent; safe if never connected.

        Order: mark closing -> close socket -> stop receive loop ->
        release handles -> reset state. Each step runs even if the
        previous one failed.
        """
        async with self._lock:
            session = self.session
            if session is None or session.closing:
                return
            session.closing = True
            session.confirmed = False
            session.connection_status = ConnectionStatus.CLOSING

        ws = session.websocket
        if ws is not None:
            try:
                await ws.close(code=WS_CLOSE_CODE_GOING_AWAY, reason=reason)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "WS_CLOSE_ERROR",
                    "error": repr(e),
                    **session.log_context(),
                })

        task = session.receive_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        emit_counters(
            "session_summary",
            session.counters.snapshot(),
            session_id=session.session_id,
        )

        async with self._lock:
            session.reset()
            if self.session is session:
                self.session = None

        log_event({
            "event_type": "SESSION_CLOSED",
            "reason": reason,
            "duration_s": round(time.time() - session.created_at, 3),
            **session.log_context(),
        })
