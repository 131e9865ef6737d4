"""
Protocol state machine: inbound frame interpretation.

Responsibilities:
- Decode every inbound frame (binary = raw agent PCM, text = JSON control)
- Translate control messages into call-state events and side effects
- Answer keep-alive pings within the same dispatch

NOT responsible for:
- Socket lifecycle (SessionTransport)
- Call-state transitions (reducer; reached through the facade)
- Rendering audio (PlaybackDispatcher / PlaybackSink)

Frames are handled one at a time in receive order; the transport awaits
handle_frame() before reading the next frame.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from constants import AUDIO_LOG_SAMPLE_EVERY, AUDIO_SAMPLE_RATE_HZ, LOG_PAYLOAD_PREVIEW_CHARS
from observability.logger import log_event
from orchestrator.call_state import CallStateFacade, now_ms
from orchestrator.enums.mode import AgentMode
from orchestrator.events import (
    AgentModeChanged,
    EventType,
    InitiationAckReceived,
    TranscriptReceived,
)
from orchestrator.playback import PlaybackDispatcher
from protocol.messages import (
    AgentResponse,
    AudioChunk,
    ControlMessage,
    InitiationAck,
    Interruption,
    MessageDecodeError,
    Ping,
    Pong,
    Role,
    Transcript,
    Unknown,
    build_pong,
    parse_message,
    parse_pcm_output_format,
)
from session.errors import SendError
from session.transport import SessionTransport


ConfirmedCallback = Callable[[], Awaitable[None]]


class ProtocolStateMachine:
    """Dispatches decoded server messages. Attached to the transport as its frame handler."""

    def __init__(
        self,
        *,
        transport: SessionTransport,
        facade: CallStateFacade,
        playback: PlaybackDispatcher,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        self._transport = transport
        self._facade = facade
        self._playback = playback
        self._clock_ms = clock_ms
        self._on_confirmed: ConfirmedCallback | None = None

    def attach_confirmed_callback(self, on_confirmed: ConfirmedCallback) -> None:
        """Called once per session after the initiation acknowledgement."""
        self._on_confirmed = on_confirmed

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def handle_frame(self, raw: str | bytes) -> None:
        """Dispatch a single inbound websocket frame."""
        if isinstance(raw, (bytes, bytearray)):
            self._play(bytes(raw), event_id=None)
            return

        try:
            message = parse_message(raw)
        except MessageDecodeError as e:
            log_event({
                "event_type": "MESSAGE_DECODE_ERROR",
                "error": str(e),
                "preview": raw[:LOG_PAYLOAD_PREVIEW_CHARS],
                **self._session_context(),
            })
            return

        await self._dispatch(message)

    async def _dispatch(self, message: ControlMessage) -> None:
        # pylint: disable=too-many-return-statements
        if isinstance(message, InitiationAck):
            await self._on_initiation_ack(message)
            return

        if isinstance(message, AudioChunk):
            self._play(message.pcm_bytes, event_id=message.event_id)
            return

        if isinstance(message, Ping):
            await self._answer_ping(message)
            return

        if isinstance(message, Transcript):
            self._facade.dispatch(TranscriptReceived(
                event_type=EventType.TRANSCRIPT_RECEIVED,
                ts_ms=self._clock_ms(),
                role=message.role,
                text=message.text,
            ))
            return

        if isinstance(message, AgentResponse):
            ts_ms = self._clock_ms()
            if message.text:
                self._facade.dispatch(TranscriptReceived(
                    event_type=EventType.TRANSCRIPT_RECEIVED,
                    ts_ms=ts_ms,
                    role=Role.AGENT,
                    text=message.text,
                ))
            self._facade.dispatch(AgentModeChanged(
                event_type=EventType.AGENT_MODE_CHANGED,
                ts_ms=ts_ms,
                mode=AgentMode.SPEAKING,
            ))
            return

        if isinstance(message, Interruption):
            self._facade.dispatch(AgentModeChanged(
                event_type=EventType.AGENT_MODE_CHANGED,
                ts_ms=self._clock_ms(),
                mode=AgentMode.LISTENING,
            ))
            await self._playback.interrupt()
            return

        if isinstance(message, Pong):
            return

        if isinstance(message, Unknown):
            log_event({
                "event_type": "UNKNOWN_MESSAGE_TYPE",
                "msg_type": message.msg_type,
                "keys": list(message.keys),
                **self._session_context(),
            })

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_initiation_ack(self, ack: InitiationAck) -> None:
        self._transport.mark_confirmed()
        session = self._transport.session
        if session is None or not session.confirmed:
            log_event({"event_type": "INITIATION_ACK_IGNORED", "reason": "no_live_session"})
            return

        session.conversation_id = ack.conversation_id

        rate = parse_pcm_output_format(ack.agent_output_audio_format)
        if rate is None:
            if ack.agent_output_audio_format is not None:
                log_event({
                    "event_type": "UNSUPPORTED_OUTPUT_FORMAT",
                    "format": ack.agent_output_audio_format,
                    "fallback_sample_rate_hz": AUDIO_SAMPLE_RATE_HZ,
                    **session.log_context(),
                })
            rate = AUDIO_SAMPLE_RATE_HZ
        session.agent_output_sample_rate_hz = rate

        log_event({
            "event_type": "INITIATION_ACK",
            "conversation_id": ack.conversation_id,
            "agent_output_audio_format": ack.agent_output_audio_format,
            "user_input_audio_format": ack.user_input_audio_format,
            **session.log_context(),
        })

        self._facade.dispatch(InitiationAckReceived(
            event_type=EventType.INITIATION_ACK_RECEIVED,
            ts_ms=self._clock_ms(),
            conversation_id=ack.conversation_id,
        ))

        if self._on_confirmed is not None:
            await self._on_confirmed()

    async def _answer_ping(self, ping: Ping) -> None:
        try:
            await self._transport.send_control(build_pong(ping.event_id))
        except SendError as e:
            log_event({
                "event_type": "PONG_SEND_FAILED",
                "ping_event_id": ping.event_id,
                "error": repr(e),
                **self._session_context(),
            })

    def _play(self, pcm_bytes: bytes, *, event_id: int | None) -> None:
        session = self._transport.session
        rate = session.agent_output_sample_rate_hz if session is not None else AUDIO_SAMPLE_RATE_HZ

        if session is not None:
            session.counters.audio_chunks_received += 1
            received = session.counters.audio_chunks_received
            if received % AUDIO_LOG_SAMPLE_EVERY == 1:
                log_event({
                    "event_type": "AUDIO_CHUNK_RECEIVED",
                    "event_id": event_id,
                    "payload_len": len(pcm_bytes),
                    "received_total": received,
                    **session.log_context(),
                })

        self._playback.submit(pcm_bytes, sample_rate_hz=rate)

    def _session_context(self) -> dict[str, object]:
        session = self._transport.session
        return session.log_context() if session is not None else {}
