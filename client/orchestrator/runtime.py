"""
Runtime execution shell for a single call.

Responsibilities:
- Wire transport, protocol state machine, playback and capture together
- Drive the call-state facade through the user-facing operations
- Hop capture frames from the device thread onto the event loop
- Forward captured audio: convert -> gate -> send
- Map playback activity to AgentMode

Non-responsibilities:
- Wire format details (protocol.messages)
- State transition rules (reducer)
- Retry / reconnect (there is none; the user starts a new call)
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from adapters.capture.base import AudioFrameSource
from adapters.playback.base import PlaybackSink
from audio.frames import AudioFrame
from audio.resampler import convert
from config import AppConfig
from constants import (
    AUDIO_LOG_SAMPLE_EVERY,
    CAPTURE_QUEUE_MAX_FRAMES,
    AudioFormat,
    WS_CLOSE_REASON_CANCELLED,
    WS_CLOSE_REASON_USER,
)
from observability.logger import log_event
from orchestrator.call_state import CallStateFacade, now_ms
from orchestrator.enums.mode import AgentMode
from orchestrator.enums.state import CallState
from orchestrator.events import (
    AgentModeChanged,
    ConnectFailed,
    EndRequested,
    ErrorReported,
    EventType,
    MuteChanged,
    PermissionResult,
    RecordingChanged,
    StartRequested,
    TransportLost,
)
from orchestrator.playback import PlaybackDispatcher
from orchestrator.protocol_handler import ProtocolStateMachine
from orchestrator.state_dataclass import CallSnapshot
from protocol.messages import build_user_message
from session.errors import ConnectError, PermissionDenied, SendError
from session.errors import TransportLost as TransportLostError
from session.transport import SessionTransport


# Returns False (or raises PermissionDenied) when capture is not allowed
PermissionCheck = Callable[[], bool]


class CallRuntime:
    """
    Top-level orchestration for one client.

    All public operations run on the event loop. The capture source may
    call back from its own thread; those frames are re-posted to the loop
    with call_soon_threadsafe before anything else sees them.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        source: AudioFrameSource,
        sink: PlaybackSink,
        permission: PermissionCheck,
        transport: SessionTransport | None = None,
        facade: CallStateFacade | None = None,
        clock: Callable[[], float] = time.monotonic,
        capture_queue_max: int = CAPTURE_QUEUE_MAX_FRAMES,
    ) -> None:
        self._config = config
        self._source = source
        self._sink = sink
        self._permission = permission
        self._capture_queue_max = capture_queue_max
        self._wire_format = AudioFormat(
            sample_rate_hz=config.audio_sample_rate_hz,
            channels=config.audio_channels,
        )

        self.facade = facade or CallStateFacade()
        self.transport = transport or SessionTransport(config=config, clock=clock)
        self.playback = PlaybackDispatcher(sink)
        self.protocol = ProtocolStateMachine(
            transport=self.transport,
            facade=self.facade,
            playback=self.playback,
        )

        self.transport.attach_handler(self.protocol.handle_frame)
        self.transport.attach_lost_callback(self._on_transport_lost)
        self.protocol.attach_confirmed_callback(self._on_confirmed)
        self._sink.subscribe(self._on_playing_changed)
        self._source.on_frame(self._on_capture_frame)

        self._loop: asyncio.AbstractEventLoop | None = None
        self._capture_queue: asyncio.Queue[AudioFrame] | None = None
        self._forward_task: asyncio.Task[None] | None = None
        self._capture_overflow = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> CallSnapshot:
        """Current call snapshot."""
        return self.facade.snapshot

    def _event_kwargs(self, event_type: EventType) -> dict[str, object]:
        return {"event_type": event_type, "ts_ms": now_ms()}

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    async def start_call(self) -> bool:
        """
        Start a call. Returns True once the call is ACTIVE and capturing.

        No-op (False) unless IDLE. Configuration problems are reported in
        the error slot without a state transition.
        """
        if self.snapshot.call_state is not CallState.IDLE:
            log_event({
                "event_type": "START_IGNORED",
                "call_state": self.snapshot.call_state.value,
            })
            return False

        config_error = self._config.configuration_error
        if config_error is not None:
            self.facade.dispatch(ErrorReported(
                **self._event_kwargs(EventType.ERROR_REPORTED),
                message=config_error,
            ))
            return False

        self.facade.dispatch(StartRequested(**self._event_kwargs(EventType.START_REQUESTED)))

        try:
            return await self._complete_start()
        except asyncio.CancelledError:
            await self._abort_start()
            raise

    async def _complete_start(self) -> bool:
        try:
            granted = bool(await asyncio.to_thread(self._permission))
        except PermissionDenied as e:
            log_event({"event_type": "PERMISSION_DENIED", "error": repr(e)})
            granted = False
        self.facade.dispatch(PermissionResult(
            **self._event_kwargs(EventType.PERMISSION_RESULT),
            granted=granted,
        ))
        if not granted:
            return False

        self._loop = asyncio.get_running_loop()
        self._capture_queue = asyncio.Queue(maxsize=self._capture_queue_max)
        self.playback.start()

        try:
            await self.transport.connect()
        except ConnectError as e:
            await self.playback.close()
            self._capture_queue = None
            self.facade.dispatch(ConnectFailed(
                **self._event_kwargs(EventType.CONNECT_FAILED),
                reason=str(e),
            ))
            return False

        try:
            await self._source.start()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({"event_type": "CAPTURE_START_FAILED", "error": repr(e)})
            await self._teardown(reason=WS_CLOSE_REASON_USER)
            self.facade.dispatch(EndRequested(**self._event_kwargs(EventType.END_REQUESTED)))
            self.facade.dispatch(ErrorReported(
                **self._event_kwargs(EventType.ERROR_REPORTED),
                message=f"Microphone unavailable: {e}",
            ))
            return False

        if self.snapshot.call_state is not CallState.ACTIVE:
            # Transport dropped while the source was starting
            log_event({
                "event_type": "CAPTURE_START_SUPERSEDED",
                "call_state": self.snapshot.call_state.value,
            })
            await self._stop_capture()
            return False

        self.facade.dispatch(RecordingChanged(
            **self._event_kwargs(EventType.RECORDING_CHANGED),
            is_recording=True,
        ))
        return True

    async def end_call(self) -> None:
        """
        End the active call.

        Order: stop forwarding -> disconnect -> stop playback -> reset ->
        EndRequested. No-op unless ACTIVE.
        """
        if self.snapshot.call_state is not CallState.ACTIVE:
            log_event({
                "event_type": "END_IGNORED",
                "call_state": self.snapshot.call_state.value,
            })
            return

        await self._teardown(reason=WS_CLOSE_REASON_USER)
        self.facade.dispatch(EndRequested(**self._event_kwargs(EventType.END_REQUESTED)))

    async def send_user_message(self, text: str) -> bool:
        """Send typed text to the agent. Failures surface in the error slot."""
        text = text.strip()
        if not text or self.snapshot.call_state is not CallState.ACTIVE:
            return False

        try:
            await self.transport.send_control(build_user_message(text))
        except SendError as e:
            log_event({"event_type": "USER_MESSAGE_SEND_FAILED", "error": repr(e)})
            self.facade.dispatch(ErrorReported(
                **self._event_kwargs(EventType.ERROR_REPORTED),
                message=f"Failed to send message: {e}",
            ))
            return False
        return True

    def toggle_mute(self) -> bool:
        """Flip mute; while muted no captured audio is forwarded. Returns the new value."""
        if self.snapshot.call_state is not CallState.ACTIVE:
            return self.snapshot.is_muted
        muted = not self.snapshot.is_muted
        self.facade.dispatch(MuteChanged(
            **self._event_kwargs(EventType.MUTE_CHANGED),
            is_muted=muted,
        ))
        return muted

    # ------------------------------------------------------------------
    # Audio forwarding
    # ------------------------------------------------------------------

    async def forward_frame(self, frame: AudioFrame) -> bool:
        """
        Convert, gate and send one captured frame.

        Returns True if the frame was transmitted. Frames are dropped
        while the session is not confirmed or the user is muted.
        """
        session = self.transport.session
        if session is None or not session.confirmed or self.snapshot.is_muted:
            return False

        wire = convert(frame, self._wire_format)
        if not session.gate.should_send(wire.pcm_bytes):
            session.counters.frames_gated += 1
            return False

        sent = await self.transport.send_audio(wire.pcm_bytes)
        if sent:
            session.counters.frames_forwarded += 1
            if session.counters.frames_forwarded % AUDIO_LOG_SAMPLE_EVERY == 1:
                log_event({
                    "event_type": "AUDIO_FORWARDED",
                    "level": session.gate.last_level.value,
                    "forwarded_total": session.counters.frames_forwarded,
                    "gated_total": session.counters.frames_gated,
                    **session.log_context(),
                })
        return sent

    def _on_capture_frame(self, frame: AudioFrame) -> None:
        # May run on the capture device thread
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._enqueue_frame, frame)

    def _enqueue_frame(self, frame: AudioFrame) -> None:
        queue = self._capture_queue
        if queue is None:
            return
        try:
            queue.put_nowait(frame)
        except asyncio.QueueFull:
            self._capture_overflow += 1
            if self._capture_overflow % AUDIO_LOG_SAMPLE_EVERY == 1:
                log_event({
                    "event_type": "CAPTURE_QUEUE_FULL",
                    "dropped_total": self._capture_overflow,
                })

    async def _forward_loop(self, queue: asyncio.Queue[AudioFrame]) -> None:
        while True:
            frame = await queue.get()
            try:
                await self.forward_frame(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({"event_type": "FORWARD_ERROR", "error": repr(e)})

    async def _on_confirmed(self) -> None:
        queue = self._capture_queue
        if queue is None:
            return
        if self._forward_task is None or self._forward_task.done():
            self._forward_task = asyncio.create_task(self._forward_loop(queue))

    async def _stop_forwarding(self) -> None:
        task = self._forward_task
        self._forward_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._capture_queue = None

    # ------------------------------------------------------------------
    # Playback -> AgentMode
    # ------------------------------------------------------------------

    def _on_playing_changed(self, playing: bool) -> None:
        if self.snapshot.call_state is not CallState.ACTIVE:
            return
        self.facade.dispatch(AgentModeChanged(
            **self._event_kwargs(EventType.AGENT_MODE_CHANGED),
            mode=AgentMode.SPEAKING if playing else AgentMode.LISTENING,
        ))

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _stop_capture(self) -> None:
        try:
            await self._source.stop()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({"event_type": "CAPTURE_STOP_FAILED", "error": repr(e)})
        if self.snapshot.is_recording:
            self.facade.dispatch(RecordingChanged(
                **self._event_kwargs(EventType.RECORDING_CHANGED),
                is_recording=False,
            ))

    async def _teardown(self, *, reason: str) -> None:
        await self._stop_capture()
        await self._stop_forwarding()
        await self.transport.disconnect(reason=reason)
        await self.playback.close()
        self._loop = None

    async def _abort_start(self) -> None:
        # start_call() was cancelled; leave nothing half-open behind
        state = self.snapshot.call_state
        log_event({"event_type": "START_CANCELLED", "call_state": state.value})
        await self._teardown(reason=WS_CLOSE_REASON_CANCELLED)
        if state is CallState.CONNECTING:
            self.facade.dispatch(ConnectFailed(
                **self._event_kwargs(EventType.CONNECT_FAILED),
                reason=WS_CLOSE_REASON_CANCELLED,
            ))
        elif state is CallState.ACTIVE:
            self.facade.dispatch(EndRequested(**self._event_kwargs(EventType.END_REQUESTED)))

    async def _on_transport_lost(self, error: TransportLostError) -> None:
        # Transport already tore the session down
        await self._stop_capture()
        await self._stop_forwarding()
        await self.playback.close()
        self._loop = None
        self.facade.dispatch(TransportLost(
            **self._event_kwargs(EventType.TRANSPORT_LOST),
            reason=str(error),
        ))
