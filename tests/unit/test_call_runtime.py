# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any, Callable

import numpy as np
import pytest

from adapters.capture.base import AudioFrameSource, FrameCallback
from adapters.playback.base import PlaybackSink
from audio.frames import AudioFrame
from config import AppConfig
from constants import WS_CLOSE_REASON_CANCELLED
from orchestrator.enums.mode import AgentMode
from orchestrator.enums.state import CallState
from orchestrator.reducer import CONNECTION_LOST_MESSAGE, PERMISSION_DENIED_MESSAGE
from orchestrator.runtime import CallRuntime
from protocol.messages import Role
from session.errors import PermissionDenied
from session.transport import SessionTransport


ACK = json.dumps({
    "type": "conversation_initiation_metadata",
    "conversation_initiation_metadata_event": {
        "conversation_id": "conv_e2e",
        "agent_output_audio_format": "pcm_16000",
    },
})

CONFIG = AppConfig(
    elevenlabs_api_key="sk_test",
    elevenlabs_agent_id="agent_123",
    use_signed_url=False,
)

LOUD = AudioFrame(pcm_bytes=np.full(320, 6000, dtype="<i2").tobytes())
SILENT = AudioFrame(pcm_bytes=bytes(640))


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeWebSocket:
    def __init__(self, *, ack: bool = True) -> None:
        self.sent: list[str] = []
        self.inbox: asyncio.Queue[Any] = asyncio.Queue()
        self.closed_with: tuple[int, str] | None = None
        self.ack = ack
        self.fail_sends = False

    async def send(self, message: str) -> None:
        if self.fail_sends:
            raise ConnectionError("socket write failed")
        self.sent.append(message)
        if self.ack and "conversation_initiation_client_data" in message:
            self.inbox.put_nowait(ACK)

    async def recv(self) -> Any:
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)
        self.inbox.put_nowait(ConnectionError("closed"))

    def audio_messages(self) -> list[str]:
        return [m for m in self.sent if "user_audio_chunk" in m]


class FakeSource(AudioFrameSource):
    def __init__(self) -> None:
        self.callback: FrameCallback | None = None
        self.running = False
        self.starts = 0

    def on_frame(self, callback: FrameCallback) -> None:
        self.callback = callback

    async def start(self) -> None:
        self.running = True
        self.starts += 1

    async def stop(self) -> None:
        self.running = False

    @property
    def is_running(self) -> bool:
        return self.running

    def emit(self, frame: AudioFrame) -> None:
        assert self.callback is not None
        self.callback(frame)


class FakeSink(PlaybackSink):
    def __init__(self) -> None:
        super().__init__()
        self.played: list[bytes] = []
        self.stops = 0

    async def play(self, pcm_bytes: bytes, *, sample_rate_hz: int = 16000) -> None:
        self.played.append(pcm_bytes)

    async def stop(self) -> None:
        self.stops += 1


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def build(
    ws: FakeWebSocket,
    *,
    config: AppConfig = CONFIG,
    permission: Callable[[], bool] = lambda: True,
    clock: FakeClock | None = None,
    source: FakeSource | None = None,
) -> tuple[CallRuntime, FakeSource, FakeSink, FakeClock, list[str]]:
    clock = clock or FakeClock()
    urls: list[str] = []

    async def connector(url: str, **_: Any) -> FakeWebSocket:
        urls.append(url)
        return ws

    transport = SessionTransport(
        config=config,
        connector=connector,
        ack_timeout_s=0.2,
        ack_poll_interval_s=0.01,
        clock=clock,
    )
    source = source or FakeSource()
    sink = FakeSink()
    runtime = CallRuntime(
        config=config,
        source=source,
        sink=sink,
        permission=permission,
        transport=transport,
    )
    return runtime, source, sink, clock, urls


async def until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline, "condition not reached"
        await asyncio.sleep(0.005)


# ---------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------

def test_full_call_gates_silence_and_ends_cleanly() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, source, sink, clock, _ = build(ws)

        assert await runtime.start_call()

        snapshot = runtime.snapshot
        assert snapshot.call_state is CallState.ACTIVE
        assert snapshot.conversation_id == "conv_e2e"
        assert snapshot.is_recording
        assert source.running

        for frame in [LOUD] * 3 + [SILENT] * 10:
            clock.now += 0.1
            await runtime.forward_frame(frame)

        assert len(ws.audio_messages()) == 3 + 5

        await runtime.end_call()

        assert runtime.snapshot.call_state is CallState.IDLE
        assert runtime.snapshot.error_message is None
        assert not runtime.snapshot.is_recording
        assert runtime.transport.session is None
        assert ws.closed_with == (1001, "User ended call")
        assert not source.running
        assert sink.stops >= 1

    asyncio.run(run())


def test_capture_frames_from_another_thread_are_forwarded() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, source, _, _, _ = build(ws)
        assert await runtime.start_call()

        await asyncio.to_thread(source.emit, LOUD)
        await until(lambda: len(ws.audio_messages()) == 1)

        await runtime.end_call()

    asyncio.run(run())


def test_start_without_credentials_reports_error_without_transition() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, _, _, _, urls = build(ws, config=AppConfig())

        assert not await runtime.start_call()

        assert runtime.snapshot.call_state is CallState.IDLE
        assert "API key" in (runtime.snapshot.error_message or "")
        assert urls == []

    asyncio.run(run())


def test_permission_denied_never_connects() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, source, _, _, urls = build(ws, permission=lambda: False)

        assert not await runtime.start_call()

        assert runtime.snapshot.call_state is CallState.IDLE
        assert runtime.snapshot.error_message == PERMISSION_DENIED_MESSAGE
        assert urls == []
        assert source.starts == 0

    asyncio.run(run())


def test_permission_check_raising_is_treated_as_denied() -> None:
    def refuse() -> bool:
        raise PermissionDenied("no input device")

    async def run() -> None:
        ws = FakeWebSocket()
        runtime, _, _, _, urls = build(ws, permission=refuse)

        assert not await runtime.start_call()

        assert runtime.snapshot.call_state is CallState.IDLE
        assert runtime.snapshot.error_message == PERMISSION_DENIED_MESSAGE
        assert urls == []

    asyncio.run(run())


def test_connect_timeout_returns_to_idle_with_message() -> None:
    async def run() -> None:
        ws = FakeWebSocket(ack=False)
        runtime, source, _, _, _ = build(ws)
        states: list[CallState] = []
        runtime.facade.subscribe(lambda s: states.append(s.call_state))

        assert not await runtime.start_call()

        assert runtime.snapshot.call_state is CallState.IDLE
        assert "timeout" in (runtime.snapshot.error_message or "").lower()
        assert runtime.transport.session is None
        assert source.starts == 0
        assert CallState.ACTIVE not in states

    asyncio.run(run())


def test_operations_outside_active_are_noops() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, _, _, _, _ = build(ws)

        await runtime.end_call()
        assert not await runtime.forward_frame(LOUD)
        assert not await runtime.send_user_message("hello")
        assert runtime.toggle_mute() is False
        assert runtime.snapshot.call_state is CallState.IDLE

        assert await runtime.start_call()
        assert not await runtime.start_call()
        await runtime.end_call()

    asyncio.run(run())


def test_mute_stops_forwarding() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, _, _, clock, _ = build(ws)
        assert await runtime.start_call()

        assert runtime.toggle_mute() is True
        clock.now += 1.0
        assert not await runtime.forward_frame(LOUD)

        assert runtime.toggle_mute() is False
        clock.now += 1.0
        assert await runtime.forward_frame(LOUD)

        await runtime.end_call()

    asyncio.run(run())


def test_user_message_is_sent_and_failures_surface() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, _, _, _, _ = build(ws)
        assert await runtime.start_call()

        assert await runtime.send_user_message("  what's the weather  ")
        assert json.loads(ws.sent[-1]) == {"type": "user_message", "text": "what's the weather"}

        ws.fail_sends = True
        assert not await runtime.send_user_message("again")
        assert "Failed to send message" in (runtime.snapshot.error_message or "")
        assert runtime.snapshot.call_state is CallState.ACTIVE

        ws.fail_sends = False
        await runtime.end_call()

    asyncio.run(run())


def test_transport_loss_returns_to_idle_and_keeps_transcripts() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, source, _, _, _ = build(ws)
        assert await runtime.start_call()

        ws.inbox.put_nowait(json.dumps({"type": "user_transcript", "user_transcript": "hi"}))
        ws.inbox.put_nowait(ConnectionError("network down"))
        await until(lambda: runtime.snapshot.call_state is CallState.IDLE)

        snapshot = runtime.snapshot
        assert snapshot.error_message == CONNECTION_LOST_MESSAGE
        assert [(t.role, t.text) for t in snapshot.transcripts] == [(Role.USER, "hi")]
        assert runtime.transport.session is None
        assert not source.running

        # A new call can be started afterwards
        ws2 = FakeWebSocket()
        runtime2, _, _, _, _ = build(ws2)
        assert await runtime2.start_call()
        await runtime2.end_call()

    asyncio.run(run())


def test_agent_audio_is_played_and_drives_mode() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, _, sink, _, _ = build(ws)
        assert await runtime.start_call()

        ws.inbox.put_nowait(b"\x01\x00\x02\x00")
        await until(lambda: sink.played == [b"\x01\x00\x02\x00"])

        sink._set_playing(True)  # pylint: disable=protected-access
        assert runtime.snapshot.mode is AgentMode.SPEAKING
        sink._set_playing(False)  # pylint: disable=protected-access
        assert runtime.snapshot.mode is AgentMode.LISTENING

        await runtime.end_call()

    asyncio.run(run())


def test_ping_is_answered_during_a_call() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, _, _, _, _ = build(ws)
        assert await runtime.start_call()

        ws.inbox.put_nowait(json.dumps({"type": "ping", "ping_event": {"event_id": 42}}))
        await until(lambda: any('"pong"' in m for m in ws.sent))

        pong = json.loads([m for m in ws.sent if '"pong"' in m][0])
        assert pong == {"type": "pong", "event_id": 42}

        await runtime.end_call()

    asyncio.run(run())


# ---------------------------------------------------------------------
# Setup interrupted
# ---------------------------------------------------------------------

def test_cancelled_start_tears_down_and_allows_a_new_call() -> None:
    async def run() -> None:
        ws = FakeWebSocket(ack=False)
        runtime, source, _, _, _ = build(ws)

        task = asyncio.create_task(runtime.start_call())
        await until(lambda: bool(ws.sent))
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert runtime.snapshot.call_state is CallState.IDLE
        assert runtime.snapshot.error_message == WS_CLOSE_REASON_CANCELLED
        assert runtime.transport.session is None
        assert ws.closed_with == (1001, WS_CLOSE_REASON_CANCELLED)
        assert source.starts == 0

        ws.inbox = asyncio.Queue()
        ws.ack = True
        assert await runtime.start_call()
        assert runtime.snapshot.call_state is CallState.ACTIVE
        await runtime.end_call()
        assert runtime.snapshot.call_state is CallState.IDLE

    asyncio.run(run())


def test_drop_before_acknowledgement_fails_the_connect() -> None:
    async def run() -> None:
        ws = FakeWebSocket(ack=False)
        runtime, source, _, _, _ = build(ws)

        task = asyncio.create_task(runtime.start_call())
        await until(lambda: bool(ws.sent))
        ws.inbox.put_nowait(ConnectionError("connection reset by peer"))

        assert not await task
        assert runtime.snapshot.call_state is CallState.IDLE
        assert runtime.snapshot.error_message == "Connection closed before acknowledgement"
        assert runtime.transport.session is None
        assert source.starts == 0

    asyncio.run(run())


class LateSource(FakeSource):
    """Device that only comes up after the socket has already dropped."""

    def __init__(self, ws: FakeWebSocket) -> None:
        super().__init__()
        self.ws = ws

    async def start(self) -> None:
        self.ws.inbox.put_nowait(ConnectionError("network down"))
        await asyncio.sleep(0.05)
        await super().start()


def test_drop_while_capture_starts_leaves_nothing_recording() -> None:
    async def run() -> None:
        ws = FakeWebSocket()
        runtime, source, _, _, _ = build(ws, source=LateSource(ws))

        assert not await runtime.start_call()

        snapshot = runtime.snapshot
        assert snapshot.call_state is CallState.IDLE
        assert snapshot.error_message == CONNECTION_LOST_MESSAGE
        assert not snapshot.is_recording
        assert not source.running

    asyncio.run(run())
