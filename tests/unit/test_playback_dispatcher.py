# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import pytest

from adapters.playback.base import PlaybackSink
from orchestrator import playback as playback_module
from orchestrator.playback import PlaybackDispatcher


class RecordingSink(PlaybackSink):
    def __init__(self, *, fail_on: bytes | None = None) -> None:
        super().__init__()
        self.calls: list[tuple[str, Any]] = []
        self.fail_on = fail_on

    async def play(self, pcm_bytes: bytes, *, sample_rate_hz: int = 16000) -> None:
        if pcm_bytes == self.fail_on:
            raise ValueError("undecodable chunk")
        self.calls.append(("play", pcm_bytes))

    async def stop(self) -> None:
        self.calls.append(("stop", None))


@pytest.fixture(autouse=True)
def _logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    logged: list[dict[str, Any]] = []
    monkeypatch.setattr(playback_module, "log_event", logged.append)
    return logged


def test_chunks_play_in_submission_order() -> None:
    async def run() -> None:
        sink = RecordingSink()
        dispatcher = PlaybackDispatcher(sink)
        dispatcher.start()

        for i in range(10):
            assert dispatcher.submit(bytes([i, 0]))
        await asyncio.sleep(0.01)

        assert [arg for _, arg in sink.calls] == [bytes([i, 0]) for i in range(10)]
        assert dispatcher.played == 10
        await dispatcher.close()

    asyncio.run(run())


def test_interrupt_discards_queued_chunks_and_stops_sink() -> None:
    async def run() -> None:
        sink = RecordingSink()
        dispatcher = PlaybackDispatcher(sink)
        dispatcher.start()

        dispatcher.submit(b"\x01\x00")
        dispatcher.submit(b"\x02\x00")
        await dispatcher.interrupt()
        dispatcher.submit(b"\x03\x00")
        await asyncio.sleep(0.01)

        assert sink.calls == [("stop", None), ("play", b"\x03\x00")]
        assert dispatcher.pending == 0
        await dispatcher.close()

    asyncio.run(run())


def test_full_queue_drops_new_chunks(_logs: list[dict[str, Any]]) -> None:
    async def run() -> None:
        dispatcher = PlaybackDispatcher(RecordingSink(), max_chunks=2)

        assert dispatcher.submit(b"\x01\x00")
        assert dispatcher.submit(b"\x02\x00")
        assert not dispatcher.submit(b"\x03\x00")
        assert not dispatcher.submit(b"")

        assert dispatcher.dropped == 1

    asyncio.run(run())
    assert [e["event_type"] for e in _logs] == ["PLAYBACK_QUEUE_FULL"]


def test_sink_errors_are_logged_and_pump_continues(_logs: list[dict[str, Any]]) -> None:
    async def run() -> None:
        sink = RecordingSink(fail_on=b"\xff\xff")
        dispatcher = PlaybackDispatcher(sink)
        dispatcher.start()

        dispatcher.submit(b"\xff\xff")
        dispatcher.submit(b"\x01\x00")
        await asyncio.sleep(0.01)

        assert sink.calls == [("play", b"\x01\x00")]
        await dispatcher.close()

    asyncio.run(run())
    assert any(e["event_type"] == "PLAYBACK_ERROR" for e in _logs)


def test_close_is_safe_without_start() -> None:
    async def run() -> None:
        sink = RecordingSink()
        dispatcher = PlaybackDispatcher(sink)
        dispatcher.submit(b"\x01\x00")

        await dispatcher.close()

        assert sink.calls == [("stop", None)]
        assert dispatcher.pending == 0

    asyncio.run(run())
