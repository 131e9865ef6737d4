"""
Ordered playback dispatch.

Inbound agent audio arrives on the receive loop and must not block it.
Chunks are queued and a single pump task hands them to the sink in
arrival order. Barge-in (interrupt) drops everything queued and stops the
sink before the receive loop dispatches the next frame.

Each queued chunk carries the generation it was submitted under; a chunk
from before the last interrupt is discarded by the pump.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from adapters.playback.base import PlaybackSink
from constants import AUDIO_LOG_SAMPLE_EVERY, AUDIO_SAMPLE_RATE_HZ, PLAYBACK_QUEUE_MAX_CHUNKS
from observability.logger import log_event


@dataclass(frozen=True)
class _Chunk:
    pcm_bytes: bytes
    sample_rate_hz: int
    generation: int


class PlaybackDispatcher:
    """Single-consumer FIFO in front of a PlaybackSink."""

    def __init__(
        self,
        sink: PlaybackSink,
        *,
        max_chunks: int = PLAYBACK_QUEUE_MAX_CHUNKS,
    ) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[_Chunk] = asyncio.Queue(maxsize=max_chunks)
        self._pump_task: asyncio.Task[None] | None = None
        self._generation = 0
        self.dropped = 0
        self.played = 0

    @property
    def sink(self) -> PlaybackSink:
        """Underlying renderer."""
        return self._sink

    @property
    def pending(self) -> int:
        """Chunks queued but not yet handed to the sink."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the pump. Idempotent."""
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump())

    def submit(self, pcm_bytes: bytes, *, sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ) -> bool:
        """
        Enqueue one chunk without blocking.

        Returns False if the chunk was dropped (queue full or empty chunk).
        """
        if not pcm_bytes:
            return False
        try:
            self._queue.put_nowait(_Chunk(pcm_bytes, sample_rate_hz, self._generation))
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped % AUDIO_LOG_SAMPLE_EVERY == 1:
                log_event({
                    "event_type": "PLAYBACK_QUEUE_FULL",
                    "dropped_total": self.dropped,
                })
            return False
        return True

    def _drain(self) -> int:
        drained = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return drained
            self._queue.task_done()
            drained += 1

    async def interrupt(self) -> None:
        """Barge-in: discard queued audio and stop the sink now."""
        self._generation += 1
        drained = self._drain()
        await self._sink.stop()
        log_event({
            "event_type": "PLAYBACK_INTERRUPTED",
            "discarded_chunks": drained,
        })

    async def close(self) -> None:
        """Stop the pump, drop queued audio, stop the sink."""
        self._generation += 1
        task = self._pump_task
        self._pump_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._drain()
        await self._sink.stop()

    async def _pump(self) -> None:
        while True:
            chunk = await self._queue.get()
            try:
                if chunk.generation != self._generation:
                    continue
                await self._sink.play(chunk.pcm_bytes, sample_rate_hz=chunk.sample_rate_hz)
                self.played += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "PLAYBACK_ERROR",
                    "error": repr(e),
                    "payload_len": len(chunk.pcm_bytes),
                })
            finally:
                self._queue.task_done()
