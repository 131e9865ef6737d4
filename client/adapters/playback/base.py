"""
Playback sink contract.

This module defines the interface plus the shared `is_playing` observable.
No queueing policy lives here; ordering and barge-in are owned by the
PlaybackDispatcher.

Key invariants:
- play() accepts raw little-endian PCM16 mono at the given rate.
- stop() halts rendering immediately and discards buffered audio.
- is_playing changes are published on the event loop thread.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from constants import AUDIO_SAMPLE_RATE_HZ


PlayingListener = Callable[[bool], None]


class PlaybackSink(ABC):
    """
    Abstract audio renderer for agent speech.

    Implementations are responsible for:
    - Rendering PCM chunks in the order play() is called
    - Reporting playing/idle through _set_playing()

    Non-responsibilities:
    - No protocol parsing
    - No AgentMode decisions (the runtime maps is_playing to mode)
    """

    def __init__(self) -> None:
        self._is_playing = False
        self._listeners: list[PlayingListener] = []

    @abstractmethod
    async def play(self, pcm_bytes: bytes, *, sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ) -> None:
        """
        Queue one chunk for rendering.

        Contract:
        - Must not block the event loop for the chunk's duration.
        - Malformed chunks raise; the caller logs and continues.
        """
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        """Stop rendering now and drop anything buffered. Idempotent."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release device resources. Defaults to stop()."""
        await self.stop()

    # ------------------------------------------------------------------
    # Observable
    # ------------------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        """True while audio is being rendered."""
        return self._is_playing

    def subscribe(self, listener: PlayingListener) -> Callable[[], None]:
        """Register a listener for is_playing changes; returns unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set_playing(self, playing: bool) -> None:
        if playing == self._is_playing:
            return
        self._is_playing = playing
        for listener in list(self._listeners):
            listener(playing)
