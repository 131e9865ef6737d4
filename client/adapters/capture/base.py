"""
Capture source contract.

Key invariants:
- Frames are delivered in capture order, in the source's native format.
- The frame callback may run on a device thread; receivers must hop to
  the event loop before touching session state.
- The source makes no gating or conversion decisions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from audio.frames import AudioFrame


FrameCallback = Callable[[AudioFrame], None]


class AudioFrameSource(ABC):
    """Abstract microphone (or file, or test) frame producer."""

    @abstractmethod
    def on_frame(self, callback: FrameCallback) -> None:
        """Register the single frame receiver. Replaces any previous one."""
        raise NotImplementedError

    @abstractmethod
    async def start(self) -> None:
        """Begin producing frames. Idempotent."""
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        """Stop producing frames. Idempotent; safe if never started."""
        raise NotImplementedError

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """True between start() and stop()."""
        raise NotImplementedError
