"""
Amplitude-based voice activity gate for the upload path.

Decides, per converted PCM16 frame, whether the frame is worth sending.
Keeps the link from being flooded with silence while never clipping the
tail of an utterance.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable

from audio.pcm import peak_amplitude
from constants import (
    AUDIO_SEND_MIN_INTERVAL_MS,
    VAD_LEVEL_MEDIUM_MAX,
    VAD_LEVEL_QUIET_MAX,
    VAD_QUIET_TAIL_FRAMES,
    VAD_SEND_THRESHOLD,
)


class AudioLevel(str, Enum):
    """Peak-amplitude band of a frame."""

    SILENCE = "SILENCE"
    QUIET = "QUIET"
    MEDIUM = "MEDIUM"
    LOUD = "LOUD"


def classify_level(peak: int) -> AudioLevel:
    """Map a peak int16 magnitude to its band."""
    if peak <= 0:
        return AudioLevel.SILENCE
    if peak < VAD_LEVEL_QUIET_MAX:
        return AudioLevel.QUIET
    if peak < VAD_LEVEL_MEDIUM_MAX:
        return AudioLevel.MEDIUM
    return AudioLevel.LOUD


class VoiceActivityGate:
    """
    Peak-amplitude gate with a quiet-tail hysteresis and a send rate limit.

    Per frame, in order:
    1. Rate limit: if the last send was less than AUDIO_SEND_MIN_INTERVAL_MS
       ago, the frame is dropped. The hysteresis counter is NOT advanced
       for a rate-limited frame.
    2. Send if peak >= VAD_SEND_THRESHOLD, or if fewer than
       VAD_QUIET_TAIL_FRAMES consecutive quiet frames preceded this one.
    3. Quiet frames advance the counter; a loud frame resets it to 0.

    One gate belongs to one Session; its counters die with it.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        min_interval_ms: int = AUDIO_SEND_MIN_INTERVAL_MS,
        quiet_tail_frames: int = VAD_QUIET_TAIL_FRAMES,
    ) -> None:
        self._clock = clock
        self._min_interval_s = min_interval_ms / 1000.0
        self._quiet_tail_frames = quiet_tail_frames

        self.consecutive_quiet_frames: int = 0
        self.last_send_ts: float | None = None
        self.last_level: AudioLevel = AudioLevel.SILENCE

    def should_send(self, pcm16_bytes: bytes) -> bool:
        """
        Decide whether a wire-format frame is transmitted.

        A True result records the send time; the caller is expected to
        transmit the frame.
        """
        now = self._clock()
        if (
            self.last_send_ts is not None
            and now - self.last_send_ts < self._min_interval_s
        ):
            return False

        peak = peak_amplitude(pcm16_bytes)
        self.last_level = classify_level(peak)

        send = (
            peak >= VAD_SEND_THRESHOLD
            or self.consecutive_quiet_frames < self._quiet_tail_frames
        )

        if peak < VAD_SEND_THRESHOLD:
            self.consecutive_quiet_frames += 1
        else:
            self.consecutive_quiet_frames = 0

        if send:
            self.last_send_ts = now
        return send

    def reset(self) -> None:
        """Forget the quiet streak and the last send time."""
        self.consecutive_quiet_frames = 0
        self.last_send_ts = None
        self.last_level = AudioLevel.SILENCE
