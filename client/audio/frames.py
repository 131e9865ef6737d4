"""
Audio frame primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from constants import AUDIO_CHANNELS, AUDIO_SAMPLE_RATE_HZ


class SampleFormat(str, Enum):
    """
    Sample encoding of a PCM buffer.

    Only integer PCM is converted. FLOAT32 is recognised so that a source
    delivering it is routed to the degrade path instead of being misread.
    """

    INT16 = "int16"
    INT32 = "int32"
    FLOAT32 = "float32"

    @property
    def width_bytes(self) -> int:
        """Bytes per sample."""
        return 2 if self is SampleFormat.INT16 else 4


@dataclass(frozen=True)
class AudioFrame:
    """
    A tagged buffer of interleaved PCM samples.

    pcm_bytes:
        Raw little-endian samples, channels interleaved.

    sample_rate_hz / channels / sample_format:
        Describe pcm_bytes. Capture frames carry the device's native
        format; the resampler produces canonical 16kHz mono int16 frames.

    ts_ms:
        Wall-clock timestamp when the frame was captured. Observability only.

    Transient: never retained past the send or playback call consuming it.
    """
    pcm_bytes: bytes
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
    channels: int = AUDIO_CHANNELS
    sample_format: SampleFormat = SampleFormat.INT16
    ts_ms: int = 0

    @property
    def num_frames(self) -> int:
        """Number of sample frames (one sample per channel each)."""
        stride = self.channels * self.sample_format.width_bytes
        if stride <= 0:
            return 0
        return len(self.pcm_bytes) // stride
