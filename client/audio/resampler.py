"""
Capture-to-wire audio conversion.

Converts frames in whatever format the capture device delivers into the
wire format (PCM16 mono @ 16kHz). The capture source is never assumed to
match the wire format.

Degrade policy:
- If conversion fails (unsupported sample format, malformed buffer, numeric
  error), the original bytes are passed through reinterpreted as wire PCM.
  The result is lossy, but the utterance is not dropped.
- Every degrade is logged as AUDIO_CONVERSION_DEGRADED. Never raises.
"""

from __future__ import annotations

from math import gcd

import numpy as np
from scipy import signal

from audio.frames import AudioFrame, SampleFormat
from audio.pcm import pcm_to_int16_array, trim_to_whole_samples
from constants import (
    INT16_MAX,
    INT16_MIN,
    LOG_PAYLOAD_PREVIEW_CHARS,
    WIRE_AUDIO_FORMAT,
    AudioFormat,
)
from observability.logger import log_event


def matches_format(frame: AudioFrame, target: AudioFormat) -> bool:
    """True if the frame is already int16 at the target rate and channel count."""
    return (
        frame.sample_format is SampleFormat.INT16
        and frame.sample_rate_hz == target.sample_rate_hz
        and frame.channels == target.channels
    )


def _downmix(samples: np.ndarray, channels: int) -> np.ndarray:
    if channels == 1:
        return samples
    usable = (len(samples) // channels) * channels
    return samples[:usable].reshape(-1, channels).mean(axis=1)


def _resample(mono: np.ndarray, src_rate_hz: int, dst_rate_hz: int) -> np.ndarray:
    # resample_poly output length is ceil(n * up / down): never truncated
    if src_rate_hz == dst_rate_hz or len(mono) == 0:
        return mono
    g = gcd(src_rate_hz, dst_rate_hz)
    return signal.resample_poly(mono, dst_rate_hz // g, src_rate_hz // g)


def _degrade(frame: AudioFrame, target: AudioFormat, reason: str) -> AudioFrame:
    log_event({
        "event_type": "AUDIO_CONVERSION_DEGRADED",
        "reason": reason[:LOG_PAYLOAD_PREVIEW_CHARS],
        "src_sample_rate_hz": frame.sample_rate_hz,
        "src_channels": frame.channels,
        "src_sample_format": frame.sample_format.value,
        "payload_len": len(frame.pcm_bytes),
    })
    return AudioFrame(
        pcm_bytes=trim_to_whole_samples(frame.pcm_bytes, target.sample_width_bytes),
        sample_rate_hz=target.sample_rate_hz,
        channels=target.channels,
        sample_format=SampleFormat.INT16,
        ts_ms=frame.ts_ms,
    )


def convert(frame: AudioFrame, target: AudioFormat = WIRE_AUDIO_FORMAT) -> AudioFrame:
    """
    Convert a capture frame to the target wire format.

    Returns the input object itself when it already matches (no copy).
    Otherwise scales to int16, downmixes channels by averaging, and
    resamples with a polyphase filter.
    """
    if matches_format(frame, target):
        return frame

    if frame.sample_rate_hz <= 0 or frame.channels <= 0:
        return _degrade(frame, target, "invalid_source_format")

    try:
        samples = pcm_to_int16_array(frame.pcm_bytes, frame.sample_format)
        mono = _downmix(samples, frame.channels)
        if target.channels != 1:
            # Only mono wire output is produced
            raise ValueError(f"unsupported target channels: {target.channels}")
        out = _resample(mono, frame.sample_rate_hz, target.sample_rate_hz)
        pcm = np.clip(np.rint(out), INT16_MIN, INT16_MAX).astype("<i2").tobytes()
    except (ValueError, TypeError, MemoryError, FloatingPointError) as e:
        return _degrade(frame, target, f"{type(e).__name__}: {e}")

    return AudioFrame(
        pcm_bytes=pcm,
        sample_rate_hz=target.sample_rate_hz,
        channels=target.channels,
        sample_format=SampleFormat.INT16,
        ts_ms=frame.ts_ms,
    )
