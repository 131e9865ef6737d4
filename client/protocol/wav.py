"""
Minimal WAV container for raw PCM playback.

Renderers that decode files rather than raw samples need a self-describing
container. The stdlib `wave` writer produces the canonical 44-byte
RIFF/WAVE header (little-endian, PCM format tag 1) followed by the payload.
"""

from __future__ import annotations

import io
import wave

from constants import AUDIO_BITS_PER_SAMPLE, AUDIO_CHANNELS, AUDIO_SAMPLE_RATE_HZ

WAV_HEADER_BYTES = 44
_SUPPORTED_BITS = (8, 16, 24, 32)


class WavFormatError(ValueError):
    """Raised when PCM parameters cannot describe a valid WAV stream."""


def wrap_pcm_as_wav(
    pcm_bytes: bytes,
    *,
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
    channels: int = AUDIO_CHANNELS,
    bits_per_sample: int = AUDIO_BITS_PER_SAMPLE,
) -> bytes:
    """
    Prefix raw interleaved PCM with a 44-byte RIFF/WAVE header.

    Raises:
        WavFormatError if parameters are invalid or the payload is not a
        whole number of sample frames.
    """
    if sample_rate_hz <= 0:
        raise WavFormatError(f"Invalid sample rate: {sample_rate_hz}")
    if channels <= 0:
        raise WavFormatError(f"Invalid channel count: {channels}")
    if bits_per_sample not in _SUPPORTED_BITS:
        raise WavFormatError(f"Invalid bits per sample: {bits_per_sample}")

    block_align = channels * (bits_per_sample // 8)
    if len(pcm_bytes) % block_align != 0:
        raise WavFormatError(
            f"PCM length {len(pcm_bytes)} is not a multiple of block align {block_align}"
        )

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(bits_per_sample // 8)
        wf.setframerate(sample_rate_hz)
        wf.writeframes(pcm_bytes)

    wav = buf.getvalue()
    if len(wav) != WAV_HEADER_BYTES + len(pcm_bytes):
        raise WavFormatError(
            f"WAV header length {len(wav) - len(pcm_bytes)} != {WAV_HEADER_BYTES}"
        )
    return wav
