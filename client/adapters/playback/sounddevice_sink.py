"""
Speaker playback via sounddevice.

Each chunk is wrapped in a WAV container, decoded with soundfile, and
appended to a sample buffer drained by a sounddevice OutputStream
callback. The stream is (re)opened whenever the chunk sample rate changes.

Threading:
- play()/stop() run on the event loop.
- The output callback runs on the PortAudio thread; it only touches the
  buffer under the lock and hops back with call_soon_threadsafe to
  report the end of playback.
"""

from __future__ import annotations

import asyncio
import io
import threading
from typing import Any

import numpy as np
import soundfile as sf

from adapters.playback.base import PlaybackSink
from constants import AUDIO_BITS_PER_SAMPLE, AUDIO_SAMPLE_RATE_HZ
from observability.logger import log_event
from protocol.wav import wrap_pcm_as_wav


def _ensure_sounddevice() -> Any:
    """Import and return the sounddevice module."""
    try:
        import sounddevice as sd  # pylint: disable=import-outside-toplevel
    except ImportError as e:
        raise ImportError(
            "sounddevice is required for playback. "
            "Install with: pip install sounddevice"
        ) from e
    return sd


def decode_chunk(pcm_bytes: bytes, sample_rate_hz: int) -> tuple[np.ndarray, int]:
    """
    Wrap raw PCM16 mono in WAV and decode it.

    Returns (int16 samples, sample rate). Raises WavFormatError for
    odd-length payloads and soundfile errors for undecodable data.
    """
    wav = wrap_pcm_as_wav(
        pcm_bytes,
        sample_rate_hz=sample_rate_hz,
        channels=1,
        bits_per_sample=AUDIO_BITS_PER_SAMPLE,
    )
    data, rate = sf.read(io.BytesIO(wav), dtype="int16", always_2d=False)
    return np.asarray(data, dtype=np.int16).reshape(-1), int(rate)


class SounddeviceSink(PlaybackSink):
    """Default-output speaker sink."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._buffer = np.zeros(0, dtype=np.int16)
        self._stream: Any = None
        self._stream_rate_hz: int | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------
    # Stream management
    # ------------------------------------------------------------------

    def _open_stream(self, sample_rate_hz: int) -> None:
        sd = _ensure_sounddevice()
        self._close_stream()
        stream = sd.OutputStream(
            samplerate=sample_rate_hz,
            channels=1,
            dtype="int16",
            callback=self._on_output,
        )
        stream.start()
        self._stream = stream
        self._stream_rate_hz = sample_rate_hz
        log_event({"event_type": "PLAYBACK_STREAM_OPENED", "sample_rate_hz": sample_rate_hz})

    def _close_stream(self) -> None:
        stream = self._stream
        if stream is None:
            return
        self._stream = None
        self._stream_rate_hz = None
        try:
            stream.stop()
        finally:
            stream.close()

    def _on_output(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        # Runs on the PortAudio thread
        _ = time_info
        if status:
            log_event({"event_type": "PLAYBACK_STREAM_STATUS", "status": str(status)})

        with self._lock:
            chunk = self._buffer[:frames]
            self._buffer = self._buffer[frames:]
            drained = len(self._buffer) == 0 and len(chunk) > 0

        outdata.fill(0)
        outdata[: len(chunk), 0] = chunk

        if drained and self._loop is not None:
            self._loop.call_soon_threadsafe(self._on_drained)

    def _on_drained(self) -> None:
        with self._lock:
            empty = len(self._buffer) == 0
        if empty:
            self._set_playing(False)

    # ------------------------------------------------------------------
    # PlaybackSink
    # ------------------------------------------------------------------

    async def play(self, pcm_bytes: bytes, *, sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ) -> None:
        if not pcm_bytes:
            return

        samples, rate = decode_chunk(pcm_bytes, sample_rate_hz)
        self._loop = asyncio.get_running_loop()

        if self._stream is None or self._stream_rate_hz != rate:
            with self._lock:
                self._buffer = np.zeros(0, dtype=np.int16)
            self._open_stream(rate)

        with self._lock:
            self._buffer = np.concatenate((self._buffer, samples))

        self._set_playing(True)

    async def stop(self) -> None:
        with self._lock:
            self._buffer = np.zeros(0, dtype=np.int16)
        self._set_playing(False)

    async def close(self) -> None:
        await self.stop()
        self._close_stream()
