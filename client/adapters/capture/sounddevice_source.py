"""
Microphone capture via sounddevice.

Opens the default input device at its native sample rate and channel
count and delivers int16 blocks of `blocksize` samples. Conversion to the
wire format happens downstream in audio.resampler.

sounddevice is imported lazily so that modules depending on this one
import cleanly on machines without PortAudio.
"""

from __future__ import annotations

import time
from typing import Any

from adapters.capture.base import AudioFrameSource, FrameCallback
from audio.frames import AudioFrame, SampleFormat
from constants import AUDIO_BUFFER_SIZE_SAMPLES, AUDIO_SAMPLE_RATE_HZ
from observability.logger import log_event


def _ensure_sounddevice() -> Any:
    """Import and return the sounddevice module."""
    try:
        import sounddevice as sd  # pylint: disable=import-outside-toplevel
    except ImportError as e:
        raise ImportError(
            "sounddevice is required for microphone capture. "
            "Install with: pip install sounddevice"
        ) from e
    return sd


def microphone_available() -> bool:
    """
    Permission / availability probe for the default input device.

    Returns False when there is no usable input device or PortAudio
    refuses to open it.
    """
    try:
        sd = _ensure_sounddevice()
        sd.check_input_settings()
    except (OSError, ValueError) as e:
        log_event({"event_type": "MIC_UNAVAILABLE", "error": repr(e)})
        return False
    return True


class SounddeviceSource(AudioFrameSource):
    """Default-input microphone source."""

    def __init__(self, *, blocksize: int = AUDIO_BUFFER_SIZE_SAMPLES) -> None:
        self._blocksize = blocksize
        self._callback: FrameCallback | None = None
        self._stream: Any = None
        self._sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
        self._channels: int = 1
        self._status_count = 0

    def on_frame(self, callback: FrameCallback) -> None:
        self._callback = callback

    @property
    def is_running(self) -> bool:
        return self._stream is not None

    def _device_format(self, sd: Any) -> tuple[int, int]:
        info = sd.query_devices(kind="input")
        rate = int(info.get("default_samplerate") or AUDIO_SAMPLE_RATE_HZ)
        channels = max(1, int(info.get("max_input_channels") or 1))
        return rate, channels

    def _on_block(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        # Runs on the PortAudio thread
        _ = frames, time_info
        if status:
            self._status_count += 1
            log_event({
                "event_type": "CAPTURE_STREAM_STATUS",
                "status": str(status),
                "count": self._status_count,
            })

        callback = self._callback
        if callback is None:
            return

        callback(AudioFrame(
            pcm_bytes=indata.tobytes(),
            sample_rate_hz=self._sample_rate_hz,
            channels=self._channels,
            sample_format=SampleFormat.INT16,
            ts_ms=time.time_ns() // 1_000_000,
        ))

    async def start(self) -> None:
        if self._stream is not None:
            return

        sd = _ensure_sounddevice()
        self._sample_rate_hz, self._channels = self._device_format(sd)

        stream = sd.InputStream(
            samplerate=self._sample_rate_hz,
            channels=self._channels,
            dtype="int16",
            blocksize=self._blocksize,
            callback=self._on_block,
        )
        stream.start()
        self._stream = stream

        log_event({
            "event_type": "CAPTURE_STARTED",
            "sample_rate_hz": self._sample_rate_hz,
            "channels": self._channels,
            "blocksize": self._blocksize,
        })

    async def stop(self) -> None:
        stream = self._stream
        if stream is None:
            return
        self._stream = None
        try:
            stream.stop()
        finally:
            stream.close()
        log_event({"event_type": "CAPTURE_STOPPED"})
