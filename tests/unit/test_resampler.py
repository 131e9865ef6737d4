# pylint: disable=missing-module-docstring,missing-function-docstring

from typing import Any

import numpy as np
import pytest

from audio import resampler
from audio.frames import AudioFrame, SampleFormat
from constants import WIRE_AUDIO_FORMAT, AudioFormat


def _sine(num_frames: int, rate: int, amplitude: float = 8000.0) -> np.ndarray:
    t = np.arange(num_frames) / rate
    return amplitude * np.sin(2 * np.pi * 440.0 * t)


def test_wire_format_frame_is_returned_unchanged() -> None:
    frame = AudioFrame(pcm_bytes=np.arange(320, dtype="<i2").tobytes())

    assert resampler.convert(frame) is frame


def test_48k_stereo_int16_is_downmixed_and_resampled() -> None:
    num_frames = 4800
    left = _sine(num_frames, 48000)
    stereo = np.empty(num_frames * 2, dtype="<i2")
    stereo[0::2] = left.astype("<i2")
    stereo[1::2] = left.astype("<i2")

    frame = AudioFrame(
        pcm_bytes=stereo.tobytes(),
        sample_rate_hz=48000,
        channels=2,
        sample_format=SampleFormat.INT16,
        ts_ms=77,
    )

    out = resampler.convert(frame)

    assert out.sample_rate_hz == 16000
    assert out.channels == 1
    assert out.sample_format is SampleFormat.INT16
    assert out.ts_ms == 77
    assert len(out.pcm_bytes) // 2 >= num_frames // 3
    samples = np.frombuffer(out.pcm_bytes, dtype="<i2")
    # Identical channels average to the same signal; amplitude survives the filter
    assert 6000 < int(np.max(np.abs(samples))) <= 8200


def test_int32_input_is_scaled_to_int16_range() -> None:
    samples = np.array([1 << 30, -(1 << 30), 0, 65536 * 100], dtype="<i4")
    frame = AudioFrame(
        pcm_bytes=samples.tobytes(),
        sample_rate_hz=16000,
        channels=1,
        sample_format=SampleFormat.INT32,
    )

    out = np.frombuffer(resampler.convert(frame).pcm_bytes, dtype="<i2")

    assert out.tolist() == [16384, -16384, 0, 100]


def test_upsampling_output_is_proportional() -> None:
    frame = AudioFrame(
        pcm_bytes=_sine(800, 8000).astype("<i2").tobytes(),
        sample_rate_hz=8000,
    )

    out = resampler.convert(frame)

    assert len(out.pcm_bytes) // 2 >= 1600


def test_unsupported_format_degrades_to_passthrough(monkeypatch: pytest.MonkeyPatch) -> None:
    logged: list[dict[str, Any]] = []
    monkeypatch.setattr(resampler, "log_event", logged.append)

    raw = np.linspace(-1.0, 1.0, 64, dtype="<f4").tobytes() + b"\x01"
    frame = AudioFrame(
        pcm_bytes=raw,
        sample_rate_hz=44100,
        channels=1,
        sample_format=SampleFormat.FLOAT32,
    )

    out = resampler.convert(frame)

    assert out.sample_rate_hz == WIRE_AUDIO_FORMAT.sample_rate_hz
    assert out.channels == 1
    assert out.pcm_bytes == raw[:-1]
    assert len(logged) == 1
    assert logged[0]["event_type"] == "AUDIO_CONVERSION_DEGRADED"


def test_invalid_source_rate_degrades(monkeypatch: pytest.MonkeyPatch) -> None:
    logged: list[dict[str, Any]] = []
    monkeypatch.setattr(resampler, "log_event", logged.append)

    frame = AudioFrame(pcm_bytes=b"\x00\x01\x02", sample_rate_hz=0)

    out = resampler.convert(frame)

    assert out.pcm_bytes == b"\x00\x01"
    assert logged[0]["reason"] == "invalid_source_format"


def test_non_mono_target_degrades(monkeypatch: pytest.MonkeyPatch) -> None:
    logged: list[dict[str, Any]] = []
    monkeypatch.setattr(resampler, "log_event", logged.append)

    frame = AudioFrame(pcm_bytes=bytes(64), sample_rate_hz=48000)

    out = resampler.convert(frame, AudioFormat(sample_rate_hz=16000, channels=2))

    assert out.pcm_bytes == bytes(64)
    assert logged[0]["event_type"] == "AUDIO_CONVERSION_DEGRADED"
