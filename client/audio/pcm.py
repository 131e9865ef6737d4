"""PCM conversion utilities."""
import numpy as np

from audio.frames import SampleFormat

_DTYPES = {
    SampleFormat.INT16: "<i2",
    SampleFormat.INT32: "<i4",
}


def trim_to_whole_samples(pcm_bytes: bytes, width_bytes: int) -> bytes:
    """Drop a truncated trailing sample, if any."""
    extra = len(pcm_bytes) % width_bytes
    if extra:
        return pcm_bytes[: len(pcm_bytes) - extra]
    return pcm_bytes


def pcm_to_int16_array(pcm_bytes: bytes, sample_format: SampleFormat) -> np.ndarray:
    """
    Decode little-endian integer PCM into int16-scaled samples.

    int32 samples are scaled down to the int16 range (top 16 bits).
    Returns float64 so downstream mixing/resampling does not overflow.

    Raises:
        ValueError for non-integer formats.
    """
    dtype = _DTYPES.get(sample_format)
    if dtype is None:
        raise ValueError(f"unsupported sample format: {sample_format.value}")

    samples = np.frombuffer(
        trim_to_whole_samples(pcm_bytes, sample_format.width_bytes),
        dtype=dtype,
    ).astype(np.float64)

    if sample_format is SampleFormat.INT32:
        samples = samples / 65536.0
    return samples


def peak_amplitude(pcm16_bytes: bytes) -> int:
    """
    Peak absolute sample magnitude of PCM16LE bytes.

    Empty input is silence (0). abs(-32768) is reported as 32768.
    """
    if len(pcm16_bytes) < 2:
        return 0
    samples = np.frombuffer(trim_to_whole_samples(pcm16_bytes, 2), dtype="<i2")
    return int(np.max(np.abs(samples.astype(np.int32))))
