"""
CONSTANTS
---------
Single source of truth for all behavioral invariants of the voice client.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

# =============================================================================
# Wire Audio Format (PCM16 mono @ 16kHz)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_BITS_PER_SAMPLE: Final[int] = AUDIO_SAMPLE_WIDTH_BYTES * 8

# Hardware capture block size (samples per device callback)
AUDIO_BUFFER_SIZE_SAMPLES: Final[int] = 1024

INT16_MIN: Final[int] = -32768
INT16_MAX: Final[int] = 32767

# =============================================================================
# Voice Activity Gate
# =============================================================================

# Peak-amplitude bands (signed 16-bit magnitude)
VAD_LEVEL_QUIET_MAX: Final[int] = 1000   # QUIET  < 1000
VAD_LEVEL_MEDIUM_MAX: Final[int] = 5000  # MEDIUM < 5000, LOUD otherwise

# A frame is transmitted if peak >= this threshold...
VAD_SEND_THRESHOLD: Final[int] = VAD_LEVEL_QUIET_MAX
# ...or fewer than this many consecutive quiet frames have elapsed
VAD_QUIET_TAIL_FRAMES: Final[int] = 5

# Upload rate limit, independent of hardware cadence
AUDIO_SEND_MIN_INTERVAL_MS: Final[int] = 50

# =============================================================================
# Session / Connection Timing
# =============================================================================

CONNECT_ACK_TIMEOUT_S: Final[float] = 5.0
CONNECT_ACK_POLL_INTERVAL_MS: Final[int] = 100

WS_MAX_MESSAGE_BYTES: Final[int] = 2**22
WS_CLOSE_CODE_GOING_AWAY: Final[int] = 1001
WS_CLOSE_REASON_USER: Final[str] = "User ended call"
WS_CLOSE_REASON_TIMEOUT: Final[str] = "Initiation acknowledgement timeout"
WS_CLOSE_REASON_LOST: Final[str] = "Connection lost"
WS_CLOSE_REASON_CANCELLED: Final[str] = "Call setup cancelled"

# =============================================================================
# Agent Endpoint
# =============================================================================

CONVAI_WS_URL: Final[str] = "wss://api.elevenlabs.io/v1/convai/conversation"

# Placeholder marker left in unconfigured credentials
CREDENTIAL_PLACEHOLDER_MARKER: Final[str] = "YOUR_"

# =============================================================================
# Capture / Playback Plumbing
# =============================================================================

# Frames buffered between the capture callback thread and the event loop
CAPTURE_QUEUE_MAX_FRAMES: Final[int] = 32

# Inbound agent audio chunks buffered ahead of the playback sink
PLAYBACK_QUEUE_MAX_CHUNKS: Final[int] = 256

# =============================================================================
# Observability
# =============================================================================

# Log every Nth processed capture frame (frame-level events are sampled)
AUDIO_LOG_SAMPLE_EVERY: Final[int] = 20

# Max characters of a raw payload copied into diagnostic events
LOG_PAYLOAD_PREVIEW_CHARS: Final[int] = 100

# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class AudioFormat:
    """
    Immutable bundle describing a PCM audio format.

    This is a convenience wrapper for passing format metadata around;
    it is NOT a second source of truth.
    """
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
    channels: int = AUDIO_CHANNELS
    sample_width_bytes: int = AUDIO_SAMPLE_WIDTH_BYTES

    @property
    def bytes_per_second(self) -> int:
        """Return the byte rate of this format."""
        return self.sample_rate_hz * self.channels * self.sample_width_bytes


WIRE_AUDIO_FORMAT: Final[AudioFormat] = AudioFormat()
