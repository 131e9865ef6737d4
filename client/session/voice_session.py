"""
Voice session container.

- One VoiceSession == one connect-to-disconnect lifetime of the voice link
- Owned and mutated by SessionTransport only
- NOT a state machine
- Contains no protocol logic
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from audio.vad import VoiceActivityGate
from constants import AUDIO_SAMPLE_RATE_HZ
from session.connection_status import ConnectionStatus


@dataclass
class FrameCounters:
    """Per-session upload/download counters (observability only)."""

    messages_sent: int = 0
    messages_received: int = 0
    frames_forwarded: int = 0
    frames_gated: int = 0
    frames_dropped: int = 0
    audio_chunks_received: int = 0

    def snapshot(self) -> dict[str, int]:
        """Plain dict for metric emission."""
        return dict(vars(self))


@dataclass
class VoiceSession:
    """Mutable runtime container for a single voice session."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    session_id: str
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    connection_status: ConnectionStatus = ConnectionStatus.DOWN
    websocket: Any = None  # Type: websockets ClientConnection in practice
    receive_task: asyncio.Task[None] | None = None

    # Remote end acknowledged initiation; gates send()
    confirmed: bool = False

    # Teardown started; the receive loop checks this every iteration
    closing: bool = False

    # ------------------------------------------------------------------
    # Negotiated / server-provided
    # ------------------------------------------------------------------

    conversation_id: str | None = None
    agent_output_sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    message_seq: int = 0
    counters: FrameCounters = field(default_factory=FrameCounters)
    gate: VoiceActivityGate = field(default_factory=VoiceActivityGate)

    def next_seq(self) -> int:
        """Advance and return the outbound message sequence number."""
        self.message_seq += 1
        return self.message_seq

    def reset(self) -> None:
        """Clear every handle and counter. Called on teardown."""
        self.websocket = None
        self.receive_task = None
        self.confirmed = False
        self.connection_status = ConnectionStatus.DOWN
        self.message_seq = 0
        self.counters = FrameCounters()
        self.gate.reset()

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this session."""
        return {
            "session_id": self.session_id,
            "connection_status": self.connection_status.value,
        }
