"""
Authoritative call snapshot.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior beyond trivial read-only projections.
"""
from __future__ import annotations

from dataclasses import dataclass

from orchestrator.enums.mode import AgentMode
from orchestrator.enums.state import CallState
from protocol.messages import Role


@dataclass(frozen=True)
class TranscriptLine:
    """Single displayed utterance."""
    role: Role
    text: str
    ts_ms: int


@dataclass(frozen=True)
class CallSnapshot:
    """Immutable projection of the call, consumed by the presentation layer."""

    call_state: CallState = CallState.IDLE
    error_message: str | None = None
    mode: AgentMode | None = None

    is_recording: bool = False
    is_muted: bool = False

    conversation_id: str | None = None
    transcripts: tuple[TranscriptLine, ...] = ()

    @property
    def is_connected(self) -> bool:
        """True while a confirmed call is in progress."""
        return self.call_state is CallState.ACTIVE
