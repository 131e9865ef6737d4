"""
Event definitions for the call-state reducer.

Rules:
- Events describe facts that have occurred (or requests that were made).
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no async, no side effects; ts_ms is supplied by the emitter.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from orchestrator.enums.mode import AgentMode
from protocol.messages import Role


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair is either handled or explicitly
    rejected by the reducer.
    """

    # ------------------------------------------------------------------
    # Call lifecycle
    # ------------------------------------------------------------------
    START_REQUESTED = "START_REQUESTED"
    PERMISSION_RESULT = "PERMISSION_RESULT"
    INITIATION_ACK_RECEIVED = "INITIATION_ACK_RECEIVED"
    CONNECT_FAILED = "CONNECT_FAILED"
    END_REQUESTED = "END_REQUESTED"
    TRANSPORT_LOST = "TRANSPORT_LOST"

    # ------------------------------------------------------------------
    # Conversation (display only)
    # ------------------------------------------------------------------
    AGENT_MODE_CHANGED = "AGENT_MODE_CHANGED"
    TRANSCRIPT_RECEIVED = "TRANSCRIPT_RECEIVED"
    ERROR_REPORTED = "ERROR_REPORTED"

    # ------------------------------------------------------------------
    # Local capture
    # ------------------------------------------------------------------
    RECORDING_CHANGED = "RECORDING_CHANGED"
    MUTE_CHANGED = "MUTE_CHANGED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


# =============================================================================
# Call Lifecycle Events
# =============================================================================

@dataclass(frozen=True)
class StartRequested(Event):
    """User asked to start a call."""


@dataclass(frozen=True)
class PermissionResult(Event):
    """Outcome of the microphone permission check."""
    granted: bool


@dataclass(frozen=True)
class InitiationAckReceived(Event):
    """Server acknowledged the conversation initiation."""
    conversation_id: str | None = None


@dataclass(frozen=True)
class ConnectFailed(Event):
    """Connect attempt failed (timeout, socket error, permission denied)."""
    reason: str


@dataclass(frozen=True)
class EndRequested(Event):
    """User ended the call; teardown already ran."""


@dataclass(frozen=True)
class TransportLost(Event):
    """Connection dropped while the call was active."""
    reason: str | None = None


# =============================================================================
# Conversation Events
# =============================================================================

@dataclass(frozen=True)
class AgentModeChanged(Event):
    """Agent switched between listening and speaking."""
    mode: AgentMode


@dataclass(frozen=True)
class TranscriptReceived(Event):
    """A user or agent utterance to display."""
    role: Role
    text: str


@dataclass(frozen=True)
class ErrorReported(Event):
    """Non-fatal error to surface without changing the call state."""
    message: str


# =============================================================================
# Local Capture Events
# =============================================================================

@dataclass(frozen=True)
class RecordingChanged(Event):
    """Microphone capture started or stopped."""
    is_recording: bool


@dataclass(frozen=True)
class MuteChanged(Event):
    """User toggled mute."""
    is_muted: bool
