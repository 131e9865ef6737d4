"""
Pure call-state reducer.

(snapshot, event) -> (new_snapshot, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly rejected (logged).

Reachable CallState edges (nothing else):
    IDLE       -> CONNECTING   StartRequested
    CONNECTING -> ACTIVE       InitiationAckReceived
    CONNECTING -> IDLE         ConnectFailed / PermissionResult(denied)
    ACTIVE     -> IDLE         EndRequested
    ACTIVE     -> IDLE         TransportLost
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from orchestrator.commands import Command, LogEvent
from orchestrator.enums.mode import AgentMode
from orchestrator.enums.state import CallState
from orchestrator.events import (
    AgentModeChanged,
    ConnectFailed,
    EndRequested,
    ErrorReported,
    Event,
    InitiationAckReceived,
    MuteChanged,
    PermissionResult,
    RecordingChanged,
    StartRequested,
    TranscriptReceived,
    TransportLost,
)
from orchestrator.state_dataclass import CallSnapshot, TranscriptLine


PERMISSION_DENIED_MESSAGE = "Microphone permission denied"
CONNECTION_LOST_MESSAGE = "Connection lost"


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: CallSnapshot,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "state": state.call_state.value,
            "mode": state.mode.value if state.mode is not None else None,
            "event_type": event.event_type.value,
            "decision": decision,
            "details": details or {},
        }
    )


def _reject(state: CallSnapshot, event: Event) -> tuple[CallSnapshot, tuple[Command, ...]]:
    return state, (
        _log(state, event, "transition_rejected", {"from_state": state.call_state.value}),
    )


def _transition(
    state: CallSnapshot,
    new_state: CallSnapshot,
    event: Event,
    source: str,
) -> tuple[CallSnapshot, tuple[Command, ...]]:
    return new_state, (
        _log(
            new_state,
            event,
            "state_changed",
            {
                "from_state": state.call_state.value,
                "to_state": new_state.call_state.value,
                "source": source,
            },
        ),
    )


def _to_idle(state: CallSnapshot, *, error: str | None, keep_transcripts: bool) -> CallSnapshot:
    return replace(
        state,
        call_state=CallState.IDLE,
        error_message=error,
        mode=None,
        is_recording=False,
        is_muted=False,
        conversation_id=None,
        transcripts=state.transcripts if keep_transcripts else (),
    )


# =============================================================================
# Reducer
# =============================================================================

# pylint: disable=too-many-return-statements,too-many-branches
def reduce(
    state: CallSnapshot, event: Event
) -> tuple[CallSnapshot, tuple[Command, ...]]:
    """
    Pure reducer for the call lifecycle.

    Given the current snapshot and a single event, returns:
    - the next snapshot
    - a tuple of commands describing required side effects (logs only)

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly rejected
    """
    current = state.call_state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    if isinstance(event, StartRequested):
        if current is not CallState.IDLE:
            return _reject(state, event)
        return _transition(
            state,
            replace(
                state,
                call_state=CallState.CONNECTING,
                error_message=None,
                mode=None,
                conversation_id=None,
                transcripts=(),
            ),
            event,
            "start_requested",
        )

    if isinstance(event, PermissionResult):
        if current is not CallState.CONNECTING:
            return _reject(state, event)
        if event.granted:
            return state, (_log(state, event, "permission_granted"),)
        return _transition(
            state,
            _to_idle(state, error=PERMISSION_DENIED_MESSAGE, keep_transcripts=False),
            event,
            "permission_denied",
        )

    if isinstance(event, InitiationAckReceived):
        if current is not CallState.CONNECTING:
            return _reject(state, event)
        return _transition(
            state,
            replace(
                state,
                call_state=CallState.ACTIVE,
                mode=AgentMode.LISTENING,
                conversation_id=event.conversation_id,
            ),
            event,
            "initiation_ack",
        )

    if isinstance(event, ConnectFailed):
        if current is not CallState.CONNECTING:
            return _reject(state, event)
        return _transition(
            state,
            _to_idle(state, error=event.reason, keep_transcripts=False),
            event,
            "connect_failed",
        )

    if isinstance(event, EndRequested):
        if current is not CallState.ACTIVE:
            return _reject(state, event)
        return _transition(
            state,
            _to_idle(state, error=None, keep_transcripts=False),
            event,
            "user_end",
        )

    if isinstance(event, TransportLost):
        if current is not CallState.ACTIVE:
            return _reject(state, event)
        new_state = _to_idle(state, error=CONNECTION_LOST_MESSAGE, keep_transcripts=True)
        new_state, cmds = _transition(state, new_state, event, "transport_lost")
        return new_state, cmds + (
            _log(new_state, event, "transport_lost", {"reason": event.reason}),
        )

    # ------------------------------------------------------------------
    # Conversation (ACTIVE only)
    # ------------------------------------------------------------------
    if isinstance(event, AgentModeChanged):
        if current is not CallState.ACTIVE:
            return _reject(state, event)
        if state.mode is event.mode:
            return state, ()
        return replace(state, mode=event.mode), (
            _log(state, event, "mode_changed", {"to_mode": event.mode.value}),
        )

    if isinstance(event, TranscriptReceived):
        if current is not CallState.ACTIVE:
            return _reject(state, event)
        if not event.text:
            return state, (_log(state, event, "empty_transcript_ignored"),)
        line = TranscriptLine(role=event.role, text=event.text, ts_ms=event.ts_ms)
        return replace(state, transcripts=state.transcripts + (line,)), ()

    # ------------------------------------------------------------------
    # Any state
    # ------------------------------------------------------------------
    if isinstance(event, ErrorReported):
        return replace(state, error_message=event.message), (
            _log(state, event, "error_reported", {"message": event.message}),
        )

    if isinstance(event, RecordingChanged):
        if state.is_recording == event.is_recording:
            return state, ()
        return replace(state, is_recording=event.is_recording), ()

    if isinstance(event, MuteChanged):
        if state.is_muted == event.is_muted:
            return state, ()
        return replace(state, is_muted=event.is_muted), (
            _log(state, event, "mute_changed", {"is_muted": event.is_muted}),
        )

    return state, (_log(state, event, "unhandled_event"),)
