"""
JSON wire codec for the conversational agent socket.

Inbound (server -> client), discriminated on "type":
    conversation_initiation_metadata   -> InitiationAck
    user_transcript                    -> Transcript(role=user)
    agent_response                     -> AgentResponse
    agent_response_correction          -> AgentResponse (corrected text)
    agent_response_stream              -> AgentResponse (no text; mode only)
    interruption                       -> Interruption
    ping                               -> Ping(event_id)
    pong                               -> Pong(event_id)
    audio                              -> AudioChunk(pcm_bytes)
    anything else / missing            -> Unknown

Two field layouts are accepted for the same message, permanently:
nested event objects ("audio_event": {"audio_base_64": ...}) and flat
fields ("data": ...). Neither is treated as legacy.

Outbound (client -> server):
    {"type": "conversation_initiation_client_data",
     "conversation_config": {"agent_id": ...}}
    {"user_audio_chunk": "<base64 PCM16LE>"}
    {"type": "pong", "event_id": <int>}
    {"type": "user_message", "text": ...}

Usage example:

    try:
        msg = parse_message(text)
    except MessageDecodeError as e:
        log_event({"event_type": "MESSAGE_DECODE_ERROR", "error": str(e)})
        return

    if isinstance(msg, Ping):
        await transport.send_control(build_pong(msg.event_id))
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


# -------------------------
# Exceptions
# -------------------------

class ProtocolError(Exception):
    """Base class for wire protocol errors."""


class MessageDecodeError(ProtocolError):
    """
    Raised when an inbound frame cannot be decoded.

    Covers invalid JSON, a non-object top level, and undecodable base64
    audio. The frame is skipped; the session continues.
    """


# -------------------------
# Message types
# -------------------------

class MessageType(str, Enum):
    """Known inbound discriminants."""

    INITIATION_METADATA = "conversation_initiation_metadata"
    USER_TRANSCRIPT = "user_transcript"
    AGENT_RESPONSE = "agent_response"
    AGENT_RESPONSE_CORRECTION = "agent_response_correction"
    AGENT_RESPONSE_STREAM = "agent_response_stream"
    INTERRUPTION = "interruption"
    PING = "ping"
    PONG = "pong"
    AUDIO = "audio"


class Role(str, Enum):
    """Speaker of a transcript line."""

    USER = "user"
    AGENT = "agent"


@dataclass(frozen=True)
class InitiationAck:
    """Server confirmed the conversation; streaming may begin."""
    conversation_id: str | None = None
    agent_output_audio_format: str | None = None
    user_input_audio_format: str | None = None


@dataclass(frozen=True)
class Transcript:
    """Recognised user speech. Display only."""
    role: Role
    text: str


@dataclass(frozen=True)
class AgentResponse:
    """Agent reply text; the agent is speaking."""
    text: str


@dataclass(frozen=True)
class Interruption:
    """Agent output was interrupted (barge-in)."""
    reason: str | None = None


@dataclass(frozen=True)
class Ping:
    """Liveness probe; must be answered with a pong echoing event_id."""
    event_id: int
    ping_ms: int | None = None


@dataclass(frozen=True)
class Pong:
    """Pong seen inbound (not expected from the server, tolerated)."""
    event_id: int


@dataclass(frozen=True)
class AudioChunk:
    """Agent speech as raw PCM bytes."""
    pcm_bytes: bytes
    event_id: int | None = None


@dataclass(frozen=True)
class Unknown:
    """Unrecognised or untyped message, kept for diagnostics."""
    msg_type: str | None
    keys: tuple[str, ...] = field(default_factory=tuple)


ControlMessage = Union[
    InitiationAck,
    Transcript,
    AgentResponse,
    Interruption,
    Ping,
    Pong,
    AudioChunk,
    Unknown,
]


# -------------------------
# Field helpers
# -------------------------

def _nested(data: dict[str, Any], event_key: str, field_name: str) -> Any:
    """Read data[event_key][field_name], falling back to data[field_name]."""
    event = data.get(event_key)
    if isinstance(event, dict) and field_name in event:
        return event[field_name]
    return data.get(field_name)


def _as_int(value: Any) -> int | None:
    # bool is an int subclass; it is never a valid event id
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _decode_b64(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MessageDecodeError(f"invalid base64 audio: {e}") from e


# -------------------------
# Inbound
# -------------------------

def _parse_audio(data: dict[str, Any]) -> ControlMessage:
    event = data.get("audio_event")
    encoded: Any = None
    event_id: int | None = None

    if isinstance(event, dict):
        encoded = event.get("audio_base_64")
        event_id = _as_int(event.get("event_id"))
    if encoded is None:
        encoded = data.get("data")

    if not isinstance(encoded, str):
        raise MessageDecodeError("audio message carries no base64 payload")

    return AudioChunk(pcm_bytes=_decode_b64(encoded), event_id=event_id)


def _parse_typed(msg_type: str, data: dict[str, Any]) -> ControlMessage:
    if msg_type == MessageType.INITIATION_METADATA:
        meta = data.get("conversation_initiation_metadata_event")
        meta = meta if isinstance(meta, dict) else {}
        return InitiationAck(
            conversation_id=_as_str(meta.get("conversation_id")),
            agent_output_audio_format=_as_str(meta.get("agent_output_audio_format")),
            user_input_audio_format=_as_str(meta.get("user_input_audio_format")),
        )

    if msg_type == MessageType.USER_TRANSCRIPT:
        text = _as_str(_nested(data, "user_transcript_event", "user_transcript"))
        return Transcript(role=Role.USER, text=text or "")

    if msg_type == MessageType.AGENT_RESPONSE:
        text = _as_str(_nested(data, "agent_response_event", "agent_response"))
        return AgentResponse(text=text or "")

    if msg_type == MessageType.AGENT_RESPONSE_CORRECTION:
        text = _as_str(
            _nested(data, "agent_response_correction_event", "corrected_agent_response")
        )
        return AgentResponse(text=text or "")

    if msg_type == MessageType.AGENT_RESPONSE_STREAM:
        # Partial text; the final agent_response carries the full line
        return AgentResponse(text="")

    if msg_type == MessageType.INTERRUPTION:
        return Interruption(
            reason=_as_str(_nested(data, "interruption_event", "reason"))
        )

    if msg_type == MessageType.PING:
        event_id = _as_int(_nested(data, "ping_event", "event_id"))
        if event_id is None:
            raise MessageDecodeError("ping without integer event_id")
        return Ping(
            event_id=event_id,
            ping_ms=_as_int(_nested(data, "ping_event", "ping_ms")),
        )

    if msg_type == MessageType.PONG:
        event_id = _as_int(data.get("event_id"))
        if event_id is None:
            raise MessageDecodeError("pong without integer event_id")
        return Pong(event_id=event_id)

    if msg_type == MessageType.AUDIO:
        return _parse_audio(data)

    return Unknown(msg_type=msg_type, keys=tuple(sorted(data.keys())))


def parse_message(text: str | bytes) -> ControlMessage:
    """
    Parse one inbound JSON text frame into a ControlMessage.

    Raises:
        MessageDecodeError if the frame is not a JSON object or carries an
        undecodable required field.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageDecodeError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MessageDecodeError(f"expected JSON object, got {type(data).__name__}")

    msg_type = data.get("type")
    if not isinstance(msg_type, str):
        return Unknown(msg_type=None, keys=tuple(sorted(data.keys())))

    return _parse_typed(msg_type, data)


_PCM_FORMAT_RE = re.compile(r"^pcm_(\d+)$")


def parse_pcm_output_format(fmt: str | None) -> int | None:
    """
    Extract the sample rate from an agent audio format tag.

    "pcm_16000" -> 16000; anything else (None, "ulaw_8000", ...) -> None.
    """
    if not fmt:
        return None
    match = _PCM_FORMAT_RE.match(fmt)
    if match is None:
        return None
    rate = int(match.group(1))
    return rate if rate > 0 else None


# -------------------------
# Outbound
# -------------------------

def build_initiation(agent_id: str) -> dict[str, Any]:
    """Conversation start message; the agent id rides in the nested config."""
    return {
        "type": "conversation_initiation_client_data",
        "conversation_config": {
            "agent_id": agent_id,
        },
    }


def build_user_audio_chunk(pcm16_bytes: bytes) -> dict[str, Any]:
    """Microphone audio, base64 little-endian PCM16."""
    return {"user_audio_chunk": base64.b64encode(pcm16_bytes).decode("ascii")}


def build_pong(event_id: int) -> dict[str, Any]:
    """Keep-alive answer echoing the server's event id."""
    return {"type": "pong", "event_id": event_id}


def build_user_message(text: str) -> dict[str, Any]:
    """Typed user text sent to the agent."""
    return {"type": "user_message", "text": text}


def encode(payload: dict[str, Any]) -> str:
    """Serialize an outbound message to a text frame."""
    return json.dumps(payload, separators=(",", ":"))
