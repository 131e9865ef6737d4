"""
Session and transport error taxonomy.

Policy:
- Connect failures are single-attempt; the user re-invokes connect.
- Transport loss is reported once; there is no automatic reconnect.
- Audio send failures are dropped silently; control send failures propagate.

ConfigurationError lives in config.py and MessageDecodeError in
protocol/messages.py, next to the code that raises them.
"""

from __future__ import annotations


class VoiceClientError(Exception):
    """Base class for session-level errors surfaced to the call state."""


class PermissionDenied(VoiceClientError):
    """Microphone access was not granted. Never retried automatically."""


# -------------------------
# Connect
# -------------------------

class ConnectError(VoiceClientError):
    """Base class for connect() failures."""


class ConnectTimeout(ConnectError):
    """No initiation acknowledgement arrived within the bounded wait."""


class ConnectFailed(ConnectError):
    """The socket could not be opened or the initiation could not be sent."""


class SessionAlreadyActive(ConnectError):
    """A Session already exists; only one may exist at a time."""


# -------------------------
# Mid-session
# -------------------------

class TransportLost(VoiceClientError):
    """The connection dropped while the session was expected to be active."""


class SendError(VoiceClientError):
    """Base class for send() failures."""


class NotConnected(SendError):
    """The session is absent or not yet confirmed; nothing was sent."""


class SendFailed(SendError):
    """The socket rejected the frame."""
