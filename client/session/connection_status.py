"""
Connection status tracking for the voice session.

Connection lifecycle is tracked separately from CallState.
connection_status: DOWN | CONNECTING | UP

This is pure data owned by the SessionTransport.
"""
from enum import Enum

class ConnectionStatus(Enum):
    """
    Socket lifecycle status.

    Separate from and independent of CallState: the socket is UP only once
    the server acknowledged initiation, and goes CLOSING during teardown.
    """
    DOWN = "DOWN"              # No socket
    CONNECTING = "CONNECTING"  # Socket opening or awaiting initiation ack
    UP = "UP"                  # Confirmed, streaming
    CLOSING = "CLOSING"        # Teardown in progress
