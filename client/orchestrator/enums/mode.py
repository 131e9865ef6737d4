"""
Agent mode enumeration.

Mode is orthogonal to call state:
- CallState answers: "Is there a call?"
- AgentMode answers: "Who is talking?"
"""

from __future__ import annotations

from enum import Enum


class AgentMode(str, Enum):
    """
    Conversational mode of the remote agent. Display only.

    LISTENING:
        Agent is waiting for user speech.

    SPEAKING:
        Agent audio is being rendered.
    """

    LISTENING = "LISTENING"
    SPEAKING = "SPEAKING"
