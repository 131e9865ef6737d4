"""
Authoritative call state enumeration.

Rules:
- This enum defines ONLY the call lifecycle states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class CallState(str, Enum):
    """
    User-visible lifecycle of a call.

    These states represent call intent, NOT connection status.
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    ACTIVE = "ACTIVE"
