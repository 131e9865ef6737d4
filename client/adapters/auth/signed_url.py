"""
Signed-URL token exchange.

Asks ElevenLabs for a short-lived websocket URL so the API key never rides
on the socket itself. Any failure yields None; the transport then falls
back to direct bearer authorization.
"""

from __future__ import annotations

from typing import Any

from elevenlabs.client import AsyncElevenLabs

from observability.logger import log_event
from observability.metrics import timed


class SignedUrlProvider:
    """
    Callable provider: `await provider()` -> signed URL or None.

    The SDK client is injectable for tests.
    """

    def __init__(self, *, api_key: str, agent_id: str, client: Any = None) -> None:
        self._agent_id = agent_id
        self._client = client if client is not None else AsyncElevenLabs(api_key=api_key)

    async def __call__(self) -> str | None:
        with timed("signed_url_exchange") as metric:
            try:
                response = await self._client.conversational_ai.conversations.get_signed_url(
                    agent_id=self._agent_id,
                )
            except Exception as e:  # pylint: disable=broad-exception-caught
                metric["ok"] = False
                log_event({
                    "event_type": "SIGNED_URL_FAILED",
                    "agent_id": self._agent_id,
                    "error": repr(e),
                })
                return None

            signed_url = getattr(response, "signed_url", None)
            metric["ok"] = bool(signed_url)
            if not signed_url:
                log_event({
                    "event_type": "SIGNED_URL_FAILED",
                    "agent_id": self._agent_id,
                    "error": "empty signed_url in response",
                })
                return None
            return signed_url
