"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object
- Validate credentials once, before any connection attempt

Non-responsibilities:
- No connection logic
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    AUDIO_BUFFER_SIZE_SAMPLES,
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    CREDENTIAL_PLACEHOLDER_MARKER,
)


class ConfigurationError(Exception):
    """
    Raised when credentials are missing or still placeholders.

    Fatal to any connect attempt. Surfaced immediately, never retried.
    """


def _is_unset(value: str | None) -> bool:
    return not value or CREDENTIAL_PLACEHOLDER_MARKER in value


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the runtime and transport.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Agent
    # ------------------------------------------------------------------

    elevenlabs_api_key: str | None = None
    elevenlabs_agent_id: str | None = None
    use_signed_url: bool = True

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    audio_sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
    audio_channels: int = AUDIO_CHANNELS
    audio_buffer_size: int = AUDIO_BUFFER_SIZE_SAMPLES

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @property
    def is_configured(self) -> bool:
        """True when both the credential and the agent id are usable."""
        return self.configuration_error is None

    @property
    def configuration_error(self) -> str | None:
        """Human-readable reason the config cannot connect, or None."""
        if _is_unset(self.elevenlabs_api_key):
            return "Please set your ElevenLabs API key (ELEVENLABS_API_KEY)"
        if _is_unset(self.elevenlabs_agent_id):
            return "Please set your ElevenLabs agent id (ELEVENLABS_AGENT_ID)"
        return None

    def validate(self) -> None:
        """
        Raise ConfigurationError if the config cannot be used to connect.
        """
        error = self.configuration_error
        if error is not None:
            raise ConfigurationError(error)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Missing credentials are NOT an error here; they are reported by
        validate() when a call is started.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY"),
            elevenlabs_agent_id=os.environ.get("ELEVENLABS_AGENT_ID"),
            use_signed_url=os.environ.get("ELEVENLABS_USE_SIGNED_URL", "1") == "1",

            audio_sample_rate_hz=int(
                os.environ.get("AUDIO_SAMPLE_RATE_HZ", str(AUDIO_SAMPLE_RATE_HZ))
            ),
            audio_channels=int(os.environ.get("AUDIO_CHANNELS", str(AUDIO_CHANNELS))),
            audio_buffer_size=int(
                os.environ.get("AUDIO_BUFFER_SIZE", str(AUDIO_BUFFER_SIZE_SAMPLES))
            ),
        )
