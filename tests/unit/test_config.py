# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import AppConfig, ConfigurationError


def test_missing_api_key_is_reported_first() -> None:
    config = AppConfig(elevenlabs_api_key=None, elevenlabs_agent_id=None)

    assert not config.is_configured
    assert config.configuration_error is not None
    assert "API key" in config.configuration_error


def test_placeholder_values_count_as_unset() -> None:
    config = AppConfig(
        elevenlabs_api_key="YOUR_ELEVENLABS_API_KEY",
        elevenlabs_agent_id="agent_123",
    )
    with pytest.raises(ConfigurationError, match="API key"):
        config.validate()

    config = AppConfig(elevenlabs_api_key="sk_live", elevenlabs_agent_id="YOUR_AGENT_ID")
    with pytest.raises(ConfigurationError, match="agent id"):
        config.validate()


def test_valid_config_passes_validation() -> None:
    config = AppConfig(elevenlabs_api_key="sk_live", elevenlabs_agent_id="agent_123")

    config.validate()
    assert config.is_configured
    assert config.configuration_error is None


def test_load_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ELEVENLABS_API_KEY", "sk_env")
    monkeypatch.setenv("ELEVENLABS_AGENT_ID", "agent_env")
    monkeypatch.setenv("ELEVENLABS_USE_SIGNED_URL", "0")
    monkeypatch.setenv("ENABLE_JSON_LOGS", "0")
    monkeypatch.setenv("AUDIO_BUFFER_SIZE", "512")

    config = AppConfig.load_from_env()

    assert config.elevenlabs_api_key == "sk_env"
    assert config.elevenlabs_agent_id == "agent_env"
    assert config.use_signed_url is False
    assert config.enable_json_logs is False
    assert config.audio_buffer_size == 512
    assert config.audio_sample_rate_hz == 16000
    assert config.audio_channels == 1


def test_load_from_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ELEVENLABS_API_KEY",
        "ELEVENLABS_AGENT_ID",
        "ELEVENLABS_USE_SIGNED_URL",
        "AUDIO_BUFFER_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)

    config = AppConfig.load_from_env()

    assert config.use_signed_url is True
    assert config.audio_buffer_size == 1024
    assert not config.is_configured
