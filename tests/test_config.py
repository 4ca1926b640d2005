"""
tests.test_config
~~~~~~~~~~~~~~~~~

配置派生属性测试。
"""
from __future__ import annotations

import pytest

from app.core.config import Settings


@pytest.mark.parametrize(
    ("environment", "expected"),
    [("dev", "INFO"), ("test", "DEBUG"), ("prod", "WARNING")],
)
def test_log_level_follows_environment(environment: str, expected: str) -> None:
    assert Settings(ENVIRONMENT=environment, LOG_LEVEL=None).effective_log_level == expected


def test_explicit_log_level_wins() -> None:
    assert Settings(ENVIRONMENT="prod", LOG_LEVEL="debug").effective_log_level == "DEBUG"


def test_captions_disabled_without_credentials() -> None:
    assert Settings(SPEECH_API_KEY=None).captions_enabled is False
    assert Settings(SPEECH_API_KEY="key").captions_enabled is True


def test_prod_restricts_cors_and_debug() -> None:
    settings = Settings(ENVIRONMENT="prod")

    assert settings.allow_cors_all_origins is False
    assert settings.debug is False
    assert settings.reload is False


def test_defaults() -> None:
    settings = Settings()

    assert settings.CAPTION_CHANNEL_LABEL == "subtitles"
    assert settings.CAPTION_INTERIM_INTERVAL_MS == 150
    assert settings.ICE_SERVERS == ["stun:stun.l.google.com:19302"]
