from unittest.mock import patch

import structlog

from rolegate.platform.config import Settings, settings
from rolegate.platform.logging import configure_logging, get_logger, redact_secrets


def test_settings_defaults():
    assert settings.DEFAULT_CONTEXT_ID == "HOME"
    assert settings.SESSION_TIMEOUT_MINUTES == 60
    assert settings.MAX_FIELD_LENGTH == 40


def test_settings_from_env():
    with patch.dict("os.environ", {"SESSION_TIMEOUT_MINUTES": "15", "DEFAULT_CONTEXT_ID": "ACME"}):
        config = Settings()
        assert config.SESSION_TIMEOUT_MINUTES == 15
        assert config.DEFAULT_CONTEXT_ID == "ACME"


def test_configure_logging():
    configure_logging(level="debug", json=True)
    try:
        logger = get_logger("rolegate.test")
        logger.info("logging_configured", component="test")
    finally:
        structlog.reset_defaults()


def test_redact_secrets():
    event = {"event": "authentication_failed", "user_id": "alice", "password": "hunter2"}
    assert redact_secrets(None, "warning", event) == {
        "event": "authentication_failed", "user_id": "alice", "password": "***",
    }
