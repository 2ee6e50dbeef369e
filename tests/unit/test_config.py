"""
Unit tests for settings and options records.
"""

import logging

import json_log_formatter
import pytest
from pydantic import ValidationError

from entstore.config import (
    NextStateOptions,
    SessionOptions,
    StoreSettings,
    get_settings,
    reset_settings,
    setup_logging,
)
from entstore.errors import InvalidOptionsError


class TestStoreSettings:
    """Tests for StoreSettings."""

    @pytest.fixture(autouse=True)
    def fresh_settings(self):
        """Drop cached settings around each test."""
        reset_settings()
        yield
        reset_settings()

    def test_defaults(self, monkeypatch):
        """Defaults suit local development."""
        for name in ("LOG_LEVEL", "LOG_FORMAT", "STRICT_UPDATES", "WARN_ON_SESSION_REUSE"):
            monkeypatch.delenv(f"ENTSTORE_{name}", raising=False)

        settings = StoreSettings()

        assert settings.log_level == "INFO"
        assert settings.log_format == "text"
        assert settings.strict_updates is False
        assert settings.warn_on_session_reuse is True

    def test_env_override(self, monkeypatch):
        """ENTSTORE_* variables override defaults."""
        monkeypatch.setenv("ENTSTORE_STRICT_UPDATES", "true")
        monkeypatch.setenv("ENTSTORE_LOG_FORMAT", "json")

        settings = StoreSettings()

        assert settings.strict_updates is True
        assert settings.log_format == "json"

    def test_invalid_log_format(self):
        """Only text and json formats exist."""
        with pytest.raises(ValidationError):
            StoreSettings(log_format="xml")

    def test_get_settings_is_cached(self):
        """get_settings returns one instance until reset."""
        first = get_settings()

        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root(self):
        """Restore root logger handlers and level."""
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        """JSON format installs a JSON formatter."""
        setup_logging(StoreSettings(log_level="DEBUG", log_format="json"))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_unknown_level_falls_back_to_info(self):
        """Unknown level names fall back to INFO."""
        setup_logging(StoreSettings(log_level="chatty"))

        assert logging.getLogger().level == logging.INFO


class TestOptions:
    """Tests for options records."""

    def test_session_options_default(self):
        """Sessions record updates by default."""
        assert SessionOptions().with_mutations is False

    def test_session_options_type(self):
        """with_mutations must be a bool."""
        with pytest.raises(InvalidOptionsError) as exc_info:
            SessionOptions(with_mutations="yes")

        assert exc_info.value.option == "with_mutations"

    def test_next_state_options_type(self):
        """run_reducers must be a bool or None."""
        with pytest.raises(InvalidOptionsError):
            NextStateOptions(run_reducers=1)

    @pytest.mark.parametrize(
        "run_reducers,has_action,expected",
        [
            (None, True, True),
            (None, False, False),
            (True, False, True),
            (False, True, False),
        ],
    )
    def test_resolve_run_reducers(self, run_reducers, has_action, expected):
        """None defers to whether the session has an action."""
        options = NextStateOptions(run_reducers=run_reducers)

        assert options.resolve_run_reducers(has_action) is expected
