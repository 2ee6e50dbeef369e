"""
Configuration management for entstore.

Two layers:
- StoreSettings: process-wide settings loaded from ENTSTORE_* environment
  variables (logging, strictness of the apply engine)
- SessionOptions / NextStateOptions: per-call options records, validated
  at construction

Invariants:
    - All settings have sensible defaults for local development
    - Options records are immutable once built
    - Invalid option values fail at construction, not at use

How to change safely:
    - Add new settings with defaults that keep current behavior
    - Keep option field names stable; callers pass them by keyword
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Literal, Optional

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import InvalidOptionsError

logger = logging.getLogger(__name__)

_settings: Optional[StoreSettings] = None
_settings_lock = threading.Lock()


class StoreSettings(BaseSettings):
    """entstore process-wide configuration."""

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["text", "json"] = Field(default="text")

    # Apply engine: raise StaleIdError instead of skipping ids that vanished
    strict_updates: bool = Field(default=False)

    # Warn when get_next_state() runs twice on the same session
    warn_on_session_reuse: bool = Field(default=True)

    model_config = {"env_prefix": "ENTSTORE_"}


def get_settings() -> StoreSettings:
    """Get the process-wide settings, loading them from the environment once."""
    global _settings
    with _settings_lock:
        if _settings is None:
            _settings = StoreSettings()
        return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing only)."""
    global _settings
    with _settings_lock:
        _settings = None


def setup_logging(settings: Optional[StoreSettings] = None) -> None:
    """Configure root logging from settings.

    Args:
        settings: Settings to use; defaults to get_settings()
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        # extra={...} context becomes JSON fields
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


@dataclass(frozen=True)
class SessionOptions:
    """Options for a Session.

    Attributes:
        with_mutations: Apply each update to the live state immediately
            instead of recording it. Only safe when the caller owns the
            state exclusively (e.g. while restoring from a snapshot).
    """

    with_mutations: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.with_mutations, bool):
            raise InvalidOptionsError(
                f"with_mutations must be a bool, got {type(self.with_mutations).__name__}",
                option="with_mutations",
            )


@dataclass(frozen=True)
class NextStateOptions:
    """Options for Session.get_next_state().

    Attributes:
        run_reducers: Run the per-table reducers. None means "only if the
            session was created with an action".
    """

    run_reducers: Optional[bool] = None

    def __post_init__(self) -> None:
        if self.run_reducers is not None and not isinstance(self.run_reducers, bool):
            raise InvalidOptionsError(
                f"run_reducers must be a bool or None, got {type(self.run_reducers).__name__}",
                option="run_reducers",
            )

    def resolve_run_reducers(self, has_action: bool) -> bool:
        """Resolve the effective run_reducers flag."""
        if self.run_reducers is None:
            return has_action
        return self.run_reducers
