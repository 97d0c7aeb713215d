"""
STASH Configuration
===================

Pydantic configuration for STASH.
Reads from ~/.stash/config.json (or an explicit path).

Invalid configuration fails at load time. ``StashConfig.from_dict`` and
``StashConfig.load`` raise stash's ValidationError; constructing a model
directly (``StoreConfig(table_name="")``) raises pydantic's own
ValidationError, which is also a ValueError.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from stash.cron.schedule import DEFAULT_CLEANUP_CRON, parse_schedule
from stash.errors import ValidationError
from stash.sessions.flush import FlushMode
from stash.sessions.store import (
    DEFAULT_MAX_INACTIVE_INTERVAL,
    DEFAULT_TABLE_NAME,
    validate_table_name,
)

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".stash"
CONFIG_FILE = CONFIG_DIR / "config.json"
DB_FILE = CONFIG_DIR / "sessions.db"
PID_FILE = CONFIG_DIR / "sweeper.pid"
LOG_FILE = CONFIG_DIR / "stash.log"


class StoreConfig(BaseModel):
    """Session store settings. Direct construction raises pydantic.ValidationError."""

    db_path: str = str(DB_FILE)
    table_name: str = DEFAULT_TABLE_NAME
    max_inactive_interval_seconds: int = DEFAULT_MAX_INACTIVE_INTERVAL
    flush_mode: FlushMode = FlushMode.ON_SAVE
    codec: Literal["pickle", "json"] = "pickle"
    operation_timeout: float | None = 10.0

    @field_validator("table_name")
    @classmethod
    def _check_table_name(cls, value: str) -> str:
        return validate_table_name(value)

    @field_validator("operation_timeout")
    @classmethod
    def _check_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("operation_timeout must be positive (or null to disable)")
        return value


class SweeperConfig(BaseModel):
    """Sweeper schedule; the cron expression must parse and fire at least once."""

    cleanup_cron: str = DEFAULT_CLEANUP_CRON
    timeout: float | None = 60.0

    @field_validator("cleanup_cron")
    @classmethod
    def _check_cron(cls, value: str) -> str:
        parse_schedule(value)
        return value.strip()

    @field_validator("timeout")
    @classmethod
    def _check_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("sweeper timeout must be positive (or null to disable)")
        return value


class StashConfig(BaseModel):
    store: StoreConfig = Field(default_factory=StoreConfig)
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)

    def save(self, path: str | Path | None = None) -> Path:
        target = Path(path) if path else CONFIG_FILE
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.model_dump(mode="json"), indent=2))
        logger.info("Config saved to %s", target)
        return target

    @classmethod
    def from_dict(cls, data: dict) -> StashConfig:
        """Validate ``data``, raising stash.errors.ValidationError on bad input."""
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid configuration: {e}") from e

    @classmethod
    def load(cls, path: str | Path | None = None) -> StashConfig:
        source = Path(path) if path else CONFIG_FILE
        if not source.exists():
            if path:
                raise ValidationError(f"Config file not found: {source}")
            return cls()
        try:
            data = json.loads(source.read_text())
        except json.JSONDecodeError as e:
            raise ValidationError(f"Config file {source} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(f"Config file {source} must contain a JSON object")
        return cls.from_dict(data)


def load_config(path: str | Path | None = None) -> StashConfig:
    return StashConfig.load(path)


def ensure_config_dir() -> Path:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    return CONFIG_DIR
