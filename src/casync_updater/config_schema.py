"""Configuration schema for casync_updater.

Defines Pydantic models for the two kinds of configuration:

* **Entry files** -- what to synchronize.  Each entry is one
  independently scheduled source/destination/backup triple with its
  triggers.  Field names follow the camelCase JSON format of entry files
  (``srcIndex``, ``dstPath``, ...); snake_case names are accepted too.
* **Service settings** -- how to run (tool paths, limits, logging),
  loaded hierarchically from YAML.

Usage:
    from casync_updater.config_schema import (
        EntryConfig, UnifiedConfig, build_config, tools_fallbacks,
    )

    unified = build_config(load_hierarchical_config())
    config = load_config(yaml_fallbacks=tools_fallbacks(unified))
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Entry models
# ---------------------------------------------------------------------------


class TriggerConfig(BaseModel):
    """Commands to run when any of the listed relative paths changed.

    Paths are compared as exact strings against the diff output; they are
    not glob patterns.  ``.`` only matches a change reported for the
    top-level directory entry itself, not "any change".
    """

    paths: list[str] = Field(
        min_length=1, description="Relative paths that fire the trigger"
    )
    actions: list[str] = Field(
        min_length=1, description="Shell commands, run in order"
    )

    model_config = {"frozen": True}


class EntryConfig(BaseModel):
    """One synchronization unit.

    Attributes:
        name: Optional label used in logs (defaults to ``dst_path``).
        interval: Polling interval in milliseconds.
        src_index: Source index location (URL or path).
        src_store: Source chunk store location.
        backup_index: Optional offline backup index path.
        backup_store: Backup chunk store (required with ``backup_index``).
        dst_path: Destination directory.
        triggers: Path-to-commands rules.
        startup: Commands run once after the first cycle.
    """

    name: str | None = None
    interval: int = Field(gt=0, description="Polling interval (ms)")
    src_index: str = Field(alias="srcIndex", min_length=1)
    src_store: str = Field(alias="srcStore", min_length=1)
    backup_index: str | None = Field(default=None, alias="backupIndex")
    backup_store: str | None = Field(default=None, alias="backupStore")
    dst_path: str = Field(alias="dstPath", min_length=1)
    triggers: list[TriggerConfig] = Field(default_factory=list)
    startup: list[str] = Field(default_factory=list)

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("dst_path")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/") or "/"

    @model_validator(mode="after")
    def _backup_needs_store(self) -> EntryConfig:
        if self.backup_index and not self.backup_store:
            raise ValueError("backupStore is required when backupIndex is set")
        return self

    @property
    def display_name(self) -> str:
        return self.name or self.dst_path

    @property
    def interval_seconds(self) -> float:
        return self.interval / 1000.0

    @property
    def has_backup(self) -> bool:
        return bool(self.backup_index)


class PublishConfig(BaseModel):
    """Server-side archive publishing settings.

    Attributes:
        index: Index file to create or update.
        store: Chunk store directory.
        source: Directory to archive.
    """

    index: str = Field(min_length=1)
    store: str = Field(min_length=1)
    source: str = Field(min_length=1)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Service settings
# ---------------------------------------------------------------------------


class ToolsConfig(BaseModel):
    """External tool settings and limits.

    All fields are optional so env vars can supply them at runtime.
    """

    casync_bin: str | None = Field(default=None, description="casync executable")
    diff_bin: str | None = Field(default=None, description="diff executable")
    shell: str | None = Field(
        default=None, description="Shell used for trigger commands"
    )
    time_resolution: str | None = Field(
        default=None, description="casync --with time flag"
    )
    tool_timeout: float | None = Field(default=None, gt=0)
    action_timeout: float | None = Field(default=None, gt=0)
    max_output_bytes: int | None = Field(default=None, ge=1024)
    max_scratch_bytes: int | None = Field(default=None, ge=1024)
    download_retries: int | None = Field(default=None, ge=1, le=10)
    download_timeout: float | None = Field(default=None, gt=0)
    max_parallel_cycles: int | None = Field(
        default=None, ge=1, le=64, description="Cycle limit for one-shot runs"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", pattern="^(text|json)$")

    model_config = {"frozen": True}


class UnifiedConfig(BaseModel):
    """Top-level service settings.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def tools_fallbacks(unified: UnifiedConfig) -> dict:
    """Return the non-empty ``tools`` values for ``load_config()``."""
    return {
        k: v
        for k, v in unified.tools.model_dump().items()
        if v is not None
    }
