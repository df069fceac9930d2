"""Lifespan management for updater startup and shutdown."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .config import Config, load_config
from .config_loader import (
    discover_config_files,
    load_entries,
    load_hierarchical_config,
)
from .config_schema import (
    EntryConfig,
    UnifiedConfig,
    build_config,
    tools_fallbacks,
)
from .core.async_utils import init_semaphore, reset_semaphore
from .core.client import ReplicaClient
from .errors import ConfigurationError
from .sync.engine import SyncCycle

logger = logging.getLogger(__name__)


def load_settings(
    overrides: dict[str, Any] | None = None,
) -> tuple[Config, UnifiedConfig]:
    """Resolve the runtime ``Config`` and the service settings.

    Precedence: CLI overrides > env vars (.env loaded first) > YAML
    settings files > defaults.

    Raises:
        ConfigurationError: If a settings file or a value is invalid.
    """
    overrides = overrides or {}
    try:
        # .env first, so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        sources = []
        config_files = discover_config_files()
        unified = build_config(load_hierarchical_config())
        if config_files:
            sources.append(f"settings file: {config_files[0]}")

        config = load_config(
            casync_bin=overrides.get("casync_bin"),
            diff_bin=overrides.get("diff_bin"),
            debug=overrides.get("debug", False),
            yaml_fallbacks=tools_fallbacks(unified),
        )
    except ValidationError as e:
        logger.error("Invalid service settings: %s", e)
        raise ConfigurationError(f"Invalid service settings: {e}") from e
    except (ValueError, OSError, yaml.YAMLError) as e:
        logger.error("Configuration error: %s", e)
        raise ConfigurationError(f"Configuration error: {e}") from e

    if overrides:
        sources.append("CLI arguments")
    sources.append("environment variables")
    logger.info("Configuration loaded from: %s", ", ".join(sources))
    logger.debug("Resolved configuration: %s", config)
    return config, unified


def build_cycles(
    entries: list[EntryConfig],
    config: Config,
    client: ReplicaClient | None = None,
) -> list[SyncCycle]:
    """Create one ``SyncCycle`` per entry sharing a single client."""
    if client is None:
        client = ReplicaClient(config)
    return [SyncCycle.from_entry(entry, client, config) for entry in entries]


@asynccontextmanager
async def service_lifespan(
    config_path: Path,
    overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage updater startup and shutdown lifecycle.

    On startup:
    - Load .env and the YAML service settings, resolve ``Config``
    - Load the entry file(s) at *config_path*
    - Build one ``SyncCycle`` per entry
    - Initialize the cycle concurrency semaphore

    On shutdown:
    - Drop the semaphore and log the shutdown

    Args:
        config_path: Entry file or directory of entry files.
        overrides: Optional dict with config values from CLI
            (casync_bin, diff_bin, debug).

    Yields:
        Dict with 'config', 'settings' and 'cycles' keys.

    Raises:
        ConfigurationError: If the settings or entries cannot be loaded.
    """
    logger.info("casync updater starting...")
    config, unified = load_settings(overrides)

    entries = load_entries(config_path)
    if not entries:
        raise ConfigurationError(f"No entries configured in {config_path}")
    cycles = build_cycles(entries, config)
    logger.info(
        "Loaded %d entries: %s",
        len(cycles),
        ", ".join(cycle.name for cycle in cycles),
    )

    init_semaphore(config.max_parallel_cycles)
    try:
        yield {"config": config, "settings": unified, "cycles": cycles}
    finally:
        reset_semaphore()
        logger.info("casync updater shutting down")
