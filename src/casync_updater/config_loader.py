"""
Configuration file loading for casync_updater.

Two kinds of files are read here:

* **Entry files** -- a single file or a directory of files, each holding a
  list of entries (or a mapping with an ``entries`` list).  JSON files are
  read with the same YAML loader since YAML is a superset of JSON.
* **Service settings** -- convention-based discovery of YAML files with
  hierarchical merge ("most specific wins").

Both support ``!include`` and ``${VAR:-default}`` env var interpolation.

Usage:
    from casync_updater.config_loader import load_entries

    entries = load_entries(Path("/etc/casync-updater"))
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config_schema import EntryConfig, PublishConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENTRY_FILE_SUFFIXES = (".json", ".yml", ".yaml")

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# ${NAME} or ${NAME:-fallback}
_ENV_REFERENCE = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${NAME}`` and ``${NAME:-fallback}`` references in *value*.

    An unset or empty variable expands to its fallback, or to ``""`` when
    there is none.  An unterminated ``${`` is kept as is.
    """

    def _expand(match: re.Match) -> str:
        name, fallback = match.group(1), match.group(2)
        current = os.environ.get(name)
        if current:
            return current
        return fallback or ""

    return _ENV_REFERENCE.sub(_expand, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Apply ``interpolate_env_vars`` to every string in a parsed document."""
    if isinstance(obj, dict):
        return {key: _interpolate_recursive(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(val) for val in obj]
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support (dedicated SafeLoader subclass)
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader with an ``!include`` tag.

    Entry and settings files can pull shared fragments (trigger lists,
    tool sections) from other files.  ``yaml.SafeLoader`` itself is left
    untouched.  Each load carries the chain of files being read so that
    a file including itself, directly or not, is rejected.
    """


def _resolve_include(loader: ConfigLoader, target: str) -> Path:
    base = Path(loader.name).resolve().parent
    candidate = Path(target)
    if not candidate.is_absolute():
        candidate = base / candidate
    return candidate.resolve()


def _include_constructor(
    loader: ConfigLoader, node: yaml.ScalarNode
) -> Any:
    """Load the document named by ``!include <path>`` in place."""
    include_path = _resolve_include(loader, loader.construct_scalar(node))
    chain: list[Path] = getattr(loader, "_include_stack", [])

    if include_path in chain:
        cycle = " -> ".join(str(p) for p in [*chain, include_path])
        raise ValueError(f"Circular include detected: {cycle}")
    if not include_path.is_file():
        raise FileNotFoundError(
            f"Include file not found: {include_path} "
            f"(referenced from {Path(loader.name).resolve()})"
        )

    return _load_yaml_with_includes(
        include_path, _include_stack=[*chain, include_path]
    )


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Parse one file with ``ConfigLoader``."""
    path = path.resolve()
    with path.open(encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Entry files
# ---------------------------------------------------------------------------


def _entry_files(path: Path) -> list[Path]:
    """Return the entry files for *path* (a file, or a directory of files)."""
    if path.is_file():
        return [path]
    if path.is_dir():
        return sorted(
            p
            for p in path.iterdir()
            if p.is_file() and p.suffix in ENTRY_FILE_SUFFIXES
        )
    raise ConfigurationError(
        f"Configuration path not found: {path}"
    )


def _read_file(path: Path) -> Any:
    try:
        data = _load_yaml_with_includes(path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigurationError(
            f"Error reading configuration file {path}: {exc}"
        ) from exc
    return _interpolate_recursive(data)


def parse_entries(data: Any, source: str = "<config>") -> list[EntryConfig]:
    """Validate raw entry data (list, or mapping with ``entries``).

    Raises:
        ConfigurationError: If the structure or any entry is invalid.
    """
    if isinstance(data, dict) and "entries" in data:
        data = data["entries"]
    if not isinstance(data, list):
        raise ConfigurationError(
            f"Invalid configuration in {source}: expected a list of entries"
        )

    entries: list[EntryConfig] = []
    for position, raw in enumerate(data):
        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"Invalid configuration in {source}: entry {position} is not a mapping"
            )
        try:
            entries.append(EntryConfig.model_validate(raw))
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid configuration in {source}, entry {position}: {exc}"
            ) from exc
    return entries


def load_entries(path: Path) -> list[EntryConfig]:
    """Load all entries from a file or a directory of entry files.

    Files in a directory are read in name order; entries keep their
    order within each file.

    Raises:
        ConfigurationError: If no file can be found or any file is invalid.
    """
    entries: list[EntryConfig] = []
    files = _entry_files(path)
    if not files:
        raise ConfigurationError(f"No configuration files found in {path}")

    for file_path in files:
        logger.debug("Loading entries: %s", file_path)
        loaded = parse_entries(_read_file(file_path), str(file_path))
        logger.info(
            "Loaded %d entries from %s", len(loaded), file_path
        )
        entries.extend(loaded)

    return entries


def load_publish_config(path: Path) -> PublishConfig:
    """Load a publisher file (``{index, store, source}``).

    Raises:
        ConfigurationError: If the file is missing or invalid.
    """
    if not path.is_file():
        raise ConfigurationError(f"Configuration file not found: {path}")
    data = _read_file(path)
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Invalid configuration in {path}: expected a mapping"
        )
    try:
        return PublishConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid configuration in {path}: {exc}"
        ) from exc


# ---------------------------------------------------------------------------
# 4. Service settings discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing service settings files in precedence order (highest first).

    Search order:
        1. ``CASYNC_UPDATER_CONFIG`` env var (explicit single path).
        2. ``.casync_updater/config.yml`` in CWD (project-level)
        3. ``~/.config/casync_updater/config.yml`` (XDG global)
        4. ``/etc/casync-updater/service.yml`` (system-wide)

    Only paths that exist on disk are returned.
    """
    candidates: list[Path] = []

    env_path = os.environ.get("CASYNC_UPDATER_CONFIG")
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    candidates.append(Path.cwd() / ".casync_updater" / "config.yml")
    candidates.append(
        Path.home() / ".config" / "casync_updater" / "config.yml"
    )
    candidates.append(Path("/etc/casync-updater/service.yml"))

    return [p for p in candidates if p.exists()]


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge all discovered service settings files.

    Merge strategy ("most specific wins"):
        Files are loaded from lowest precedence to highest.  Each file's
        top-level keys **replace** (not deep-merge) those from earlier files.

    After merging, env var interpolation is applied to all string values.

    Returns an empty dict when no config files exist (zero-config).
    """
    paths = discover_config_files()

    if not paths:
        logger.debug("No settings files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading settings: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except Exception:
            logger.exception("Failed to load settings file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Settings file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    merged = _interpolate_recursive(merged)  # type: ignore[assignment]

    return merged
