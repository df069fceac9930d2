"""Runtime settings for the updater service.

Reads tool and limit settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.  Entry definitions (what to
synchronize) live in separate entry files, see ``config_loader``.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    CASYNC_BIN: casync executable (optional, default: casync)
    DIFF_BIN: diff executable (optional, default: diff)
    CASYNC_TIME_RESOLUTION: --with flag for all replicas (optional, default: 2sec-time)
    CASYNC_TOOL_TIMEOUT: Seconds before a casync/diff call is abandoned (optional, default: 600)
    CASYNC_ACTION_TIMEOUT: Seconds before a trigger command is abandoned (optional, default: 300)
    CASYNC_MAX_OUTPUT_BYTES: Max subprocess/download output size (optional, default: 1024000000)
    CASYNC_MAX_SCRATCH_BYTES: Max size of the diff scratch area (optional, default: 268435456)
    CASYNC_DOWNLOAD_RETRIES: Attempts per sidecar download (optional, default: 3)
    CASYNC_DOWNLOAD_TIMEOUT: Read timeout in seconds per download (optional, default: 30)
    CASYNC_MAX_PARALLEL_CYCLES: Max cycles running at once (optional, default: 4)
    CASYNC_UPDATER_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
import shutil
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class Config:
    casync_bin: str = "casync"
    diff_bin: str = "diff"
    shell: str = "/bin/bash"
    time_resolution: str = "2sec-time"
    tool_timeout: float = 600.0
    action_timeout: float = 300.0
    max_output_bytes: int = 1_024_000_000
    max_scratch_bytes: int = 256 * 1024 * 1024
    download_retries: int = 3
    download_timeout: float = 30.0
    max_parallel_cycles: int = 4
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a limit is out of range or a tool name is empty.
    """
    if not config.casync_bin.strip():
        raise ValueError("casync executable cannot be empty. Set CASYNC_BIN.")
    if not config.diff_bin.strip():
        raise ValueError("diff executable cannot be empty. Set DIFF_BIN.")

    for name in ("tool_timeout", "action_timeout", "download_timeout"):
        if getattr(config, name) <= 0:
            raise ValueError(
                f"Invalid {name} '{getattr(config, name)}': must be positive"
            )
    for name in ("max_output_bytes", "max_scratch_bytes"):
        if getattr(config, name) < 1024:
            raise ValueError(
                f"Invalid {name} '{getattr(config, name)}': must be at least 1024"
            )
    if not (1 <= config.download_retries <= 10):
        raise ValueError(
            f"Invalid download_retries '{config.download_retries}': must be a number between 1 and 10"
        )
    if not (1 <= config.max_parallel_cycles <= 64):
        raise ValueError(
            f"Invalid max_parallel_cycles '{config.max_parallel_cycles}': must be a number between 1 and 64"
        )

    if shutil.which(config.casync_bin) is None:
        logger.warning(
            "casync executable '%s' not found on PATH", config.casync_bin
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_number(
    env_key: str, fb: dict, fb_key: str, default, cast
):
    """Resolve a numeric field: env > YAML > default."""
    raw = os.getenv(env_key)
    if raw is not None:
        try:
            return cast(raw)
        except ValueError:
            raise ValueError(
                f"Invalid {env_key} '{raw}': must be a number"
            ) from None
    if fb.get(fb_key) is not None:
        return cast(fb[fb_key])
    return default


def load_config(
    casync_bin: str | None = None,
    diff_bin: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        casync_bin: Override casync executable.
        diff_bin: Override diff executable.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Dict of values from the YAML ``tools`` section.
            Used as fallback when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value cannot be parsed or is out of range.
    """
    fb = yaml_fallbacks or {}
    defaults = Config()

    # --- String fields: CLI > env > YAML > default ---

    final_casync = (
        casync_bin
        or os.getenv("CASYNC_BIN")
        or fb.get("casync_bin")
        or defaults.casync_bin
    )
    final_diff = (
        diff_bin
        or os.getenv("DIFF_BIN")
        or fb.get("diff_bin")
        or defaults.diff_bin
    )
    final_resolution = (
        os.getenv("CASYNC_TIME_RESOLUTION")
        or fb.get("time_resolution")
        or defaults.time_resolution
    )
    final_shell = fb.get("shell") or defaults.shell

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("CASYNC_UPDATER_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    config = Config(
        casync_bin=final_casync.strip(),
        diff_bin=final_diff.strip(),
        shell=final_shell,
        time_resolution=final_resolution.strip(),
        tool_timeout=_get_number(
            "CASYNC_TOOL_TIMEOUT",
            fb,
            "tool_timeout",
            defaults.tool_timeout,
            float,
        ),
        action_timeout=_get_number(
            "CASYNC_ACTION_TIMEOUT",
            fb,
            "action_timeout",
            defaults.action_timeout,
            float,
        ),
        max_output_bytes=_get_number(
            "CASYNC_MAX_OUTPUT_BYTES",
            fb,
            "max_output_bytes",
            defaults.max_output_bytes,
            int,
        ),
        max_scratch_bytes=_get_number(
            "CASYNC_MAX_SCRATCH_BYTES",
            fb,
            "max_scratch_bytes",
            defaults.max_scratch_bytes,
            int,
        ),
        download_retries=_get_number(
            "CASYNC_DOWNLOAD_RETRIES",
            fb,
            "download_retries",
            defaults.download_retries,
            int,
        ),
        download_timeout=_get_number(
            "CASYNC_DOWNLOAD_TIMEOUT",
            fb,
            "download_timeout",
            defaults.download_timeout,
            float,
        ),
        max_parallel_cycles=_get_number(
            "CASYNC_MAX_PARALLEL_CYCLES",
            fb,
            "max_parallel_cycles",
            defaults.max_parallel_cycles,
            int,
        ),
        debug=final_debug,
    )

    validate_config(config)

    return config
