import json
import logging
import os
import sys

TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured log output.

    Produces one JSON object per log record with fields: ts, level, logger, msg.
    The configured entry name is included as "entry" when a record carries
    one (``extra={"entry": ...}``), and exception info as "exc".
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry_name = getattr(record, "entry", None)
        if entry_name is not None:
            entry["entry"] = entry_name
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class EntryLogAdapter(logging.LoggerAdapter):
    """Prefix messages with the entry name and attach it as ``entry``."""

    def process(self, msg, kwargs):
        name = self.extra["entry"]
        extra = dict(kwargs.get("extra") or {})
        extra["entry"] = name
        kwargs["extra"] = extra
        return f"[{name}] {msg}", kwargs


def _make_formatter(log_format: str, fmt: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    return logging.Formatter(fmt, datefmt=DATE_FORMAT)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    log_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging based on execution mode.

    Args:
        mode: "service" for the long-running updater, "cli" for one-shot
            commands.  Both log to stderr, which journald captures when
            the service runs under systemd.
        debug: If True, overrides LOG_LEVEL to DEBUG.
        log_file: Optional file that receives a copy of all records.
        log_format: "text" (default) or "json" for structured output.
        level: Level from the settings file, used when LOG_LEVEL is unset.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: INFO for service mode, WARNING for CLI mode.
    """
    default_level = level or ("INFO" if mode == "service" else "WARNING")
    env_level = os.getenv("LOG_LEVEL", default_level).upper()

    # debug parameter overrides environment
    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    handlers: list[logging.Handler] = []
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_make_formatter(log_format, TEXT_FORMAT))
    handlers.append(stderr_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(_make_formatter(log_format, FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)
