"""Shared pytest fixtures for casync-updater tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from casync_updater.config import Config
from casync_updater.config_schema import EntryConfig
from casync_updater.sync.models import ChecksumRecord


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a real casync binary",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a real casync binary"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep host settings out of the tests."""
    for key in (
        "CASYNC_BIN",
        "DIFF_BIN",
        "CASYNC_TIME_RESOLUTION",
        "CASYNC_TOOL_TIMEOUT",
        "CASYNC_ACTION_TIMEOUT",
        "CASYNC_MAX_OUTPUT_BYTES",
        "CASYNC_MAX_SCRATCH_BYTES",
        "CASYNC_DOWNLOAD_RETRIES",
        "CASYNC_DOWNLOAD_TIMEOUT",
        "CASYNC_MAX_PARALLEL_CYCLES",
        "CASYNC_UPDATER_DEBUG",
        "CASYNC_UPDATER_CONFIG",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def mock_config():
    """A Config with short limits for testing."""
    return Config(
        casync_bin="casync",
        diff_bin="diff",
        tool_timeout=5.0,
        action_timeout=5.0,
        max_output_bytes=1024 * 1024,
        max_scratch_bytes=1024 * 1024,
    )


@pytest.fixture
def base_time():
    return datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def record(base_time):
    """Factory for checksum records offset from ``base_time`` in seconds."""

    def _create(checksum: str, offset: float = 0, persisted: bool = True):
        return ChecksumRecord(
            checksum=checksum,
            timestamp=base_time + timedelta(seconds=offset),
            persisted=persisted,
        )

    return _create


@pytest.fixture
def make_entry(tmp_path):
    """Factory for EntryConfig objects with a real destination directory."""

    def _create(**overrides) -> EntryConfig:
        dst = tmp_path / "dst"
        dst.mkdir(exist_ok=True)
        data = {
            "name": "app",
            "interval": 1000,
            "srcIndex": "https://updates.example.com/app.caidx",
            "srcStore": "https://updates.example.com/app.castr",
            "dstPath": str(dst),
        }
        data.update(overrides)
        return EntryConfig.model_validate(data)

    return _create
