"""Pydantic models for the replica sync cycle.

Defines the core data contracts used across all sync modules:

- ``ToolOptions``: Typed casync option set (store, time resolution, extras).
- ``ReplicaRef``: A replica location plus its casync options.
- ``ChecksumRecord``: Recorded checksum and timestamp of one replica.
- ``SyncAction``: Enum of possible replica operations.
- ``SyncPlan``: Decision output for one cycle.
- ``ActionResult``: Outcome of one trigger or startup command.
- ``CycleReport``: Aggregate results for one cycle of one entry.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath

from pydantic import BaseModel

_REMOTE_SCHEMES = ("http://", "https://", "ftp://")


class ToolOptions(BaseModel):
    """casync options passed to every invocation for one replica.

    Attributes:
        store: Chunk store location (``--store``).
        with_flags: Feature flags (``--with``), e.g. ``2sec-time``.
        extra: Further ordered ``(key, value)`` pairs.
    """

    store: str | None = None
    with_flags: tuple[str, ...] = ()
    extra: tuple[tuple[str, str], ...] = ()

    model_config = {"frozen": True}

    def as_args(self) -> list[str]:
        """Render the options as ordered ``--key=value`` flags."""
        args: list[str] = []
        if self.store:
            args.append(f"--store={self.store}")
        args.extend(f"--with={flag}" for flag in self.with_flags)
        args.extend(f"--{key}={value}" for key, value in self.extra)
        return args


class ReplicaRef(BaseModel):
    """A replica location (URL, index file or directory) and its options."""

    location: str
    options: ToolOptions = ToolOptions()
    is_directory: bool = False

    model_config = {"frozen": True}

    @property
    def is_remote(self) -> bool:
        return self.location.startswith(_REMOTE_SCHEMES)

    def sidecar(self, suffix: str) -> str:
        """Return the location of a sidecar file (``.cks``, ``.mtree``).

        Index sidecars sit next to the index (``index.caidx.cks``).
        Directory sidecars are siblings of the directory, named after it
        (``/srv/app`` -> ``/srv/app.cks``), so they never end up inside
        the synchronized tree.
        """
        if self.is_directory:
            path = PurePosixPath(self.location.rstrip("/") or "/")
            return str(path.parent / f"{path.name}{suffix}")
        return f"{self.location}{suffix}"


class ChecksumRecord(BaseModel):
    """Recorded state of one replica.

    Attributes:
        checksum: Opaque casync content digest.
        timestamp: UTC instant the state was recorded.
        persisted: ``True`` when the record was read from or written to a
            sidecar.  A freshly computed digest has no recorded baseline,
            so its timestamp carries no ordering information.
    """

    checksum: str
    timestamp: datetime
    persisted: bool = False

    model_config = {"frozen": True}

    def same_content(self, other: ChecksumRecord) -> bool:
        return self.checksum == other.checksum


class SyncAction(str, Enum):
    """Possible replica operations for one entry."""

    SKIP = "skip"
    EXTRACT_SOURCE = "extract_source"
    EXTRACT_BACKUP = "extract_backup"
    SAVE_BACKUP = "save_backup"


class SyncPlan(BaseModel):
    """Decision for one cycle.

    Attributes:
        restore: ``SKIP``, ``EXTRACT_SOURCE`` or ``EXTRACT_BACKUP``.
        save_backup: Whether the destination should be archived to the
            backup, judged on the state before ``restore`` runs.
        ambiguous: Notes about replica pairs with equal timestamps but
            different checksums.
    """

    restore: SyncAction = SyncAction.SKIP
    save_backup: bool = False
    ambiguous: tuple[str, ...] = ()

    model_config = {"frozen": True}

    @property
    def is_noop(self) -> bool:
        return self.restore == SyncAction.SKIP and not self.save_backup


class ActionResult(BaseModel):
    """Outcome of one shell command.

    Attributes:
        command: The shell text that was run.
        origin: ``"trigger"`` or ``"startup"``.
        success: Whether the command exited with status 0.
        exit_code: Exit status, ``None`` when the command never finished.
        output: Captured stdout/stderr (capped).
        error: Error message if the command failed.
    """

    command: str
    origin: str
    success: bool
    exit_code: int | None = None
    output: str = ""
    error: str | None = None

    model_config = {"frozen": True}


class CycleReport(BaseModel):
    """Aggregate report for one cycle of one entry.

    Attributes:
        entry_name: Name of the configured entry.
        started_at: ISO 8601 timestamp when the cycle started.
        completed_at: ISO 8601 timestamp when the cycle completed.
        plan: Decision taken for the cycle.
        extracted_from: Location extracted into the destination, if any.
        backup_saved: Whether a backup archive was written.
        changed_paths: Relative paths reported by the diff.
        actions: Trigger and startup command results.
        unavailable: Replicas that could not be reached this cycle.
        errors: Error messages collected during the cycle.
    """

    entry_name: str
    started_at: str
    completed_at: str | None = None
    plan: SyncPlan = SyncPlan()
    extracted_from: str | None = None
    backup_saved: bool = False
    changed_paths: list[str] = []
    actions: list[ActionResult] = []
    unavailable: list[str] = []
    errors: list[str] = []

    model_config = {"frozen": True}

    @property
    def failed_actions(self) -> list[ActionResult]:
        """Actions whose command did not succeed."""
        return [a for a in self.actions if not a.success]

    @property
    def had_changes(self) -> bool:
        """Whether the destination or the backup was written."""
        return self.extracted_from is not None or self.backup_saved

    def summary(self) -> str:
        """Format a one-line summary of the cycle.

        Returns:
            Summary string with the action taken and counts.
        """
        if self.extracted_from:
            what = f"extracted {self.extracted_from}"
        else:
            what = "destination unchanged"
        if self.backup_saved:
            what += ", backup saved"
        return (
            f"Cycle '{self.entry_name}': {what}; "
            f"{len(self.changed_paths)} changed paths, "
            f"{len(self.actions)} actions "
            f"({len(self.failed_actions)} failed), "
            f"{len(self.errors)} errors"
        )
