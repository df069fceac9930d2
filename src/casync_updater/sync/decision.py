"""Replica reconciliation policy.

Maps the recorded state of the source, destination and backup replicas to
the operations of one cycle.  ``None`` stands for an unavailable replica.
Rules, first match wins for the restore step:

1. **extract source** -- source available and the destination is
   unavailable, or differs from and is older than the source.
2. **extract backup** -- source unavailable, backup and destination
   available, backup differs from and is newer than the destination.

Independently, the **save backup** step archives the destination when a
backup is configured, the destination is available and the backup is
unavailable, or differs from and is older than the destination.

Timestamp policy ("last write wins"):

* Checksum equality short-circuits every comparison: equal content is
  never newer, whatever the timestamps say.
* A record that was never persisted carries the time it was observed, not
  the time its content was written, so it has no baseline: the source and
  the destination (when archiving) are considered newer than it.
* The backup is only a fallback.  It replaces the destination on a literal
  timestamp comparison, where an unrecorded destination counts as written
  at the moment it was digested.  A stale backup never overwrites a live
  destination, recorded or not.
* Equal timestamps with different checksums cannot be ordered.  The pair
  is treated as "not newer" and reported as ambiguous.

All functions are pure; they never touch the replicas.
"""

from __future__ import annotations

from casync_updater.sync.models import ChecksumRecord, SyncAction, SyncPlan


def is_newer(candidate: ChecksumRecord, baseline: ChecksumRecord) -> bool:
    """Return ``True`` if *candidate* should replace *baseline*.

    Checksums are not consulted here; callers check content equality
    first.
    """
    if not baseline.persisted:
        return True
    return candidate.timestamp > baseline.timestamp


def describe_ambiguity(
    first_name: str,
    first: ChecksumRecord,
    second_name: str,
    second: ChecksumRecord,
) -> str | None:
    """Return a note when two records differ but share a recorded timestamp."""
    if first.same_content(second):
        return None
    if not (first.persisted and second.persisted):
        return None
    if first.timestamp != second.timestamp:
        return None
    return (
        f"{first_name} and {second_name} differ "
        f"({first.checksum} != {second.checksum}) but share timestamp "
        f"{first.timestamp.isoformat()}; leaving both unchanged"
    )


def is_later(candidate: ChecksumRecord, baseline: ChecksumRecord) -> bool:
    """Literal timestamp comparison, ignoring whether *baseline* was recorded."""
    return candidate.timestamp > baseline.timestamp


def _replaces(
    candidate: ChecksumRecord | None,
    target: ChecksumRecord | None,
    newer=is_newer,
) -> bool:
    """Whether *candidate* should overwrite *target* (``None`` = unavailable)."""
    if candidate is None:
        return False
    if target is None:
        return True
    if candidate.same_content(target):
        return False
    return newer(candidate, target)


def decide_restore(
    src: ChecksumRecord | None,
    dst: ChecksumRecord | None,
    backup: ChecksumRecord | None,
) -> tuple[SyncAction, list[str]]:
    """Pick the replica to extract into the destination, if any.

    Returns:
        ``(action, ambiguity_notes)`` where *action* is ``SKIP``,
        ``EXTRACT_SOURCE`` or ``EXTRACT_BACKUP``.
    """
    notes: list[str] = []

    if src is not None:
        if _replaces(src, dst):
            return SyncAction.EXTRACT_SOURCE, notes
        if dst is not None:
            note = describe_ambiguity("source", src, "destination", dst)
            if note:
                notes.append(note)
        return SyncAction.SKIP, notes

    if backup is not None and dst is not None:
        if _replaces(backup, dst, newer=is_later):
            return SyncAction.EXTRACT_BACKUP, notes
        note = describe_ambiguity("backup", backup, "destination", dst)
        if note:
            notes.append(note)

    return SyncAction.SKIP, notes


def decide_save_backup(
    dst: ChecksumRecord | None,
    backup: ChecksumRecord | None,
    backup_configured: bool,
) -> tuple[bool, list[str]]:
    """Decide whether the destination should be archived to the backup.

    Returns:
        ``(save, ambiguity_notes)``.
    """
    if not backup_configured or dst is None:
        return False, []
    if _replaces(dst, backup):
        return True, []
    notes: list[str] = []
    if backup is not None:
        note = describe_ambiguity("destination", dst, "backup", backup)
        if note:
            notes.append(note)
    return False, notes


def decide(
    src: ChecksumRecord | None,
    dst: ChecksumRecord | None,
    backup: ChecksumRecord | None,
    backup_configured: bool,
) -> SyncPlan:
    """Build the plan for one cycle from the current replica states.

    ``save_backup`` is judged on the state before the restore step; the
    cycle re-evaluates it against the destination record produced by a
    restore.
    """
    restore, notes = decide_restore(src, dst, backup)
    save, backup_notes = decide_save_backup(dst, backup, backup_configured)
    return SyncPlan(
        restore=restore,
        save_backup=save,
        ambiguous=tuple(notes + backup_notes),
    )
