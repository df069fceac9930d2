"""Tests for the replica reconciliation policy.

Covers:
- is_newer with persisted and unpersisted baselines
- Restore rules (extract source, extract backup, no-op)
- Save-backup rule
- Equal-checksum short-circuit regardless of timestamps
- Ambiguity notes for equal timestamps with different checksums
"""

from __future__ import annotations

from casync_updater.sync.decision import (
    decide,
    decide_restore,
    decide_save_backup,
    describe_ambiguity,
    is_later,
    is_newer,
)
from casync_updater.sync.models import SyncAction


class TestIsNewer:
    """Tests for is_newer()."""

    def test_later_timestamp_is_newer(self, record):
        assert is_newer(record("a", 10), record("b", 0))

    def test_earlier_timestamp_is_not_newer(self, record):
        assert not is_newer(record("a", 0), record("b", 10))

    def test_equal_timestamp_is_not_newer(self, record):
        assert not is_newer(record("a", 0), record("b", 0))

    def test_unpersisted_baseline_always_loses(self, record):
        """A freshly digested record has no baseline to defend."""
        baseline = record("b", 100, persisted=False)
        assert is_newer(record("a", 0), baseline)


class TestIsLater:
    """Tests for is_later()."""

    def test_ignores_persisted_flag(self, record):
        baseline = record("b", 100, persisted=False)
        assert not is_later(record("a", 0), baseline)
        assert is_later(record("a", 200), baseline)


class TestDecideRestore:
    """Tests for decide_restore()."""

    def test_extract_source_when_destination_unavailable(self, record):
        action, _ = decide_restore(record("c1", 0), None, None)
        assert action == SyncAction.EXTRACT_SOURCE

    def test_extract_source_when_source_newer(self, record):
        action, _ = decide_restore(record("c2", 10), record("c1", 0), None)
        assert action == SyncAction.EXTRACT_SOURCE

    def test_no_extract_when_destination_newer(self, record):
        action, _ = decide_restore(record("c1", 0), record("c2", 10), None)
        assert action == SyncAction.SKIP

    def test_equal_checksums_never_extract(self, record):
        """Equal content is a no-op whatever the timestamps say."""
        action, notes = decide_restore(
            record("c1", 100), record("c1", 0), record("c1", 50)
        )
        assert action == SyncAction.SKIP
        assert notes == []

    def test_first_run_refreshes_unrecorded_destination(self, record):
        dst = record("local", 500, persisted=False)
        action, _ = decide_restore(record("c1", 0), dst, None)
        assert action == SyncAction.EXTRACT_SOURCE

    def test_backup_used_when_source_unavailable(self, record):
        action, _ = decide_restore(None, record("c1", 0), record("c2", 10))
        assert action == SyncAction.EXTRACT_BACKUP

    def test_stale_backup_never_overwrites_destination(self, record):
        action, _ = decide_restore(None, record("c2", 10), record("c1", 0))
        assert action == SyncAction.SKIP

    def test_old_backup_never_overwrites_unrecorded_destination(
        self, record
    ):
        """A never-recorded destination counts as written when digested."""
        dst = record("local", 30 * 86400, persisted=False)
        action, _ = decide_restore(None, dst, record("old", 0))
        assert action == SyncAction.SKIP

    def test_newer_backup_restores_unrecorded_destination(self, record):
        dst = record("local", 0, persisted=False)
        action, _ = decide_restore(None, dst, record("c2", 10))
        assert action == SyncAction.EXTRACT_BACKUP

    def test_backup_not_used_when_destination_unavailable(self, record):
        action, _ = decide_restore(None, None, record("c1", 0))
        assert action == SyncAction.SKIP

    def test_backup_ignored_when_source_available(self, record):
        """The source wins even if the backup is newer."""
        action, _ = decide_restore(
            record("c1", 0), record("c1", 0), record("c2", 99)
        )
        assert action == SyncAction.SKIP

    def test_nothing_available(self):
        action, notes = decide_restore(None, None, None)
        assert action == SyncAction.SKIP
        assert notes == []

    def test_equal_timestamps_are_reported(self, record):
        action, notes = decide_restore(record("c1", 0), record("c2", 0), None)
        assert action == SyncAction.SKIP
        assert len(notes) == 1
        assert "source and destination differ" in notes[0]


class TestDecideSaveBackup:
    """Tests for decide_save_backup()."""

    def test_not_configured(self, record):
        save, _ = decide_save_backup(record("c1", 0), None, False)
        assert save is False

    def test_destination_unavailable(self, record):
        save, _ = decide_save_backup(None, record("c1", 0), True)
        assert save is False

    def test_backup_unavailable(self, record):
        save, _ = decide_save_backup(record("c1", 0), None, True)
        assert save is True

    def test_destination_newer(self, record):
        save, _ = decide_save_backup(record("c2", 10), record("c1", 0), True)
        assert save is True

    def test_backup_newer(self, record):
        save, _ = decide_save_backup(record("c1", 0), record("c2", 10), True)
        assert save is False

    def test_equal_checksums(self, record):
        """No spurious save when backup already holds the destination."""
        save, _ = decide_save_backup(record("c1", 99), record("c1", 0), True)
        assert save is False

    def test_unrecorded_backup_is_rewritten(self, record):
        backup = record("old", 500, persisted=False)
        save, _ = decide_save_backup(record("c1", 0), backup, True)
        assert save is True


class TestDecide:
    """Tests for decide()."""

    def test_in_sync_is_noop(self, record):
        plan = decide(record("c1", 0), record("c1", 0), record("c1", 0), True)
        assert plan.is_noop

    def test_extract_and_save(self, record):
        plan = decide(record("c2", 10), record("c1", 0), None, True)
        assert plan.restore == SyncAction.EXTRACT_SOURCE
        assert plan.save_backup is True

    def test_ambiguity_collected(self, record):
        plan = decide(None, record("c1", 0), record("c2", 0), True)
        assert plan.is_noop
        assert len(plan.ambiguous) == 2


class TestDescribeAmbiguity:
    """Tests for describe_ambiguity()."""

    def test_none_for_same_content(self, record):
        assert describe_ambiguity("a", record("c", 0), "b", record("c", 0)) is None

    def test_none_for_different_timestamps(self, record):
        assert describe_ambiguity("a", record("x", 0), "b", record("y", 1)) is None

    def test_none_for_unpersisted(self, record):
        first = record("x", 0, persisted=False)
        assert describe_ambiguity("a", first, "b", record("y", 0)) is None

    def test_note_mentions_checksums(self, record):
        note = describe_ambiguity("a", record("x", 0), "b", record("y", 0))
        assert "x != y" in note
