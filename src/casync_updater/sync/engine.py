"""Sync cycle that reconciles one entry's replicas.

The ``SyncCycle`` ties together the replica client, the decision policy,
the trigger matcher and the action executor.  One ``run()``:

1. Digests the source, the backup (if configured) and the destination.
2. Decides the restore and save-backup steps.
3. Diffs the destination against the replica about to be extracted.
4. Extracts, then stamps and persists the destination checksum.
5. Re-evaluates and performs the save-backup step.
6. Runs the commands of every trigger fired by the diff.
7. Builds and returns a ``CycleReport``.

Error handling is per step: an unreachable replica degrades the cycle, a
bad local path is reported to the operator, a failed tool leaves the
checksum cache untouched.  ``run()`` never raises for these errors.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from casync_updater.config import Config
from casync_updater.config_schema import EntryConfig
from casync_updater.errors import (
    InvalidLocalState,
    SubprocessFailure,
    Unavailable,
)
from casync_updater.logger import EntryLogAdapter
from casync_updater.sync.decision import decide, decide_save_backup
from casync_updater.sync.executor import ActionExecutor, ActionLedger
from casync_updater.sync.models import (
    ActionResult,
    ChecksumRecord,
    CycleReport,
    ReplicaRef,
    SyncAction,
    ToolOptions,
)
from casync_updater.sync.state import utc_now
from casync_updater.sync.triggers import match_triggers

if TYPE_CHECKING:
    from casync_updater.core.client import ReplicaClient

logger = logging.getLogger(__name__)


def build_replicas(
    entry: EntryConfig, time_resolution: str
) -> tuple[ReplicaRef, ReplicaRef, ReplicaRef | None]:
    """Return the ``(source, destination, backup)`` references of *entry*.

    Every replica gets the ``--with=<time_resolution>`` flag; the source
    and the backup also get their chunk store.
    """
    with_flags = (time_resolution,) if time_resolution else ()
    source = ReplicaRef(
        location=entry.src_index,
        options=ToolOptions(store=entry.src_store, with_flags=with_flags),
    )
    destination = ReplicaRef(
        location=entry.dst_path,
        options=ToolOptions(with_flags=with_flags),
        is_directory=True,
    )
    backup = None
    if entry.has_backup:
        backup = ReplicaRef(
            location=entry.backup_index,
            options=ToolOptions(
                store=entry.backup_store, with_flags=with_flags
            ),
        )
    return source, destination, backup


class SyncCycle:
    """Run reconciliation cycles for one configured entry.

    The executor (and its ``ActionLedger``) lives as long as the cycle
    object, so startup commands can be skipped when a trigger already ran
    them during the first cycle.

    Args:
        entry: The entry configuration.
        client: Replica client used for every casync/diff call.
        executor: Runs trigger and startup commands.
        source: Source index reference.
        destination: Destination directory reference.
        backup: Backup index reference, or ``None``.
    """

    def __init__(
        self,
        entry: EntryConfig,
        client: ReplicaClient,
        executor: ActionExecutor,
        source: ReplicaRef,
        destination: ReplicaRef,
        backup: ReplicaRef | None = None,
    ) -> None:
        self.entry = entry
        self.client = client
        self.executor = executor
        self.source = source
        self.destination = destination
        self.backup = backup
        self.log = EntryLogAdapter(logger, {"entry": entry.display_name})

    @classmethod
    def from_entry(
        cls, entry: EntryConfig, client: ReplicaClient, config: Config
    ) -> SyncCycle:
        """Build a cycle with the default replica options of *config*."""
        source, destination, backup = build_replicas(
            entry, config.time_resolution
        )
        executor = ActionExecutor(
            shell=config.shell, timeout=config.action_timeout
        )
        return cls(entry, client, executor, source, destination, backup)

    @property
    def name(self) -> str:
        return self.entry.display_name

    @property
    def ledger(self) -> ActionLedger:
        return self.executor.ledger

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(self) -> CycleReport:
        """Execute one cycle.

        Returns:
            A ``CycleReport`` describing what was done.
        """
        started_at = utc_now().isoformat()
        errors: list[str] = []
        unavailable: list[str] = []

        # Step 1: digest all replicas
        src = self._digest(self.source, "source", unavailable)
        backup = None
        if self.backup is not None:
            backup = self._digest(self.backup, "backup", unavailable)
        dst = self._digest(self.destination, "destination", unavailable)

        # Step 2: decide
        plan = decide(src, dst, backup, self.backup is not None)
        for note in plan.ambiguous:
            self.log.warning("%s", note)
        self.log.debug(
            "Plan: restore=%s save_backup=%s",
            plan.restore.value,
            plan.save_backup,
        )

        # Steps 3-4: diff and extract
        extracted_from: str | None = None
        changed: list[str] = []
        if plan.restore != SyncAction.SKIP:
            if plan.restore == SyncAction.EXTRACT_SOURCE:
                origin, origin_record = self.source, src
            else:
                origin, origin_record = self.backup, backup
            changed = self._diff(origin, errors)
            restored = self._extract(origin, origin_record, errors)
            if restored is not None:
                dst = restored
                extracted_from = origin.location
            else:
                changed = []

        # Step 5: save backup, judged on the current destination
        backup_saved = False
        if self.backup is not None:
            save, notes = decide_save_backup(dst, backup, True)
            if extracted_from is not None:
                for note in notes:
                    self.log.warning("%s", note)
            if save:
                backup_saved = self._save_backup(errors)

        # Step 6: triggers
        actions: list[ActionResult] = []
        if changed:
            commands = match_triggers(changed, self.entry.triggers)
            if commands:
                actions = self.executor.run_all(commands, origin="trigger")
        elif extracted_from is not None:
            self.log.info("No changed paths reported, no triggers fired")

        report = CycleReport(
            entry_name=self.name,
            started_at=started_at,
            completed_at=utc_now().isoformat(),
            plan=plan,
            extracted_from=extracted_from,
            backup_saved=backup_saved,
            changed_paths=changed,
            actions=actions,
            unavailable=unavailable,
            errors=errors,
        )
        self.log.info("%s", report.summary())
        return report

    def run_startup(self) -> list[ActionResult]:
        """Run the entry's startup commands not yet run by a trigger."""
        if not self.entry.startup:
            return []
        return self.executor.run_startup(self.entry.startup)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _digest(
        self, ref: ReplicaRef, role: str, unavailable: list[str]
    ) -> ChecksumRecord | None:
        try:
            record = self.client.digest(ref)
        except Unavailable as exc:
            self.log.warning(
                "%s not available: %s", role.capitalize(), exc.reason
            )
            unavailable.append(ref.location)
            return None
        self.log.debug(
            "%s checksum %s (%s)",
            role.capitalize(),
            record.checksum,
            record.timestamp.isoformat() if record.persisted else "unrecorded",
        )
        return record

    def _diff(self, origin: ReplicaRef, errors: list[str]) -> list[str]:
        """Paths that differ between the destination and *origin*."""
        try:
            changed = self.client.diff(self.destination, origin)
        except (SubprocessFailure, Unavailable) as exc:
            self.log.error("Unable to compute changed paths: %s", exc)
            errors.append(str(exc))
            return []
        self.log.info("%d changed paths", len(changed))
        for path in changed:
            self.log.debug("Changed: %s", path)
        return changed

    def _extract(
        self,
        origin: ReplicaRef,
        origin_record: ChecksumRecord,
        errors: list[str],
    ) -> ChecksumRecord | None:
        """Extract *origin* and persist the stamped destination record."""
        self.log.info(
            "Extracting %s to %s", origin.location, self.destination.location
        )
        try:
            fresh = self.client.extract(origin, self.destination)
        except InvalidLocalState as exc:
            self.log.error("Cannot extract: %s", exc)
            errors.append(str(exc))
            return None
        except (SubprocessFailure, OSError) as exc:
            self.log.error("Extraction failed: %s", exc)
            errors.append(str(exc))
            return None

        if not fresh.same_content(origin_record):
            self.log.warning(
                "Destination checksum %s after extraction differs from %s",
                fresh.checksum,
                origin_record.checksum,
            )

        # never older than the replica the content came from
        timestamp = max(fresh.timestamp, origin_record.timestamp)
        stamped = fresh.model_copy(update={"timestamp": timestamp})
        try:
            return self.client.cache.save(self.destination, stamped)
        except OSError as exc:
            self.log.error("Unable to record destination checksum: %s", exc)
            errors.append(str(exc))
            return stamped

    def _save_backup(self, errors: list[str]) -> bool:
        self.log.info(
            "Saving %s to backup %s",
            self.destination.location,
            self.backup.location,
        )
        try:
            self.client.make(self.backup, self.destination)
        except InvalidLocalState as exc:
            self.log.error("Cannot save backup: %s", exc)
            errors.append(str(exc))
            return False
        except (SubprocessFailure, OSError) as exc:
            self.log.error("Backup failed: %s", exc)
            errors.append(str(exc))
            return False
        return True
