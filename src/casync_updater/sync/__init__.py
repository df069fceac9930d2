"""Replica synchronisation engine.

Public API for keeping a local directory in step with a remote casync
archive, with an optional offline backup archive.

Architecture
------------
Each configured entry is reconciled by a periodic **cycle**.  A cycle
compares the recorded ``{checksum, timestamp}`` of three replicas
(source index, destination directory, backup index) and applies "last
write wins": the newer content is extracted into the destination, and
the destination is archived to the backup when the backup is stale.
Paths reported as changed by a tree diff fire the entry's triggers.

Modules:

- ``engine``    -- ``SyncCycle``: orchestrates one cycle for one entry.
- ``scheduler`` -- ``CycleScheduler``: one asyncio task per entry.
- ``decision``  -- Pure reconciliation policy (``decide``, ``is_newer``).
- ``state``     -- ``ChecksumCache``: gzip sidecar persistence.
- ``triggers``  -- ``match_triggers``: exact path matching.
- ``executor``  -- ``ActionExecutor``, ``ActionLedger``: shell commands.
- ``publisher`` -- ``publish``: server-side archive creation.
- ``models``    -- ``ReplicaRef``, ``ChecksumRecord``, ``SyncPlan``,
  ``CycleReport`` and friends: core data contracts.
- ``reporter``  -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from casync_updater.config import load_config
    from casync_updater.config_loader import load_entries
    from casync_updater.core import ReplicaClient
    from casync_updater.sync import SyncCycle, format_cycle_report

    config = load_config()
    client = ReplicaClient(config)
    for entry in load_entries(Path("/etc/casync-updater")):
        cycle = SyncCycle.from_entry(entry, client, config)
        print(format_cycle_report(cycle.run()))
"""

from .decision import decide, is_newer
from .engine import SyncCycle
from .executor import ActionExecutor, ActionLedger
from .models import (
    ActionResult,
    ChecksumRecord,
    CycleReport,
    ReplicaRef,
    SyncAction,
    SyncPlan,
    ToolOptions,
)
from .reporter import format_cycle_report, report_to_json
from .scheduler import CycleScheduler
from .state import ChecksumCache
from .triggers import match_triggers

__all__ = [
    "ActionExecutor",
    "ActionLedger",
    "ActionResult",
    "ChecksumCache",
    "ChecksumRecord",
    "CycleReport",
    "CycleScheduler",
    "ReplicaRef",
    "SyncAction",
    "SyncCycle",
    "SyncPlan",
    "ToolOptions",
    "decide",
    "format_cycle_report",
    "is_newer",
    "match_triggers",
    "report_to_json",
]
