"""Cycle report formatting functions.

Provides human-readable and machine-readable output for cycles:

- ``format_cycle_report`` -- full post-cycle summary.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import CycleReport

from .models import SyncAction

_RESTORE_LABELS = {
    SyncAction.SKIP: "none",
    SyncAction.EXTRACT_SOURCE: "extract from source",
    SyncAction.EXTRACT_BACKUP: "extract from backup",
}

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_cycle_report(report: CycleReport) -> str:
    """Format a cycle report as human-readable text.

    Sections are only included when they contain at least one item.

    Args:
        report: The completed cycle report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    lines.append(f"Cycle report for '{report.entry_name}'")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(f"Restore: {_RESTORE_LABELS[report.plan.restore]}")
    if report.extracted_from:
        lines.append(f"Extracted from: {report.extracted_from}")
    if report.backup_saved:
        lines.append("Backup: saved")
    lines.append("")

    if report.unavailable:
        lines.append("Unavailable:")
        for location in report.unavailable:
            lines.append(f"  {location}")
        lines.append("")

    if report.plan.ambiguous:
        lines.append("Ambiguous:")
        for note in report.plan.ambiguous:
            lines.append(f"  {note}")
        lines.append("")

    if report.changed_paths:
        lines.append(f"Changed paths ({len(report.changed_paths)}):")
        for path in report.changed_paths:
            lines.append(f"  {path}")
        lines.append("")

    if report.actions:
        lines.append("Actions:")
        for action in report.actions:
            status = "ok" if action.success else "FAILED"
            lines.append(f"  [{action.origin}] {action.command}: {status}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for error in report.errors:
            lines.append(f"  {error}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: CycleReport) -> dict:
    """Convert a cycle report to a structured dict for JSON serialisation.

    Args:
        report: The cycle report.

    Returns:
        Dict with entry info, the plan, counts, and per-action details.
    """
    actions_list = []
    for a in report.actions:
        item: dict = {
            "command": a.command,
            "origin": a.origin,
            "success": a.success,
            "exit_code": a.exit_code,
        }
        if a.error:
            item["error"] = a.error
        actions_list.append(item)

    return {
        "entry_name": report.entry_name,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "plan": {
            "restore": report.plan.restore.value,
            "save_backup": report.plan.save_backup,
            "ambiguous": list(report.plan.ambiguous),
        },
        "extracted_from": report.extracted_from,
        "backup_saved": report.backup_saved,
        "changed_paths": list(report.changed_paths),
        "unavailable": list(report.unavailable),
        "counts": {
            "changed": len(report.changed_paths),
            "actions": len(report.actions),
            "failed_actions": len(report.failed_actions),
            "errors": len(report.errors),
        },
        "actions": actions_list,
        "errors": list(report.errors),
    }
