"""Match changed paths against trigger rules."""

from __future__ import annotations

import logging
from typing import Iterable

from casync_updater.config_schema import TriggerConfig

logger = logging.getLogger(__name__)


def match_triggers(
    changed_paths: Iterable[str], triggers: Iterable[TriggerConfig]
) -> list[str]:
    """Return the commands of all triggers fired by *changed_paths*.

    A trigger fires when at least one of its paths appears verbatim in the
    changed-path list.  Paths are not globbed and ``.`` only matches a
    literal ``.`` entry.  Commands keep trigger declaration order, then
    action order; a command collected earlier in the same cycle is not
    repeated.
    """
    changed = set(changed_paths)
    commands: list[str] = []
    seen: set[str] = set()

    for trigger in triggers:
        hits = [p for p in trigger.paths if p in changed]
        if not hits:
            continue
        logger.debug("Trigger fired by %s", ", ".join(hits))
        for action in trigger.actions:
            if action not in seen:
                seen.add(action)
                commands.append(action)

    return commands
