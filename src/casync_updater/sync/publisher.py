"""Server-side archive publishing.

Creates or refreshes a casync archive from a source directory so that
updaters polling the index pick it up.  The archive is only rebuilt when
the source content differs from what the index currently holds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from casync_updater.config import Config
from casync_updater.config_schema import PublishConfig
from casync_updater.errors import SubprocessFailure, Unavailable
from casync_updater.sync.models import ChecksumRecord, ReplicaRef, ToolOptions

if TYPE_CHECKING:
    from casync_updater.core.client import ReplicaClient

logger = logging.getLogger(__name__)


def publish_replicas(
    settings: PublishConfig, time_resolution: str
) -> tuple[ReplicaRef, ReplicaRef]:
    """Return the ``(index, source)`` references for *settings*."""
    with_flags = (time_resolution,) if time_resolution else ()
    index = ReplicaRef(
        location=settings.index,
        options=ToolOptions(store=settings.store, with_flags=with_flags),
    )
    source = ReplicaRef(
        location=settings.source,
        options=ToolOptions(with_flags=with_flags),
        is_directory=True,
    )
    return index, source


def publish(
    client: ReplicaClient, settings: PublishConfig, config: Config
) -> ChecksumRecord | None:
    """Rebuild the archive if the source changed.

    Returns:
        The new archive record, or ``None`` when the source is unchanged.

    Raises:
        SubprocessFailure: The source could not be digested or ``make``
            failed.
        InvalidLocalState: The source or the index directory is unusable.
    """
    index, source = publish_replicas(settings, config.time_resolution)

    current: ChecksumRecord | None = None
    try:
        current = client.digest(index)
    except Unavailable as exc:
        logger.info(
            "No existing archive at %s (%s)", index.location, exc.reason
        )

    try:
        wanted = client.compute_digest(source)
    except SubprocessFailure as exc:
        logger.error("Unable to digest source %s: %s", source.location, exc)
        raise

    if current is not None and current.same_content(wanted):
        logger.info("Source not changed (checksum %s)", wanted.checksum)
        return None

    record = client.make(index, source)
    logger.info(
        "Published archive %s (checksum %s)",
        index.location,
        record.checksum,
    )
    return record
