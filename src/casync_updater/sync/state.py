"""Checksum and tree-listing sidecar persistence.

Every replica can carry two sidecar files next to it:

* ``.cks``   -- the last recorded ``{checksum, timestamp}`` of the replica.
* ``.mtree`` -- the cached structural tree listing used for diffs.

Both are gzip-compressed.  Sidecars of remote replicas are read over
HTTP(S) through an injected fetch function and are never written.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Absence is not an error** -- a missing or unparsable sidecar means
  "no cached checksum" and triggers recomputation by the caller.
* **Bare checksums** -- a sidecar holding only a checksum line is
  accepted.  Local ones take the file modification time as timestamp;
  remote ones are treated as a fresh, unrecorded observation.
"""

from __future__ import annotations

import gzip
import json
import logging
import os
import tempfile
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from casync_updater.sync.models import ChecksumRecord, ReplicaRef

logger = logging.getLogger(__name__)

CHECKSUM_SUFFIX = ".cks"
TREE_SUFFIX = ".mtree"

Fetcher = Callable[[str], bytes | None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChecksumCache:
    """Load and save replica sidecars.

    Args:
        fetch: Callable returning the raw bytes at a URL, or ``None`` when
            the URL does not exist.  Network failures must be raised as
            ``Unavailable``.  Required only for remote replicas.
    """

    def __init__(self, fetch: Fetcher | None = None) -> None:
        self._fetch = fetch

    # ------------------------------------------------------------------
    # Checksum records
    # ------------------------------------------------------------------

    def load(self, ref: ReplicaRef) -> ChecksumRecord | None:
        """Return the cached record for *ref*, or ``None`` if absent."""
        location = ref.sidecar(CHECKSUM_SUFFIX)
        text = self._read_text(ref, location)
        if text is None:
            return None

        record = self.decode_record(text)
        if record is not None:
            return record

        checksum = text.strip()
        if not checksum or any(ch.isspace() for ch in checksum):
            logger.warning("Ignoring unparsable checksum file %s", location)
            return None

        if ref.is_remote:
            return ChecksumRecord(checksum=checksum, timestamp=utc_now())
        mtime = os.path.getmtime(location)
        return ChecksumRecord(
            checksum=checksum,
            timestamp=datetime.fromtimestamp(mtime, timezone.utc),
            persisted=True,
        )

    def save(
        self, ref: ReplicaRef, record: ChecksumRecord
    ) -> ChecksumRecord:
        """Persist *record* as the sidecar of *ref*.

        Returns:
            The record marked as persisted.
        """
        persisted = record.model_copy(update={"persisted": True})
        self._write_bytes(
            ref,
            ref.sidecar(CHECKSUM_SUFFIX),
            self.encode_record(persisted).encode("utf-8"),
        )
        logger.debug(
            "Recorded checksum %s for %s", record.checksum, ref.location
        )
        return persisted

    # ------------------------------------------------------------------
    # Tree listings
    # ------------------------------------------------------------------

    def load_tree(self, ref: ReplicaRef) -> str | None:
        """Return the cached tree listing for *ref*, or ``None``."""
        text = self._read_text(ref, ref.sidecar(TREE_SUFFIX))
        if not text:
            return None
        return text

    def save_tree(self, ref: ReplicaRef, listing: str) -> None:
        """Persist the tree listing of *ref*."""
        self._write_bytes(
            ref, ref.sidecar(TREE_SUFFIX), listing.encode("utf-8")
        )

    def discard_tree(self, ref: ReplicaRef) -> None:
        """Remove a stale tree listing.  No-op if not present."""
        if ref.is_remote:
            return
        try:
            os.unlink(ref.sidecar(TREE_SUFFIX))
        except FileNotFoundError:
            pass

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    @staticmethod
    def encode_record(record: ChecksumRecord) -> str:
        return json.dumps(
            {
                "checksum": record.checksum,
                "timestamp": record.timestamp.isoformat(),
            }
        )

    @staticmethod
    def decode_record(text: str) -> ChecksumRecord | None:
        """Parse a JSON checksum record.  Returns ``None`` on any mismatch."""
        try:
            data = json.loads(text)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        checksum = data.get("checksum")
        raw_ts = data.get("timestamp")
        if not isinstance(checksum, str) or not isinstance(raw_ts, str):
            return None
        try:
            timestamp = datetime.fromisoformat(raw_ts)
        except ValueError:
            return None
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return ChecksumRecord(
            checksum=checksum, timestamp=timestamp, persisted=True
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_text(self, ref: ReplicaRef, location: str) -> str | None:
        if ref.is_remote:
            if self._fetch is None:
                return None
            payload = self._fetch(location)
        else:
            try:
                payload = Path(location).read_bytes()
            except OSError:
                return None
        if payload is None:
            return None
        try:
            return gzip.decompress(payload).decode("utf-8")
        except (OSError, EOFError, zlib.error, UnicodeDecodeError):
            logger.warning("Ignoring corrupt sidecar %s", location)
            return None

    def _write_bytes(
        self, ref: ReplicaRef, location: str, data: bytes
    ) -> None:
        if ref.is_remote:
            raise ValueError(
                f"Cannot write sidecar for remote replica {ref.location}"
            )
        target = Path(location)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(target.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(gzip.compress(data))
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
