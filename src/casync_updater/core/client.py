import logging
import subprocess
import tempfile
from pathlib import Path

from ..config import Config
from ..errors import (
    InvalidDestination,
    InvalidSource,
    SubprocessFailure,
    Unavailable,
)
from ..sync.models import ChecksumRecord, ReplicaRef, ToolOptions
from ..sync.state import ChecksumCache, utc_now
from ..validators import (
    validate_destination_dir,
    validate_index_parent,
    validate_source_dir,
)
from .download import Downloader

logger = logging.getLogger(__name__)


def parse_diff_output(output: str) -> list[str]:
    """Extract relative paths from ``diff`` output.

    Only lines starting with ``>`` (entries of the second listing that do
    not match the first) are considered; the second whitespace-separated
    token of such a line is the relative path.
    """
    paths: list[str] = []
    for line in output.splitlines():
        if not line.startswith(">"):
            continue
        tokens = line.split()
        if len(tokens) >= 2:
            paths.append(tokens[1])
    return paths


class ReplicaClient:
    """Run casync and diff against replicas.

    All subprocesses are started from an argument list (never through a
    shell) with a timeout, and their standard output is spooled to a
    temporary file so that an oversized listing is rejected without being
    held in memory.
    """

    def __init__(
        self,
        config: Config,
        cache: ChecksumCache | None = None,
    ):
        self.config = config
        if cache is None:
            downloader = Downloader(
                retries=config.download_retries,
                timeout=config.download_timeout,
                max_bytes=config.max_output_bytes,
            )
            cache = ChecksumCache(fetch=downloader.fetch)
        self.cache = cache

    # ------------------------------------------------------------------
    # Subprocess plumbing
    # ------------------------------------------------------------------

    def _run_tool(self, command: list[str]) -> tuple[int, str, str]:
        """Run *command* and return ``(returncode, stdout, stderr)``.

        Stdout is spooled to a temporary file and rejected when larger
        than ``max_output_bytes``.
        """
        logger.debug("Running %s", " ".join(command))

        with tempfile.TemporaryFile() as out:
            try:
                result = subprocess.run(
                    command,
                    stdout=out,
                    stderr=subprocess.PIPE,
                    timeout=self.config.tool_timeout,
                )
            except subprocess.TimeoutExpired:
                raise SubprocessFailure(
                    command,
                    None,
                    message=f"timed out after {self.config.tool_timeout}s",
                ) from None
            except OSError as exc:
                raise SubprocessFailure(
                    command, None, message=str(exc)
                ) from exc

            stderr = result.stderr.decode("utf-8", errors="replace")
            size = out.tell()
            if size > self.config.max_output_bytes:
                raise SubprocessFailure(
                    command,
                    result.returncode,
                    stderr,
                    message=(
                        f"output of {size} bytes exceeds limit of "
                        f"{self.config.max_output_bytes}"
                    ),
                )
            out.seek(0)
            stdout = out.read().decode("utf-8", errors="replace")
        return result.returncode, stdout, stderr

    def _casync(self, verb: str, ref: ReplicaRef, *args: str) -> str:
        """Run ``casync <verb> <options> <args...>`` and return stdout."""
        command = [
            self.config.casync_bin,
            verb,
            *ref.options.as_args(),
            *args,
        ]
        returncode, stdout, stderr = self._run_tool(command)
        if returncode != 0 or stderr.strip():
            raise SubprocessFailure(command, returncode, stderr)
        return stdout

    # ------------------------------------------------------------------
    # Checksums
    # ------------------------------------------------------------------

    def digest(self, ref: ReplicaRef) -> ChecksumRecord:
        """Return the recorded checksum of *ref*, computing it if needed.

        A freshly computed checksum is stamped with the current time and
        is NOT persisted; recording it is the caller's decision.

        Raises:
            Unavailable: The replica (or its sidecar) cannot be reached.
        """
        cached = self.cache.load(ref)
        if cached is not None:
            logger.debug(
                "Using cached checksum %s for %s",
                cached.checksum,
                ref.location,
            )
            return cached

        if not ref.is_remote and not Path(ref.location).exists():
            raise Unavailable(ref.location, "path does not exist")

        try:
            return self.compute_digest(ref)
        except SubprocessFailure as exc:
            raise Unavailable(ref.location, str(exc)) from exc

    def digest_directory(
        self, path: str, options: ToolOptions
    ) -> ChecksumRecord:
        """``digest()`` for a directory, using its sibling sidecar."""
        return self.digest(
            ReplicaRef(location=path, options=options, is_directory=True)
        )

    def compute_digest(self, ref: ReplicaRef) -> ChecksumRecord:
        """Run ``casync digest`` on *ref*, ignoring any sidecar."""
        checksum = self._casync("digest", ref, ref.location).strip()
        if not checksum:
            raise SubprocessFailure(
                [self.config.casync_bin, "digest", ref.location],
                0,
                message="empty checksum",
            )
        return ChecksumRecord(checksum=checksum, timestamp=utc_now())

    # ------------------------------------------------------------------
    # Extract / make
    # ------------------------------------------------------------------

    def extract(
        self, ref: ReplicaRef, destination: ReplicaRef
    ) -> ChecksumRecord:
        """Materialize *ref* into the *destination* directory.

        Overwrites destination content in place.  The operation is not
        atomic: a crash mid-extract leaves a partially updated tree.

        Returns:
            Fresh, unpersisted checksum of the destination after extraction.

        Raises:
            InvalidDestination: Destination is not an existing directory.
            SubprocessFailure: casync failed.
        """
        ok, reason = validate_destination_dir(destination.location)
        if not ok:
            raise InvalidDestination(reason)

        self._casync("extract", ref, ref.location, destination.location)
        self.cache.discard_tree(destination)
        logger.info(
            "Extracted %s to %s", ref.location, destination.location
        )
        return self.compute_digest(destination)

    def make(
        self, index: ReplicaRef, source: ReplicaRef
    ) -> ChecksumRecord:
        """Create the archive *index* from the *source* directory.

        Writes the checksum and tree-listing sidecars of the new index.

        Returns:
            The persisted checksum record of the new archive.

        Raises:
            InvalidSource: Source is missing or empty.
            InvalidDestination: Parent directory of the index is missing.
            SubprocessFailure: casync failed.
        """
        ok, reason = validate_source_dir(source.location)
        if not ok:
            raise InvalidSource(reason)
        ok, reason = validate_index_parent(index.location)
        if not ok:
            raise InvalidDestination(reason)

        checksum = self._casync(
            "make", index, index.location, source.location
        ).strip()
        record = self.cache.save(
            index, ChecksumRecord(checksum=checksum, timestamp=utc_now())
        )

        try:
            listing = self._casync("mtree", index, index.location)
        except SubprocessFailure as exc:
            logger.warning(
                "Archive %s created but tree listing failed: %s",
                index.location,
                exc,
            )
            self.cache.discard_tree(index)
        else:
            self.cache.save_tree(index, listing)

        logger.info(
            "Created archive %s from %s (checksum %s)",
            index.location,
            source.location,
            checksum,
        )
        return record

    # ------------------------------------------------------------------
    # Tree listings and diff
    # ------------------------------------------------------------------

    def mtree(self, ref: ReplicaRef) -> str:
        """Return the structural tree listing of *ref*.

        The cached ``.mtree`` sidecar is reused when present.
        """
        cached = self.cache.load_tree(ref)
        if cached is not None:
            return cached
        return self._casync("mtree", ref, ref.location)

    def diff(self, first: ReplicaRef, second: ReplicaRef) -> list[str]:
        """List relative paths whose entries in *second* differ from *first*.

        Both listings are written into a temporary scratch directory that
        is removed on every exit path, then compared with ``diff``.

        Raises:
            SubprocessFailure: casync or diff failed, or the listings
                exceed the scratch size limit.
        """
        listings = [self.mtree(first), self.mtree(second)]
        size = sum(len(listing.encode("utf-8")) for listing in listings)
        command = [self.config.diff_bin, "first.mtree", "second.mtree"]
        if size > self.config.max_scratch_bytes:
            raise SubprocessFailure(
                command,
                None,
                message=(
                    f"tree listings of {size} bytes exceed scratch limit "
                    f"of {self.config.max_scratch_bytes}"
                ),
            )

        with tempfile.TemporaryDirectory(prefix="casync-diff-") as scratch:
            first_path = Path(scratch) / "first.mtree"
            second_path = Path(scratch) / "second.mtree"
            first_path.write_text(listings[0], encoding="utf-8")
            second_path.write_text(listings[1], encoding="utf-8")
            command = [
                self.config.diff_bin,
                str(first_path),
                str(second_path),
            ]
            returncode, stdout, stderr = self._run_tool(command)

        # diff exits with 1 when the inputs differ
        if returncode == 0:
            return []
        if returncode == 1 and not stderr.strip():
            return parse_diff_output(stdout)
        raise SubprocessFailure(command, returncode, stderr)
