"""Error taxonomy for replica access and side-effect execution.

The sync cycle distinguishes failures by how it must react to them:

- ``Unavailable``: a replica cannot be reached (network down, missing
  path, tool timeout).  The cycle continues in degraded mode and the next
  scheduled tick is the only retry.
- ``InvalidLocalState``: the local environment is wrong (destination is
  not a directory, source is empty).  Surfaced to the operator, the step
  is skipped for this cycle.
- ``SubprocessFailure``: casync or diff failed.  The step is treated as
  failed and the checksum cache is left untouched.
- ``ActionFailure``: a trigger or startup command failed.  Logged per
  action, never aborts the remaining actions.
- ``ConfigurationError``: configuration could not be loaded.  The only
  error that terminates the process.
"""

from __future__ import annotations


class ReplicaError(Exception):
    """Base class for all replica access errors."""


class Unavailable(ReplicaError):
    """A replica could not be reached this cycle."""

    def __init__(self, location: str, reason: str) -> None:
        self.location = location
        self.reason = reason
        super().__init__(f"Replica not available: {location} ({reason})")


class InvalidLocalState(ReplicaError):
    """Local paths are missing or unusable (operator-facing)."""


class InvalidSource(InvalidLocalState):
    """Archive source directory is missing or empty."""


class InvalidDestination(InvalidLocalState):
    """Extraction target or archive parent directory is missing."""


class SubprocessFailure(ReplicaError):
    """An external tool exited with an error or wrote to stderr."""

    def __init__(
        self,
        command: list[str],
        exit_code: int | None,
        stderr: str = "",
        message: str | None = None,
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = message or stderr.strip() or f"exit code {exit_code}"
        super().__init__(f"{' '.join(command[:2])} failed: {detail}")


class ActionFailure(Exception):
    """A trigger or startup shell command failed."""

    def __init__(
        self, command: str, exit_code: int | None, output: str = ""
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.output = output
        if exit_code is None:
            super().__init__(f'Action "{command}" did not complete')
        else:
            super().__init__(
                f'Action "{command}" exited with code {exit_code}'
            )


class ConfigurationError(Exception):
    """Configuration files could not be loaded or validated."""
