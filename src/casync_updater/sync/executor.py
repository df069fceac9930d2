"""Shell command execution for trigger and startup actions.

Commands are arbitrary shell text from the configuration and run with
the service's privileges; there is no sandboxing beyond what the
deployment environment provides.  Each command runs with a timeout and
its combined output captured (and truncated) for logs and reports.

Every executed command is recorded in the entry's ``ActionLedger`` before
it starts.  The startup list consults the ledger so that a command already
run by a trigger during the first cycle is not run a second time.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
from typing import Iterable, Iterator

from casync_updater.errors import ActionFailure
from casync_updater.sync.models import ActionResult

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_LIMIT = 64 * 1024


class ActionLedger:
    """Ordered set of commands executed during an entry's lifetime."""

    def __init__(self) -> None:
        self._commands: dict[str, None] = {}

    def record(self, command: str) -> None:
        self._commands[command] = None

    def __contains__(self, command: object) -> bool:
        return command in self._commands

    def __iter__(self) -> Iterator[str]:
        return iter(self._commands)

    def __len__(self) -> int:
        return len(self._commands)


class ActionExecutor:
    """Run shell commands one at a time, isolating failures.

    Args:
        shell: Shell executable used as ``<shell> -c <command>``.
        timeout: Seconds before a command is killed.
        output_limit: Maximum number of captured output bytes kept.
        ledger: Ledger to record commands in (a new one by default).
    """

    def __init__(
        self,
        shell: str = "/bin/bash",
        timeout: float = 300.0,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
        ledger: ActionLedger | None = None,
    ) -> None:
        self.shell = shell
        self.timeout = timeout
        self.output_limit = output_limit
        self.ledger = ledger if ledger is not None else ActionLedger()

    def run(self, command: str, origin: str = "trigger") -> ActionResult:
        """Run one command.  Failures are logged and returned, never raised."""
        self.ledger.record(command)
        logger.info('Executing %s action: "%s"', origin, command)
        try:
            output = self._invoke(command)
        except ActionFailure as exc:
            logger.error(
                'Unable to process %s action "%s": %s',
                origin,
                command,
                exc,
            )
            if exc.output:
                logger.error("%s", exc.output.rstrip())
            return ActionResult(
                command=command,
                origin=origin,
                success=False,
                exit_code=exc.exit_code,
                output=exc.output,
                error=str(exc),
            )

        if output.strip():
            logger.info("%s", output.rstrip())
        return ActionResult(
            command=command,
            origin=origin,
            success=True,
            exit_code=0,
            output=output,
        )

    def run_all(
        self, commands: Iterable[str], origin: str = "trigger"
    ) -> list[ActionResult]:
        """Run *commands* in order; a failure does not stop the rest."""
        return [self.run(command, origin) for command in commands]

    def run_startup(self, commands: Iterable[str]) -> list[ActionResult]:
        """Run startup commands not already present in the ledger."""
        results: list[ActionResult] = []
        for command in commands:
            if command in self.ledger:
                logger.info(
                    'Skipping startup action already run this session: "%s"',
                    command,
                )
                continue
            results.append(self.run(command, origin="startup"))
        return results

    def _invoke(self, command: str) -> str:
        """Run *command* through the shell and return its output.

        Raises:
            ActionFailure: Non-zero exit, timeout, or the shell could not
                be started.
        """
        with tempfile.TemporaryFile() as out:
            try:
                result = subprocess.run(
                    [self.shell, "-c", command],
                    stdout=out,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired:
                raise ActionFailure(
                    command,
                    None,
                    self._read_output(out)
                    + f"\n(timed out after {self.timeout}s)",
                ) from None
            except OSError as exc:
                raise ActionFailure(command, None, str(exc)) from exc

            output = self._read_output(out)

        if result.returncode != 0:
            raise ActionFailure(command, result.returncode, output)
        return output

    def _read_output(self, out) -> str:
        size = out.tell()
        out.seek(0)
        data = out.read(self.output_limit)
        text = data.decode("utf-8", errors="replace")
        if size > self.output_limit:
            text += f"\n... ({size - self.output_limit} bytes truncated)"
        return text
