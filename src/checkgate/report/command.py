"""Report sink that hands the verdict to an external command."""

from __future__ import annotations

import os
import shlex
import tempfile
from collections.abc import Sequence

from invoke.exceptions import CommandTimedOut

from checkgate.core.errors import ReportError
from checkgate.core.result import FinalVerdict
from checkgate.core.runner import Runner

VERDICT_FILE_ENV = "CHECKGATE_VERDICT_FILE"


class CommandReportSink:
    """Feed the verdict JSON to a command on stdin.

    Suits status-API uploaders and notification scripts. The JSON
    file's path is also exported as ``CHECKGATE_VERDICT_FILE``. The
    command must exit 0 for the publish to count as delivered.
    """

    def __init__(self, argv: Sequence[str], timeout: int = 60):
        if not argv:
            raise ValueError("Report command needs at least an executable")
        self.argv = tuple(argv)
        self.timeout = timeout
        self.runner = Runner()

    def publish(self, verdict: FinalVerdict) -> None:
        fd, path = tempfile.mkstemp(prefix="checkgate-verdict-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(verdict.model_dump_json())

            command = (
                f"{self.runner.build_command(self.argv)} < {shlex.quote(path)}"
            )
            try:
                result = self.runner.run(
                    command,
                    hide=True,
                    warn=True,
                    in_stream=False,
                    timeout=self.timeout,
                    env={VERDICT_FILE_ENV: path},
                )
            except CommandTimedOut as e:
                raise ReportError(
                    f"'{shlex.join(self.argv)}' timed out after "
                    f"{self.timeout}s"
                ) from e
        finally:
            os.unlink(path)

        if result.exited != 0:
            raise ReportError(
                f"'{shlex.join(self.argv)}' exited {result.exited}: "
                f"{result.stderr.strip()}"
            )


__all__ = ["CommandReportSink", "VERDICT_FILE_ENV"]
