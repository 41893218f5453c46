"""Check runner: one check, its attempts and their logs."""

from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path

from invoke import Promise
from invoke.exceptions import ThreadException

from checkgate.core.log import logger
from checkgate.core.result import (
    CancelReason,
    CheckResult,
    CheckRun,
    CheckStatus,
)
from checkgate.core.runner import Runner
from checkgate.registry.descriptor import CheckDescriptor

DEFAULT_MAX_OUTPUT_BYTES = 64 * 1024
DEFAULT_GRACE_PERIOD = 5.0

TRUNCATION_MARKER = "[checkgate: {count} bytes of earlier output truncated]\n"


def bound_output(output: str, limit: int) -> tuple[str, bool]:
    """Keep the newest ``limit`` bytes of output.

    Returns:
        (text, truncated). Truncated text starts with a marker line
        saying how many bytes were dropped.
    """
    capture = BoundedOutput(limit)
    capture.write(output)
    return capture.getvalue()


class BoundedOutput:
    """Rolling tail of a command's combined output.

    Holds at most ``limit`` bytes; older bytes are dropped as new ones
    arrive. With a ``log_file`` every chunk is also appended there, so
    the file keeps the full output. ``write`` is called from invoke's
    stdout and stderr threads at once.
    """

    def __init__(self, limit: int, log_file: Path | None = None):
        self.limit = limit
        self.log_file = log_file
        self.log_error: OSError | None = None
        self.dropped = 0
        self._chunks: deque[bytes] = deque()
        self._size = 0
        self._lock = threading.Lock()
        self._file = None
        if log_file is not None:
            self._file = open(log_file, "w", encoding="utf-8")  # noqa: SIM115

    @property
    def size(self) -> int:
        """Bytes currently held in memory."""
        return self._size

    def write(self, data: str) -> None:
        encoded = data.encode("utf-8", errors="replace")
        with self._lock:
            if self._file is not None:
                try:
                    self._file.write(data)
                except OSError as e:
                    # Keep capturing; the file is incomplete from here
                    self.log_error = e
                    self._close_file()
            self._chunks.append(encoded)
            self._size += len(encoded)
            while self._size > self.limit:
                excess = self._size - self.limit
                first = self._chunks[0]
                if len(first) <= excess:
                    self._chunks.popleft()
                    dropped = len(first)
                else:
                    self._chunks[0] = first[excess:]
                    dropped = excess
                self._size -= dropped
                self.dropped += dropped

    def getvalue(self) -> tuple[str, bool]:
        """Return (text, truncated), marker line first when truncated."""
        with self._lock:
            # A cut can land inside a multi-byte character
            text = b"".join(self._chunks).decode("utf-8", errors="ignore")
            if not self.dropped:
                return text, False
            return TRUNCATION_MARKER.format(count=self.dropped) + text, True

    def close(self) -> None:
        with self._lock:
            self._close_file()

    def _close_file(self) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as e:
            self.log_error = self.log_error or e
        self._file = None


class CheckRunner:
    """Execute check commands and manage their log files.

    A runner holds no per-check state and may run many checks
    concurrently.
    """

    def __init__(
        self,
        project_root: Path | None = None,
        output_dir: Path | None = None,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ):
        """Initialize check runner.

        Args:
            project_root: Base for relative check working directories
                (default: current directory)
            output_dir: Directory for per-attempt log files; None
                disables log files
            max_output_bytes: Bound on output kept in memory per attempt
            grace_period: Seconds between SIGTERM and SIGKILL when a
                check is stopped early
        """
        self.project_root = Path(project_root or Path.cwd())
        self.output_dir = output_dir
        self.max_output_bytes = max_output_bytes
        self.grace_period = grace_period
        self.runner = Runner()

    def workdir(self, descriptor: CheckDescriptor) -> Path:
        return self.project_root / descriptor.command.workdir

    async def run(
        self,
        descriptor: CheckDescriptor,
        attempt_number: int,
        cancel: asyncio.Event | None = None,
    ) -> CheckRun:
        """Run one attempt of a check.

        Exit code 0 is success and anything else is failure. An attempt
        that outlives ``descriptor.timeout`` is stopped and reported as
        timed out. Setting ``cancel`` stops the attempt the same way and
        reports it as cancelled. Problems starting the command are
        reported as errored.

        The subprocess is always gone by the time this returns, also
        when the calling task itself is cancelled.
        """
        start = datetime.now(UTC)
        workdir = self.workdir(descriptor)
        capture = self._capture(descriptor, attempt_number, start)

        error = self._preflight(descriptor, workdir)
        if error is None:
            try:
                promise = self.runner.start(
                    descriptor.command.argv,
                    cwd=workdir,
                    env=descriptor.command.env,
                    capture=capture,
                )
            except OSError as e:
                error = f"Failed to start {descriptor.command}: {e}"
        if error is not None:
            logger.error(
                f"Check '{descriptor.name}' could not start: {error}",
                check=descriptor.name,
            )
            capture.write(error + "\n")
            return self._finish(
                descriptor, attempt_number, start, capture,
                CheckStatus.ERRORED, error=error,
            )

        # A thread of its own per attempt; on a shared pool a finished
        # check could wait for a free worker and outlive its timeout.
        executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"checkgate-{descriptor.name}"
        )
        join = asyncio.get_running_loop().run_in_executor(
            executor, promise.join
        )
        waiters = {join}
        cancel_wait = None
        if cancel is not None:
            cancel_wait = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_wait)

        stopped = None
        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=descriptor.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if join not in done:
                if cancel_wait is not None and cancel_wait in done:
                    stopped = CheckStatus.CANCELLED
                    logger.warn(
                        f"Check '{descriptor.name}' cancelled",
                        check=descriptor.name,
                        attempt=attempt_number,
                    )
                else:
                    stopped = CheckStatus.TIMED_OUT
                    logger.warn(
                        f"Check '{descriptor.name}' timed out after "
                        f"{descriptor.timeout}s",
                        check=descriptor.name,
                        attempt=attempt_number,
                    )
                await self._stop(descriptor, promise, join)
        except asyncio.CancelledError:
            try:
                await asyncio.shield(self._stop(descriptor, promise, join))
            finally:
                capture.close()
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()
            executor.shutdown(wait=False)

        try:
            result = join.result()
        except ThreadException as e:
            return self._finish(
                descriptor, attempt_number, start, capture,
                CheckStatus.ERRORED, error=f"Output capture failed: {e}",
            )

        if stopped is not None:
            status = stopped
        elif result.exited == 0:
            status = CheckStatus.SUCCESS
        else:
            status = CheckStatus.FAILURE
        return self._finish(
            descriptor, attempt_number, start, capture, status,
            exit_code=result.exited,
        )

    async def run_check(
        self,
        descriptor: CheckDescriptor,
        cancel: asyncio.Event | None = None,
    ) -> CheckResult:
        """Run a check until it succeeds or its retries are used up.

        Failed and timed-out attempts are retried up to
        ``descriptor.max_retries`` times with the descriptor's backoff.
        Errored and cancelled attempts end the check immediately.

        Returns:
            CheckResult holding every attempt in order
        """
        attempts: list[CheckRun] = []
        with logger.span(
            f"Check {descriptor.name}",
            check=descriptor.name,
            command=str(descriptor.command),
        ):
            for attempt_number in range(1, descriptor.max_retries + 2):
                if cancel is not None and cancel.is_set():
                    return self._cancelled(descriptor, attempts)

                attempt = await self.run(descriptor, attempt_number, cancel)
                attempts.append(attempt)

                if attempt.exit_status is CheckStatus.CANCELLED:
                    return self._cancelled(descriptor, attempts)
                if not attempt.retriable:
                    break
                if attempt_number > descriptor.max_retries:
                    break

                delay = descriptor.backoff_delay(attempt_number)
                logger.warn(
                    f"Check '{descriptor.name}' {attempt.exit_status} "
                    f"(attempt {attempt_number}/"
                    f"{descriptor.max_retries + 1}), retrying in {delay}s",
                    check=descriptor.name,
                )
                if await self._backoff(delay, cancel):
                    return self._cancelled(descriptor, attempts)

            result = CheckResult(
                descriptor_name=descriptor.name,
                final_status=attempts[-1].exit_status,
                blocking=descriptor.blocking,
                attempts=tuple(attempts),
            )
            logger.info(
                f"Check '{descriptor.name}': {result.final_status}",
                check=descriptor.name,
                status=str(result.final_status),
                attempts=len(attempts),
                duration=result.total_duration,
            )
            return result

    # Helpers

    def _preflight(
        self, descriptor: CheckDescriptor, workdir: Path
    ) -> str | None:
        """Return why the command cannot be launched, or None.

        The shell would report these as exit codes 126/127, which
        would look like ordinary (retriable) check failures.
        """
        if not workdir.is_dir():
            return f"Working directory does not exist: {workdir}"

        executable = descriptor.command.executable
        if os.sep in executable or (os.altsep and os.altsep in executable):
            path = workdir / executable
            if not path.is_file():
                return f"Executable not found: {executable}"
            if not os.access(path, os.X_OK):
                return f"Permission denied: {executable}"
            return None

        search_path = descriptor.command.env.get(
            "PATH", os.environ.get("PATH", os.defpath)
        )
        if shutil.which(executable, path=search_path) is None:
            return f"Executable not found on PATH: {executable}"
        return None

    async def _stop(
        self, descriptor: CheckDescriptor, promise: Promise, join
    ) -> None:
        """SIGTERM, wait out the grace period, then SIGKILL."""
        self.runner.terminate(promise)
        done, _ = await asyncio.wait({join}, timeout=self.grace_period)
        if join not in done:
            logger.warn(
                f"Check '{descriptor.name}' ignored SIGTERM for "
                f"{self.grace_period}s, killing",
                check=descriptor.name,
            )
            self.runner.kill(promise)
            await asyncio.wait({join})

    async def _backoff(
        self, delay: float, cancel: asyncio.Event | None
    ) -> bool:
        """Sleep before a retry. Returns True if cancelled meanwhile."""
        if cancel is None:
            await asyncio.sleep(delay)
            return False
        if delay > 0:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(cancel.wait(), timeout=delay)
        return cancel.is_set()

    def _capture(
        self,
        descriptor: CheckDescriptor,
        attempt_number: int,
        start: datetime,
    ) -> BoundedOutput:
        """Output buffer for one attempt, teed to a timestamped log file.

        A log file that cannot be created is logged and skipped; the
        check itself still runs.
        """
        if self.output_dir is not None:
            log_file = self.output_dir / (
                f"{descriptor.name}-{attempt_number}-"
                f"{start.strftime('%Y%m%d-%H%M%S')}.log"
            )
            try:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                return BoundedOutput(self.max_output_bytes, log_file)
            except OSError as e:
                logger.error(
                    f"Cannot write log for check '{descriptor.name}': {e}",
                    check=descriptor.name,
                )
        return BoundedOutput(self.max_output_bytes)

    def _finish(
        self,
        descriptor: CheckDescriptor,
        attempt_number: int,
        start: datetime,
        capture: BoundedOutput,
        status: CheckStatus,
        exit_code: int | None = None,
        error: str | None = None,
    ) -> CheckRun:
        end = datetime.now(UTC)
        capture.close()
        if capture.log_error is not None:
            logger.error(
                f"Log for check '{descriptor.name}' is incomplete: "
                f"{capture.log_error}",
                check=descriptor.name,
            )

        output, truncated = capture.getvalue()
        for line in output.splitlines():
            logger.spew("{check} | {line}", check=descriptor.name, line=line)

        return CheckRun(
            descriptor_name=descriptor.name,
            attempt_number=attempt_number,
            start_time=start,
            end_time=end,
            exit_status=status,
            exit_code=exit_code,
            output_log=output,
            output_truncated=truncated,
            log_file=capture.log_file if capture.log_error is None else None,
            error=error,
        )

    def _cancelled(
        self, descriptor: CheckDescriptor, attempts: list[CheckRun]
    ) -> CheckResult:
        logger.info(
            f"Check '{descriptor.name}': cancelled",
            check=descriptor.name,
            attempts=len(attempts),
        )
        return CheckResult(
            descriptor_name=descriptor.name,
            final_status=CheckStatus.CANCELLED,
            blocking=descriptor.blocking,
            attempts=tuple(attempts),
            cancel_reason=CancelReason.ABORTED,
        )


__all__ = ["BoundedOutput", "CheckRunner", "bound_output"]
