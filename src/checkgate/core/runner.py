"""Command execution using invoke with process-group extensions."""

from __future__ import annotations

import contextlib
import os
import shlex
import signal
from collections.abc import Sequence
from pathlib import Path
from subprocess import PIPE, Popen
from typing import Protocol

from invoke import Config, Context, Local, Promise

from checkgate.core.log import logger


class OutputCapture(Protocol):
    """Receives decoded output chunks from the IO threads."""

    def write(self, data: str) -> None:
        ...


class GroupLocal(Local):
    """invoke's Local runner, but the child leads its own session.

    Signals go to the whole process group so that a check tool that
    forks helpers (test runners, scanners) is stopped as a unit.

    When ``capture`` is set, output chunks from both pipes go to its
    ``write()`` instead of invoke's unbounded stdout/stderr lists, and
    the Result comes back with empty stdout and stderr.
    """

    capture: OutputCapture | None = None

    def start(self, command: str, shell: str, env: dict[str, str]) -> None:
        self.process = Popen(
            command,
            shell=True,
            executable=shell,
            env=env,
            stdout=PIPE,
            stderr=PIPE,
            stdin=PIPE,
            start_new_session=True,
        )

    def handle_stdout(self, buffer_, hide, output) -> None:
        if self.capture is None:
            return super().handle_stdout(buffer_, hide, output)
        for data in self.read_proc_output(self.read_proc_stdout):
            self.capture.write(data)

    def handle_stderr(self, buffer_, hide, output) -> None:
        if self.capture is None:
            return super().handle_stderr(buffer_, hide, output)
        for data in self.read_proc_output(self.read_proc_stderr):
            self.capture.write(data)

    def send_signal(self, signum: int) -> None:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(self.process.pid, signum)

    def kill(self) -> None:
        self.send_signal(signal.SIGKILL)


class Runner(Context):
    """invoke.Context that starts commands asynchronously.

    The caller owns the returned Promise: it joins it (normally from
    a worker thread) and may stop the process early with terminate()
    or kill().
    """

    def __init__(self, config: Config | None = None):
        if config is None:
            config = Config(overrides={"runners": {"local": GroupLocal}})
        super().__init__(config=config)

    @staticmethod
    def build_command(argv: Sequence[str], cwd: Path | None = None) -> str:
        """Quote argv into a shell line that execs the tool directly."""
        command = f"exec {shlex.join(argv)}"
        if cwd is not None:
            command = f"cd {shlex.quote(str(cwd))} && {command}"
        return command

    def start(
        self,
        argv: Sequence[str],
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        capture: OutputCapture | None = None,
    ) -> Promise:
        """Start a command and return without waiting for it.

        Args:
            argv: Executable and arguments
            cwd: Working directory for the command
            env: Environment variables to add (updates os.environ,
                does not replace it)
            capture: Receives the output as it arrives; without it,
                invoke keeps all output for the Result

        Returns:
            invoke.Promise; join() yields a Result with exited (and
            stdout/stderr when no capture was given)

        Raises:
            OSError: If the shell itself cannot be spawned
        """
        command = self.build_command(argv, cwd)
        logger.spew("Starting {command}", command=command)

        kwargs = {
            "hide": True,  # Capture output, don't print to console
            "warn": True,  # Non-zero exit is a result, not an error
            "in_stream": False,
            "asynchronous": True,
        }
        if env:
            kwargs["env"] = env
        runner = self.config.runners.local(self)
        runner.capture = capture
        return runner.run(command, **kwargs)

    @staticmethod
    def terminate(promise: Promise) -> None:
        """Ask the process group to stop (SIGTERM)."""
        promise.runner.send_signal(signal.SIGTERM)

    @staticmethod
    def kill(promise: Promise) -> None:
        """Force the process group to stop (SIGKILL)."""
        promise.runner.kill()


__all__ = ["GroupLocal", "OutputCapture", "Runner"]
