"""Run command - evaluate checks and publish the verdict."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path

from pydantic import BaseModel, Field

from checkgate.core.errors import ConfigError
from checkgate.core.log import logger
from checkgate.registry import Registry
from checkgate.report import publish_all
from checkgate.workflow.orchestrator import Orchestrator

EXIT_CONFIG_ERROR = 3


class RunCommand(BaseModel):
    """Run the configured checks and gate on the combined verdict.

    Exit status: 0 pass, 1 fail (a blocking check failed), 2
    incomplete (deadline or abort), 3 configuration error.
    """

    select: list[str] = Field(
        default_factory=list,
        description=(
            "Run only these checks (plus their dependencies); "
            "repeat the flag for several"
        ),
    )
    concurrency: int | None = Field(
        default=None,
        ge=1,
        description="Override config.run.concurrency",
    )
    deadline: float | None = Field(
        default=None,
        gt=0,
        description="Override config.run.deadline_seconds",
    )
    report_json: Path | None = Field(
        default=None,
        alias="report-json",
        description="Also write the verdict as JSON to this path",
    )

    model_config = {"populate_by_name": True}

    async def run_workflow(self, state: "State") -> int:
        """Evaluate the checks.

        Args:
            state: State instance with config loaded

        Returns:
            Process exit code
        """
        state.runtime.global_.current_command = "run"
        run_state = state.runtime.run
        config = state.config

        try:
            registry = Registry.load(config.checks)
        except ConfigError as e:
            logger.error(f"Invalid check configuration: {e}")
            run_state.status = "config_error"
            return EXIT_CONFIG_ERROR

        orchestrator = Orchestrator(
            registry,
            runner=config.run.create_runner(),
            concurrency_limit=config.run.concurrency,
        )

        run_state.status = "running"
        with _abort_on_signals(orchestrator):
            try:
                verdict = await orchestrator.evaluate(
                    self.select or None,
                    concurrency_limit=self.concurrency,
                    overall_deadline=(
                        self.deadline or config.run.deadline_seconds
                    ),
                )
            except ConfigError as e:
                logger.error(f"Invalid check selection: {e}")
                run_state.status = "config_error"
                return EXIT_CONFIG_ERROR

        run_state.verdict = verdict
        run_state.report_failures = publish_all(
            verdict, config.report.create_sinks(json_path=self.report_json)
        )
        run_state.status = "complete"
        return verdict.exit_code


@contextlib.contextmanager
def _abort_on_signals(orchestrator: Orchestrator):
    """Turn SIGINT/SIGTERM into a cooperative abort while running."""
    loop = asyncio.get_running_loop()
    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        # Unsupported off the main thread and on some platforms
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(signum, orchestrator.abort)
            installed.append(signum)
    try:
        yield
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
