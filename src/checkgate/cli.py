#!/usr/bin/env python3
"""checkgate CLI - run CI quality gates and gate on one verdict."""

import asyncio
import contextlib
import sys

from pydantic_settings import CliApp, CliSubCommand, get_subcommand

from checkgate.command.plan import PlanCommand
from checkgate.command.run import RunCommand
from checkgate.core.config import State
from checkgate.core.log import logger


class CliState(State):
    """Run a declarative set of CI checks (linters, scanners, tests)
    and reduce them to one pass/fail/incomplete verdict.

    Configuration sources (in priority order):
    1. Command-line arguments (--config.run.concurrency 8)
    2. --include files, then ./checkgate.yaml, then the user config
       and package defaults
    3. .env file
    4. Environment variables
       (CHECKGATE_CONFIG__RUN__CONCURRENCY=8)
    """

    run: CliSubCommand[RunCommand]
    plan: CliSubCommand[PlanCommand]

    def cli_cmd(self):
        """Dispatch to the active subcommand, or show help."""
        subcommand = get_subcommand(self, is_required=False)

        if subcommand is None:
            # argparse exits 0 after printing help
            with contextlib.suppress(SystemExit):
                CliApp.run(CliState, cli_args=['--help'])
            sys.exit(1)

        # Closing the logger flushes file and OTLP sinks
        with logger:
            exit_code = asyncio.run(subcommand.run_workflow(self))
            raise SystemExit(exit_code)


def main():
    """Main entry point for CLI."""
    CliApp.run(CliState)


if __name__ == "__main__":
    main()
