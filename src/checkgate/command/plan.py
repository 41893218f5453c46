"""Plan command - show which checks would run, and in what order."""

from __future__ import annotations

from pydantic import BaseModel, Field

from checkgate.command.run import EXIT_CONFIG_ERROR
from checkgate.core.errors import ConfigError
from checkgate.core.log import logger
from checkgate.registry import Batch, Registry


def format_plan(batches: list[Batch]) -> str:
    """Render execution batches as indented text."""
    if not batches:
        return "No checks configured.\n"
    lines = []
    for number, batch in enumerate(batches, start=1):
        lines.append(f"Batch {number}:")
        for descriptor in batch:
            flags = ["blocking" if descriptor.blocking else "advisory"]
            if descriptor.max_retries:
                flags.append(f"retries={descriptor.max_retries}")
            if descriptor.depends_on:
                flags.append(
                    f"after={','.join(sorted(descriptor.depends_on))}"
                )
            lines.append(
                f"  {descriptor.name} [{' '.join(flags)}] "
                f"{descriptor.command}"
            )
            if descriptor.description:
                lines.append(f"      {descriptor.description}")
    return "\n".join(lines) + "\n"


class PlanCommand(BaseModel):
    """Validate the check configuration and print the execution batches.

    Nothing is executed.
    """

    select: list[str] = Field(
        default_factory=list,
        description="Plan only these checks (plus their dependencies)",
    )

    async def run_workflow(self, state: "State") -> int:
        """Print the plan.

        Returns:
            0, or 3 if the configuration is invalid
        """
        state.runtime.global_.current_command = "plan"
        try:
            registry = Registry.load(state.config.checks)
            batches = registry.resolve_execution_order(self.select or None)
        except ConfigError as e:
            logger.error(f"Invalid check configuration: {e}")
            return EXIT_CONFIG_ERROR

        print(format_plan(batches), end="")
        return 0
