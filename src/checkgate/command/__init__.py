"""CLI command modules for checkgate."""

from checkgate.command.plan import PlanCommand
from checkgate.command.run import RunCommand

__all__ = ["PlanCommand", "RunCommand"]
