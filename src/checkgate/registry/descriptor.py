"""Check descriptors: what to run and how to treat its outcome."""

from __future__ import annotations

import shlex
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BackoffPolicy(StrEnum):
    """How the delay between retry attempts grows."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class CommandSpec(BaseModel):
    """External command invocation: argv, working directory, env.

    A plain string is accepted and split with shlex, so
    ``command: "ruff check ."`` and
    ``command: {argv: [ruff, check, .]}`` are equivalent.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    argv: tuple[str, ...] = Field(
        min_length=1,
        description="Executable followed by its arguments",
    )
    workdir: Path = Field(
        default=Path("."),
        description=(
            "Working directory; relative paths are resolved against "
            "the project root"
        ),
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the command",
    )

    @model_validator(mode="before")
    @classmethod
    def _coerce_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"argv": shlex.split(data)}
        if isinstance(data, (list, tuple)):
            return {"argv": list(data)}
        return data

    @property
    def executable(self) -> str:
        return self.argv[0]

    def __str__(self) -> str:
        return shlex.join(self.argv)


class CheckDescriptor(BaseModel):
    """One available check. Immutable once loaded."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
    )

    name: str = Field(min_length=1, description="Unique check name")
    command: CommandSpec = Field(description="Command to run")
    timeout: float = Field(
        default=3600,
        gt=0,
        alias="timeout_seconds",
        description="Per-attempt timeout in seconds (1 hour = 3600)",
    )
    blocking: bool = Field(
        default=True,
        description="Failure blocks the merge; false makes it advisory",
    )
    max_retries: int = Field(
        default=0,
        ge=0,
        description="Extra attempts after a failure or timeout",
    )
    retry_backoff: float = Field(
        default=0,
        ge=0,
        alias="retry_backoff_seconds",
        description="Delay before the first retry in seconds",
    )
    backoff: BackoffPolicy = Field(
        default=BackoffPolicy.FIXED,
        description="'fixed' or 'exponential' retry delay growth",
    )
    depends_on: frozenset[str] = Field(
        default_factory=frozenset,
        description="Checks that must succeed before this one runs",
    )
    description: str = Field(
        default="",
        description="Human readable summary shown by 'plan'",
    )

    def backoff_delay(self, attempt_number: int) -> float:
        """Seconds to wait after attempt ``attempt_number`` failed."""
        if self.backoff is BackoffPolicy.EXPONENTIAL:
            return self.retry_backoff * 2 ** (attempt_number - 1)
        return self.retry_backoff


__all__ = ["BackoffPolicy", "CheckDescriptor", "CommandSpec"]
