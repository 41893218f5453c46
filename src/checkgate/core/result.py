"""Result types for check execution."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, computed_field, model_validator


class CheckStatus(StrEnum):
    """Terminal status of a single attempt or of a whole check."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    ERRORED = "errored"


RETRIABLE_STATUSES = frozenset({CheckStatus.FAILURE, CheckStatus.TIMED_OUT})


class CancelReason(StrEnum):
    """Why a check ended up cancelled."""

    # A blocking dependency did not succeed; the check never ran
    DEPENDENCY = "dependency"
    # Overall deadline or explicit abort
    ABORTED = "aborted"


class Verdict(StrEnum):
    """Overall outcome of one evaluation cycle."""

    PASS = "pass"
    FAIL = "fail"
    INCOMPLETE = "incomplete"


VERDICT_EXIT_CODES = {
    Verdict.PASS: 0,
    Verdict.FAIL: 1,
    Verdict.INCOMPLETE: 2,
}


class CheckRun(BaseModel):
    """One execution attempt of a check."""

    model_config = ConfigDict(frozen=True)

    descriptor_name: str
    attempt_number: int
    start_time: datetime
    end_time: datetime
    exit_status: CheckStatus
    exit_code: int | None = None
    output_log: str = ""
    output_truncated: bool = False
    log_file: Path | None = None
    error: str | None = None

    @computed_field
    @property
    def duration(self) -> float:
        """Wall-clock seconds between start and end."""
        return (self.end_time - self.start_time).total_seconds()

    @property
    def retriable(self) -> bool:
        return self.exit_status in RETRIABLE_STATUSES


class CheckResult(BaseModel):
    """Resolved outcome of a check after all of its attempts.

    ``blocking`` is copied from the check's descriptor so that
    aggregation needs nothing beyond the results themselves.
    """

    model_config = ConfigDict(frozen=True)

    descriptor_name: str
    final_status: CheckStatus
    blocking: bool = True
    attempts: tuple[CheckRun, ...] = ()
    cancel_reason: CancelReason | None = None

    @model_validator(mode="after")
    def _status_matches_attempts(self) -> CheckResult:
        if self.final_status is CheckStatus.CANCELLED:
            if self.cancel_reason is None:
                raise ValueError(
                    f"{self.descriptor_name}: cancelled result needs a "
                    f"cancel_reason"
                )
            return self
        if self.cancel_reason is not None:
            raise ValueError(
                f"{self.descriptor_name}: cancel_reason set on a "
                f"{self.final_status} result"
            )
        if not self.attempts:
            raise ValueError(
                f"{self.descriptor_name}: {self.final_status} result "
                f"without attempts"
            )
        if self.attempts[-1].exit_status is not self.final_status:
            raise ValueError(
                f"{self.descriptor_name}: final status "
                f"{self.final_status} disagrees with last attempt "
                f"{self.attempts[-1].exit_status}"
            )
        return self

    @computed_field
    @property
    def total_duration(self) -> float:
        return sum(attempt.duration for attempt in self.attempts)

    @property
    def succeeded(self) -> bool:
        return self.final_status is CheckStatus.SUCCESS

    @property
    def failed(self) -> bool:
        """Whether this result counts against the verdict.

        Checks skipped because a dependency failed count as failed.
        Checks cancelled by a deadline or abort do not: their real
        outcome is unknown.
        """
        if self.final_status is CheckStatus.CANCELLED:
            return self.cancel_reason is CancelReason.DEPENDENCY
        return self.final_status is not CheckStatus.SUCCESS

    def output_tail(self, lines: int = 20) -> str:
        """Return the last ``lines`` lines of the last attempt's output."""
        if not self.attempts:
            return ""
        return "\n".join(self.attempts[-1].output_log.splitlines()[-lines:])


class FinalVerdict(BaseModel):
    """Aggregate over all check results of one evaluation cycle."""

    model_config = ConfigDict(frozen=True)

    overall: Verdict
    blocking_failures: tuple[str, ...] = ()
    advisory_failures: tuple[str, ...] = ()
    results: Mapping[str, CheckResult] = {}

    @property
    def exit_code(self) -> int:
        return VERDICT_EXIT_CODES[self.overall]


__all__ = [
    "CancelReason",
    "CheckResult",
    "CheckRun",
    "CheckStatus",
    "FinalVerdict",
    "RETRIABLE_STATUSES",
    "Verdict",
]
