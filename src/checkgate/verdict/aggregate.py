"""Verdict aggregation: many check results, one merge decision."""

from __future__ import annotations

from collections.abc import Mapping

from checkgate.core.result import (
    CancelReason,
    CheckResult,
    FinalVerdict,
    Verdict,
)


def aggregate(
    results: Mapping[str, CheckResult], incomplete: bool = False
) -> FinalVerdict:
    """Combine check results into a FinalVerdict.

    Pure: the verdict depends only on the arguments, so calling it
    twice with the same results gives equal verdicts.

    Failing results (failed, timed out, errored, or skipped because a
    blocking dependency failed) are split by each result's blocking
    flag. The overall outcome is:

    - FAIL if any blocking check failed;
    - otherwise INCOMPLETE if ``incomplete`` is set or any check was
      cancelled by a deadline or abort;
    - otherwise PASS.

    Args:
        results: Mapping of check name to its result
        incomplete: Force INCOMPLETE (absent blocking failures), for
            callers that know the cycle was cut short

    Raises:
        ValueError: If a key does not match its result's name
    """
    blocking: list[str] = []
    advisory: list[str] = []
    aborted = False

    for name in sorted(results):
        result = results[name]
        if result.descriptor_name != name:
            raise ValueError(
                f"Result for '{result.descriptor_name}' filed under '{name}'"
            )
        if result.cancel_reason is CancelReason.ABORTED:
            aborted = True
        if result.failed:
            (blocking if result.blocking else advisory).append(name)

    if blocking:
        overall = Verdict.FAIL
    elif incomplete or aborted:
        overall = Verdict.INCOMPLETE
    else:
        overall = Verdict.PASS

    return FinalVerdict(
        overall=overall,
        blocking_failures=tuple(blocking),
        advisory_failures=tuple(advisory),
        results={name: results[name] for name in sorted(results)},
    )


__all__ = ["aggregate"]
