"""Tests for verdict aggregation."""

from datetime import UTC, datetime, timedelta

import pytest

from checkgate.core.result import (
    CancelReason,
    CheckResult,
    CheckRun,
    CheckStatus,
    Verdict,
)
from checkgate.verdict import aggregate

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def result(name, status, blocking=True, cancel_reason=None, output=""):
    attempts = ()
    if status is not CheckStatus.CANCELLED:
        attempts = (CheckRun(
            descriptor_name=name,
            attempt_number=1,
            start_time=T0,
            end_time=T0 + timedelta(seconds=2),
            exit_status=status,
            output_log=output,
        ),)
    return CheckResult(
        descriptor_name=name,
        final_status=status,
        blocking=blocking,
        attempts=attempts,
        cancel_reason=cancel_reason,
    )


def results(*items):
    return {item.descriptor_name: item for item in items}


def test_all_success_passes():
    verdict = aggregate(results(
        result("lint", CheckStatus.SUCCESS),
        result("test", CheckStatus.SUCCESS),
    ))

    assert verdict.overall is Verdict.PASS
    assert verdict.blocking_failures == ()
    assert verdict.advisory_failures == ()


def test_empty_results_pass():
    assert aggregate({}).overall is Verdict.PASS


@pytest.mark.parametrize("status", [
    CheckStatus.FAILURE, CheckStatus.TIMED_OUT, CheckStatus.ERRORED,
])
def test_blocking_failure_fails(status):
    verdict = aggregate(results(
        result("lint", CheckStatus.SUCCESS),
        result("test", status),
    ))

    assert verdict.overall is Verdict.FAIL
    assert verdict.blocking_failures == ("test",)


def test_failures_partitioned_by_blocking_flag():
    verdict = aggregate(results(
        result("test", CheckStatus.FAILURE),
        result("spellcheck", CheckStatus.FAILURE, blocking=False),
        result("dast", CheckStatus.TIMED_OUT, blocking=False),
        result("lint", CheckStatus.SUCCESS),
    ))

    assert verdict.overall is Verdict.FAIL
    assert verdict.blocking_failures == ("test",)
    assert verdict.advisory_failures == ("dast", "spellcheck")


def test_only_advisory_failures_pass():
    verdict = aggregate(results(
        result("lint", CheckStatus.SUCCESS),
        result("spellcheck", CheckStatus.FAILURE, blocking=False),
    ))

    assert verdict.overall is Verdict.PASS
    assert verdict.advisory_failures == ("spellcheck",)


def test_dependency_cancellation_counts_as_failure():
    verdict = aggregate(results(
        result("lint", CheckStatus.FAILURE),
        result("build", CheckStatus.CANCELLED,
               cancel_reason=CancelReason.DEPENDENCY),
        result("docs", CheckStatus.CANCELLED, blocking=False,
               cancel_reason=CancelReason.DEPENDENCY),
    ))

    assert verdict.blocking_failures == ("build", "lint")
    assert verdict.advisory_failures == ("docs",)


def test_aborted_checks_make_verdict_incomplete():
    verdict = aggregate(results(
        result("lint", CheckStatus.SUCCESS),
        result("test", CheckStatus.CANCELLED,
               cancel_reason=CancelReason.ABORTED),
    ))

    assert verdict.overall is Verdict.INCOMPLETE
    assert verdict.exit_code == 2
    assert verdict.blocking_failures == ()


def test_fail_takes_precedence_over_incomplete():
    verdict = aggregate(results(
        result("lint", CheckStatus.FAILURE),
        result("test", CheckStatus.CANCELLED,
               cancel_reason=CancelReason.ABORTED),
    ), incomplete=True)

    assert verdict.overall is Verdict.FAIL


def test_incomplete_flag():
    verdict = aggregate(
        results(result("lint", CheckStatus.SUCCESS)), incomplete=True
    )

    assert verdict.overall is Verdict.INCOMPLETE


def test_aggregate_is_pure():
    """Same input, equal output; the input is left alone."""
    data = results(
        result("lint", CheckStatus.FAILURE),
        result("spellcheck", CheckStatus.FAILURE, blocking=False),
    )
    snapshot = dict(data)

    assert aggregate(data) == aggregate(data)
    assert data == snapshot


def test_mismatched_key_rejected():
    with pytest.raises(ValueError):
        aggregate({"lint": result("test", CheckStatus.SUCCESS)})


def test_result_validation():
    """Status and cancel reason must agree with the attempts."""
    with pytest.raises(ValueError):
        CheckResult(descriptor_name="x", final_status=CheckStatus.CANCELLED)
    with pytest.raises(ValueError):
        CheckResult(descriptor_name="x", final_status=CheckStatus.SUCCESS)
    with pytest.raises(ValueError):
        result("x", CheckStatus.SUCCESS, cancel_reason=CancelReason.ABORTED)


def test_output_tail_and_durations():
    item = result(
        "test", CheckStatus.FAILURE,
        output="\n".join(f"line {i}" for i in range(30)),
    )

    assert item.output_tail(2) == "line 28\nline 29"
    assert item.total_duration == 2.0
    assert item.attempts[0].duration == 2.0
