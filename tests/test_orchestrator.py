"""Tests for the Orchestrator."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

import pytest

from checkgate.core.errors import ConfigError
from checkgate.core.result import (
    CancelReason,
    CheckResult,
    CheckRun,
    CheckStatus,
    Verdict,
)
from checkgate.registry import Registry
from checkgate.runner.check import CheckRunner
from checkgate.workflow.orchestrator import Orchestrator


class ScriptedRunner(CheckRunner):
    """Runner that fakes check outcomes and records scheduling."""

    def __init__(self, outcomes=None, delay=0.05):
        super().__init__()
        self.outcomes = outcomes or {}
        self.delay = delay
        self.events = []
        self.running = 0
        self.peak = 0

    async def run_check(self, descriptor, cancel=None):
        self.running += 1
        self.peak = max(self.peak, self.running)
        self.events.append(("start", descriptor.name))
        start = datetime.now(UTC)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.running -= 1
        self.events.append(("end", descriptor.name))
        status = self.outcomes.get(descriptor.name, CheckStatus.SUCCESS)
        run = CheckRun(
            descriptor_name=descriptor.name,
            attempt_number=1,
            start_time=start,
            end_time=datetime.now(UTC),
            exit_status=status,
        )
        return CheckResult(
            descriptor_name=descriptor.name,
            final_status=status,
            blocking=descriptor.blocking,
            attempts=(run,),
        )


def gate_registry():
    """lint (blocking) and spellcheck (advisory) gate build."""
    return Registry.load([
        {"name": "lint", "command": "ruff check ."},
        {"name": "spellcheck", "command": "typos", "blocking": False},
        {
            "name": "build",
            "command": "make",
            "depends_on": ["lint", "spellcheck"],
        },
    ])


def evaluate(orchestrator, *args, **kwargs):
    return asyncio.run(orchestrator.evaluate(*args, **kwargs))


def test_all_checks_pass():
    runner = ScriptedRunner()
    verdict = evaluate(Orchestrator(gate_registry(), runner))

    assert verdict.overall is Verdict.PASS
    assert verdict.exit_code == 0
    assert set(verdict.results) == {"lint", "spellcheck", "build"}
    assert verdict.blocking_failures == ()
    assert verdict.advisory_failures == ()


def test_advisory_dependency_failure_cancels_blocking_dependent():
    """Any unsuccessful dependency cancels a blocking dependent."""
    runner = ScriptedRunner({"spellcheck": CheckStatus.FAILURE})
    verdict = evaluate(Orchestrator(gate_registry(), runner))

    assert verdict.overall is Verdict.FAIL
    build = verdict.results["build"]
    assert build.final_status is CheckStatus.CANCELLED
    assert build.cancel_reason is CancelReason.DEPENDENCY
    assert verdict.blocking_failures == ("build",)
    assert verdict.advisory_failures == ("spellcheck",)
    assert ("start", "build") not in runner.events


def test_advisory_dependent_runs_after_failure():
    """Advisory dependents run whatever their dependencies did."""
    registry = Registry.load([
        {"name": "lint", "command": "false"},
        {
            "name": "report",
            "command": "true",
            "blocking": False,
            "depends_on": ["lint"],
        },
    ])
    orchestrator = Orchestrator(registry, CheckRunner())

    verdict = evaluate(orchestrator)

    assert verdict.overall is Verdict.FAIL
    assert verdict.blocking_failures == ("lint",)
    assert verdict.advisory_failures == ()
    report = verdict.results["report"]
    assert report.final_status is CheckStatus.SUCCESS
    assert len(report.attempts) == 1


def test_blocking_failure_cancels_dependents():
    runner = ScriptedRunner({"lint": CheckStatus.FAILURE})
    verdict = evaluate(Orchestrator(gate_registry(), runner))

    assert verdict.overall is Verdict.FAIL
    assert verdict.exit_code == 1
    build = verdict.results["build"]
    assert build.final_status is CheckStatus.CANCELLED
    assert build.cancel_reason is CancelReason.DEPENDENCY
    assert build.attempts == ()
    assert verdict.blocking_failures == ("build", "lint")
    assert ("start", "build") not in runner.events


def test_batches_run_in_order():
    """No check of a batch starts before the previous batch ended."""
    runner = ScriptedRunner()
    evaluate(Orchestrator(gate_registry(), runner))

    build_start = runner.events.index(("start", "build"))
    assert runner.events.index(("end", "lint")) < build_start
    assert runner.events.index(("end", "spellcheck")) < build_start


def test_concurrency_limit_respected():
    registry = Registry.load([
        {"name": f"check-{i}", "command": "true"} for i in range(6)
    ])
    runner = ScriptedRunner()

    verdict = evaluate(Orchestrator(registry, runner), concurrency_limit=2)

    assert verdict.overall is Verdict.PASS
    assert runner.peak == 2


def test_single_slot_runs_in_registry_order():
    registry = Registry.load([
        {"name": name, "command": "true"} for name in ("c", "a", "b")
    ])
    runner = ScriptedRunner(delay=0)

    evaluate(Orchestrator(registry, runner, concurrency_limit=1))

    starts = [name for event, name in runner.events if event == "start"]
    assert starts == ["c", "a", "b"]
    assert runner.peak == 1


def test_invalid_concurrency_limit():
    with pytest.raises(ValueError):
        evaluate(Orchestrator(gate_registry(), ScriptedRunner()),
                 concurrency_limit=0)


def test_selection_limits_results():
    runner = ScriptedRunner()
    verdict = evaluate(Orchestrator(gate_registry(), runner), ["lint"])

    assert set(verdict.results) == {"lint"}


def test_unknown_selection():
    with pytest.raises(ConfigError):
        evaluate(Orchestrator(gate_registry(), ScriptedRunner()), ["nope"])


def test_empty_registry_passes():
    verdict = evaluate(Orchestrator(Registry([]), ScriptedRunner()))

    assert verdict.overall is Verdict.PASS
    assert verdict.results == {}


def test_deadline_makes_verdict_incomplete(tmp_path):
    """Running and pending checks are cancelled at the deadline."""
    registry = Registry.load([
        {"name": "slow", "command": "sleep 10"},
        {"name": "after", "command": "true", "depends_on": ["slow"]},
    ])
    orchestrator = Orchestrator(registry, CheckRunner(tmp_path, grace_period=1))

    verdict = evaluate(orchestrator, overall_deadline=0.5)

    assert verdict.overall is Verdict.INCOMPLETE
    assert verdict.exit_code == 2
    for name in ("slow", "after"):
        assert verdict.results[name].final_status is CheckStatus.CANCELLED
        assert verdict.results[name].cancel_reason is CancelReason.ABORTED
    assert len(verdict.results["slow"].attempts) == 1
    assert verdict.results["after"].attempts == ()
    assert verdict.blocking_failures == ()


def test_blocking_failure_beats_deadline(tmp_path):
    registry = Registry.load([
        {"name": "broken", "command": "false"},
        {"name": "slow", "command": "sleep 10"},
    ])
    orchestrator = Orchestrator(registry, CheckRunner(tmp_path, grace_period=1))

    verdict = evaluate(orchestrator, overall_deadline=1)

    assert verdict.overall is Verdict.FAIL
    assert verdict.blocking_failures == ("broken",)


def test_abort(tmp_path):
    registry = Registry.load([
        {"name": "slow", "command": "sleep 10"},
        {"name": "slower", "command": "sleep 20"},
    ])
    orchestrator = Orchestrator(registry, CheckRunner(tmp_path, grace_period=1))

    async def main():
        async def trip():
            await asyncio.sleep(0.3)
            orchestrator.abort()

        verdict, _ = await asyncio.gather(orchestrator.evaluate(), trip())
        return verdict

    verdict = asyncio.run(main())

    assert verdict.overall is Verdict.INCOMPLETE
    assert all(
        r.final_status is CheckStatus.CANCELLED
        for r in verdict.results.values()
    )


def test_abort_when_idle_is_harmless():
    orchestrator = Orchestrator(gate_registry(), ScriptedRunner())
    orchestrator.abort()

    assert evaluate(orchestrator).overall is Verdict.PASS


def test_more_checks_than_default_threads(tmp_path):
    """Quick checks finish on time while slow ones hold other slots."""
    registry = Registry.load(
        [
            {"name": f"slow-{i}", "command": "sleep 2", "timeout_seconds": 10}
            for i in range(3)
        ]
        + [{"name": "quick", "command": "true", "timeout_seconds": 1}]
    )
    orchestrator = Orchestrator(registry, CheckRunner(tmp_path))

    async def main():
        asyncio.get_running_loop().set_default_executor(
            ThreadPoolExecutor(max_workers=1)
        )
        return await orchestrator.evaluate(concurrency_limit=4)

    verdict = asyncio.run(main())

    assert verdict.overall is Verdict.PASS
    assert verdict.results["quick"].final_status is CheckStatus.SUCCESS


def test_unwritable_log_dir_does_not_abort(tmp_path):
    """A log directory that cannot be created only loses the log files."""
    blocker = tmp_path / "logs"
    blocker.write_text("not a directory")
    registry = Registry.load([
        {"name": "lint", "command": "true"},
        {"name": "test", "command": "true", "depends_on": ["lint"]},
    ])
    orchestrator = Orchestrator(registry, CheckRunner(tmp_path, blocker))

    verdict = evaluate(orchestrator)

    assert verdict.overall is Verdict.PASS
    assert all(
        r.attempts[0].log_file is None for r in verdict.results.values()
    )
