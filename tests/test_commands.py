"""Tests for the run and plan commands and their exit codes."""

import asyncio
import json

import pytest
from pydantic_settings import CliApp

from checkgate.cli import CliState
from checkgate.command.plan import PlanCommand, format_plan
from checkgate.command.run import RunCommand
from checkgate.core.config import State
from checkgate.core.result import Verdict
from checkgate.registry import Registry

GATES = """
config:
  checks:
    - name: lint
      command: "true"
    - name: spellcheck
      command: "false"
      blocking: false
    - name: build
      command: [sh, -c, "echo built"]
      depends_on: [lint]
    - name: docs
      command: "true"
      blocking: false
      depends_on: [spellcheck]
"""


def load_state(project, text):
    (project / "checkgate.yaml").write_text(text)
    return State()


def run(command, state):
    return asyncio.run(command.run_workflow(state))


def test_run_passes_with_advisory_failure(isolated_config):
    state = load_state(isolated_config, GATES)
    report = isolated_config / "out" / "verdict.json"

    exit_code = run(RunCommand(report_json=report), state)

    assert exit_code == 0
    assert state.runtime.run.status == "complete"
    assert state.runtime.run.verdict.overall is Verdict.PASS
    assert state.runtime.run.report_failures == 0
    data = json.loads(report.read_text())
    assert data["advisory_failures"] == ["spellcheck"]
    # Advisory dependents still run after an advisory failure
    assert data["results"]["docs"]["final_status"] == "success"


def test_run_fails_on_blocking_failure(isolated_config):
    state = load_state(
        isolated_config, GATES.replace('command: "true"', 'command: "false"')
    )

    assert run(RunCommand(), state) == 1


def test_run_selection(isolated_config):
    state = load_state(isolated_config, GATES)

    assert run(RunCommand(select=["lint"]), state) == 0
    assert set(state.runtime.run.verdict.results) == {"lint"}


def test_run_deadline_is_incomplete(isolated_config):
    state = load_state(isolated_config, """
config:
  run:
    grace_period_seconds: 1
  checks:
    - name: slow
      command: sleep 10
""")

    assert run(RunCommand(deadline=0.5), state) == 2


@pytest.mark.parametrize("checks", [
    "[{name: a, command: 'true', depends_on: [b]},"
    " {name: b, command: 'true', depends_on: [a]}]",
    "[{name: a, command: 'true', depends_on: [missing]}]",
    "[{name: a, command: 'true', timeout_seconds: -5}]",
])
def test_run_config_errors(isolated_config, checks):
    state = load_state(isolated_config, f"config:\n  checks: {checks}\n")

    assert run(RunCommand(), state) == 3
    assert state.runtime.run.status == "config_error"


def test_run_unknown_selection(isolated_config):
    state = load_state(isolated_config, GATES)

    assert run(RunCommand(select=["deploy"]), state) == 3


def test_report_sink_failure_keeps_exit_code(isolated_config):
    state = load_state(isolated_config, GATES + """
  report:
    command: [sh, -c, "exit 1"]
""")

    assert run(RunCommand(), state) == 0
    assert state.runtime.run.report_failures == 1


def test_plan_prints_batches(isolated_config, capsys):
    state = load_state(isolated_config, GATES)

    assert run(PlanCommand(), state) == 0

    out = capsys.readouterr().out
    assert "Batch 1:" in out
    assert "Batch 2:" in out
    assert out.index("spellcheck [advisory]") < out.index("build [blocking")


def test_plan_config_error(isolated_config):
    state = load_state(
        isolated_config,
        "config:\n  checks: [{name: a, command: x, depends_on: [a]}]\n",
    )

    assert run(PlanCommand(), state) == 3


def test_format_plan():
    registry = Registry.load([
        {"name": "lint", "command": "ruff check .",
         "description": "Static analysis"},
        {"name": "test", "command": "pytest -x", "depends_on": ["lint"],
         "max_retries": 2},
    ])

    assert format_plan(registry.resolve_execution_order()) == (
        "Batch 1:\n"
        "  lint [blocking] ruff check .\n"
        "      Static analysis\n"
        "Batch 2:\n"
        "  test [blocking retries=2 after=lint] pytest -x\n"
    )
    assert format_plan([]) == "No checks configured.\n"


def test_cli_exit_codes(isolated_config):
    """The CLI process exits with the verdict's code."""
    (isolated_config / "checkgate.yaml").write_text(GATES)

    with pytest.raises(SystemExit) as exc_info:
        CliApp.run(CliState, cli_args=["run", "--select", "lint"])
    assert exc_info.value.code == 0

    (isolated_config / "checkgate.yaml").write_text(
        GATES.replace('command: "true"', 'command: "false"')
    )
    with pytest.raises(SystemExit) as exc_info:
        CliApp.run(CliState, cli_args=["run"])
    assert exc_info.value.code == 1


def test_cli_without_subcommand_shows_help(isolated_config):
    with pytest.raises(SystemExit) as exc_info:
        CliApp.run(CliState, cli_args=[])

    assert exc_info.value.code == 1
