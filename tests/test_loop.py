from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

import lauren.loop as loop_module
from lauren.constants import EXECUTION_PHASE, PLANNING_PHASE
from lauren.models import (
    AgentRequest,
    AgentResult,
    AgentRunnerConfig,
    InvocationError,
    LaurenConfig,
    MissingGoalError,
)
from lauren.prompts import DEFAULT_PRINCIPLES


def _make_config(repo: Path, *, max_iterations: int) -> LaurenConfig:
    return LaurenConfig(
        repo_root=repo,
        state_dir=repo / ".lauren",
        max_iterations=max_iterations,
        agent_runner=AgentRunnerConfig(runner="custom", command="fake-agent {add_dirs} -"),
        principles=DEFAULT_PRINCIPLES,
        state_dir_label=".lauren",
    )


def _write_goal(config: LaurenConfig) -> None:
    config.state_dir.mkdir(parents=True, exist_ok=True)
    (config.state_dir / "goal.md").write_text("Build a todo CLI.\n", encoding="utf-8")


class _RecordingInvoker:
    def __init__(self, *, on_call=None) -> None:
        self.requests: list[AgentRequest] = []
        self._on_call = on_call

    def __call__(self, config: LaurenConfig, request: AgentRequest) -> AgentResult:
        self.requests.append(request)
        if self._on_call is not None:
            self._on_call(config, request, len(self.requests))
        return AgentResult(phase=request.phase, exit_code=0)

    @property
    def phases(self) -> list[str]:
        return [request.phase for request in self.requests]


@pytest.fixture(autouse=True)
def _no_git_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(loop_module, "resolve_accessible_dirs", lambda config: ())


def test_budget_exhaustion_runs_two_phases_per_iteration(tmp_path: Path, capsys) -> None:
    config = _make_config(tmp_path, max_iterations=3)
    _write_goal(config)
    invoker = _RecordingInvoker()

    outcome = loop_module.run_loop(config, invoke=invoker)

    assert outcome.exit_code == 0
    assert outcome.terminal_reason == "iteration_budget_reached"
    assert outcome.iterations_run == 3
    assert outcome.invocations == 6
    assert invoker.phases == [PLANNING_PHASE, EXECUTION_PHASE] * 3
    err_lines = capsys.readouterr().err.splitlines()
    assert err_lines == ["--- Iteration 1 ---", "--- Iteration 2 ---", "--- Iteration 3 ---"]


@pytest.mark.parametrize("budget", [1, 2, 5])
def test_never_runs_more_than_budget(tmp_path: Path, budget: int) -> None:
    config = _make_config(tmp_path, max_iterations=budget)
    _write_goal(config)
    invoker = _RecordingInvoker()

    outcome = loop_module.run_loop(config, invoke=invoker)

    assert outcome.iterations_run == budget
    assert len(invoker.requests) == 2 * budget


def test_existing_sentinel_makes_no_invocations(tmp_path: Path, capsys) -> None:
    config = _make_config(tmp_path, max_iterations=10)
    _write_goal(config)
    (config.state_dir / "done").write_text("", encoding="utf-8")
    invoker = _RecordingInvoker()

    outcome = loop_module.run_loop(config, invoke=invoker)

    assert outcome.exit_code == 0
    assert outcome.terminal_reason == "already_complete"
    assert invoker.requests == []
    assert capsys.readouterr().err.splitlines() == ["lauren: goal is achieved, exiting"]


def test_rerun_after_completion_is_idempotent(tmp_path: Path) -> None:
    config = _make_config(tmp_path, max_iterations=4)
    _write_goal(config)

    def _finish(config: LaurenConfig, request: AgentRequest, count: int) -> None:
        if request.phase == EXECUTION_PHASE:
            (config.state_dir / "done").touch()

    first = loop_module.run_loop(config, invoke=_RecordingInvoker(on_call=_finish))
    second_invoker = _RecordingInvoker()
    second = loop_module.run_loop(config, invoke=second_invoker)

    assert first.exit_code == second.exit_code == 0
    assert first.terminal_reason == "goal_achieved"
    assert second.terminal_reason == "already_complete"
    assert second_invoker.requests == []


def test_missing_goal_raises_before_any_invocation(tmp_path: Path) -> None:
    config = _make_config(tmp_path, max_iterations=3)
    invoker = _RecordingInvoker()

    with pytest.raises(MissingGoalError, match="goal.md"):
        loop_module.run_loop(config, invoke=invoker)

    assert invoker.requests == []
    assert not config.state_dir.exists()


def test_sentinel_after_second_execution_stops_before_third_iteration(tmp_path: Path, capsys) -> None:
    config = _make_config(tmp_path, max_iterations=5)
    _write_goal(config)

    def _finish_on_fourth_call(config: LaurenConfig, request: AgentRequest, count: int) -> None:
        if count == 4:
            (config.state_dir / "done").touch()

    invoker = _RecordingInvoker(on_call=_finish_on_fourth_call)
    outcome = loop_module.run_loop(config, invoke=invoker)

    assert len(invoker.requests) == 4
    assert outcome.iterations_run == 2
    assert outcome.terminal_reason == "goal_achieved"
    err_lines = capsys.readouterr().err.splitlines()
    assert err_lines[-1] == "lauren: goal is achieved, exiting"
    assert "--- Iteration 3 ---" not in err_lines


@pytest.mark.parametrize("failing_call", [1, 2, 3])
def test_invocation_failure_stops_loop_immediately(tmp_path: Path, failing_call: int) -> None:
    config = _make_config(tmp_path, max_iterations=5)
    _write_goal(config)

    def _fail(config: LaurenConfig, request: AgentRequest, count: int) -> None:
        if count == failing_call:
            raise InvocationError("agent crashed")

    invoker = _RecordingInvoker(on_call=_fail)
    with pytest.raises(InvocationError):
        loop_module.run_loop(config, invoke=invoker)

    assert len(invoker.requests) == failing_call
    summary = json.loads((config.state_dir / "logs" / "loop_summary.json").read_text(encoding="utf-8"))
    assert summary["terminal_reason"] == "invocation_failure"
    assert summary["exit_code"] == 1
    assert summary["invocations"] == failing_call


def test_requests_carry_phase_prompts_and_accessible_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = _make_config(tmp_path, max_iterations=1)
    _write_goal(config)
    git_dir = tmp_path / ".git"
    monkeypatch.setattr(loop_module, "resolve_accessible_dirs", lambda config: (git_dir,))
    invoker = _RecordingInvoker()

    loop_module.run_loop(config, invoke=invoker)

    planning, execution = invoker.requests
    assert "Do NOT implement any code" in planning.prompt
    assert "Pick ONE AND ONLY ONE" in execution.prompt
    assert planning.accessible_dirs == execution.accessible_dirs == (git_dir,)


def test_ledger_violations_are_logged_not_fatal(tmp_path: Path, capsys) -> None:
    config = _make_config(tmp_path, max_iterations=2)
    _write_goal(config)
    ledger = [
        {"description": "add list command", "steps": ["run todo list"], "status": "in-progress"},
        {"description": "add done command", "steps": ["run todo done 1"], "status": "in-progress"},
    ]

    def _write_bad_ledger(config: LaurenConfig, request: AgentRequest, count: int) -> None:
        if request.phase == EXECUTION_PHASE:
            (config.state_dir / "prd.yaml").write_text(yaml.safe_dump(ledger), encoding="utf-8")

    invoker = _RecordingInvoker(on_call=_write_bad_ledger)
    outcome = loop_module.run_loop(config, invoke=invoker)

    assert outcome.exit_code == 0
    assert outcome.invocations == 4
    assert len(outcome.ledger_warnings) == 2
    assert "at most one requirement" in capsys.readouterr().err
    log_text = (config.state_dir / "logs" / "orchestrator.log").read_text(encoding="utf-8")
    assert "ledger warning" in log_text


def test_unparsable_ledger_is_a_warning(tmp_path: Path, capsys) -> None:
    config = _make_config(tmp_path, max_iterations=1)
    _write_goal(config)
    (config.state_dir / "prd.yaml").write_text("- description: [unclosed\n", encoding="utf-8")

    outcome = loop_module.run_loop(config, invoke=_RecordingInvoker())

    assert outcome.exit_code == 0
    assert "could not be parsed" in capsys.readouterr().err


def test_budget_exhausted_with_sentinel_reports_goal_achieved(tmp_path: Path) -> None:
    config = _make_config(tmp_path, max_iterations=1)
    _write_goal(config)

    def _finish(config: LaurenConfig, request: AgentRequest, count: int) -> None:
        if request.phase == EXECUTION_PHASE:
            (config.state_dir / "done").touch()

    outcome = loop_module.run_loop(config, invoke=_RecordingInvoker(on_call=_finish))

    assert outcome.terminal_reason == "goal_achieved"
    summary = json.loads((config.state_dir / "logs" / "loop_summary.json").read_text(encoding="utf-8"))
    assert summary["iterations_run"] == 1
    assert summary["max_iterations"] == 1


def test_non_utf8_ledger_is_a_warning(tmp_path: Path, capsys) -> None:
    config = _make_config(tmp_path, max_iterations=2)
    _write_goal(config)

    def _write_latin1_ledger(config: LaurenConfig, request: AgentRequest, count: int) -> None:
        if request.phase == EXECUTION_PHASE:
            (config.state_dir / "prd.yaml").write_bytes(b"- description: caf\xe9\n  status: met\n")

    invoker = _RecordingInvoker(on_call=_write_latin1_ledger)
    outcome = loop_module.run_loop(config, invoke=invoker)

    assert outcome.exit_code == 0
    assert outcome.invocations == 4
    assert len(outcome.ledger_warnings) == 2
    assert "could not be read" in capsys.readouterr().err
