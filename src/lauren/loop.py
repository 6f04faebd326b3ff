"""Iteration controller: bounded planning/execution cycles against the state directory."""

from __future__ import annotations

import sys
import time

from lauren.constants import EXECUTION_PHASE, LOGS_DIR, LOOP_SUMMARY_FILE, PHASES
from lauren.models import (
    AgentInvoker,
    AgentRequest,
    InvocationError,
    LaurenConfig,
    LedgerError,
    LoopOutcome,
    MissingGoalError,
)
from lauren.prompts import compose_prompt
from lauren.runners import invoke_agent, resolve_accessible_dirs
from lauren.state import StateStore
from lauren.utils import _append_log, _utc_now, _write_json


def _check_ledger(config: LaurenConfig, store: StateStore) -> list[str]:
    """Log ledger invariant violations left behind by the agent. Never raises."""
    try:
        _requirements, issues = store.load_ledger()
    except LedgerError as exc:
        issues = [str(exc)]
    for issue in issues:
        print(f"lauren: WARN ledger: {issue}", file=sys.stderr)
        _append_log(config.state_dir, f"ledger warning: {issue}")
    return issues


def _write_loop_summary(
    config: LaurenConfig,
    *,
    started_at: str,
    elapsed_seconds: float,
    terminal_reason: str,
    iterations_run: int,
    invocations: int,
    exit_code: int,
) -> None:
    _write_json(
        config.state_dir / LOGS_DIR / LOOP_SUMMARY_FILE,
        {
            "started_at": started_at,
            "ended_at": _utc_now(),
            "elapsed_seconds": round(elapsed_seconds, 3),
            "max_iterations": config.max_iterations,
            "iterations_run": iterations_run,
            "invocations": invocations,
            "terminal_reason": terminal_reason,
            "exit_code": exit_code,
        },
    )


def run_loop(config: LaurenConfig, *, invoke: AgentInvoker = invoke_agent) -> LoopOutcome:
    """Drive up to ``config.max_iterations`` planning/execution cycles.

    The completion sentinel is checked before every iteration, so re-running
    a finished goal makes no agent calls. Running out of iterations is not an
    error. ``MissingGoalError`` is raised before any work when the goal file is
    absent; ``InvocationError`` from the agent stops the run immediately.
    """
    store = StateStore(config.state_dir)
    if not store.has_goal():
        raise MissingGoalError(f"{store.goal_path} not found")

    started_at = _utc_now()
    started_monotonic = time.monotonic()
    terminal_reason = "interrupted"
    exit_code = 1
    iterations_run = 0
    invocations = 0
    ledger_warnings: list[str] = []
    _append_log(config.state_dir, f"loop start max_iterations={config.max_iterations}")
    accessible_dirs = resolve_accessible_dirs(config)

    try:
        for index in range(1, config.max_iterations + 1):
            if store.is_complete():
                terminal_reason = "already_complete" if index == 1 else "goal_achieved"
                exit_code = 0
                print("lauren: goal is achieved, exiting", file=sys.stderr)
                break

            print(f"--- Iteration {index} ---", file=sys.stderr)
            iterations_run = index
            for phase in PHASES:
                request = AgentRequest(
                    phase=phase,
                    prompt=compose_prompt(config, phase),
                    accessible_dirs=accessible_dirs,
                )
                invocations += 1
                invoke(config, request)
                _append_log(config.state_dir, f"iteration {index}: {phase} phase complete")
                if phase == EXECUTION_PHASE:
                    ledger_warnings.extend(_check_ledger(config, store))
        else:
            terminal_reason = "goal_achieved" if store.is_complete() else "iteration_budget_reached"
            exit_code = 0
    except InvocationError:
        terminal_reason = "invocation_failure"
        raise
    finally:
        _append_log(
            config.state_dir,
            f"loop end reason={terminal_reason} iterations={iterations_run} invocations={invocations}",
        )
        _write_loop_summary(
            config,
            started_at=started_at,
            elapsed_seconds=time.monotonic() - started_monotonic,
            terminal_reason=terminal_reason,
            iterations_run=iterations_run,
            invocations=invocations,
            exit_code=exit_code,
        )

    return LoopOutcome(
        exit_code=exit_code,
        terminal_reason=terminal_reason,
        iterations_run=iterations_run,
        invocations=invocations,
        ledger_warnings=tuple(ledger_warnings),
    )
