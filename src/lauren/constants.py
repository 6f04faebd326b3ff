"""Lauren constants: environment keys, state file names, statuses, and runner presets."""

from __future__ import annotations

import re
from pathlib import Path

PACKAGE_SCAFFOLD_DIR = Path(__file__).resolve().parent / "scaffold" / ".lauren"

ENV_MAX_ITERATIONS = "LAUREN_ITER"
ENV_STATE_DIR = "LAUREN_DIR"
ENV_RUNNER = "LAUREN_RUNNER"
ENV_RUNNER_COMMAND = "LAUREN_RUNNER_COMMAND"

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_STATE_DIR = ".lauren"

GOAL_FILE = "goal.md"
LEDGER_FILE = "prd.yaml"
LEARNINGS_FILE = "learnings.txt"
SENTINEL_FILE = "done"
CONFIG_FILE = "config.yaml"
LOGS_DIR = "logs"
ORCHESTRATOR_LOG_FILE = "orchestrator.log"
RUNNER_REPORT_FILE = "runner_execution_report.json"
LOOP_SUMMARY_FILE = "loop_summary.json"

PLANNING_PHASE = "planning"
EXECUTION_PHASE = "execution"
PHASES = (PLANNING_PHASE, EXECUTION_PHASE)

STATUS_UNMET = "unmet"
STATUS_IN_PROGRESS = "in-progress"
STATUS_MET = "met"
STATUS_INVALID = "invalid"
REQUIREMENT_STATUSES = (STATUS_UNMET, STATUS_IN_PROGRESS, STATUS_MET, STATUS_INVALID)

AGENT_RUNNER_PRESETS: dict[str, str] = {
    "codex": "codex exec --full-auto {add_dirs} -",
    "claude": "claude -p --output-format text {add_dirs} -",
}
DEFAULT_AGENT_RUNNER_NAME = "codex"
AGENT_RUNNER_NAMES = (*AGENT_RUNNER_PRESETS, "custom")
RUNNER_MAX_CAPTURE_CHARS = 2400

DEFAULT_CONFIG_TEMPLATE = (PACKAGE_SCAFFOLD_DIR / CONFIG_FILE).read_text(encoding="utf-8")
DEFAULT_LEDGER_TEMPLATE = "[]\n"

SHELL_META_PATTERN = re.compile(r"[|&;<>()$`]")
