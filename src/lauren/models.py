"""Lauren data models: exceptions, dataclasses, and coercion helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable


def _coerce_positive_int(value: Any, *, field_name: str) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer, got '{value}'") from exc
    if parsed <= 0:
        raise ConfigError(f"{field_name} must be > 0, got {parsed}")
    return parsed


class LaurenError(RuntimeError):
    """Base class for errors that stop a run."""


class MissingGoalError(LaurenError):
    """Raised when the goal description file is absent at startup."""


class InvocationError(LaurenError):
    """Raised when the agent could not be started or exited unsuccessfully."""


class ConfigError(LaurenError):
    """Raised when configuration cannot be loaded or validated."""


class LedgerError(LaurenError):
    """Raised when the requirements ledger cannot be read as YAML."""


@dataclass(frozen=True)
class AgentRunnerConfig:
    runner: str
    command: str


@dataclass(frozen=True)
class LaurenConfig:
    repo_root: Path
    state_dir: Path
    max_iterations: int
    agent_runner: AgentRunnerConfig
    principles: str
    # State dir as the user wrote it; prompts reference this form.
    state_dir_label: str = ""

    @property
    def display_state_dir(self) -> str:
        return self.state_dir_label or str(self.state_dir)


@dataclass(frozen=True)
class Requirement:
    description: str
    steps: tuple[str, ...]
    status: str


@dataclass(frozen=True)
class AgentRequest:
    phase: str
    prompt: str
    accessible_dirs: tuple[Path, ...]


@dataclass(frozen=True)
class AgentResult:
    phase: str
    exit_code: int
    elapsed_seconds: float = 0.0
    stdout_tail: str = ""
    stderr_tail: str = ""


AgentInvoker = Callable[[LaurenConfig, AgentRequest], AgentResult]


@dataclass(frozen=True)
class LoopOutcome:
    exit_code: int
    terminal_reason: str
    iterations_run: int
    invocations: int
    ledger_warnings: tuple[str, ...] = field(default_factory=tuple)
