"""Lauren state: file-backed goal, requirements ledger, learnings log, and completion sentinel."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from lauren.constants import (
    CONFIG_FILE,
    DEFAULT_CONFIG_TEMPLATE,
    DEFAULT_LEDGER_TEMPLATE,
    GOAL_FILE,
    LEARNINGS_FILE,
    LEDGER_FILE,
    REQUIREMENT_STATUSES,
    SENTINEL_FILE,
    STATUS_IN_PROGRESS,
    STATUS_MET,
)
from lauren.models import LedgerError, Requirement
from lauren.utils import _ensure_text_file


@dataclass(frozen=True)
class StateStore:
    state_dir: Path

    @property
    def goal_path(self) -> Path:
        return self.state_dir / GOAL_FILE

    @property
    def ledger_path(self) -> Path:
        return self.state_dir / LEDGER_FILE

    @property
    def learnings_path(self) -> Path:
        return self.state_dir / LEARNINGS_FILE

    @property
    def sentinel_path(self) -> Path:
        return self.state_dir / SENTINEL_FILE

    @property
    def config_path(self) -> Path:
        return self.state_dir / CONFIG_FILE

    def has_goal(self) -> bool:
        return self.goal_path.is_file()

    def is_complete(self) -> bool:
        # Existence only; the sentinel's content is never read.
        return self.sentinel_path.exists()

    def load_ledger(self) -> tuple[list[Requirement], list[str]]:
        """Read the ledger, returning parsed requirements and any structural issues.

        A missing ledger is an empty ledger. Unparsable YAML raises ``LedgerError``.
        """
        if not self.ledger_path.exists():
            return ([], [])
        try:
            loaded = yaml.safe_load(self.ledger_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise LedgerError(f"ledger could not be parsed at {self.ledger_path}: {exc}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise LedgerError(f"ledger could not be read at {self.ledger_path}: {exc}") from exc
        return _parse_ledger(loaded)

    def learnings_entry_count(self) -> int:
        if not self.learnings_path.exists():
            return 0
        text = self.learnings_path.read_text(encoding="utf-8", errors="replace")
        return sum(1 for line in text.splitlines() if line.strip())


def _parse_requirement(index: int, entry: Any, issues: list[str]) -> Requirement | None:
    label = f"requirement[{index}]"
    if not isinstance(entry, dict):
        issues.append(f"{label} must be a mapping")
        return None

    description = str(entry.get("description") or "").strip()
    if not description:
        issues.append(f"{label}.description must be a non-empty string")

    raw_steps = entry.get("steps")
    if raw_steps is None:
        raw_steps = []
    if not isinstance(raw_steps, list):
        issues.append(f"{label}.steps must be a list of strings")
        raw_steps = []
    steps: list[str] = []
    for step in raw_steps:
        if not isinstance(step, str):
            issues.append(f"{label}.steps contains a non-string entry: {step!r}")
            continue
        steps.append(step)

    status = str(entry.get("status") or "").strip()
    if status not in REQUIREMENT_STATUSES:
        issues.append(f"{label}.status must be one of {list(REQUIREMENT_STATUSES)}, got '{status}'")
    elif status == STATUS_MET and not steps:
        issues.append(f"{label} is '{STATUS_MET}' but has no verification steps")

    return Requirement(description=description, steps=tuple(steps), status=status)


def _parse_ledger(payload: Any) -> tuple[list[Requirement], list[str]]:
    issues: list[str] = []
    if payload is None:
        return ([], issues)
    if not isinstance(payload, list):
        issues.append("ledger must be a list of requirements")
        return ([], issues)

    requirements: list[Requirement] = []
    for index, entry in enumerate(payload):
        requirement = _parse_requirement(index, entry, issues)
        if requirement is not None:
            requirements.append(requirement)

    in_progress = [
        index for index, requirement in enumerate(requirements) if requirement.status == STATUS_IN_PROGRESS
    ]
    if len(in_progress) > 1:
        issues.append(
            f"at most one requirement may be '{STATUS_IN_PROGRESS}', found {len(in_progress)}"
        )
    return (requirements, issues)


def summarize_statuses(requirements: list[Requirement]) -> dict[str, int]:
    counts = Counter(requirement.status for requirement in requirements)
    return {status: counts.get(status, 0) for status in REQUIREMENT_STATUSES}


def initialize_state_dir(store: StateStore, *, goal_text: str = "") -> list[Path]:
    """Create the state directory skeleton without touching existing files."""
    created: list[Path] = []
    store.state_dir.mkdir(parents=True, exist_ok=True)
    _ensure_text_file(store.ledger_path, DEFAULT_LEDGER_TEMPLATE, created)
    _ensure_text_file(store.learnings_path, "", created)
    _ensure_text_file(store.config_path, DEFAULT_CONFIG_TEMPLATE, created)
    if goal_text.strip():
        _ensure_text_file(store.goal_path, goal_text.strip() + "\n", created)
    return created
