from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from lauren.constants import (
    AGENT_RUNNER_NAMES,
    AGENT_RUNNER_PRESETS,
    CONFIG_FILE,
    DEFAULT_AGENT_RUNNER_NAME,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_STATE_DIR,
    ENV_MAX_ITERATIONS,
    ENV_RUNNER,
    ENV_RUNNER_COMMAND,
    ENV_STATE_DIR,
)
from lauren.models import AgentRunnerConfig, ConfigError, LaurenConfig, _coerce_positive_int
from lauren.prompts import DEFAULT_PRINCIPLES


def _load_run_policy(state_dir: Path) -> dict[str, Any]:
    policy_path = state_dir / CONFIG_FILE
    if not policy_path.exists():
        return {}
    try:
        loaded = yaml.safe_load(policy_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"run config could not be parsed at {policy_path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"run config must be a mapping at {policy_path}")
    return loaded


def _env_value(env: Mapping[str, str], key: str) -> str:
    return str(env.get(key, "")).strip()


def _resolve_state_dir(repo_root: Path, raw_state_dir: str) -> Path:
    candidate = Path(raw_state_dir).expanduser()
    if not candidate.is_absolute():
        candidate = repo_root / candidate
    return candidate.resolve()


def _load_max_iterations(
    policy: dict[str, Any],
    env: Mapping[str, str],
    override: int | None,
) -> int:
    if override is not None:
        return _coerce_positive_int(override, field_name="--max-iterations")
    env_value = _env_value(env, ENV_MAX_ITERATIONS)
    if env_value:
        return _coerce_positive_int(env_value, field_name=ENV_MAX_ITERATIONS)
    if "max_iterations" in policy:
        return _coerce_positive_int(policy["max_iterations"], field_name="max_iterations")
    return DEFAULT_MAX_ITERATIONS


def _load_agent_runner_config(policy: dict[str, Any], env: Mapping[str, str]) -> AgentRunnerConfig:
    runner_section = policy.get("agent_runner")
    if runner_section is None:
        runner_section = {}
    if not isinstance(runner_section, dict):
        raise ConfigError("agent_runner must be a mapping")

    runner_name = _env_value(env, ENV_RUNNER) or str(
        runner_section.get("runner", DEFAULT_AGENT_RUNNER_NAME)
    ).strip()
    if runner_name not in AGENT_RUNNER_NAMES:
        raise ConfigError(
            f"agent_runner.runner must be one of {sorted(AGENT_RUNNER_NAMES)}, got '{runner_name}'"
        )

    raw_command = _env_value(env, ENV_RUNNER_COMMAND)
    if not raw_command and runner_section.get("command") is not None:
        raw_command = str(runner_section.get("command")).strip()
    if raw_command:
        command = raw_command
    elif runner_name == "custom":
        raise ConfigError(
            f"agent_runner.command must be set when runner is 'custom' (or set {ENV_RUNNER_COMMAND})"
        )
    else:
        command = AGENT_RUNNER_PRESETS[runner_name]
    return AgentRunnerConfig(runner=runner_name, command=command)


def _load_principles(policy: dict[str, Any], state_dir: Path) -> str:
    raw_path = str(policy.get("principles_file") or "").strip()
    if not raw_path:
        return DEFAULT_PRINCIPLES
    principles_path = Path(raw_path).expanduser()
    if not principles_path.is_absolute():
        principles_path = state_dir / principles_path
    try:
        text = principles_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"principles_file could not be read at {principles_path}: {exc}") from exc
    if not text.strip():
        raise ConfigError(f"principles_file is empty at {principles_path}")
    return text.strip()


def load_config(
    *,
    repo_root: Path | None = None,
    env: Mapping[str, str] | None = None,
    state_dir: str | None = None,
    max_iterations: int | None = None,
) -> LaurenConfig:
    """Build the run configuration.

    Precedence is explicit arguments, then environment variables, then
    ``<state_dir>/config.yaml``, then built-in defaults.
    """
    env = os.environ if env is None else env
    root = (repo_root or Path.cwd()).resolve()
    state_dir_label = state_dir or _env_value(env, ENV_STATE_DIR) or DEFAULT_STATE_DIR
    resolved_state_dir = _resolve_state_dir(root, state_dir_label)

    policy = _load_run_policy(resolved_state_dir)
    return LaurenConfig(
        repo_root=root,
        state_dir=resolved_state_dir,
        max_iterations=_load_max_iterations(policy, env, max_iterations),
        agent_runner=_load_agent_runner_config(policy, env),
        principles=_load_principles(policy, resolved_state_dir),
        state_dir_label=state_dir_label,
    )
