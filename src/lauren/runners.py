from __future__ import annotations

import os
import shlex
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import Any

from lauren.constants import LOGS_DIR, RUNNER_MAX_CAPTURE_CHARS, RUNNER_REPORT_FILE, SHELL_META_PATTERN
from lauren.models import AgentRequest, AgentResult, InvocationError, LaurenConfig
from lauren.utils import (
    _append_log,
    _compact_log_text,
    _redact_sensitive_text,
    _resolve_git_dir,
    _utc_now,
    _write_json,
)


def _command_uses_shell_syntax(command: str) -> bool:
    return bool(SHELL_META_PATTERN.search(command))


def _write_runner_execution_report(state_dir: Path, *, payload: dict[str, Any]) -> None:
    _write_json(state_dir / LOGS_DIR / RUNNER_REPORT_FILE, payload)


def _write_prompt_file(state_dir: Path, *, phase: str, prompt: str) -> Path:
    prompt_path = state_dir / LOGS_DIR / f"{phase}.prompt.md"
    prompt_path.parent.mkdir(parents=True, exist_ok=True)
    prompt_path.write_text(prompt, encoding="utf-8")
    return prompt_path


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def resolve_accessible_dirs(config: LaurenConfig) -> tuple[Path, ...]:
    """Directories the agent is granted beyond its working directory.

    The git metadata directory is always requested so the agent can inspect
    and commit history; the state directory only when it is outside the repo.
    """
    resolved: list[Path] = []
    git_dir = _resolve_git_dir(config.repo_root)
    if git_dir is None:
        _append_log(config.state_dir, f"agent runner: no git metadata directory under {config.repo_root}")
    else:
        resolved.append(git_dir)
    if not _is_within(config.state_dir, config.repo_root) and config.state_dir not in resolved:
        resolved.append(config.state_dir)
    return tuple(resolved)


def _build_add_dir_flags(accessible_dirs: tuple[Path, ...]) -> str:
    return " ".join(f"--add-dir {shlex.quote(str(path))}" for path in accessible_dirs)


def _substitute_runner_command(
    template: str,
    *,
    phase: str,
    state_dir: Path,
    repo_root: Path,
    add_dirs: str,
) -> str:
    command = str(template)
    replacements = {
        "{phase}": shlex.quote(phase),
        "{state_dir}": shlex.quote(str(state_dir)),
        "{repo_root}": shlex.quote(str(repo_root)),
        "{add_dirs}": add_dirs,
    }
    for token, value in replacements.items():
        command = command.replace(token, value)
    return command


def _split_runner_command(template: str, command: str) -> list[str]:
    # Substituted paths are already shlex-quoted; only the template is checked.
    if _command_uses_shell_syntax(template):
        raise InvocationError(
            "agent runner command contains shell metacharacters; "
            "configure an argv-safe command without pipes/subshell syntax"
        )
    try:
        argv = shlex.split(command)
    except ValueError as exc:
        raise InvocationError(f"agent runner command could not be parsed: {exc}") from exc
    if not argv:
        raise InvocationError("agent runner command resolved to empty arguments")
    return argv


def invoke_agent(config: LaurenConfig, request: AgentRequest) -> AgentResult:
    """Run the agent once for ``request`` and block until it exits.

    Agent output is streamed through to this process's stdout/stderr. A
    failure to start or a non-zero exit raises ``InvocationError``.
    """
    state_dir = config.state_dir
    phase = request.phase
    command = _substitute_runner_command(
        config.agent_runner.command,
        phase=phase,
        state_dir=state_dir,
        repo_root=config.repo_root,
        add_dirs=_build_add_dir_flags(request.accessible_dirs),
    )
    prompt_path = _write_prompt_file(state_dir, phase=phase, prompt=request.prompt)
    run_report: dict[str, Any] = {
        "generated_at": _utc_now(),
        "phase": phase,
        "runner": config.agent_runner.runner,
        "accessible_dirs": [str(path) for path in request.accessible_dirs],
        "prompt_path": str(prompt_path),
        "status": "starting",
        "command_argv": [],
        "exit_code": None,
        "elapsed_seconds": None,
    }
    _append_log(
        state_dir,
        f"agent runner start phase={phase} runner={config.agent_runner.runner} "
        f"prompt={prompt_path} command={_redact_sensitive_text(command)}",
    )

    try:
        popen_command = _split_runner_command(config.agent_runner.command, command)
    except InvocationError as exc:
        run_report["status"] = "error"
        run_report["error"] = str(exc)
        _write_runner_execution_report(state_dir, payload=run_report)
        _append_log(state_dir, f"agent runner error phase={phase}: {exc}")
        raise
    run_report["command_argv"] = [_redact_sensitive_text(token) for token in popen_command]
    _write_runner_execution_report(state_dir, payload=run_report)

    env = os.environ.copy()
    env["LAUREN_PHASE"] = phase
    env["LAUREN_STATE_DIR"] = str(state_dir)
    env["LAUREN_REPO_ROOT"] = str(config.repo_root)
    env["LAUREN_PROMPT_PATH"] = str(prompt_path)

    captured_stdout_chunks: list[str] = []
    captured_stderr_chunks: list[str] = []
    captured_stdout_len = [0]
    captured_stderr_len = [0]

    def _pump_stream(
        stream: Any,
        sink: Any,
        captured_chunks: list[str],
        captured_len: list[int],
    ) -> None:
        if stream is None:
            return
        try:
            for line in iter(stream.readline, ""):
                sink.write(line)
                sink.flush()
                if captured_len[0] < RUNNER_MAX_CAPTURE_CHARS:
                    room = RUNNER_MAX_CAPTURE_CHARS - captured_len[0]
                    snippet = line[:room]
                    captured_chunks.append(snippet)
                    captured_len[0] += len(snippet)
        finally:
            stream.close()

    started = time.monotonic()
    stdout_thread: threading.Thread | None = None
    stderr_thread: threading.Thread | None = None
    try:
        try:
            process = subprocess.Popen(
                popen_command,
                cwd=config.repo_root,
                shell=False,
                text=True,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=1,
                env=env,
            )
        except OSError as exc:
            run_report["status"] = "error"
            run_report["error"] = str(exc)
            _write_runner_execution_report(state_dir, payload=run_report)
            _append_log(state_dir, f"agent runner could not start phase={phase}: {exc}")
            raise InvocationError(
                f"agent runner could not start for {phase} phase: {popen_command[0]}: {exc}"
            ) from exc

        if process.stdin is not None:
            try:
                process.stdin.write(request.prompt)
                process.stdin.flush()
            except BrokenPipeError:
                pass
            finally:
                process.stdin.close()

        stdout_thread = threading.Thread(
            target=_pump_stream,
            args=(process.stdout, sys.stdout, captured_stdout_chunks, captured_stdout_len),
            daemon=True,
        )
        stderr_thread = threading.Thread(
            target=_pump_stream,
            args=(process.stderr, sys.stderr, captured_stderr_chunks, captured_stderr_len),
            daemon=True,
        )
        stdout_thread.start()
        stderr_thread.start()
        returncode = process.wait()
    finally:
        if stdout_thread is not None:
            stdout_thread.join(timeout=2)
        if stderr_thread is not None:
            stderr_thread.join(timeout=2)

    elapsed_seconds = round(time.monotonic() - started, 3)
    captured_stdout = "".join(captured_stdout_chunks).strip()
    captured_stderr = "".join(captured_stderr_chunks).strip()
    if captured_stdout:
        _append_log(
            state_dir,
            f"agent runner stdout phase={phase}: {_compact_log_text(_redact_sensitive_text(captured_stdout))}",
        )
    if captured_stderr:
        _append_log(
            state_dir,
            f"agent runner stderr phase={phase}: {_compact_log_text(_redact_sensitive_text(captured_stderr))}",
        )

    _append_log(state_dir, f"agent runner exit phase={phase} returncode={returncode}")
    run_report["status"] = "completed" if returncode == 0 else "failed"
    run_report["exit_code"] = int(returncode)
    run_report["elapsed_seconds"] = elapsed_seconds
    _write_runner_execution_report(state_dir, payload=run_report)
    if returncode != 0:
        raise InvocationError(f"agent runner exited with code {returncode} during {phase} phase")

    return AgentResult(
        phase=phase,
        exit_code=int(returncode),
        elapsed_seconds=elapsed_seconds,
        stdout_tail=captured_stdout[-RUNNER_MAX_CAPTURE_CHARS:],
        stderr_tail=captured_stderr[-RUNNER_MAX_CAPTURE_CHARS:],
    )
