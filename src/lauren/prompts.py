"""Prompt composition for the planning and execution phases.

Prompts only reference state files by path; the agent reads them itself.
"""

from __future__ import annotations

import textwrap
from typing import TYPE_CHECKING

from lauren.constants import (
    EXECUTION_PHASE,
    GOAL_FILE,
    LEARNINGS_FILE,
    LEDGER_FILE,
    PLANNING_PHASE,
    REQUIREMENT_STATUSES,
    SENTINEL_FILE,
    STATUS_MET,
)

if TYPE_CHECKING:
    from lauren.models import LaurenConfig


DEFAULT_PRINCIPLES = textwrap.dedent(
    """\
    ## Principles

    General design principles:

    - Less is better. Favor minimal solutions that achieve the goal.
    - Design should surprise the user in a positive way.
    - Design should delight the user and be aesthetically pleasing.
    - Design should be timeless, minimal and elegant.
    - User should feel in control at all times.
    - Design should not need explanation or instructions.

    UI design principles:

    - Actions SHOULD be undoable. Prefer undo over confirm.
    - Actions SHOULD be able to be optionally delayed where it makes sense.
    - Actions SHOULD be discoverable. Use affordances, signifiers and feedback.
      Provide visual cues to guide first time users and reduce them as users
      become familiar with the UI.
    - Use progressive disclosure to avoid overwhelming users with too much
      information at once.
    - Use consistent visual language and design patterns throughout the UI.
    - Ensure accessibility for all users, including those with disabilities.
    - Provide clear and concise error messages that help users recover from
      mistakes.

    CLI design principles:

    - Follow POSIX conventions where applicable.
    - Allow standard input/output redirection and piping.
    - Allow configuration via command line arguments, environment variables and
      config files.
    - Provide clear and concise help and usage information.
    - Use exit codes to indicate success or failure of commands.
    - Detect terminals and only show colors and interactive prompts when running
      in a terminal.
    - Write messages to standard error, except for command output.
    - Show progress indicators for long running operations.
    - Provide sensible defaults that work out of the box.
    - Allow users to override defaults via configuration.
    - Do not output unnecessary information. Be concise and to the point.

    Code design principles:

    - Always start with data model and data flow before thinking about code.
    - Experiment with code to validate the data model and data flow.
    - Favor simple, straightforward, clear, minimally indirected, well
      decoupled, composable code.
    - Iterate until the data model and data flow are nailed down and can
      accommodate current and future requirements.
    - The code you write will be read by many humans over a long period of
      time. Keep it simple, unclever, idiomatic for its language, and neither
      over-abstracted nor over-optimized.
    - Document the 'why' behind blocks of code, not the 'what'.

    Testing and verification principles:

    - When writing unit tests, focus on the interface and contract of the code,
      not its implementation.
    - You MUST test/verify your work end-to-end one way or another before
      marking a requirement as 'met'. If building a web app, test it in a
      browser. If building a library, test it from a program that uses the
      library. If building a CLI tool, test it in a terminal.
    - Write tests that are deterministic, isolated, fast, reliable and
      maintainable.
    - Favor high level integration tests over low level unit tests and mocks.
    - Treat tests as first class citizens, maintained with the same care as
      the code itself.
    - Tests evolve with the code and must be updated as the code changes.
    - Tests are committable artifacts that are part of the codebase.
    """
).strip()


def _state_path(config: LaurenConfig, name: str) -> str:
    return f"{config.display_state_dir.rstrip('/')}/{name}"


def _requirements_section(config: LaurenConfig) -> str:
    statuses = ", ".join(f"'{status}'" for status in REQUIREMENT_STATUSES)
    return textwrap.dedent(
        f"""\
        ## Requirements

        The requirements are defined in {_state_path(config, LEDGER_FILE)} as a YAML
        list of objects, each with the following fields:

        - description: A well defined description of the requirement.
        - steps: A list of steps to verify the requirement.
        - status: One of {statuses}.
        """
    ).strip()


def _prologue(config: LaurenConfig) -> str:
    return textwrap.dedent(
        f"""\
        You are tasked with achieving the high level goal in {_state_path(config, GOAL_FILE)}
        while following the principles laid out below. The goal is NON-NEGOTIABLE: it
        MUST be achieved. You are COMPLETELY AUTONOMOUS and ON YOUR OWN without any
        human intervention or external help.
        """
    ).strip()


def _assemble(config: LaurenConfig, instructions: str) -> str:
    sections = (
        _prologue(config),
        instructions.strip(),
        _requirements_section(config),
        config.principles.strip(),
    )
    return "\n\n".join(sections) + "\n"


def compose_planning_prompt(config: LaurenConfig) -> str:
    learnings = _state_path(config, LEARNINGS_FILE)
    instructions = textwrap.dedent(
        f"""\
        In this session, you will do one iteration towards this goal by:
        - Breaking down the goal into well defined smaller requirements OR refining,
          removing, adding to existing requirements from previous iterations. You must
          ensure that the requirements meet the goal and abide by the principles as
          well as being specific, measurable, achievable, relevant and time-bound.
          Use any learnings available in {learnings} to help you with this.
        - Recording your learnings in a concise manner by appending to
          {learnings} as you go to help future iterations.
        - Do NOT implement any code in this session.
        """
    )
    return _assemble(config, instructions)


def compose_execution_prompt(config: LaurenConfig) -> str:
    learnings = _state_path(config, LEARNINGS_FILE)
    ledger = _state_path(config, LEDGER_FILE)
    sentinel = _state_path(config, SENTINEL_FILE)
    instructions = textwrap.dedent(
        f"""\
        In this session, you will do one iteration towards this goal by:
        1. Picking the highest priority requirement that is not yet met or continuing
           an in-progress requirement. Pick ONE AND ONLY ONE.
        2. Implementing, testing and verifying that ONE requirement.
           - If implementation/testing surfaces problems with any requirements,
             append your findings to {learnings} and STOP. Do NOT
             proceed to the next steps.
           - If successful, update {ledger} to mark the requirement as '{STATUS_MET}'.
        3. Refactoring existing code as deemed necessary as a result of the recently
           implemented requirement or learnings from {learnings} from
           previous iterations.
        4. If all requirements are met, creating a file {sentinel} to signal goal
           completion.

        Keep these IMPORTANT POINTS in mind:
        - You MUST ONLY work on ONE requirement at a time.
        - You MUST test/verify your work end-to-end before considering a requirement
          as '{STATUS_MET}'.
        """
    )
    return _assemble(config, instructions)


PROMPT_COMPOSERS = {
    PLANNING_PHASE: compose_planning_prompt,
    EXECUTION_PHASE: compose_execution_prompt,
}


def compose_prompt(config: LaurenConfig, phase: str) -> str:
    try:
        composer = PROMPT_COMPOSERS[phase]
    except KeyError:
        raise ValueError(f"unknown phase '{phase}'") from None
    return composer(config)
