"""Prompt templates and helpers shared across the dagent loop."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Sequence

LOGGER = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are dagent, an engineering agent that works by proposing shell commands. "
    "Every reply must call the `dagent` tool with a short `message` for the human and a `plan`: "
    "a list of steps, each with a unique `id`, a `title`, a `status` and a `command`. "
    "Use `waitingForId` to list the step IDs a step depends on; a step only runs once all of them are completed. "
    "Steps run one at a time in plan order and their output comes back to you as a tool message "
    "holding `observation_for_llm`. Keep commands non-interactive, bound their output with "
    "`tail_lines`, `max_bytes` or `filter_regex`, and mark the plan complete or abandoned when the work is done."
)

DEFAULT_PLAN_REMINDER = (
    "The plan still has pending steps. Review the latest observations, then either continue with an "
    "updated plan or mark the remaining steps as completed or abandoned."
)

DEFAULT_NO_HUMAN_AUTO_MESSAGE = (
    "No human is available to answer. Continue working towards the goal on your own and "
    "return an empty plan once everything is finished."
)

AGENTS_FILE_NAME = "agents.md"
_SKIPPED_DIRECTORIES = frozenset({".git", "node_modules", "__pycache__", ".venv", "venv"})

_AGENTS_PREAMBLE = (
    "The following local operating rules are mandatory. "
    "They are sourced from AGENTS.md files present in the workspace:"
)


def find_agent_files(root: Path) -> List[Path]:
    """Return every ``AGENTS.md`` (any case) below ``root`` in a stable order."""
    discovered: List[Path] = []
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            entries = sorted(current.iterdir(), key=lambda entry: entry.name)
        except OSError:
            continue
        directories: List[Path] = []
        for entry in entries:
            if entry.name in _SKIPPED_DIRECTORIES:
                continue
            if entry.is_dir():
                directories.append(entry)
            elif entry.is_file() and entry.name.lower() == AGENTS_FILE_NAME:
                discovered.append(entry)
        stack.extend(reversed(directories))
    return discovered


def render_agents_guidance(root: Path, files: Iterable[Path] | None = None) -> str:
    """Join the contents of local guidance files into one prompt section."""
    sections: List[str] = []
    for path in files if files is not None else find_agent_files(root):
        try:
            content = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as error:
            LOGGER.debug("Skipping unreadable guidance file %s: %s", path, error)
            continue
        if not content:
            continue
        try:
            label = path.relative_to(root).as_posix()
        except ValueError:
            label = path.as_posix()
        sections.append(f"File: {label}\n{content}")
    if not sections:
        return ""
    return "\n\n---\n\n".join(sections)


def render_project_guidance(guidance: Sequence[str]) -> str:
    """Format configured guidance strings as a single bullet list block."""
    if not guidance:
        return ""
    body = "\n".join(f"- {line.strip()}" for line in guidance if line.strip())
    if not body:
        return ""
    return f"## Project Guidance\n{body}"


def render_system_prompt(
    base: str = DEFAULT_SYSTEM_PROMPT,
    *,
    augmentation: str = "",
    workspace_root: Path | None = None,
    include_agents: bool = True,
    guidance: Sequence[str] = (),
) -> str:
    """Assemble the system message that seeds every session."""
    sections = [base.strip() or DEFAULT_SYSTEM_PROMPT]
    if augmentation.strip():
        sections.append(augmentation.strip())
    project = render_project_guidance(guidance)
    if project:
        sections.append(project)
    if workspace_root is not None:
        if include_agents:
            agents = render_agents_guidance(workspace_root)
            if agents:
                sections.append(f"{_AGENTS_PREAMBLE}\n\n{agents}")
        sections.append(f"Workspace metadata:\n- workspace_root: {workspace_root.as_posix()}")
    return "\n\n".join(sections)


__all__ = [
    "DEFAULT_NO_HUMAN_AUTO_MESSAGE",
    "DEFAULT_PLAN_REMINDER",
    "DEFAULT_SYSTEM_PROMPT",
    "find_agent_files",
    "render_agents_guidance",
    "render_project_guidance",
    "render_system_prompt",
]
