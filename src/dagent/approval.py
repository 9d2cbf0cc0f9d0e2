"""Command approval: configured allowlist, session approvals and the auto flag."""

from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Set, Tuple

from .plan.schema import CommandDraft

LOGGER = logging.getLogger(__name__)

_FORBIDDEN_PATTERNS = (
    re.compile(r"[;&|]"),
    re.compile(r"`"),
    re.compile(r"\$\("),
    re.compile(r"[<>]"),
    re.compile(r"^\s*sudo\b"),
)
_ALLOWLIST_SHELLS = {"bash", "sh"}


@dataclass(slots=True)
class AllowedCommand:
    """One allowlist entry: a program name and optionally the subcommands it may run."""

    name: str
    subcommands: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, entry: Any) -> Optional["AllowedCommand"]:
        """Accept ``"ls"`` or ``{"name": "git", "subcommands": ["status"]}``."""
        if isinstance(entry, str):
            name = entry.strip()
            return cls(name=name) if name else None
        if isinstance(entry, dict):
            name = str(entry.get("name") or "").strip()
            if not name:
                return None
            subcommands = entry.get("subcommands") or []
            if not isinstance(subcommands, (list, tuple)):
                return None
            return cls(name=name, subcommands=tuple(str(item) for item in subcommands))
        return None


def parse_allowlist(entries: Iterable[Any] | None) -> List[AllowedCommand]:
    allowed: List[AllowedCommand] = []
    for entry in entries or []:
        parsed = AllowedCommand.parse(entry)
        if parsed is None:
            LOGGER.warning("Ignoring malformed approved_commands entry: %r", entry)
            continue
        allowed.append(parsed)
    return allowed


def is_preapproved(command: CommandDraft, allowlist: Sequence[AllowedCommand]) -> bool:
    """Return True when ``command`` is a single plain invocation of an allowlisted program.

    Anything that chains, pipes, substitutes or redirects is refused, as is a
    shell other than ``bash``/``sh``.
    """
    run = command.run.strip()
    if not run or not allowlist:
        return False
    if "\n" in run or "\r" in run:
        return False
    if any(pattern.search(run) for pattern in _FORBIDDEN_PATTERNS):
        return False
    shell = command.shell.strip().lower()
    if shell and os.path.basename(shell) not in _ALLOWLIST_SHELLS:
        return False

    try:
        tokens = shlex.split(run)
    except ValueError:
        return False
    if not tokens:
        return False

    program = os.path.basename(tokens[0])
    entry = next((item for item in allowlist if item.name == program), None)
    if entry is None:
        return False
    if entry.subcommands:
        subcommand = next((token for token in tokens[1:] if not token.startswith("-")), "")
        if subcommand not in entry.subcommands:
            return False
    return True


def session_key(command: CommandDraft) -> Tuple[str, str, str]:
    return (command.shell.strip(), command.run.strip(), command.cwd.strip())


class ApprovalPolicy:
    """Decide whether a step may run without asking the human.

    The allowlist is consulted first, then commands approved earlier in the
    session, then the auto-approve flag.
    """

    def __init__(self, allowlist: Iterable[Any] | None = None) -> None:
        self._allowlist = parse_allowlist(allowlist)
        self._session: Set[Tuple[str, str, str]] = set()

    @property
    def allowlist(self) -> List[AllowedCommand]:
        return list(self._allowlist)

    def auto_approval_source(self, command: CommandDraft, *, auto_approve: bool) -> Optional[str]:
        """Return ``"allowlist"``, ``"session"`` or ``"flag"``, or None when a human must decide."""
        if is_preapproved(command, self._allowlist):
            return "allowlist"
        if session_key(command) in self._session:
            return "session"
        if auto_approve:
            return "flag"
        return None

    def approve_for_session(self, command: CommandDraft) -> None:
        self._session.add(session_key(command))

    def is_session_approved(self, command: CommandDraft) -> bool:
        return session_key(command) in self._session


__all__ = [
    "AllowedCommand",
    "ApprovalPolicy",
    "is_preapproved",
    "parse_allowlist",
    "session_key",
]
