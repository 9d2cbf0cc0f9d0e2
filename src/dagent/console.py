"""Human-facing I/O used by the orchestrator."""

from __future__ import annotations

from typing import Iterable, List, Optional, Protocol

import typer

from .utils.cancellation import CancellationToken, run_cancelable

__all__ = ["Console", "ScriptedConsole", "TerminalConsole"]


class Console(Protocol):
    """Minimal surface the orchestrator needs to talk to a human."""

    def echo(self, message: str = "", *, nl: bool = True) -> None:
        ...

    def read_line(self, prompt: str, cancel: Optional[CancellationToken] = None) -> str:
        """Return one line without its newline; raise ``EOFError`` at end of input."""
        ...


class TerminalConsole:
    """Console bound to the process's stdin/stdout."""

    def echo(self, message: str = "", *, nl: bool = True) -> None:
        typer.echo(message, nl=nl)

    def read_line(self, prompt: str, cancel: Optional[CancellationToken] = None) -> str:
        if prompt:
            typer.echo(prompt, nl=False)
        return run_cancelable(input, cancel, name="dagent-stdin")


class ScriptedConsole:
    """Console that replays canned input lines and records everything echoed."""

    def __init__(self, lines: Iterable[str] = ()) -> None:
        self._lines: List[str] = list(lines)
        self.output: List[str] = []
        self.prompts: List[str] = []

    def feed(self, *lines: str) -> None:
        self._lines.extend(lines)

    def echo(self, message: str = "", *, nl: bool = True) -> None:
        self.output.append(message + ("\n" if nl else ""))

    def read_line(self, prompt: str, cancel: Optional[CancellationToken] = None) -> str:
        if cancel is not None:
            cancel.raise_if_cancelled()
        self.prompts.append(prompt)
        if prompt:
            self.output.append(prompt)
        if not self._lines:
            raise EOFError
        return self._lines.pop(0)

    @property
    def text(self) -> str:
        return "".join(self.output)
