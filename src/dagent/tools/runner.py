"""Shell command execution for plan steps.

Each step's command runs as ``<shell> -c <run>`` in its own session so that a
timeout or cancellation can take down the whole process group, not only the
shell. Stdout and stderr are captured separately and passed through the
output shaper before being folded into an :class:`ObservationPayload`.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Literal, Optional

from ..plan.schema import ObservationPayload, PlanStep
from ..utils.cancellation import CancellationToken
from .shaper import shape_output

LOGGER = logging.getLogger(__name__)

CommandStatus = Literal["success", "exit_error", "timeout", "spawn_error", "invalid", "canceled"]

DEFAULT_TIMEOUT_SEC = 60.0
_POLL_INTERVAL = 0.05
_KILL_GRACE_SEC = 5.0
_POSIX = os.name == "posix"


class CommandError(RuntimeError):
    """Base error for a plan step command that did not succeed."""


class CommandValidationError(CommandError):
    """Raised when a step has no shell or no command string."""


class CommandSpawnError(CommandError):
    """Raised when the shell process could not be started."""


class CommandTimeoutError(CommandError):
    """Raised when the command outlived its deadline and was killed."""

    def __init__(self, message: str, *, timeout: float) -> None:
        super().__init__(message)
        self.timeout = timeout


class CommandExitError(CommandError):
    """Raised when the command ran to completion with a non-zero status."""

    def __init__(self, message: str, *, exit_code: int) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class CommandCanceledError(CommandError):
    """Raised when the caller's cancellation token fired mid-run."""


@dataclass(slots=True)
class CommandOutcome:
    """Result produced by :meth:`CommandRunner.execute`."""

    step_id: str
    status: CommandStatus
    observation: ObservationPayload
    error: CommandError | None = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def short_message(self) -> str:
        if self.ok:
            return f"{self.step_id}: completed in {self.duration:.2f}s"
        return f"{self.step_id}: {self.status} ({self.error})"


class CommandRunner:
    """Execute the command embedded in a :class:`PlanStep` under a deadline."""

    def __init__(
        self,
        *,
        default_timeout: float = DEFAULT_TIMEOUT_SEC,
        poll_interval: float = _POLL_INTERVAL,
        env: Optional[dict[str, str]] = None,
    ) -> None:
        self._default_timeout = default_timeout
        self._poll_interval = poll_interval
        self._env = env

    def resolve_timeout(self, step: PlanStep) -> float:
        timeout = step.command.timeout_sec
        if timeout is None or timeout <= 0:
            return self._default_timeout
        return float(timeout)

    def execute(self, step: PlanStep, cancel: Optional[CancellationToken] = None) -> CommandOutcome:
        command = step.command
        if not command.shell.strip() or not command.run.strip():
            error = CommandValidationError(f"command: invalid shell or run for step {step.id}")
            LOGGER.warning("%s", error)
            return CommandOutcome(
                step_id=step.id,
                status="invalid",
                observation=ObservationPayload(details=str(error)),
                error=error,
            )

        timeout = self.resolve_timeout(step)
        cwd = command.cwd or None
        LOGGER.info("Running step %s with %s (timeout %.0fs): %s", step.id, command.shell, timeout, command.run)

        started = time.monotonic()
        try:
            process = subprocess.Popen(  # noqa: S603 - command is the approved plan step
                [command.shell, "-c", command.run],
                cwd=cwd,
                env=self._env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=_POSIX,
            )
        except (OSError, ValueError) as error:
            spawn_error = CommandSpawnError(f"command: start: {error}")
            LOGGER.warning("Step %s failed to start: %s", step.id, error)
            return CommandOutcome(
                step_id=step.id,
                status="spawn_error",
                observation=ObservationPayload(details=str(spawn_error)),
                error=spawn_error,
                duration=time.monotonic() - started,
            )

        stdout, stderr, interrupted = self._wait(process, started + timeout, cancel)
        duration = time.monotonic() - started

        shaped_stdout, stdout_truncated = shape_output(
            stdout, command.filter_regex, command.max_bytes, command.tail_lines
        )
        shaped_stderr, stderr_truncated = shape_output(
            stderr, command.filter_regex, command.max_bytes, command.tail_lines
        )
        observation = ObservationPayload(
            stdout=shaped_stdout.decode("utf-8", errors="replace"),
            stderr=shaped_stderr.decode("utf-8", errors="replace"),
            truncated=stdout_truncated or stderr_truncated,
        )

        if interrupted == "timeout":
            error = CommandTimeoutError(f"command: timeout after {timeout:g}s", timeout=timeout)
            observation.details = str(error)
            LOGGER.warning("Step %s timed out after %.2fs", step.id, duration)
            return CommandOutcome(step.id, "timeout", observation, error, duration)

        if interrupted == "canceled":
            reason = cancel.reason if cancel is not None and cancel.reason else "operation canceled"
            error = CommandCanceledError(f"command: canceled: {reason}")
            observation.details = str(error)
            observation.operation_canceled = True
            LOGGER.warning("Step %s canceled after %.2fs", step.id, duration)
            return CommandOutcome(step.id, "canceled", observation, error, duration)

        exit_code = process.returncode
        observation.exit_code = exit_code
        if exit_code != 0:
            LOGGER.info("Step %s exited with status %s", step.id, exit_code)
            exit_error = CommandExitError(f"command: exit status {exit_code}", exit_code=exit_code)
            return CommandOutcome(step.id, "exit_error", observation, exit_error, duration)

        LOGGER.info("Step %s completed in %.2fs", step.id, duration)
        return CommandOutcome(step.id, "success", observation, None, duration)

    def _wait(
        self,
        process: subprocess.Popen[bytes],
        deadline: float,
        cancel: Optional[CancellationToken],
    ) -> tuple[bytes, bytes, Optional[str]]:
        """Collect output until exit, deadline or cancellation."""
        interrupted: Optional[str] = None
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                interrupted = "timeout"
                break
            if cancel is not None and cancel.cancelled:
                interrupted = "canceled"
                break
            try:
                stdout, stderr = process.communicate(timeout=min(self._poll_interval, remaining))
            except subprocess.TimeoutExpired:
                continue
            except KeyboardInterrupt:
                # The child sits in its own session and never sees the terminal's SIGINT.
                _kill_process_group(process)
                raise
            return stdout or b"", stderr or b"", None

        _kill_process_group(process)
        try:
            stdout, stderr = process.communicate(timeout=_KILL_GRACE_SEC)
        except subprocess.TimeoutExpired:
            # A descendant escaped the group and still holds the pipes open.
            LOGGER.warning("Output pipes for pid %s stayed open after kill", process.pid)
            process.kill()
            stdout, stderr = b"", b""
        return stdout or b"", stderr or b"", interrupted


def _kill_process_group(process: subprocess.Popen[bytes]) -> None:
    """Forcibly terminate ``process`` and everything in its process group."""
    if _POSIX:
        try:
            os.killpg(process.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
        except PermissionError:
            pass
    try:
        process.kill()
    except ProcessLookupError:
        pass


__all__ = [
    "CommandCanceledError",
    "CommandError",
    "CommandExitError",
    "CommandOutcome",
    "CommandRunner",
    "CommandSpawnError",
    "CommandStatus",
    "CommandTimeoutError",
    "CommandValidationError",
]
