"""Interactive loop tying model turns, human approval and step execution together."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .approval import ApprovalPolicy
from .console import Console, TerminalConsole
from .conversation import ChatMessage, MessageRole, ToolCall, last_message_with_role, utc_now
from .models.llm_client import ExchangeLogger, LLMClient
from .plan.schema import ObservationPayload, PlanObservation, PlanStatus, PlanStep
from .plan.store import PlanStore
from .prompts import (
    DEFAULT_NO_HUMAN_AUTO_MESSAGE,
    DEFAULT_PLAN_REMINDER,
    DEFAULT_SYSTEM_PROMPT,
    render_system_prompt,
)
from .tools.runner import CommandRunner
from .utils.cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)

BANNER = "dagent ready. Type /exit to quit, /plan to inspect the current plan, /auto to toggle auto-approve."
DEFAULT_USER_PROMPT = "\n▷ "


class LoopState(str, Enum):
    """Where the orchestrator is blocked, or ``FINISHED`` once the session ended."""

    AWAITING_READY_STEP = "awaiting_ready_step"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    AWAITING_MODEL_TURN = "awaiting_model_turn"
    AWAITING_HUMAN_INPUT = "awaiting_human_input"
    FINISHED = "finished"


@dataclass(slots=True)
class OrchestratorOptions:
    """Runtime switches for a session."""

    auto_approve: bool = False
    no_human: bool = False
    plan_reminder: str = DEFAULT_PLAN_REMINDER
    auto_message: str = DEFAULT_NO_HUMAN_AUTO_MESSAGE
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    augmentation: str = ""
    user_prompt: str = DEFAULT_USER_PROMPT
    max_turns: Optional[int] = None
    approved_commands: List[Any] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.plan_reminder.strip():
            self.plan_reminder = DEFAULT_PLAN_REMINDER
        if not self.auto_message.strip():
            self.auto_message = DEFAULT_NO_HUMAN_AUTO_MESSAGE
        if not self.system_prompt.strip():
            self.system_prompt = DEFAULT_SYSTEM_PROMPT

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        workspace_root: Path | None = None,
    ) -> "OrchestratorOptions":
        """Build options from the ``runtime`` section of a loaded config."""
        runtime = config.get("runtime")
        if not isinstance(runtime, Mapping):
            runtime = {}
        guidance = runtime.get("guidance")
        if not isinstance(guidance, (list, tuple)):
            guidance = []
        augmentation = str(runtime.get("augmentation") or "")
        system_prompt = render_system_prompt(
            augmentation=augmentation,
            workspace_root=workspace_root,
            include_agents=bool(runtime.get("agents_guidance", True)),
            guidance=[str(line) for line in guidance],
        )
        max_turns = runtime.get("max_turns")
        approved_commands = runtime.get("approved_commands")
        if not isinstance(approved_commands, (list, tuple)):
            approved_commands = []
        return cls(
            auto_approve=bool(runtime.get("auto_approve", False)),
            no_human=bool(runtime.get("no_human", False)),
            plan_reminder=str(runtime.get("plan_reminder") or ""),
            auto_message=str(runtime.get("auto_message") or ""),
            system_prompt=system_prompt,
            max_turns=max_turns if isinstance(max_turns, int) and max_turns > 0 else None,
            approved_commands=list(approved_commands),
        )


@dataclass(slots=True)
class SessionResult:
    """Why and after how many model turns a session ended."""

    reason: str
    turns: int


def build_tool_message(observation: ObservationPayload) -> str:
    """Encode an observation as the content of a tool-role reply."""
    envelope = PlanObservation(observation_for_llm=observation)
    return json.dumps(envelope.to_wire(), indent=2, ensure_ascii=False) or "{}"


def summarize_observation(
    step_id: str,
    observation: ObservationPayload,
    encode_error: Exception | None = None,
) -> str:
    """Render the JSON summary sent as a user message when no tool call is on record."""
    summary: Dict[str, Any] = {
        "step": step_id,
        "stdout": observation.stdout,
        "stderr": observation.stderr,
        "truncated": observation.truncated,
    }
    if observation.exit_code is not None:
        summary["exit_code"] = observation.exit_code
    if encode_error is not None:
        summary["encoding_error"] = str(encode_error)
    return json.dumps(summary, indent=2, ensure_ascii=False)


def format_plan_lines(steps: Sequence[PlanStep]) -> List[str]:
    return [f"  [{step.id}] {PlanStatus(step.status).value:<9} {step.title}" for step in steps]


class Orchestrator:
    """Drive the conversation and the plan one tick at a time.

    Every tick either handles the first ready step (approve, execute, report)
    or, when nothing is ready, produces the next user turn from the human or
    from the no-human auto messages. Backend and store errors propagate out
    of :meth:`tick` and :meth:`run`; command failures never do, they become
    failed steps whose observation is sent back to the model.
    """

    def __init__(
        self,
        *,
        client: LLMClient,
        options: OrchestratorOptions | None = None,
        store: PlanStore | None = None,
        runner: CommandRunner | None = None,
        console: Console | None = None,
        exchange_logger: ExchangeLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._options = options or OrchestratorOptions()
        self._store = store or PlanStore()
        self._runner = runner or CommandRunner()
        self._console = console or TerminalConsole()
        self._approvals = ApprovalPolicy(self._options.approved_commands)
        self._exchange_logger = exchange_logger
        self._clock = clock
        self._history: List[ChatMessage] = []
        self._last_tool_call = ToolCall()
        self._state = LoopState.AWAITING_READY_STEP
        self._started = False
        self._turns = 0
        self._finish_reason = ""

    @classmethod
    def from_client(
        cls,
        client: LLMClient,
        config: Mapping[str, Any] | None = None,
        *,
        workspace_root: Path | None = None,
        console: Console | None = None,
        exchange_logger: ExchangeLogger | None = None,
    ) -> "Orchestrator":
        """Convenience constructor used by the CLI."""
        config = config or {}
        runtime = config.get("runtime")
        strict = bool(runtime.get("strict_dependencies", False)) if isinstance(runtime, Mapping) else False
        return cls(
            client=client,
            options=OrchestratorOptions.from_config(config, workspace_root=workspace_root),
            store=PlanStore(strict_dependencies=strict),
            console=console,
            exchange_logger=exchange_logger,
        )

    @property
    def options(self) -> OrchestratorOptions:
        return self._options

    @property
    def store(self) -> PlanStore:
        return self._store

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def history(self) -> List[ChatMessage]:
        """Return a shallow copy of the conversation so far."""
        return list(self._history)

    @property
    def last_tool_call(self) -> ToolCall:
        return self._last_tool_call

    @property
    def turns(self) -> int:
        return self._turns

    def start(self) -> None:
        """Seed the system prompt and print the banner; idempotent."""
        if self._started:
            return
        self._started = True
        system_prompt = self._options.system_prompt
        if self._options.augmentation.strip():
            system_prompt = f"{system_prompt}\n\n{self._options.augmentation.strip()}"
        self._append(ChatMessage(role=MessageRole.SYSTEM, content=system_prompt))
        self._console.echo(BANNER)

    def run(self, cancel: Optional[CancellationToken] = None) -> SessionResult:
        """Loop :meth:`tick` until the session finishes."""
        self.start()
        while self._state != LoopState.FINISHED:
            self.tick(cancel)
        LOGGER.info("Session finished (%s) after %d model turn(s)", self._finish_reason, self._turns)
        return SessionResult(reason=self._finish_reason, turns=self._turns)

    def tick(self, cancel: Optional[CancellationToken] = None) -> LoopState:
        """Advance the loop by one step and return the resulting state."""
        if self._state == LoopState.FINISHED:
            return self._state
        self.start()
        if cancel is not None:
            cancel.raise_if_cancelled()

        self._state = LoopState.AWAITING_READY_STEP
        step = self._store.ready()
        if step is not None:
            self._handle_ready_step(step, cancel)
        else:
            self._handle_idle(cancel)

        if self._state != LoopState.FINISHED:
            if self._options.max_turns is not None and self._turns >= self._options.max_turns:
                self._console.echo(f"Reached the limit of {self._options.max_turns} model turn(s).")
                self._finish("turn_limit")
            else:
                self._state = LoopState.AWAITING_READY_STEP
        return self._state

    def _handle_ready_step(self, step: PlanStep, cancel: Optional[CancellationToken]) -> None:
        source = self._approvals.auto_approval_source(step.command, auto_approve=self._options.auto_approve)
        if source is not None:
            LOGGER.info("Step %s approved automatically (%s)", step.id, source)
        else:
            if self._options.no_human:
                self._console.echo(f"\nNo human available to approve step {step.id}. Requesting updated plan.")
                self._query_model(self._options.plan_reminder, cancel)
                return

            self._state = LoopState.AWAITING_APPROVAL
            prompt = (
                f"\nPlan step {step.id} is ready:\n  {step.title}\n  Command: {step.command.run}\n"
                "Execute? [y]es / [N]o / [a]lways this session: "
            )
            try:
                answer = self._console.read_line(prompt, cancel)
            except EOFError:
                self._console.echo("\nGoodbye.")
                self._finish("eof")
                return
            answer = answer.strip().lower()
            if answer in {"a", "always"}:
                self._approvals.approve_for_session(step.command)
                self._console.echo("Approved for the rest of this session.")
            elif answer not in {"y", "yes"}:
                self._console.echo(f"Skipped plan step {step.id}.")
                return

        self._execute(step, cancel)

    def _execute(self, step: PlanStep, cancel: Optional[CancellationToken]) -> None:
        self._state = LoopState.EXECUTING
        self._console.echo(f"\nExecuting plan step {step.id}: {step.title}\nCommand: {step.command.run}")
        outcome = self._runner.execute(step, cancel)
        if outcome.ok:
            status = PlanStatus.COMPLETED
            self._console.echo("Command completed successfully.")
        else:
            status = PlanStatus.FAILED
            self._console.echo(f"Command error: {outcome.error}")

        observation = outcome.observation
        self._store.update_status(step.id, status, PlanObservation(observation_for_llm=observation))

        if self._last_tool_call.on_record:
            try:
                payload = build_tool_message(observation)
            except (TypeError, ValueError) as error:
                self._append(
                    ChatMessage(role=MessageRole.USER, content=summarize_observation(step.id, observation, error))
                )
            else:
                self._append(
                    ChatMessage(role=MessageRole.TOOL, content=payload, tool_call_id=self._last_tool_call.id)
                )
        else:
            self._append(ChatMessage(role=MessageRole.USER, content=summarize_observation(step.id, observation)))

        self._query_model("", cancel)

    def _handle_idle(self, cancel: Optional[CancellationToken]) -> None:
        if self._options.no_human:
            message = self._options.auto_message
            if self._store.has_pending():
                message = self._options.plan_reminder
            last = last_message_with_role(self._history, MessageRole.USER)
            if last is not None and last.content == message:
                message = ""
            self._query_model(message, cancel)
            return

        self._state = LoopState.AWAITING_HUMAN_INPUT
        try:
            line = self._console.read_line(self._options.user_prompt, cancel)
        except EOFError:
            self._console.echo("\nGoodbye.")
            self._finish("eof")
            return

        line = line.strip()
        if not line:
            return
        command = line.lower()
        if command == "/exit":
            self._console.echo("Exiting on request.")
            self._finish("exit")
            return
        if command == "/plan":
            self.print_plan()
            return
        if command == "/auto":
            self._options.auto_approve = not self._options.auto_approve
            state = "enabled" if self._options.auto_approve else "disabled"
            self._console.echo(f"Auto-approve {state}.")
            return

        self._append(ChatMessage(role=MessageRole.USER, content=line))
        self._query_model("", cancel)

    def _query_model(self, user_message: str, cancel: Optional[CancellationToken]) -> None:
        if user_message:
            self._append(ChatMessage(role=MessageRole.USER, content=user_message))
        self._state = LoopState.AWAITING_MODEL_TURN
        response, tool_call = self._client.request_plan(
            self._history,
            cancel=cancel,
            logger=self._exchange_logger,
        )
        self._turns += 1
        self._last_tool_call = tool_call
        self._append(ChatMessage(role=MessageRole.ASSISTANT, content=response.message, tool_calls=[tool_call]))
        self._store.replace(response.plan)
        LOGGER.debug("Model turn %d proposed %d step(s)", self._turns, len(response.plan))

        self._console.echo(f"\nAssistant:\n{response.message}")
        if response.plan:
            self._console.echo("Current plan:")
            for line in format_plan_lines(response.plan):
                self._console.echo(line)
        else:
            self._console.echo("Plan is empty.")

    def print_plan(self) -> None:
        """Print the current plan sorted by step id."""
        snapshot = self._store.sort_order()
        if not snapshot:
            self._console.echo("No plan available.")
            return
        self._console.echo("Plan snapshot:")
        for line in format_plan_lines(snapshot):
            self._console.echo(line)

    def _append(self, message: ChatMessage) -> None:
        if message.timestamp is None:
            message.timestamp = self._clock()
        self._history.append(message)

    def _finish(self, reason: str) -> None:
        self._finish_reason = reason
        self._state = LoopState.FINISHED


__all__ = [
    "BANNER",
    "LoopState",
    "Orchestrator",
    "OrchestratorOptions",
    "SessionResult",
    "build_tool_message",
    "format_plan_lines",
    "summarize_observation",
]
