from __future__ import annotations

import json
import sys

import pytest

from dagent.console import ScriptedConsole
from dagent.conversation import MessageRole
from dagent.models.chat_client import ChatCompletionsClient
from dagent.models.llm_client import LLMStatusError
from dagent.orchestrator import (
    LoopState,
    Orchestrator,
    OrchestratorOptions,
    build_tool_message,
    summarize_observation,
)
from dagent.plan.schema import ObservationPayload, PlanStatus
from dagent.prompts import DEFAULT_NO_HUMAN_AUTO_MESSAGE, DEFAULT_PLAN_REMINDER

from conftest import ScriptedTransport, make_step

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="orchestrator tests run POSIX shell steps")


def _orchestrator(
    transport: ScriptedTransport,
    console: ScriptedConsole,
    **options,
) -> Orchestrator:
    client = ChatCompletionsClient(model="test-model", transport=transport)
    return Orchestrator(client=client, options=OrchestratorOptions(**options), console=console)


def _sh(step_id: str, run: str, **kwargs) -> dict:
    return make_step(step_id, run, shell="sh", **kwargs)


def _tool_messages(orchestrator: Orchestrator) -> list:
    return [message for message in orchestrator.history if message.role == MessageRole.TOOL]


def test_auto_approved_dag_runs_in_dependency_order(transport: ScriptedTransport) -> None:
    transport.queue("Plan ready.", [_sh("b", "echo second", waiting_for=["a"]), _sh("a", "echo first")], call_id="call_1")
    transport.queue(
        "a done.",
        [_sh("b", "echo second", waiting_for=["a"]), _sh("a", "echo first", status="completed")],
        call_id="call_2",
    )
    transport.queue(
        "All done.",
        [_sh("b", "echo second", status="completed"), _sh("a", "echo first", status="completed")],
        call_id="call_3",
    )
    console = ScriptedConsole(["do it", "/exit"])
    orchestrator = _orchestrator(transport, console, auto_approve=True)

    result = orchestrator.run()

    assert result.reason == "exit"
    assert result.turns == 3
    tools = _tool_messages(orchestrator)
    assert [message.tool_call_id for message in tools] == ["call_1", "call_2"]
    first = json.loads(tools[0].content)["observation_for_llm"]
    second = json.loads(tools[1].content)["observation_for_llm"]
    assert first == {"stdout": "first\n", "exit_code": 0}
    assert second == {"stdout": "second\n", "exit_code": 0}
    assert orchestrator.store.completed() is True
    assert orchestrator.state == LoopState.FINISHED


def test_declined_step_is_skipped_and_prompted_again(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("a", "echo hi")])
    transport.queue("Done.", [_sh("a", "echo hi", status="completed")])
    console = ScriptedConsole(["go", "n", "maybe", "yes", "/exit"])
    orchestrator = _orchestrator(transport, console)

    orchestrator.run()

    assert console.text.count("Skipped plan step a.") == 2
    assert console.text.count("Execute? [y]es / [N]o / [a]lways this session: ") == 3
    assert len(transport.requests) == 2
    assert len(_tool_messages(orchestrator)) == 1


def test_failed_command_marks_step_failed_and_reports(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("a", "echo broken >&2; exit 2")])
    transport.queue("Noted.", [_sh("a", "echo broken >&2; exit 2", status="failed")])
    console = ScriptedConsole(["go", "y"])
    orchestrator = _orchestrator(transport, console)

    orchestrator.tick()
    orchestrator.tick()

    observation = json.loads(_tool_messages(orchestrator)[0].content)["observation_for_llm"]
    assert observation["exit_code"] == 2
    assert observation["stderr"] == "broken\n"
    assert "Command error: command: exit status 2" in console.text
    assert orchestrator.store.snapshot()[0].status == PlanStatus.FAILED


def test_timeout_fails_step_without_exit_code(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("slow", "sleep 5", timeout_sec=1)])
    transport.queue("Next.", [])
    console = ScriptedConsole(["go"])
    orchestrator = _orchestrator(transport, console, auto_approve=True)

    orchestrator.tick()
    orchestrator.tick()

    observation = json.loads(_tool_messages(orchestrator)[0].content)["observation_for_llm"]
    assert "exit_code" not in observation
    assert "timeout" in observation["details"]


def test_plan_command_reports_empty_store(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("c", "true", title="Third"), _sh("a", "true", title="First")])
    console = ScriptedConsole(["hello", "/PLAN"])
    orchestrator = _orchestrator(transport, console)

    orchestrator.tick()
    orchestrator.store.replace([])
    orchestrator.tick()
    assert "No plan available." in console.text


def test_plan_snapshot_lists_steps_by_id(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("c", "true", title="Third", status="completed"), _sh("a", "true", title="First", status="completed")])
    console = ScriptedConsole(["hello", "/plan"])
    orchestrator = _orchestrator(transport, console)

    orchestrator.tick()
    orchestrator.tick()

    snapshot = console.text.split("Plan snapshot:", 1)[1]
    assert snapshot.index("[a]") < snapshot.index("[c]")


def test_auto_command_toggles_approval(transport: ScriptedTransport) -> None:
    console = ScriptedConsole(["/auto", "/Auto"])
    orchestrator = _orchestrator(transport, console)

    orchestrator.tick()
    assert orchestrator.options.auto_approve is True
    orchestrator.tick()
    assert orchestrator.options.auto_approve is False
    assert "Auto-approve enabled." in console.text
    assert "Auto-approve disabled." in console.text
    assert transport.requests == []


def test_blank_line_does_not_call_the_model(transport: ScriptedTransport) -> None:
    console = ScriptedConsole(["   ", "/exit"])
    result = _orchestrator(transport, console).run()
    assert result.reason == "exit"
    assert transport.requests == []


def test_end_of_input_ends_gracefully(transport: ScriptedTransport) -> None:
    console = ScriptedConsole([])
    result = _orchestrator(transport, console).run()
    assert result.reason == "eof"
    assert "Goodbye." in console.text


def test_end_of_input_at_approval_ends_gracefully(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("a", "echo hi")])
    console = ScriptedConsole(["go"])
    orchestrator = _orchestrator(transport, console)

    result = orchestrator.run()

    assert result.reason == "eof"
    assert orchestrator.store.snapshot()[0].status == PlanStatus.PENDING


def test_no_human_without_auto_approve_sends_reminder(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("a", "echo hi")])
    transport.queue("Abandoning.", [_sh("a", "echo hi", status="abandoned")])
    console = ScriptedConsole([])
    orchestrator = _orchestrator(transport, console, no_human=True, max_turns=2)

    result = orchestrator.run()

    assert result.reason == "turn_limit"
    user_messages = [m.content for m in orchestrator.history if m.role == MessageRole.USER]
    assert user_messages == [DEFAULT_NO_HUMAN_AUTO_MESSAGE, DEFAULT_PLAN_REMINDER]
    assert "No human available to approve step a." in console.text
    assert _tool_messages(orchestrator) == []


def test_no_human_suppresses_repeated_message(transport: ScriptedTransport) -> None:
    transport.queue("Thinking.", [])
    transport.queue("Still thinking.", [])
    console = ScriptedConsole([])
    orchestrator = _orchestrator(transport, console, no_human=True, auto_message="keep going", max_turns=2)

    orchestrator.run()

    user_messages = [m.content for m in orchestrator.history if m.role == MessageRole.USER]
    assert user_messages == ["keep going"]
    assert len(transport.requests) == 2


def test_observation_without_tool_call_goes_to_user_summary(transport: ScriptedTransport) -> None:
    transport.replies.append(
        (
            200,
            json.dumps(
                {
                    "choices": [
                        {
                            "message": {
                                "tool_calls": [
                                    {
                                        "type": "function",
                                        "function": {
                                            "name": "dagent",
                                            "arguments": json.dumps({"message": "m", "plan": [_sh("a", "echo hi")]}),
                                        },
                                    }
                                ]
                            }
                        }
                    ]
                }
            ),
        )
    )
    transport.queue("Done.", [])
    console = ScriptedConsole(["go"])
    orchestrator = _orchestrator(transport, console, auto_approve=True)

    orchestrator.tick()
    orchestrator.tick()

    assert _tool_messages(orchestrator) == []
    summary = json.loads(orchestrator.history[-2].content)
    assert orchestrator.history[-2].role == MessageRole.USER
    assert summary == {"step": "a", "stdout": "hi\n", "stderr": "", "truncated": False, "exit_code": 0}


def test_backend_errors_propagate(transport: ScriptedTransport) -> None:
    transport.replies.append((401, "unauthorized"))
    console = ScriptedConsole(["hello"])
    with pytest.raises(LLMStatusError):
        _orchestrator(transport, console).run()


def test_history_starts_with_system_prompt(transport: ScriptedTransport) -> None:
    transport.queue("Hi.", [])
    console = ScriptedConsole(["hello"])
    orchestrator = _orchestrator(transport, console, augmentation="Prefer bash.")

    orchestrator.tick()

    system = orchestrator.history[0]
    assert system.role == MessageRole.SYSTEM
    assert system.content.endswith("Prefer bash.")
    assert all(message.timestamp is not None for message in orchestrator.history)
    assert transport.requests[0]["messages"][0]["role"] == "system"


def test_build_tool_message_wraps_observation() -> None:
    payload = json.loads(build_tool_message(ObservationPayload(stdout="x", truncated=True, exit_code=0)))
    assert payload == {"observation_for_llm": {"stdout": "x", "truncated": True, "exit_code": 0}}


def test_summary_omits_missing_exit_code() -> None:
    summary = json.loads(summarize_observation("s", ObservationPayload(stderr="e")))
    assert "exit_code" not in summary
    assert summary["stderr"] == "e"


def test_allowlisted_command_runs_without_prompt(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("a", "echo hi")])
    transport.queue("Done.", [_sh("a", "echo hi", status="completed")])
    console = ScriptedConsole(["go", "/exit"])
    orchestrator = _orchestrator(transport, console, approved_commands=["echo"])

    result = orchestrator.run()

    assert result.reason == "exit"
    assert "Execute?" not in console.text
    assert len(_tool_messages(orchestrator)) == 1
    assert orchestrator.store.completed() is True


def test_allowlist_does_not_cover_pipelines(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("a", "echo hi | cat")])
    console = ScriptedConsole(["go"])
    orchestrator = _orchestrator(transport, console, approved_commands=["echo", "cat"])

    result = orchestrator.run()

    assert result.reason == "eof"
    assert "Execute?" in console.text
    assert _tool_messages(orchestrator) == []


def test_always_answer_approves_command_for_session(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("a", "echo hi")])
    transport.queue("Again.", [_sh("a", "echo hi", status="completed"), _sh("b", "echo hi")])
    transport.queue("Done.", [_sh("a", "echo hi", status="completed"), _sh("b", "echo hi", status="completed")])
    console = ScriptedConsole(["go", "always", "/exit"])
    orchestrator = _orchestrator(transport, console)

    result = orchestrator.run()

    assert result.reason == "exit"
    assert console.text.count("Execute?") == 1
    assert "Approved for the rest of this session." in console.text
    assert len(_tool_messages(orchestrator)) == 2
    assert orchestrator.options.auto_approve is False


def test_no_human_runs_allowlisted_steps(transport: ScriptedTransport) -> None:
    transport.queue("Plan.", [_sh("a", "echo hi")])
    transport.queue("Done.", [_sh("a", "echo hi", status="completed")])
    console = ScriptedConsole([])
    orchestrator = _orchestrator(transport, console, no_human=True, approved_commands=["echo"], max_turns=2)

    result = orchestrator.run()

    assert result.reason == "turn_limit"
    assert "No human available" not in console.text
    assert len(_tool_messages(orchestrator)) == 1
