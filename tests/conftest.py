from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def make_step(
    step_id: str,
    run: str = "true",
    *,
    title: str | None = None,
    status: str = "pending",
    waiting_for: List[str] | None = None,
    shell: str = "bash",
    timeout_sec: int = 60,
    filter_regex: str = "",
    tail_lines: int = 200,
    max_bytes: int = 16384,
    cwd: str = "",
) -> Dict[str, Any]:
    """Build a plan step exactly as the model would send it."""
    return {
        "id": step_id,
        "title": title or f"Step {step_id}",
        "status": status,
        "waitingForId": list(waiting_for or []),
        "command": {
            "reason": "",
            "shell": shell,
            "run": run,
            "cwd": cwd,
            "timeout_sec": timeout_sec,
            "filter_regex": filter_regex,
            "tail_lines": tail_lines,
            "max_bytes": max_bytes,
        },
    }


def completion_body(message: str, plan: List[Dict[str, Any]], *, call_id: str = "call_1") -> str:
    """Render a Chat Completions response carrying one plan tool call."""
    arguments = json.dumps({"message": message, "plan": plan})
    return json.dumps(
        {
            "id": "chatcmpl-test",
            "object": "chat.completion",
            "choices": [
                {
                    "index": 0,
                    "finish_reason": "tool_calls",
                    "message": {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [
                            {
                                "id": call_id,
                                "type": "function",
                                "function": {"name": "dagent", "arguments": arguments},
                            }
                        ],
                    },
                }
            ],
        }
    )


@dataclass(slots=True)
class ScriptedTransport:
    """Transport double returning queued ``(status, body)`` replies and recording requests."""

    replies: List[tuple[int, str]] = field(default_factory=list)
    requests: List[Dict[str, Any]] = field(default_factory=list)

    def queue(self, message: str, plan: List[Dict[str, Any]], *, call_id: str | None = None) -> None:
        call = call_id or f"call_{len(self.replies) + 1}"
        self.replies.append((200, completion_body(message, plan, call_id=call)))

    def __call__(self, payload: Dict[str, Any]) -> tuple[int, str]:
        self.requests.append(json.loads(json.dumps(payload)))
        if not self.replies:
            raise AssertionError("model was called more often than expected")
        return self.replies.pop(0)


@pytest.fixture()
def step_factory() -> Callable[..., Dict[str, Any]]:
    return make_step


@pytest.fixture()
def transport() -> ScriptedTransport:
    return ScriptedTransport()
