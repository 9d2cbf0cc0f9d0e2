"""Typed records describing plan steps, their commands and observations."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TIMEOUT_SEC = 60
DEFAULT_TAIL_LINES = 200
DEFAULT_MAX_BYTES = 16384


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling and wire-name support."""

    model_config = ConfigDict(extra="forbid", frozen=False, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Render the JSON shape exchanged with the model, omitting unset fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_defaults=True)


class PlanStatus(str, Enum):
    """Execution states for a plan step."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


class CommandDraft(RecordModel):
    """Shell invocation embedded in every plan step."""

    reason: str = ""
    shell: str = ""
    run: str = ""
    cwd: str = ""
    timeout_sec: int = DEFAULT_TIMEOUT_SEC
    filter_regex: str = ""
    tail_lines: int = DEFAULT_TAIL_LINES
    max_bytes: int = DEFAULT_MAX_BYTES


class ObservationPayload(RecordModel):
    """Result of running a step's command, as forwarded to the model."""

    plan: Optional[List["PlanStep"]] = None
    stdout: str = ""
    stderr: str = ""
    truncated: bool = False
    exit_code: Optional[int] = None
    # Accepted and echoed for wire compatibility; the runtime never sets these four.
    json_parse_error: bool = False
    schema_validation_error: bool = False
    response_validation_error: bool = False
    canceled_by_human: bool = False
    operation_canceled: bool = False
    summary: str = ""
    details: str = ""


class PlanObservation(RecordModel):
    """Envelope attached to a step once its command has run."""

    observation_for_llm: Optional[ObservationPayload] = None


class PlanStep(RecordModel):
    """Single node of the plan DAG."""

    id: str
    title: str = ""
    status: PlanStatus = PlanStatus.PENDING
    waiting_for_id: List[str] = Field(default_factory=list, alias="waitingForId")
    command: CommandDraft = Field(default_factory=CommandDraft)
    observation: Optional[PlanObservation] = None

    def clone(self) -> "PlanStep":
        """Return an independent deep copy of the step."""
        return self.model_copy(deep=True)


class PlanResponse(RecordModel):
    """Structured reply produced by the model on every turn."""

    message: str = ""
    plan: List[PlanStep] = Field(default_factory=list)


ObservationPayload.model_rebuild()


__all__ = [
    "DEFAULT_MAX_BYTES",
    "DEFAULT_TAIL_LINES",
    "DEFAULT_TIMEOUT_SEC",
    "CommandDraft",
    "ObservationPayload",
    "PlanObservation",
    "PlanResponse",
    "PlanStatus",
    "PlanStep",
    "RecordModel",
]
