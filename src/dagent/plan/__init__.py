"""Plan data model, schema contract and in-memory store."""

from .contract import PlanContractError, ToolDefinition, plan_response_schema, tool_definition
from .schema import (
    CommandDraft,
    ObservationPayload,
    PlanObservation,
    PlanResponse,
    PlanStatus,
    PlanStep,
)
from .store import PlanStore, PlanStoreError, UnknownStepError

__all__ = [
    "CommandDraft",
    "ObservationPayload",
    "PlanContractError",
    "PlanObservation",
    "PlanResponse",
    "PlanStatus",
    "PlanStep",
    "PlanStore",
    "PlanStoreError",
    "ToolDefinition",
    "UnknownStepError",
    "plan_response_schema",
    "tool_definition",
]
