"""Embedded plan response schema and the single tool exposed to the model."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources
from typing import Any, Dict, List

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

TOOL_NAME = "dagent"
TOOL_DESCRIPTION = (
    "Return the response envelope for the dagent protocol: a markdown message for the "
    "user and the full plan DAG, where every step carries exactly one shell command."
)
SCHEMA_RESOURCE = "assets/plan_schema.json"
SCHEMA_VERSION = "draft-07"


class PlanContractError(RuntimeError):
    """Raised when the embedded plan schema asset is missing or invalid."""


@dataclass(slots=True)
class ToolDefinition:
    """Function tool advertised to the backend on every request."""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_tool_spec(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": copy.deepcopy(self.parameters),
            },
        }

    def to_tool_choice(self) -> Dict[str, Any]:
        return {"type": "function", "function": {"name": self.name}}


@lru_cache(maxsize=None)
def _load_schema() -> Dict[str, Any]:
    try:
        raw = resources.files("dagent").joinpath(SCHEMA_RESOURCE).read_text(encoding="utf-8")
    except (FileNotFoundError, OSError) as error:
        raise PlanContractError(f"schema: plan schema asset is unavailable: {error}") from error
    try:
        schema = json.loads(raw)
    except json.JSONDecodeError as error:
        raise PlanContractError(f"schema: decode plan schema: {error}") from error
    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as error:
        raise PlanContractError(f"schema: plan schema is not valid {SCHEMA_VERSION}: {error.message}") from error
    return schema


def plan_response_schema() -> Dict[str, Any]:
    """Return a copy of the validated plan response schema."""
    return copy.deepcopy(_load_schema())


@lru_cache(maxsize=None)
def _validator() -> Draft7Validator:
    return Draft7Validator(_load_schema())


def tool_definition() -> ToolDefinition:
    """Return the canonical tool metadata used in every model request."""
    return ToolDefinition(
        name=TOOL_NAME,
        description=TOOL_DESCRIPTION,
        parameters=plan_response_schema(),
    )


def validate_plan_arguments(payload: Any) -> List[str]:
    """Validate decoded tool arguments, returning human readable violations."""
    errors = sorted(_validator().iter_errors(payload), key=lambda item: list(item.absolute_path))
    messages: List[str] = []
    for error in errors:
        location = "/".join(str(part) for part in error.absolute_path) or "(root)"
        messages.append(f"{location}: {error.message}")
    return messages


__all__ = [
    "PlanContractError",
    "SCHEMA_VERSION",
    "TOOL_DESCRIPTION",
    "TOOL_NAME",
    "ToolDefinition",
    "plan_response_schema",
    "tool_definition",
    "validate_plan_arguments",
]
