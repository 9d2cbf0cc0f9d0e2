"""In-memory store holding the live plan generation."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional

from .schema import PlanObservation, PlanStatus, PlanStep

LOGGER = logging.getLogger(__name__)


class PlanStoreError(RuntimeError):
    """Base error raised for plan store consistency failures."""


class UnknownStepError(PlanStoreError, KeyError):
    """Raised when a step identifier is not part of the current generation."""

    def __init__(self, step_id: str) -> None:
        super().__init__(f"plan: unknown step id {step_id!r}")
        self.step_id = step_id

    def __str__(self) -> str:
        return self.args[0]


class PlanStore:
    """Holds the current plan keyed by step id, preserving submission order.

    The plan is replaced wholesale on every model turn; nothing from the
    previous generation survives a :meth:`replace`. Readers always receive
    deep copies, so callers can never mutate stored state by accident.
    """

    def __init__(self, *, strict_dependencies: bool = False) -> None:
        self._lock = threading.Lock()
        self._order: List[str] = []
        self._steps: Dict[str, PlanStep] = {}
        self._strict_dependencies = strict_dependencies

    def replace(self, steps: Iterable[PlanStep]) -> None:
        """Discard the previous generation and install ``steps``."""
        order: List[str] = []
        indexed: Dict[str, PlanStep] = {}
        for step in steps:
            if step.id not in indexed:
                order.append(step.id)
            else:
                LOGGER.warning("Duplicate plan step id %s; keeping the later definition", step.id)
            indexed[step.id] = step.clone()

        with self._lock:
            self._order = order
            self._steps = indexed
        LOGGER.debug("Installed plan generation with %d step(s)", len(order))

    def snapshot(self) -> List[PlanStep]:
        """Return deep copies of every step in submission order."""
        with self._lock:
            return [self._steps[step_id].clone() for step_id in self._order]

    def sort_order(self) -> List[PlanStep]:
        """Return the snapshot sorted by step id for stable reporting."""
        return sorted(self.snapshot(), key=lambda step: step.id)

    def ready(self) -> Optional[PlanStep]:
        """Return a copy of the first pending step whose dependencies are met."""
        with self._lock:
            for step_id in self._order:
                step = self._steps[step_id]
                if step.status != PlanStatus.PENDING:
                    continue
                if self._dependencies_met(step):
                    return step.clone()
        return None

    def _dependencies_met(self, step: PlanStep) -> bool:
        for dependency_id in step.waiting_for_id:
            dependency = self._steps.get(dependency_id)
            if dependency is None:
                # Dangling ids point at steps dropped by a replacement.
                if self._strict_dependencies:
                    return False
                continue
            if dependency.status != PlanStatus.COMPLETED:
                return False
        return True

    def update_status(
        self,
        step_id: str,
        status: PlanStatus,
        observation: Optional[PlanObservation] = None,
    ) -> None:
        """Set the status (and observation, when given) of ``step_id``."""
        with self._lock:
            step = self._steps.get(step_id)
            if step is None:
                raise UnknownStepError(step_id)
            step.status = PlanStatus(status)
            if observation is not None:
                step.observation = observation.model_copy(deep=True)

    def has_pending(self) -> bool:
        with self._lock:
            return any(step.status == PlanStatus.PENDING for step in self._steps.values())

    def completed(self) -> bool:
        """Return True when the plan is non-empty and every step completed."""
        with self._lock:
            if not self._steps:
                return False
            return all(step.status == PlanStatus.COMPLETED for step in self._steps.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)


__all__ = ["PlanStore", "PlanStoreError", "UnknownStepError"]
