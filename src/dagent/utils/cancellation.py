"""Cooperative cancellation shared by every blocking call in the runtime."""

from __future__ import annotations

import threading
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 0.05


class OperationCanceledError(RuntimeError):
    """Raised when a blocking operation is abandoned because its token fired."""


class CancellationToken:
    """Thread-safe one-shot cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "operation canceled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds; returns True once cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCanceledError(self._reason or "operation canceled")


def run_cancelable(
    func: Callable[[], T],
    cancel: Optional[CancellationToken],
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    name: str = "dagent-blocking-call",
) -> T:
    """Run ``func`` on a daemon thread and return its result unless ``cancel`` fires first.

    When the token fires the worker thread is abandoned and
    :class:`OperationCanceledError` is raised immediately. Exceptions raised by
    ``func`` propagate unchanged.
    """
    if cancel is None:
        return func()
    cancel.raise_if_cancelled()

    outcome: dict[str, object] = {}
    finished = threading.Event()

    def _worker() -> None:
        try:
            outcome["value"] = func()
        except BaseException as error:  # noqa: BLE001 - re-raised on the caller thread
            outcome["error"] = error
        finally:
            finished.set()

    worker = threading.Thread(target=_worker, name=name, daemon=True)
    worker.start()
    while not finished.wait(poll_interval):
        if cancel.cancelled:
            raise OperationCanceledError(cancel.reason or "operation canceled")

    if "error" in outcome:
        raise outcome["error"]  # type: ignore[misc]
    return outcome["value"]  # type: ignore[return-value]


__all__ = [
    "CancellationToken",
    "OperationCanceledError",
    "run_cancelable",
]
