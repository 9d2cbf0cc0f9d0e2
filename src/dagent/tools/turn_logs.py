"""Structured JSON logs of every model exchange, one file per turn."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ..utils.slug import slugify

__all__ = ["TurnLogEntry", "TurnLogWriter", "load_turn_log"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TurnLogWriter:
    """Write ``turn__<n>__<timestamp>.json`` files under ``root/<session>``.

    Instances are callables matching the gateway's exchange logger hook, so
    they can be passed straight to :meth:`LLMClient.request_plan`. Failures to
    write are logged and otherwise ignored.
    """

    root: Path
    session: str = "session"
    turn: int = field(default=0, init=False)

    @property
    def directory(self) -> Path:
        return Path(self.root) / slugify(self.session, fallback="session")

    def __call__(
        self,
        request: Dict[str, Any],
        response: Optional[str],
        error: Optional[Exception],
    ) -> Optional[Path]:
        self.turn += 1
        now = datetime.now(timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": now.isoformat(),
            "turn": self.turn,
            "request": request,
        }
        if response is not None:
            try:
                entry["response"] = json.loads(response)
            except json.JSONDecodeError:
                entry["response"] = response
        if error is not None:
            entry["error"] = str(error)
            entry["error_type"] = type(error).__name__

        directory = self.directory
        log_path = directory / f"turn__{self.turn}__{now.strftime('%Y%m%dT%H%M%S%fZ')}.json"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with log_path.open("w", encoding="utf-8") as handle:
                json.dump(entry, handle, indent=2, sort_keys=True, ensure_ascii=False)
        except (OSError, TypeError, ValueError) as write_error:
            LOGGER.debug("Failed to write turn log %s: %s", log_path, write_error)
            return None
        return log_path


@dataclass(slots=True)
class TurnLogEntry:
    """In-memory representation of a stored turn log."""

    path: Path
    turn: int
    payload: Mapping[str, Any]

    @property
    def request(self) -> Mapping[str, Any]:
        value = self.payload.get("request")
        if isinstance(value, Mapping):
            return value
        return {}

    @property
    def response(self) -> Any:
        return self.payload.get("response")

    @property
    def error(self) -> str | None:
        value = self.payload.get("error")
        if isinstance(value, str) and value.strip():
            return value
        return None


def load_turn_log(path: Path | str) -> TurnLogEntry:
    """Load a structured turn log from disk."""
    log_path = Path(path).resolve()
    with log_path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    turn = payload.get("turn")
    return TurnLogEntry(path=log_path, turn=turn if isinstance(turn, int) else 0, payload=payload)
