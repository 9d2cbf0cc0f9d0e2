"""Tool integrations used by the dagent runtime."""

from .runner import CommandError, CommandOutcome, CommandRunner
from .shaper import apply_filter, shape_output, truncate_output
from .turn_logs import TurnLogEntry, TurnLogWriter, load_turn_log

__all__ = [
    "CommandError",
    "CommandOutcome",
    "CommandRunner",
    "TurnLogEntry",
    "TurnLogWriter",
    "apply_filter",
    "load_turn_log",
    "shape_output",
    "truncate_output",
]
