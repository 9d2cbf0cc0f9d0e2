"""Filtering and truncation applied to raw command output before it reaches the model."""

from __future__ import annotations

import re
from typing import Optional

from ..plan.schema import DEFAULT_MAX_BYTES, DEFAULT_TAIL_LINES

_NEWLINE = b"\n"


def apply_filter(output: bytes, pattern: str) -> bytes:
    """Keep only the lines matching ``pattern``.

    An empty pattern or one that does not compile leaves the output untouched;
    a bad regex from the model must never fail the command.
    """
    if not pattern:
        return output
    try:
        matcher = re.compile(pattern)
    except re.error:
        return output

    text = output.decode("utf-8", errors="surrogateescape")
    kept = [line for line in text.split("\n") if matcher.search(line)]
    return "\n".join(kept).encode("utf-8", errors="surrogateescape")


def truncate_output(output: bytes, max_bytes: int, tail_lines: int) -> tuple[bytes, bool]:
    """Keep the trailing ``max_bytes`` bytes, then the trailing ``tail_lines`` lines."""
    if not output:
        return output, False

    truncated = False
    if max_bytes > 0 and len(output) > max_bytes:
        output = output[len(output) - max_bytes :]
        truncated = True

    if tail_lines <= 0:
        return output, truncated

    lines = output.split(_NEWLINE)
    if len(lines) > tail_lines:
        lines = lines[len(lines) - tail_lines :]
        truncated = True
    return _NEWLINE.join(lines), truncated


def shape_output(
    raw: bytes,
    filter_regex: str = "",
    max_bytes: Optional[int] = None,
    tail_lines: Optional[int] = None,
) -> tuple[bytes, bool]:
    """Filter then truncate ``raw``; returns the shaped bytes and a truncation flag.

    ``None`` limits fall back to 16384 bytes and 200 lines. A ``tail_lines`` of
    zero disables the line cap, as does a non-positive ``max_bytes`` for bytes.
    """
    if max_bytes is None:
        max_bytes = DEFAULT_MAX_BYTES
    if tail_lines is None:
        tail_lines = DEFAULT_TAIL_LINES
    filtered = apply_filter(raw, filter_regex)
    return truncate_output(filtered, max_bytes, tail_lines)


__all__ = ["apply_filter", "shape_output", "truncate_output"]
