"""Helpers for log output."""

from __future__ import annotations

from collections.abc import Sequence

_MAX_VALUES = 10


def registers_to_str(data: Sequence[int]) -> str:
    """Render up to ten register values as hex, noting how many were left out."""
    parts = []
    for index, value in enumerate(data, start=1):
        parts.append(f"[{value:x}]")
        if index == _MAX_VALUES:
            parts.append(f" (… and {len(data) - _MAX_VALUES} more)")
            break
    return "".join(parts)