"""Aligned table rendering and JSON printing."""

from __future__ import annotations

import dataclasses
import enum
import json
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, TextIO

_PADDING = 2
_MIN_WIDTH = 0


def _format_lines(lines: list[list[str]]) -> str:
    """Align tab-separated cells column by column; the last cell of a line is never padded."""
    out: list[str] = []
    widths: list[int] = []

    def write_lines(start: int, stop: int) -> None:
        for line in lines[start:stop]:
            parts = []
            for index, cell in enumerate(line):
                parts.append(cell)
                if index < len(widths):
                    parts.append(" " * (widths[index] - len(cell)))
            out.append("".join(parts) + "\n")

    def format_block(start: int, stop: int) -> None:
        column = len(widths)
        current = start
        while current < stop:
            if column >= len(lines[current]) - 1:
                current += 1
                continue
            write_lines(start, current)
            start = current
            width = _MIN_WIDTH
            while current < stop and column < len(lines[current]) - 1:
                width = max(width, len(lines[current][column]) + _PADDING)
                current += 1
            widths.append(width)
            format_block(start, current)
            widths.pop()
            start = current
        write_lines(start, stop)

    format_block(0, len(lines))
    return "".join(out)


class Table:
    """A simple table whose columns are aligned when rendered."""

    def __init__(self, *headers: str) -> None:
        self.headers = list(headers)
        self.rows: list[list[str]] = []

    def add_row(self, *args: str) -> None:
        self.rows.append([str(col) for col in args])

    def render(self, out: TextIO) -> None:
        """Write the table to a text stream."""
        lines = ([self.headers] if self.headers else []) + self.rows
        out.write(_format_lines(lines))


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    return False


def _format_time(value: datetime) -> str:
    text = value.isoformat()
    if value.tzinfo is not None and value.utcoffset() == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        result = {}
        for item in dataclasses.fields(value):
            field_value = getattr(value, item.name)
            if item.metadata.get("omitempty") and _is_empty(field_value):
                continue
            result[item.metadata.get("json", _camel_case(item.name))] = _to_jsonable(field_value)
        return result
    if isinstance(value, enum.Enum):
        return _to_jsonable(value.value)
    if isinstance(value, datetime):
        return _format_time(value)
    if isinstance(value, Mapping):
        return {str(key): _to_jsonable(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_jsonable(item) for item in value]
    return value


_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def print_json(out: TextIO, value: Any) -> None:
    """Write value as indented JSON followed by a newline.

    Dataclass fields become camelCase keys; fields whose metadata sets
    ``omitempty`` are left out when empty. Mapping keys are sorted.
    """
    text = json.dumps(_to_jsonable(value), indent=2, ensure_ascii=False)
    for raw, escaped in _HTML_ESCAPES.items():
        text = text.replace(raw, escaped)
    out.write(text + "\n")


__all__ = ["Table", "print_json", "timezone"]