"""Terminal detection and status colouring."""

from __future__ import annotations

from typing import Any

ANSI_RESET = "\033[0m"
ANSI_RED = "\033[31m"
ANSI_GREEN = "\033[32m"
ANSI_YELLOW = "\033[33m"

_FAILURE_MARKERS = ("crashloopbackoff", "error", "failed")


def is_terminal(stream: Any) -> bool:
    """Return True if the stream is attached to a terminal."""
    isatty = getattr(stream, "isatty", None)
    if isatty is None:
        return False
    try:
        return bool(isatty())
    except (OSError, ValueError):
        return False


def _colorize(text: str, color: str) -> str:
    return f"{color}{text}{ANSI_RESET}"


def colorize_status(status: str, enable: bool) -> str:
    """Wrap a pod status in an ANSI colour that reflects its health."""
    if not enable:
        return status
    lowered = status.lower()
    if "running" in lowered:
        return _colorize(status, ANSI_GREEN)
    if any(marker in lowered for marker in _FAILURE_MARKERS):
        return _colorize(status, ANSI_RED)
    if "pending" in lowered:
        return _colorize(status, ANSI_YELLOW)
    return status