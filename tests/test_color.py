import io

import pytest

from khelper.output.color import colorize_status, is_terminal


class _FakeTty(io.StringIO):
    def isatty(self):
        return True


class _ClosedStream:
    def isatty(self):
        raise ValueError("I/O operation on closed file")


def test_is_terminal():
    assert is_terminal(_FakeTty()) is True
    assert is_terminal(io.StringIO()) is False
    assert is_terminal(object()) is False
    assert is_terminal(_ClosedStream()) is False


def test_colorize_disabled_returns_input():
    assert colorize_status("Running", False) == "Running"


@pytest.mark.parametrize(
    "status, color",
    [
        ("Running", "\033[32m"),
        ("CrashLoopBackOff", "\033[31m"),
        ("Error", "\033[31m"),
        ("Failed", "\033[31m"),
        ("Pending", "\033[33m"),
    ],
)
def test_colorize_status(status, color):
    assert colorize_status(status, True) == f"{color}{status}\033[0m"


def test_colorize_unknown_status_unchanged():
    assert colorize_status("Succeeded", True) == "Succeeded"