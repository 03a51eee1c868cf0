"""Running commands inside pod containers."""

from __future__ import annotations

import io
import json
from typing import Any, Callable, Sequence

from khelper.client import ApiError

_SHELL_CHECKS = (
    ("bash", ["bash", "-c", "exit 0"]),
    ("sh", ["sh", "-c", "exit 0"]),
)

ExecRunner = Callable[..., None]


class _Discard(io.IOBase):
    """A writable sink that drops everything."""

    def writable(self) -> bool:
        return True

    def write(self, data: Any) -> int:
        return len(data)


def exec_in_pod(
    client: Any,
    namespace: str,
    pod_name: str,
    container: str,
    command: Sequence[str],
    tty: bool = False,
    stdin: Any = None,
    stdout: Any = None,
    stderr: Any = None,
) -> None:
    """Run a command in a pod container, relaying stdin, stdout and stderr."""
    if not command:
        raise ValueError("exec command is required")
    context = f"exec command {json.dumps(' '.join(command))} in pod {namespace}/{pod_name}"
    try:
        client.exec(namespace, pod_name, container, list(command), tty, stdin, stdout, stderr)
    except ApiError as exc:
        raise exc.with_context(context) from exc
    except Exception as exc:
        raise RuntimeError(f"{context}: {exc}") from exc


def detect_shell(
    client: Any,
    namespace: str,
    pod_name: str,
    container: str,
    runner: ExecRunner | None = None,
) -> str:
    """Return the first shell available in the container, trying bash then sh."""
    run = runner or exec_in_pod
    last_error: Exception | None = None
    for shell, command in _SHELL_CHECKS:
        try:
            run(client, namespace, pod_name, container, list(command), False, None, _Discard(), _Discard())
        except Exception as exc:
            last_error = exc
            continue
        return shell
    if last_error is not None:
        raise RuntimeError(f"could not detect shell (tried bash then sh): {last_error}") from last_error
    raise RuntimeError("could not detect shell")