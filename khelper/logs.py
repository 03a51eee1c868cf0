"""Streaming container logs from pods."""

from __future__ import annotations

import contextlib
import threading
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from khelper.client import ApiError


@dataclass
class PodLogsOptions:
    """How pod logs are fetched and where they are written.

    ``since`` is in seconds; ``tail`` is a line count. Zero means unset.
    """

    follow: bool = False
    since: float = 0.0
    tail: int = 0
    container: str = ""
    all_containers: bool = False
    out: Any = None


def _pod_name(pod: Mapping[str, Any]) -> str:
    return (pod.get("metadata") or {}).get("name") or ""


def _pod_namespace(pod: Mapping[str, Any]) -> str:
    return (pod.get("metadata") or {}).get("namespace") or ""


def _containers(pod: Mapping[str, Any]) -> list[str]:
    return [c.get("name") or "" for c in (pod.get("spec") or {}).get("containers") or []]


def pod_has_container(pod: Mapping[str, Any], name: str) -> bool:
    """Return True if the pod spec declares a container with this name."""
    return name in _containers(pod)


def select_log_containers(pod: Mapping[str, Any] | None, container: str = "", all_containers: bool = False) -> list[str]:
    """Choose the containers whose logs are streamed."""
    if pod is None:
        raise ValueError("pod is required")
    container = container.strip()
    names = _containers(pod)
    pod_name = _pod_name(pod)

    if all_containers:
        if not names:
            raise ValueError(f"pod {pod_name} has no containers")
        return names
    if container:
        if container not in names:
            raise ValueError(f'container "{container}" not found in pod {pod_name}')
        return [container]
    if not names:
        raise ValueError(f"pod {pod_name} has no containers")
    if len(names) > 1:
        raise ValueError(f"pod {pod_name} has multiple containers; use --container or --all-containers")
    return [names[0]]


def _read_lines(source: Any, context: str) -> Iterator[str]:
    while True:
        try:
            line = source.readline()
        except OSError as exc:
            raise OSError(f"{context}: {exc}") from exc
        if not line:
            return
        yield line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line


def _write(out: Any, text: str, context: str, lock: threading.Lock | None) -> None:
    try:
        if lock is None:
            out.write(text)
        else:
            with lock:
                out.write(text)
    except OSError as exc:
        raise OSError(f"{context}: {exc}") from exc


def _copy(source: Any, out: Any, prefix: str, lock: threading.Lock | None) -> None:
    read_context = "read log stream" if prefix else "copy logs"
    write_context = "write log output" if prefix else "copy logs"
    for line in _read_lines(source, read_context):
        _write(out, prefix + line, write_context, lock)


def copy_log_stream(source: Any, out: Any, prefix: str = "") -> None:
    """Copy a log stream to out, prefixing each line when a prefix is given."""
    _copy(source, out, prefix, None)


def _log_params(container: str, options: PodLogsOptions) -> dict[str, Any]:
    params: dict[str, Any] = {"container": container}
    if options.follow:
        params["follow"] = "true"
    if options.since > 0:
        seconds = int(options.since)
        if seconds > 0:
            params["sinceSeconds"] = seconds
    if options.tail > 0:
        params["tailLines"] = int(options.tail)
    return params


def _stream_container(
    client: Any,
    namespace: str,
    pod_name: str,
    container: str,
    options: PodLogsOptions,
    prefix: str,
    lock: threading.Lock | None = None,
) -> None:
    try:
        stream = client.stream_logs(namespace, pod_name, _log_params(container, options))
    except ApiError as exc:
        raise exc.with_context(f"stream logs for {namespace}/{pod_name} container {container}") from exc
    with contextlib.closing(stream):
        _copy(stream, options.out, prefix, lock)


def _stream_in_parallel(client: Any, pod: Mapping[str, Any], containers: list[str], options: PodLogsOptions) -> None:
    lock = threading.Lock()
    errors: list[Exception] = []
    errors_lock = threading.Lock()
    name, namespace = _pod_name(pod), _pod_namespace(pod)

    def worker(container: str) -> None:
        try:
            _stream_container(client, namespace, name, container, options, f"[{name}/{container}] ", lock)
        except Exception as exc:
            with errors_lock:
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=(c,), daemon=True) for c in containers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    if errors:
        raise RuntimeError("\n".join(str(exc) for exc in errors)) from errors[0]


def stream_pod_logs(client: Any, pod: Mapping[str, Any] | None, options: PodLogsOptions) -> None:
    """Write the logs of the selected containers of a pod to options.out."""
    if pod is None:
        raise ValueError("pod is required")
    if options.out is None:
        raise ValueError("output writer is required")

    containers = select_log_containers(pod, options.container, options.all_containers)
    name, namespace = _pod_name(pod), _pod_namespace(pod)

    if len(containers) == 1:
        _stream_container(client, namespace, name, containers[0], options, "")
        return
    if options.follow:
        _stream_in_parallel(client, pod, containers, options)
        return
    for container in containers:
        _stream_container(client, namespace, name, container, options, f"[{name}/{container}] ")