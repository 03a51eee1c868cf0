"""Finding and deleting evicted pods."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from khelper.client import ApiError, is_not_found
from khelper.kinds import NAMESPACE_ALL

CLEAR_TARGET_EVICTED = "evicted"


@dataclass
class ClearPodResult:
    namespace: str
    name: str
    reason: str
    action: str = ""


@dataclass
class ClearResult:
    target: str
    namespace: str
    dry_run: bool
    matched: int
    deleted: int = 0
    pods: list[ClearPodResult] = field(default_factory=list, metadata={"omitempty": True})


def _normalize_namespace(namespace: str) -> str:
    return namespace.strip() or "default"


def _meta(pod: dict[str, Any]) -> dict[str, Any]:
    return pod.get("metadata") or {}


def _reason(pod: dict[str, Any]) -> str:
    return (pod.get("status") or {}).get("reason") or ""


def list_evicted_pods(client: Any, namespace: str) -> list[dict[str, Any]]:
    """Return evicted pods in a namespace (or all), ordered by namespace and name."""
    scope = _normalize_namespace(namespace)
    list_namespace = "" if scope == NAMESPACE_ALL else scope
    try:
        pods = client.list("pods", list_namespace, field_selector="status.phase=Failed")
    except ApiError as exc:
        raise exc.with_context("list pods") from exc
    evicted = [pod for pod in pods if _reason(pod).strip().lower() == "evicted"]
    evicted.sort(key=lambda pod: (_meta(pod).get("namespace") or "", _meta(pod).get("name") or ""))
    return evicted


def clear_evicted_pods(client: Any, namespace: str, dry_run: bool) -> ClearResult:
    """Delete evicted pods, or report what would be deleted."""
    scope = _normalize_namespace(namespace)
    pods = list_evicted_pods(client, scope)
    result = ClearResult(target=CLEAR_TARGET_EVICTED, namespace=scope, dry_run=dry_run, matched=len(pods))

    for pod in pods:
        meta = _meta(pod)
        entry = ClearPodResult(namespace=meta.get("namespace") or "", name=meta.get("name") or "", reason=_reason(pod))
        if dry_run:
            entry.action = "would-delete"
        else:
            try:
                client.delete("pods", entry.namespace, entry.name)
            except ApiError as exc:
                if not is_not_found(exc):
                    raise exc.with_context(f"delete pod {entry.namespace}/{entry.name}") from exc
                entry.action = "already-gone"
            else:
                entry.action = "deleted"
                result.deleted += 1
        result.pods.append(entry)
    return result