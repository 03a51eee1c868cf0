"""Events for specific objects, deduplicated and ordered."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from khelper.client import ApiError
from khelper.kinds import KIND_POD

_KIND_ALIASES = {
    "deployment": "deployment",
    "deployments": "deployment",
    "deployment.apps": "deployment",
    "statefulset": "statefulset",
    "statefulsets": "statefulset",
    "statefulset.apps": "statefulset",
    "pod": "pod",
    "pods": "pod",
    "replicaset": "replicaset",
    "replicasets": "replicaset",
    "replicaset.apps": "replicaset",
}
_FIELD_KINDS = {
    "deployment": "Deployment",
    "statefulset": "StatefulSet",
    "pod": "Pod",
    "replicaset": "ReplicaSet",
}


@dataclass(frozen=True)
class EventObjectRef:
    """An object whose events are wanted."""

    kind: str
    name: str


def _normalize_kind(kind: str) -> str:
    lowered = (kind or "").strip().lower()
    return _KIND_ALIASES.get(lowered, lowered)


def _field_kind(kind: str) -> str:
    return _FIELD_KINDS.get(_normalize_kind(kind), kind.strip())


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,").replace("=", "\\=")


def _field_selector(pairs: Mapping[str, str]) -> str:
    return ",".join(f"{key}={_escape(pairs[key])}" for key in sorted(pairs))


def _involved(event: Mapping[str, Any]) -> Mapping[str, Any]:
    return event.get("involvedObject") or {}


def _meta(event: Mapping[str, Any]) -> Mapping[str, Any]:
    return event.get("metadata") or {}


def _group_refs(refs: Iterable[EventObjectRef]) -> dict[str, set[str]]:
    grouped: dict[str, set[str]] = {}
    for ref in refs:
        kind = _normalize_kind(ref.kind)
        name = ref.name.strip()
        if kind and name:
            grouped.setdefault(kind, set()).add(name)
    return grouped


def _list_by_object(client: Any, namespace: str, kind: str, name: str) -> list[dict[str, Any]]:
    selector = _field_selector({"involvedObject.kind": _field_kind(kind), "involvedObject.name": name})
    try:
        items = client.list("events", namespace, field_selector=selector)
    except ApiError as exc:
        raise exc.with_context(f"list events for {kind}/{name}") from exc
    return [
        e
        for e in items
        if _normalize_kind(_involved(e).get("kind") or "") == kind
        and (_involved(e).get("name") or "").strip() == name
    ]


def _list_by_kind(client: Any, namespace: str, kind: str) -> list[dict[str, Any]]:
    selector = _field_selector({"involvedObject.kind": _field_kind(kind)})
    try:
        items = client.list("events", namespace, field_selector=selector)
    except ApiError as exc:
        raise exc.with_context(f"list events for kind {kind}") from exc
    return [e for e in items if _normalize_kind(_involved(e).get("kind") or "") == kind]


def _dedup_key(event: Mapping[str, Any]) -> str:
    meta = _meta(event)
    if meta.get("uid"):
        return f"uid:{meta['uid']}"
    return f"ns:{meta.get('namespace') or ''}|name:{meta.get('name') or ''}"


def _normalize_prefixes(prefixes: Iterable[str] | None) -> list[str]:
    return sorted({p.strip() for p in prefixes or () if p.strip()})


def list_events_by_objects(client: Any, namespace: str, refs: Sequence[EventObjectRef]) -> list[dict[str, Any]]:
    """Events involving exactly the given objects."""
    return list_events_by_objects_with_pod_name_prefixes(client, namespace, refs, None)


def list_events_by_objects_with_pod_name_prefixes(
    client: Any,
    namespace: str,
    refs: Sequence[EventObjectRef],
    pod_name_prefixes: Iterable[str] | None = None,
) -> list[dict[str, Any]]:
    """Events for the given objects plus pod events whose name starts with a prefix."""
    grouped = _group_refs(refs)
    prefixes = _normalize_prefixes(pod_name_prefixes)
    if not grouped and not prefixes:
        return []

    dedup: dict[str, dict[str, Any]] = {}

    def add(events: Iterable[dict[str, Any]]) -> None:
        for event in events:
            dedup.setdefault(_dedup_key(event), event)

    for kind in sorted(grouped):
        for name in sorted(grouped[kind]):
            add(_list_by_object(client, namespace, kind, name))

    if prefixes:
        pod_events = _list_by_kind(client, namespace, KIND_POD)
        add(
            e
            for e in pod_events
            if (name := (_involved(e).get("name") or "").strip()) and name.startswith(tuple(prefixes))
        )

    return sorted(dedup.values(), key=lambda e: (_meta(e).get("namespace") or "", _meta(e).get("name") or ""))