"""Rollout status, history, rollback and image updates for workloads."""

from __future__ import annotations

import copy
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, MutableMapping, TypeVar

from khelper.client import ApiError, is_conflict, is_not_found
from khelper.kinds import KIND_DEPLOYMENT, KIND_STATEFULSET, NotFoundError
from khelper.revisions import (
    CHANGE_CAUSE_ANNOTATION,
    DEPLOYMENT_REVISION_ANNOTATION,
    POD_TEMPLATE_HASH_LABEL,
    apply_container_image_updates,
    build_tag_image_assignments,
    controller_revision_owned_by_statefulset,
    normalize_rollout_kind,
    parse_deployment_revision,
    pick_target_revision,
    pod_template_from_controller_revision,
    pod_template_images,
    replica_set_owned_by_deployment,
)
from khelper.rollout import wait_deployment_rollout, wait_statefulset_rollout
from khelper.selectors import SelectorError, selector_from_label_selector
from khelper.statefulset_rollout import is_statefulset_rollout_complete, rollout_expectation

_RETRY_STEPS = 5
_RETRY_DELAY = 0.01
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)

_T = TypeVar("_T")

_RESOURCES = {
    KIND_DEPLOYMENT: ("deployments", "deployment"),
    KIND_STATEFULSET: ("statefulsets", "statefulset"),
}

_MESSAGES = {True: "rollout complete", False: "rollout in progress"}


@dataclass
class RolloutStatus:
    """Current rollout state of a workload."""

    kind: str
    name: str
    namespace: str
    current_revision: str = field(default="", metadata={"omitempty": True})
    update_revision: str = field(default="", metadata={"omitempty": True})
    observed_generation: int = 0
    generation: int = 0
    desired_replicas: int = 0
    updated_replicas: int = 0
    ready_replicas: int = 0
    available_replicas: int = field(default=0, metadata={"omitempty": True})
    unavailable_replicas: int = field(default=0, metadata={"omitempty": True})
    complete: bool = False
    message: str = ""


@dataclass
class RolloutHistoryEntry:
    """One revision of a workload's rollout history."""

    revision: int
    name: str = field(default="", metadata={"omitempty": True})
    created_at: datetime | None = field(default=None, metadata={"omitempty": True})
    images: list[str] = field(default_factory=list, metadata={"omitempty": True})
    change_cause: str = field(default="", metadata={"omitempty": True})
    current: bool = False


@dataclass
class UndoRolloutResult:
    """What a rollback changed."""

    kind: str
    name: str
    namespace: str
    from_revision: int = field(default=0, metadata={"omitempty": True})
    to_revision: int = 0


@dataclass
class SetImageResult:
    """Container images that were updated on a workload."""

    kind: str
    name: str
    namespace: str
    updated: dict[str, str] = field(default_factory=dict)


def _meta(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def _int(section: Mapping[str, Any], key: str) -> int:
    return int(section.get(key) or 0)


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _retry_on_conflict(action: Callable[[], _T]) -> _T:
    for attempt in range(_RETRY_STEPS):
        try:
            return action()
        except ApiError as exc:
            if not is_conflict(exc) or attempt == _RETRY_STEPS - 1:
                raise
        time.sleep(_RETRY_DELAY)
    raise AssertionError("unreachable")


def _get_workload(client: Any, kind: str, namespace: str, name: str) -> dict[str, Any]:
    resource, label = _RESOURCES[kind]
    try:
        return client.get(resource, namespace, name)
    except ApiError as exc:
        if is_not_found(exc):
            raise NotFoundError(namespace, name, kind) from exc
        raise exc.with_context(f"get {label} {name}") from exc


def _selector(obj: Mapping[str, Any], label: str) -> str:
    name = _meta(obj).get("name") or ""
    try:
        return selector_from_label_selector((obj.get("spec") or {}).get("selector"))
    except SelectorError as exc:
        raise SelectorError(f"{label} {name} selector: {exc}") from exc


def _sort_history(entries: list[RolloutHistoryEntry]) -> list[RolloutHistoryEntry]:
    return sorted(entries, key=lambda e: (e.revision, e.created_at or _OLDEST, e.name))


def get_rollout_status(client: Any, namespace: str, kind: str, name: str) -> RolloutStatus:
    """Report how far a Deployment or StatefulSet rollout has progressed."""
    kind = normalize_rollout_kind(kind)
    obj = _get_workload(client, kind, namespace, name)
    meta = _meta(obj)
    status = obj.get("status") or {}

    if kind == KIND_DEPLOYMENT:
        spec = obj.get("spec") or {}
        desired = 1 if spec.get("replicas") is None else int(spec["replicas"])
        complete = (
            _int(status, "observedGeneration") >= _int(meta, "generation")
            and _int(status, "updatedReplicas") == desired
            and _int(status, "readyReplicas") == desired
            and _int(status, "availableReplicas") == desired
            and _int(status, "unavailableReplicas") == 0
        )
        return RolloutStatus(
            kind=KIND_DEPLOYMENT,
            name=meta.get("name") or "",
            namespace=meta.get("namespace") or "",
            current_revision=((meta.get("annotations") or {}).get(DEPLOYMENT_REVISION_ANNOTATION) or "").strip(),
            observed_generation=_int(status, "observedGeneration"),
            generation=_int(meta, "generation"),
            desired_replicas=desired,
            updated_replicas=_int(status, "updatedReplicas"),
            ready_replicas=_int(status, "readyReplicas"),
            available_replicas=_int(status, "availableReplicas"),
            unavailable_replicas=_int(status, "unavailableReplicas"),
            complete=complete,
            message=_MESSAGES[complete],
        )

    expectation = rollout_expectation(obj)
    complete = bool(is_statefulset_rollout_complete(obj))
    return RolloutStatus(
        kind=KIND_STATEFULSET,
        name=meta.get("name") or "",
        namespace=meta.get("namespace") or "",
        current_revision=status.get("currentRevision") or "",
        update_revision=status.get("updateRevision") or "",
        observed_generation=_int(status, "observedGeneration"),
        generation=_int(meta, "generation"),
        desired_replicas=expectation.desired_replicas,
        updated_replicas=_int(status, "updatedReplicas"),
        ready_replicas=_int(status, "readyReplicas"),
        complete=complete,
        message=_MESSAGES[complete],
    )


def _owned_replica_sets(client: Any, namespace: str, deployment: Mapping[str, Any]) -> list[dict[str, Any]]:
    name = _meta(deployment).get("name") or ""
    selector = _selector(deployment, "deployment")
    try:
        items = client.list("replicasets", namespace, label_selector=selector)
    except ApiError as exc:
        raise exc.with_context(f"list replica sets for deployment {name}") from exc
    return [rs for rs in items if replica_set_owned_by_deployment(rs, deployment)]


def _owned_controller_revisions(
    client: Any, namespace: str, statefulset: Mapping[str, Any]
) -> list[dict[str, Any]]:
    name = _meta(statefulset).get("name") or ""
    selector = _selector(statefulset, "statefulset")
    try:
        items = client.list("controllerrevisions", namespace, label_selector=selector)
        # Some clusters do not keep the selector labels on controller revisions.
        if selector and not items:
            items = client.list("controllerrevisions", namespace)
    except ApiError as exc:
        raise exc.with_context(f"list controller revisions for statefulset {name}") from exc
    return [rev for rev in items if controller_revision_owned_by_statefulset(rev, statefulset)]


def _deployment_history(client: Any, namespace: str, name: str) -> list[RolloutHistoryEntry]:
    dep = _get_workload(client, KIND_DEPLOYMENT, namespace, name)
    current = parse_deployment_revision(_meta(dep).get("annotations"))
    entries = []
    for rs in _owned_replica_sets(client, namespace, dep):
        meta = _meta(rs)
        annotations = meta.get("annotations") or {}
        revision = parse_deployment_revision(annotations)
        entries.append(
            RolloutHistoryEntry(
                revision=revision,
                name=meta.get("name") or "",
                created_at=_parse_time(meta.get("creationTimestamp")),
                images=pod_template_images((rs.get("spec") or {}).get("template") or {}),
                change_cause=(annotations.get(CHANGE_CAUSE_ANNOTATION) or "").strip(),
                current=revision > 0 and revision == current,
            )
        )
    return _sort_history(entries)


def _statefulset_history(client: Any, namespace: str, name: str) -> list[RolloutHistoryEntry]:
    sts = _get_workload(client, KIND_STATEFULSET, namespace, name)
    current_name = (sts.get("status") or {}).get("currentRevision") or ""
    entries = []
    for rev in _owned_controller_revisions(client, namespace, sts):
        meta = _meta(rev)
        template = pod_template_from_controller_revision(rev)
        entries.append(
            RolloutHistoryEntry(
                revision=int(rev.get("revision") or 0),
                name=meta.get("name") or "",
                created_at=_parse_time(meta.get("creationTimestamp")),
                images=pod_template_images(template),
                change_cause=((meta.get("annotations") or {}).get(CHANGE_CAUSE_ANNOTATION) or "").strip(),
                current=(meta.get("name") or "") == current_name,
            )
        )
    return _sort_history(entries)


def list_rollout_history(client: Any, namespace: str, kind: str, name: str) -> list[RolloutHistoryEntry]:
    """List the revisions of a workload, oldest first."""
    kind = normalize_rollout_kind(kind)
    if kind == KIND_DEPLOYMENT:
        return _deployment_history(client, namespace, name)
    return _statefulset_history(client, namespace, name)


def _update(client: Any, kind: str, namespace: str, name: str, body: Mapping[str, Any], why: str = "") -> None:
    resource, label = _RESOURCES[kind]
    try:
        client.update(resource, namespace, name, body)
    except ApiError as exc:
        raise exc.with_context(f"update {label} {name}{why}") from exc


def _template_slot(obj: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    return obj.setdefault("spec", {})


def _undo_deployment(client: Any, namespace: str, name: str, to_revision: int) -> UndoRolloutResult:
    dep = _get_workload(client, KIND_DEPLOYMENT, namespace, name)
    templates: dict[int, dict[str, Any]] = {}
    for rs in _owned_replica_sets(client, namespace, dep):
        revision = parse_deployment_revision(_meta(rs).get("annotations"))
        if revision <= 0:
            continue
        templates[revision] = copy.deepcopy((rs.get("spec") or {}).get("template") or {})
    if not templates:
        raise ValueError(f"no rollout revisions found for deployment/{name}")

    current = parse_deployment_revision(_meta(dep).get("annotations"))
    target = pick_target_revision(sorted(templates), current, to_revision)
    template = templates[target]
    labels = (template.get("metadata") or {}).get("labels")
    if labels:
        labels.pop(POD_TEMPLATE_HASH_LABEL, None)

    _template_slot(dep)["template"] = template
    _update(client, KIND_DEPLOYMENT, namespace, name, dep, " for rollback")
    meta = _meta(dep)
    return UndoRolloutResult(
        kind=KIND_DEPLOYMENT,
        name=meta.get("name") or "",
        namespace=meta.get("namespace") or "",
        from_revision=current,
        to_revision=target,
    )


def _undo_statefulset(client: Any, namespace: str, name: str, to_revision: int) -> UndoRolloutResult:
    sts = _get_workload(client, KIND_STATEFULSET, namespace, name)
    current_name = (sts.get("status") or {}).get("currentRevision") or ""
    templates: dict[int, dict[str, Any]] = {}
    current = 0
    for rev in _owned_controller_revisions(client, namespace, sts):
        revision = int(rev.get("revision") or 0)
        templates[revision] = pod_template_from_controller_revision(rev)
        if (_meta(rev).get("name") or "") == current_name:
            current = revision
    if not templates:
        raise ValueError(f"no rollout revisions found for statefulset/{name}")

    target = pick_target_revision(sorted(templates), current, to_revision)
    _template_slot(sts)["template"] = templates[target]
    _update(client, KIND_STATEFULSET, namespace, name, sts, " for rollback")
    meta = _meta(sts)
    return UndoRolloutResult(
        kind=KIND_STATEFULSET,
        name=meta.get("name") or "",
        namespace=meta.get("namespace") or "",
        from_revision=current,
        to_revision=target,
    )


def _mapping_not_found(kind: str, namespace: str, name: str, action: Callable[[], _T]) -> _T:
    try:
        return action()
    except ApiError as exc:
        if is_not_found(exc):
            raise NotFoundError(namespace, name, kind) from exc
        raise


def undo_rollout(
    client: Any,
    namespace: str,
    kind: str,
    name: str,
    to_revision: int = 0,
    timeout: float = 0.0,
    out: Any = None,
) -> UndoRolloutResult:
    """Roll a workload back to a given revision, or to the one before the current."""
    kind = normalize_rollout_kind(kind)
    undo = _undo_deployment if kind == KIND_DEPLOYMENT else _undo_statefulset
    result = _mapping_not_found(
        kind, namespace, name, lambda: _retry_on_conflict(lambda: undo(client, namespace, name, to_revision))
    )

    if timeout > 0:
        label = _RESOURCES[kind][1]
        if out is not None:
            out.write(f"Waiting for {label} rollout to revision {result.to_revision}...\n")
        waiter = wait_deployment_rollout if kind == KIND_DEPLOYMENT else wait_statefulset_rollout
        waiter(client, namespace, name, timeout, out)
    return result


def set_workload_images(
    client: Any, namespace: str, kind: str, name: str, updates: Mapping[str, str]
) -> SetImageResult:
    """Set container images on a workload's pod template."""
    kind = normalize_rollout_kind(kind)
    if not updates:
        raise ValueError("at least one container=image assignment is required")

    def attempt() -> dict[str, str]:
        obj = _get_workload(client, kind, namespace, name)
        pod_spec = _template_slot(obj).setdefault("template", {}).setdefault("spec", {})
        applied = apply_container_image_updates(pod_spec, updates)
        _update(client, kind, namespace, name, obj)
        return applied

    applied = _mapping_not_found(kind, namespace, name, lambda: _retry_on_conflict(attempt))
    return SetImageResult(kind=kind, name=name, namespace=namespace, updated=applied)


def resolve_tag_image_assignments(
    client: Any, namespace: str, kind: str, name: str, container_hint: str, tag: str
) -> dict[str, str]:
    """Build a container=image assignment that swaps the tag of one container's image."""
    kind = normalize_rollout_kind(kind)
    obj = _get_workload(client, kind, namespace, name)
    pod_spec = ((obj.get("spec") or {}).get("template") or {}).get("spec") or {}
    return build_tag_image_assignments(pod_spec, container_hint, tag)


__all__ = [
    "RolloutStatus",
    "RolloutHistoryEntry",
    "UndoRolloutResult",
    "SetImageResult",
    "get_rollout_status",
    "list_rollout_history",
    "undo_rollout",
    "set_workload_images",
    "resolve_tag_image_assignments",
]


# Kept for callers that serialise results.
def _to_json(value: Any) -> str:
    return json.dumps(value, default=str)