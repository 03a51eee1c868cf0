"""Resolving a user-supplied target to a workload and to one of its pods."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

from khelper.client import ApiError, is_not_found
from khelper.kinds import (
    KIND_DEPLOYMENT,
    KIND_POD,
    KIND_STATEFULSET,
    NAMESPACE_ALL,
    AmbiguousMatchError,
    InvalidKindError,
    InvalidPickError,
    NotFoundError,
    WorkloadRef,
    normalize_kinds,
)
from khelper.selectors import (
    SelectorError,
    selector_from_label_selector,
    selector_from_labels,
    target_selectors,
)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class PodResolution:
    """A resolved workload and the pod chosen from it."""

    workload: WorkloadRef
    pod: dict[str, Any]
    warning: str = field(default="", metadata={"omitempty": True})


def _meta(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def _name(obj: Mapping[str, Any]) -> str:
    return _meta(obj).get("name") or ""


def _namespace(obj: Mapping[str, Any]) -> str:
    return _meta(obj).get("namespace") or ""


def _controller_ref(kind: str) -> Callable[[Mapping[str, Any], str], WorkloadRef]:
    def build(obj: Mapping[str, Any], match_rule: str) -> WorkloadRef:
        spec = obj.get("spec") or {}
        try:
            selector = selector_from_label_selector(spec.get("selector"))
        except SelectorError as exc:
            raise SelectorError(f"{kind} {_name(obj)} selector: {exc}") from exc
        if not selector:
            template_meta = (spec.get("template") or {}).get("metadata") or {}
            selector = selector_from_labels(template_meta.get("labels"))
        return WorkloadRef(
            kind=kind,
            name=_name(obj),
            namespace=_namespace(obj),
            selector=selector,
            match_rule=match_rule,
        )

    return build


def _pod_ref(pod: Mapping[str, Any], match_rule: str) -> WorkloadRef:
    return WorkloadRef(
        kind=KIND_POD,
        name=_name(pod),
        namespace=_namespace(pod),
        selector=selector_from_labels(_meta(pod).get("labels")),
        match_rule=match_rule,
    )


@dataclass(frozen=True)
class _KindSpec:
    resource: str
    build: Callable[[Mapping[str, Any], str], WorkloadRef]


_KIND_SPECS = {
    KIND_DEPLOYMENT: _KindSpec("deployments", _controller_ref(KIND_DEPLOYMENT)),
    KIND_STATEFULSET: _KindSpec("statefulsets", _controller_ref(KIND_STATEFULSET)),
    KIND_POD: _KindSpec("pods", _pod_ref),
}


def _pick_single_match(
    namespace: str, target: str, kind: str, refs: Sequence[WorkloadRef], pick: int
) -> WorkloadRef:
    ordered = sorted(refs, key=lambda ref: (ref.namespace, ref.name))
    if len(ordered) == 1:
        return ordered[0]
    if not ordered:
        raise NotFoundError(namespace, target, kind)
    if pick == 0:
        raise AmbiguousMatchError(namespace, target, kind, ordered)
    if pick < 1 or pick > len(ordered):
        raise InvalidPickError(pick, len(ordered))
    return ordered[pick - 1]


def _name_field_selector(name: str) -> str:
    return "metadata.name=" + name.strip()


class Resolver:
    """Resolves targets by exact name first, then by well-known app labels."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def resolve_workload(self, namespace: str, target: str, kind: str = "", pick: int = 0) -> WorkloadRef:
        """Find the workload a target refers to, trying kinds in priority order."""
        namespace = namespace.strip() or "default"
        target = target.strip()
        if not target:
            raise ValueError("target is required")

        kinds = normalize_kinds(kind)
        for candidate in kinds:
            try:
                return self._resolve_single_kind(namespace, target, candidate, pick)
            except NotFoundError:
                continue
        raise NotFoundError(namespace, target, "/".join(kinds))

    def resolve_pod(self, namespace: str, target: str, kind: str = "", pick: int = 0) -> PodResolution:
        """Resolve a target to a workload and choose the best pod behind it."""
        workload = self.resolve_workload(namespace, target, kind, pick)

        if workload.kind == KIND_POD:
            try:
                pod = self._client.get("pods", workload.namespace, workload.name)
            except ApiError as exc:
                if is_not_found(exc):
                    raise NotFoundError(workload.namespace, workload.name, KIND_POD) from exc
                raise exc.with_context(f"get pod {workload.name}") from exc
            return PodResolution(workload=workload, pod=pod)

        if not workload.selector:
            raise ValueError(f"workload {workload.kind}/{workload.name} does not expose a pod selector")

        try:
            pods = self._client.list("pods", workload.namespace, label_selector=workload.selector)
        except ApiError as exc:
            raise exc.with_context(f"list pods for selector {json.dumps(workload.selector)}") from exc
        if not pods:
            raise NotFoundError(workload.namespace, workload.name, KIND_POD)

        selected, warning = select_best_pod(pods)
        return PodResolution(workload=workload, pod=selected, warning=warning)

    def _resolve_single_kind(self, namespace: str, target: str, kind: str, pick: int) -> WorkloadRef:
        spec = _KIND_SPECS.get(kind)
        if spec is None:
            raise InvalidKindError(kind, "")
        if namespace == NAMESPACE_ALL:
            return self._resolve_all_namespaces(spec, target, kind, pick)
        return self._resolve_in_namespace(spec, namespace, target, kind, pick)

    def _resolve_by_selectors(
        self, spec: _KindSpec, namespace: str, scope: str, target: str, kind: str, pick: int
    ) -> WorkloadRef:
        where = "across all namespaces " if scope == NAMESPACE_ALL else ""
        for selector in target_selectors(target):
            try:
                items = self._client.list(spec.resource, namespace, label_selector=selector)
            except ApiError as exc:
                raise exc.with_context(
                    f"list {spec.resource} {where}by selector {json.dumps(selector)}"
                ) from exc
            if not items:
                continue
            refs = [spec.build(item, selector) for item in items]
            return _pick_single_match(scope, target, kind, refs, pick)
        raise NotFoundError(scope, target, kind)

    def _resolve_in_namespace(
        self, spec: _KindSpec, namespace: str, target: str, kind: str, pick: int
    ) -> WorkloadRef:
        try:
            obj = self._client.get(spec.resource, namespace, target)
        except ApiError as exc:
            if not is_not_found(exc):
                raise exc.with_context(f"get {kind} {target}") from exc
        else:
            return spec.build(obj, "name")
        return self._resolve_by_selectors(spec, namespace, namespace, target, kind, pick)

    def _resolve_all_namespaces(self, spec: _KindSpec, target: str, kind: str, pick: int) -> WorkloadRef:
        try:
            items = self._client.list(spec.resource, "", field_selector=_name_field_selector(target))
        except ApiError as exc:
            raise exc.with_context(
                f"list {spec.resource} across all namespaces by name {json.dumps(target)}"
            ) from exc

        matches = [spec.build(item, "name") for item in items if _name(item) == target]
        if matches:
            return _pick_single_match(NAMESPACE_ALL, target, kind, matches, pick)
        return self._resolve_by_selectors(spec, "", NAMESPACE_ALL, target, kind, pick)


def _parse_time(value: Any) -> datetime:
    if not value:
        return _OLDEST
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _pod_timestamp(pod: Mapping[str, Any]) -> datetime:
    start = (pod.get("status") or {}).get("startTime")
    if start is not None:
        return _parse_time(start)
    return _parse_time(_meta(pod).get("creationTimestamp"))


def _newest(pods: Sequence[dict[str, Any]]) -> dict[str, Any]:
    return max(pods, key=lambda pod: (_pod_timestamp(pod), _name(pod)))


def _phase(pod: Mapping[str, Any]) -> str:
    return (pod.get("status") or {}).get("phase") or ""


def select_best_pod(pods: Sequence[dict[str, Any]]) -> tuple[dict[str, Any], str]:
    """Pick the newest Running pod, or the newest pod with a warning if none runs."""
    if not pods:
        raise ValueError("no pods to select from")
    running = [pod for pod in pods if _phase(pod) == "Running"]
    if running:
        return _newest(running), ""
    chosen = _newest(pods)
    warning = f"no Running pods found; using newest pod {_name(chosen)} ({_phase(chosen)})"
    return chosen, warning