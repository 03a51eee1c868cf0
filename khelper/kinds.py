"""Workload kinds, references and the errors raised while resolving targets."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Sequence

KIND_DEPLOYMENT = "deployment"
KIND_STATEFULSET = "statefulset"
KIND_POD = "pod"
NAMESPACE_ALL = "*"

_KIND_ALIASES = {
    KIND_DEPLOYMENT: KIND_DEPLOYMENT,
    "deploy": KIND_DEPLOYMENT,
    "deployment.apps": KIND_DEPLOYMENT,
    KIND_STATEFULSET: KIND_STATEFULSET,
    "sts": KIND_STATEFULSET,
    "statefulset.apps": KIND_STATEFULSET,
    KIND_POD: KIND_POD,
    "po": KIND_POD,
    "pods": KIND_POD,
}


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


@dataclass(frozen=True)
class WorkloadRef:
    """A resolved workload and the rule that matched it."""

    kind: str
    name: str
    namespace: str
    selector: str = field(default="", metadata={"omitempty": True})
    match_rule: str = ""


def namespace_scope_label(namespace: str) -> str:
    """Human-readable description of a namespace scope."""
    if not namespace.strip() or namespace == NAMESPACE_ALL:
        return "all namespaces"
    return f"namespace {_quote(namespace)}"


class InvalidKindError(ValueError):
    """Raised for a workload kind that is not supported."""

    def __init__(self, kind: str, detail: str = " (allowed: deployment, statefulset, pod)") -> None:
        self.kind = kind
        super().__init__(f"invalid kind {_quote(kind)}{detail}")


class NotFoundError(LookupError):
    """Raised when no object matches a target."""

    def __init__(self, namespace: str, target: str, kind: str = "") -> None:
        self.namespace = namespace
        self.target = target
        self.kind = kind
        scope = namespace_scope_label(namespace)
        if kind:
            message = f"{kind} target {_quote(target)} not found in {scope}"
        else:
            message = f"target {_quote(target)} not found in {scope}"
        super().__init__(message)


class AmbiguousMatchError(LookupError):
    """Raised when several objects match and no pick was given."""

    def __init__(self, namespace: str, target: str, kind: str, matches: Sequence[WorkloadRef]) -> None:
        self.namespace = namespace
        self.target = target
        self.kind = kind
        self.matches = list(matches)
        items = []
        for number, ref in enumerate(self.matches, start=1):
            if ref.namespace.strip():
                items.append(f"{number}:{ref.kind}/{ref.name} ({ref.namespace})")
            else:
                items.append(f"{number}:{ref.kind}/{ref.name}")
        super().__init__(
            f"multiple matches for {_quote(target)} in {namespace_scope_label(namespace)} ({kind}). "
            f"Re-run with --pick=N. Matches: {', '.join(items)}"
        )


class InvalidPickError(ValueError):
    """Raised when --pick is outside the list of matches."""

    def __init__(self, pick: int, maximum: int) -> None:
        self.pick = pick
        self.max = maximum
        super().__init__(f"invalid --pick value {pick} (valid range: 1-{maximum})")


def normalize_kinds(kind: str) -> list[str]:
    """Resolve a kind or alias to the kinds to search, in priority order."""
    normalized = kind.strip().lower()
    if not normalized:
        return [KIND_DEPLOYMENT, KIND_STATEFULSET, KIND_POD]
    resolved = _KIND_ALIASES.get(normalized)
    if resolved is None:
        raise InvalidKindError(normalized)
    return [resolved]