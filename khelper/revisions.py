"""Helpers for rollout revisions, owner checks and container image edits."""

from __future__ import annotations

import copy
import json
import re
from typing import Any, Mapping, MutableMapping, Sequence

from khelper.kinds import KIND_POD, normalize_kinds

DEPLOYMENT_REVISION_ANNOTATION = "deployment.kubernetes.io/revision"
CHANGE_CAUSE_ANNOTATION = "kubernetes.io/change-cause"
POD_TEMPLATE_HASH_LABEL = "pod-template-hash"

_INT_RE = re.compile(r"^[+-]?\d+$")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def normalize_rollout_kind(kind: str) -> str:
    """Resolve a kind for rollout operations, which only accept controllers."""
    kinds = normalize_kinds(kind)
    if len(kinds) != 1:
        raise ValueError("kind must resolve to a single workload kind")
    if kinds[0] == KIND_POD:
        raise ValueError("rollout operations support only deployment/statefulset")
    return kinds[0]


def image_with_tag(image: str, tag: str) -> str:
    """Replace the tag of an image reference, keeping any registry port."""
    image = image.strip()
    tag = tag.strip()
    if not image:
        raise ValueError("current image is empty")
    if not tag:
        raise ValueError("image tag is required")
    if "@" in image:
        raise ValueError(f"current image {json.dumps(image)} is digest-pinned; use explicit container=image")
    base = image
    if image.rfind(":") > image.rfind("/"):
        base = image[: image.rfind(":")]
    return f"{base}:{tag}"


def parse_deployment_revision(annotations: Mapping[str, str] | None) -> int:
    """Read the deployment revision annotation; 0 when missing or invalid."""
    if not annotations:
        return 0
    text = (annotations.get(DEPLOYMENT_REVISION_ANNOTATION) or "").strip()
    if not _INT_RE.match(text):
        return 0
    value = int(text)
    if value < _INT64_MIN or value > _INT64_MAX:
        return 0
    return value


def pick_target_revision(revisions: Sequence[int], current_revision: int, requested_revision: int) -> int:
    """Choose the revision to roll back to from an ascending list of revisions."""
    if not revisions:
        raise ValueError("no rollout revisions found")
    if requested_revision > 0:
        if requested_revision in revisions:
            return requested_revision
        raise ValueError(f"requested revision {requested_revision} not found")
    if current_revision > 0:
        for revision in reversed(revisions):
            if revision < current_revision:
                return revision
        raise ValueError(f"no previous revision found before current revision {current_revision}")
    if len(revisions) < 2:
        raise ValueError("at least two revisions are required for rollback")
    return revisions[-2]


def pod_template_images(template: Mapping[str, Any]) -> list[str]:
    """List "container=image" for init and regular containers, sorted."""
    spec = template.get("spec") or {}
    containers = list(spec.get("initContainers") or []) + list(spec.get("containers") or [])
    return sorted(f"{c.get('name') or ''}={c.get('image') or ''}" for c in containers)


def strip_patch_directives(value: Any) -> Any:
    """Drop strategic-merge-patch directive keys (those starting with "$")."""
    if isinstance(value, Mapping):
        return {key: strip_patch_directives(item) for key, item in value.items() if not key.startswith("$")}
    if isinstance(value, list):
        return [strip_patch_directives(item) for item in value]
    return value


def pod_template_from_controller_revision(revision: Mapping[str, Any]) -> dict[str, Any]:
    """Extract the pod template stored in a ControllerRevision."""
    name = (revision.get("metadata") or {}).get("name") or ""
    data = revision.get("data")
    if not data:
        raise ValueError(f"controllerrevision/{name} has empty data")
    if isinstance(data, (str, bytes, bytearray)):
        try:
            data = json.loads(data)
        except ValueError as exc:
            raise ValueError(f"decode controllerrevision/{name} data: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ValueError(f"decode controllerrevision/{name} data: not an object")

    spec = data.get("spec")
    if not isinstance(spec, Mapping):
        raise ValueError(f"controllerrevision/{name} data does not contain spec")
    template = spec.get("template")
    if not isinstance(template, Mapping):
        raise ValueError(f"controllerrevision/{name} data does not contain spec.template")
    return copy.deepcopy(strip_patch_directives(template))


def _owned_by(obj: Mapping[str, Any], owner_kind: str, owner: Mapping[str, Any]) -> bool:
    owner_meta = owner.get("metadata") or {}
    owner_uid = owner_meta.get("uid") or ""
    owner_name = owner_meta.get("name") or ""
    for ref in (obj.get("metadata") or {}).get("ownerReferences") or []:
        if (ref.get("kind") or "").lower() != owner_kind.lower():
            continue
        ref_uid = ref.get("uid") or ""
        if ref_uid and owner_uid:
            if ref_uid == owner_uid:
                return True
            continue
        if (ref.get("name") or "") == owner_name:
            return True
    return False


def replica_set_owned_by_deployment(replica_set: Mapping[str, Any], deployment: Mapping[str, Any]) -> bool:
    """True if the ReplicaSet's owner references point at the Deployment."""
    return _owned_by(replica_set, "Deployment", deployment)


def controller_revision_owned_by_statefulset(revision: Mapping[str, Any], statefulset: Mapping[str, Any]) -> bool:
    """True if the ControllerRevision's owner references point at the StatefulSet."""
    return _owned_by(revision, "StatefulSet", statefulset)


def apply_container_image_updates(
    pod_spec: MutableMapping[str, Any], updates: Mapping[str, str]
) -> dict[str, str]:
    """Set images on named containers in place; every named container must exist."""
    found: dict[str, str] = {}
    for section in ("containers", "initContainers"):
        for container in pod_spec.get(section) or []:
            name = container.get("name") or ""
            if name in updates:
                container["image"] = updates[name]
                found[name] = updates[name]

    missing = sorted(name for name in updates if name not in found)
    if missing:
        raise ValueError(f"container(s) not found in pod template: {', '.join(missing)}")
    return found


def build_tag_image_assignments(pod_spec: Mapping[str, Any], container_hint: str, tag: str) -> dict[str, str]:
    """Build one container=image assignment that swaps the tag of a chosen container."""
    tag = tag.strip()
    if not tag:
        raise ValueError("image tag is required")
    container_hint = container_hint.strip()
    containers = list(pod_spec.get("containers") or [])
    if not containers:
        raise ValueError("workload pod template has no containers")

    selected = None
    if len(containers) == 1:
        selected = containers[0]
    elif container_hint:
        selected = next((c for c in containers if c.get("name") == container_hint), None)

    if selected is None:
        available = sorted(c.get("name") or "" for c in containers)
        raise ValueError(
            f"multiple containers found ({', '.join(available)}); use explicit container=image assignment"
        )

    name = selected.get("name") or ""
    try:
        next_image = image_with_tag(selected.get("image") or "", tag)
    except ValueError as exc:
        raise ValueError(f"build image for container {json.dumps(name)}: {exc}") from exc
    return {name: next_image}