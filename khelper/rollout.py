"""Restarting workloads and waiting for their rollouts."""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from khelper.client import ApiError
from khelper.kinds import KIND_DEPLOYMENT, KIND_STATEFULSET
from khelper.statefulset_rollout import is_statefulset_rollout_complete, rollout_expectation

_POLL_INTERVAL = 2.0
_DEFAULT_TIMEOUT = 300.0
_RESTARTED_AT = "kubectl.kubernetes.io/restartedAt"


def _say(out: Any, text: str) -> None:
    if out is not None:
        out.write(text + "\n")


def _poll(check: Callable[[], bool], timeout: float, what: str) -> None:
    """Run check now and every poll interval until it is true or time runs out."""
    deadline = time.monotonic() + timeout
    while True:
        if check():
            return
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(_POLL_INTERVAL, remaining))
        if time.monotonic() >= deadline:
            break
    raise TimeoutError(f"wait for {what} rollout: timed out waiting for the condition")


def _get(client: Any, resource: str, label: str, namespace: str, name: str, what: str) -> Mapping[str, Any]:
    try:
        return client.get(resource, namespace, name)
    except ApiError as exc:
        raise exc.with_context(f"wait for {what} rollout: get {label} {name}") from exc


def _int(section: Mapping[str, Any], key: str) -> int:
    return int(section.get(key) or 0)


def wait_deployment_rollout(client: Any, namespace: str, name: str, timeout: float, out: Any = None) -> None:
    """Poll a Deployment until all desired replicas are updated, ready and available."""
    if timeout <= 0:
        timeout = _DEFAULT_TIMEOUT

    def check() -> bool:
        dep = _get(client, "deployments", "deployment", namespace, name, "deployment")
        spec = dep.get("spec") or {}
        status = dep.get("status") or {}
        generation = _int(dep.get("metadata") or {}, "generation")
        desired = 1 if spec.get("replicas") is None else int(spec["replicas"])
        observed = _int(status, "observedGeneration")
        updated = _int(status, "updatedReplicas")
        ready = _int(status, "readyReplicas")
        available = _int(status, "availableReplicas")
        _say(
            out,
            f"  observed={observed} generation={generation} updated={updated} "
            f"ready={ready} available={available} desired={desired}",
        )
        return (
            observed >= generation
            and updated == desired
            and ready == desired
            and available == desired
            and _int(status, "unavailableReplicas") == 0
        )

    _poll(check, timeout, "deployment")
    _say(out, "Deployment rollout complete.")


def wait_statefulset_rollout(client: Any, namespace: str, name: str, timeout: float, out: Any = None) -> None:
    """Poll a StatefulSet until its rollout is complete for its update strategy."""
    if timeout <= 0:
        timeout = _DEFAULT_TIMEOUT

    def check() -> bool:
        sts = _get(client, "statefulsets", "statefulset", namespace, name, "statefulset")
        status = sts.get("status") or {}
        expectation = rollout_expectation(sts)
        _say(
            out,
            f"  observed={_int(status, 'observedGeneration')} "
            f"generation={_int(sts.get('metadata') or {}, 'generation')} "
            f"updated={_int(status, 'updatedReplicas')}/{expectation.expected_updated_replicas} "
            f"ready={_int(status, 'readyReplicas')}/{expectation.desired_replicas} "
            f"revision={status.get('currentRevision') or ''}/{status.get('updateRevision') or ''}",
        )
        return is_statefulset_rollout_complete(sts)

    _poll(check, timeout, "statefulset")
    _say(out, "StatefulSet rollout complete.")


def rollout_restart(client: Any, namespace: str, kind: str, name: str, timeout: float, out: Any = None) -> None:
    """Restart a Deployment or StatefulSet and wait for the rollout to finish."""
    kind = kind.strip().lower()
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    patch = {"spec": {"template": {"metadata": {"annotations": {_RESTARTED_AT: timestamp}}}}}

    _say(out, f"Restarting {kind}/{name} in namespace {namespace}...")

    if kind == KIND_DEPLOYMENT:
        resource, waiter = "deployments", wait_deployment_rollout
    elif kind == KIND_STATEFULSET:
        resource, waiter = "statefulsets", wait_statefulset_rollout
    else:
        raise ValueError(f"restart supports only deployment/statefulset, got {json.dumps(kind)}")

    try:
        client.patch(resource, namespace, name, patch)
    except ApiError as exc:
        raise exc.with_context(f"patch {kind} {name}") from exc
    _say(out, f"Waiting for {kind} rollout to complete...")
    waiter(client, namespace, name, timeout, out)