"""Rollout completion rules for StatefulSets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

ROLLING_UPDATE = "RollingUpdate"
ON_DELETE = "OnDelete"


@dataclass(frozen=True)
class StatefulSetRolloutExpectation:
    """What a finished rollout of a StatefulSet must show."""

    desired_replicas: int
    expected_updated_replicas: int
    require_revision_alignment: bool


def _section(obj: Mapping[str, Any] | None, key: str) -> Mapping[str, Any]:
    return (obj or {}).get(key) or {}


def _strategy_type(statefulset: Mapping[str, Any]) -> str:
    strategy = _section(_section(statefulset, "spec"), "updateStrategy")
    return strategy.get("type") or ROLLING_UPDATE


def _partition(statefulset: Mapping[str, Any]) -> int:
    if _strategy_type(statefulset) != ROLLING_UPDATE:
        return 0
    rolling = _section(_section(statefulset, "spec"), "updateStrategy").get("rollingUpdate")
    if not rolling or rolling.get("partition") is None:
        return 0
    return max(int(rolling["partition"]), 0)


def rollout_expectation(statefulset: Mapping[str, Any]) -> StatefulSetRolloutExpectation:
    """Work out the replica counts a rollout is waiting for."""
    replicas = _section(statefulset, "spec").get("replicas")
    desired = 1 if replicas is None else max(int(replicas), 0)

    if _strategy_type(statefulset) == ON_DELETE:
        # OnDelete never updates pods by itself, so the updated count cannot block completion.
        return StatefulSetRolloutExpectation(desired, 0, False)

    partition = _partition(statefulset)
    if partition >= desired:
        expected_updated = 0
    elif partition > 0:
        expected_updated = desired - partition
    else:
        expected_updated = desired
    return StatefulSetRolloutExpectation(
        desired_replicas=desired,
        expected_updated_replicas=expected_updated,
        require_revision_alignment=desired > 0 and partition == 0,
    )


def is_statefulset_rollout_complete(statefulset: Mapping[str, Any]) -> bool:
    """Return True when the StatefulSet has finished rolling out."""
    expectation = rollout_expectation(statefulset)
    status = _section(statefulset, "status")
    generation = int(_section(statefulset, "metadata").get("generation") or 0)

    done = (
        int(status.get("observedGeneration") or 0) >= generation
        and int(status.get("updatedReplicas") or 0) >= expectation.expected_updated_replicas
        and int(status.get("readyReplicas") or 0) == expectation.desired_replicas
    )
    if done and expectation.require_revision_alignment:
        done = (status.get("currentRevision") or "") == (status.get("updateRevision") or "")
    return done