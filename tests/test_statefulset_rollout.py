from khelper.statefulset_rollout import (
    is_statefulset_rollout_complete,
    rollout_expectation,
)


def _statefulset(replicas, generation, status, strategy=None):
    spec = {"template": {"spec": {"containers": [{"name": "db", "image": "postgres:16"}]}}}
    if replicas is not None:
        spec["replicas"] = replicas
    if strategy is not None:
        spec["updateStrategy"] = strategy
    return {
        "metadata": {"name": "db", "namespace": "shop", "generation": generation},
        "spec": spec,
        "status": status,
    }


def test_progressing_when_generation_not_observed():
    sts = _statefulset(
        3,
        6,
        {
            "observedGeneration": 5,
            "readyReplicas": 2,
            "updatedReplicas": 2,
            "currentRevision": "db-5f8477f97d",
            "updateRevision": "db-75c6d87c57",
        },
    )
    assert is_statefulset_rollout_complete(sts) is False


def test_partitioned_rolling_update_can_be_complete():
    sts = _statefulset(
        3,
        6,
        {
            "observedGeneration": 6,
            "readyReplicas": 3,
            "updatedReplicas": 2,
            "currentRevision": "db-rev-old",
            "updateRevision": "db-rev-new",
        },
        strategy={"type": "RollingUpdate", "rollingUpdate": {"partition": 1}},
    )
    expectation = rollout_expectation(sts)
    assert expectation.desired_replicas == 3
    assert expectation.expected_updated_replicas == 2
    assert expectation.require_revision_alignment is False
    assert is_statefulset_rollout_complete(sts) is True


def test_on_delete_can_be_complete_without_auto_update():
    sts = _statefulset(
        3,
        4,
        {
            "observedGeneration": 4,
            "readyReplicas": 3,
            "updatedReplicas": 0,
            "currentRevision": "db-rev-old",
            "updateRevision": "db-rev-new",
        },
        strategy={"type": "OnDelete"},
    )
    expectation = rollout_expectation(sts)
    assert expectation.expected_updated_replicas == 0
    assert expectation.require_revision_alignment is False
    assert is_statefulset_rollout_complete(sts) is True


def test_unpartitioned_rollout_requires_revision_alignment():
    status = {
        "observedGeneration": 2,
        "readyReplicas": 3,
        "updatedReplicas": 3,
        "currentRevision": "db-rev-old",
        "updateRevision": "db-rev-new",
    }
    sts = _statefulset(3, 2, status)
    assert rollout_expectation(sts).require_revision_alignment is True
    assert is_statefulset_rollout_complete(sts) is False

    aligned = _statefulset(3, 2, dict(status, currentRevision="db-rev-new"))
    assert is_statefulset_rollout_complete(aligned) is True


def test_missing_replicas_defaults_to_one():
    sts = _statefulset(None, 1, {"observedGeneration": 1, "readyReplicas": 1, "updatedReplicas": 1})
    expectation = rollout_expectation(sts)
    assert expectation.desired_replicas == 1
    assert expectation.expected_updated_replicas == 1
    assert is_statefulset_rollout_complete(sts) is True


def test_partition_at_or_above_desired_expects_no_updates():
    sts = _statefulset(
        2,
        1,
        {"observedGeneration": 1, "readyReplicas": 2, "updatedReplicas": 0},
        strategy={"rollingUpdate": {"partition": 5}},
    )
    expectation = rollout_expectation(sts)
    assert expectation.expected_updated_replicas == 0
    assert is_statefulset_rollout_complete(sts) is True


def test_negative_values_are_clamped():
    sts = _statefulset(
        -1,
        0,
        {"observedGeneration": 0, "readyReplicas": 0},
        strategy={"type": "RollingUpdate", "rollingUpdate": {"partition": -4}},
    )
    expectation = rollout_expectation(sts)
    assert expectation.desired_replicas == 0
    assert expectation.require_revision_alignment is False
    assert is_statefulset_rollout_complete(sts) is True