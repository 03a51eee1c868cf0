import pytest

from khelper.kinds import KIND_DEPLOYMENT, KIND_STATEFULSET, InvalidKindError
from khelper.revisions import (
    apply_container_image_updates,
    build_tag_image_assignments,
    controller_revision_owned_by_statefulset,
    image_with_tag,
    normalize_rollout_kind,
    parse_deployment_revision,
    pick_target_revision,
    pod_template_from_controller_revision,
    pod_template_images,
    replica_set_owned_by_deployment,
    strip_patch_directives,
)


def spec_with(*containers):
    return {"containers": [{"name": name, "image": image} for name, image in containers]}


def test_tag_single_container():
    spec = spec_with(("server", "ghcr.io/acme/frontend:v7"))
    assert build_tag_image_assignments(spec, "frontend", "v1.0.1") == {
        "server": "ghcr.io/acme/frontend:v1.0.1"
    }


def test_tag_multiple_containers_by_hint():
    spec = spec_with(("app", "ghcr.io/acme/app:v1"), ("sidecar", "ghcr.io/acme/sidecar:v1"))
    assert build_tag_image_assignments(spec, "sidecar", "v2") == {"sidecar": "ghcr.io/acme/sidecar:v2"}


def test_tag_multiple_containers_without_hint():
    spec = spec_with(("app", "ghcr.io/acme/app:v1"), ("sidecar", "ghcr.io/acme/sidecar:v1"))
    with pytest.raises(ValueError, match=r"multiple containers found \(app, sidecar\)"):
        build_tag_image_assignments(spec, "frontend", "v2")


def test_tag_digest_pinned_image():
    spec = spec_with(("server", "ghcr.io/acme/frontend@sha256:abcdef"))
    with pytest.raises(ValueError, match="digest-pinned"):
        build_tag_image_assignments(spec, "frontend", "v1.0.1")


def test_tag_requires_tag_and_containers():
    with pytest.raises(ValueError, match="image tag is required"):
        build_tag_image_assignments(spec_with(("a", "nginx")), "", " ")
    with pytest.raises(ValueError, match="no containers"):
        build_tag_image_assignments({"containers": []}, "", "v1")


def test_image_with_tag_keeps_registry_port():
    assert image_with_tag("registry.local:5000/acme/frontend:v7", "v1.0.1") == (
        "registry.local:5000/acme/frontend:v1.0.1"
    )


def test_image_with_tag_adds_tag_when_missing():
    assert image_with_tag("registry.local:5000/acme/frontend", "v2") == "registry.local:5000/acme/frontend:v2"
    assert image_with_tag("nginx", "1.27") == "nginx:1.27"


def test_image_with_tag_rejects_empty_image():
    with pytest.raises(ValueError, match="current image is empty"):
        image_with_tag("  ", "v1")


@pytest.mark.parametrize(
    "kind, expected",
    [("deploy", KIND_DEPLOYMENT), ("sts", KIND_STATEFULSET), ("Deployment.apps", KIND_DEPLOYMENT)],
)
def test_normalize_rollout_kind(kind, expected):
    assert normalize_rollout_kind(kind) == expected


def test_normalize_rollout_kind_rejects_pod_and_empty():
    with pytest.raises(ValueError, match="only deployment/statefulset"):
        normalize_rollout_kind("pod")
    with pytest.raises(ValueError, match="single workload kind"):
        normalize_rollout_kind("")
    with pytest.raises(InvalidKindError):
        normalize_rollout_kind("daemonset")


@pytest.mark.parametrize(
    "annotations, expected",
    [
        ({"deployment.kubernetes.io/revision": "5"}, 5),
        ({"deployment.kubernetes.io/revision": " 7 "}, 7),
        ({"deployment.kubernetes.io/revision": "abc"}, 0),
        ({"deployment.kubernetes.io/revision": ""}, 0),
        ({}, 0),
        (None, 0),
    ],
)
def test_parse_deployment_revision(annotations, expected):
    assert parse_deployment_revision(annotations) == expected


def test_pick_target_revision_previous_of_current():
    assert pick_target_revision([1, 2, 3], 3, 0) == 2
    assert pick_target_revision([1, 2, 5], 4, 0) == 2


def test_pick_target_revision_requested():
    assert pick_target_revision([1, 2, 3], 3, 1) == 1
    with pytest.raises(ValueError, match="requested revision 5 not found"):
        pick_target_revision([1, 2, 3], 3, 5)


def test_pick_target_revision_without_current():
    assert pick_target_revision([1, 2, 3], 0, 0) == 2
    with pytest.raises(ValueError, match="at least two revisions"):
        pick_target_revision([1], 0, 0)


def test_pick_target_revision_errors():
    with pytest.raises(ValueError, match="no previous revision found before current revision 1"):
        pick_target_revision([1], 1, 0)
    with pytest.raises(ValueError, match="no rollout revisions found"):
        pick_target_revision([], 0, 0)


def test_pod_template_images_sorted_including_init():
    template = {
        "spec": {
            "initContainers": [{"name": "migrate", "image": "tool:1"}],
            "containers": [{"name": "app", "image": "nginx:1.27"}, {"name": "sidecar", "image": "busybox"}],
        }
    }
    assert pod_template_images(template) == ["app=nginx:1.27", "migrate=tool:1", "sidecar=busybox"]


def test_strip_patch_directives_nested():
    value = {"$patch": "replace", "a": [{"$retainKeys": ["x"], "b": 1}, 2], "c": {"$x": 1, "d": "e"}}
    assert strip_patch_directives(value) == {"a": [{"b": 1}, 2], "c": {"d": "e"}}


def test_pod_template_from_controller_revision():
    revision = {
        "metadata": {"name": "db-1"},
        "data": {
            "spec": {
                "template": {
                    "$patch": "replace",
                    "spec": {"containers": [{"name": "db", "image": "postgres:16", "$setElementOrder/env": []}]},
                }
            }
        },
    }
    assert pod_template_from_controller_revision(revision) == {
        "spec": {"containers": [{"name": "db", "image": "postgres:16"}]}
    }


def test_pod_template_from_controller_revision_accepts_json_text():
    revision = {"metadata": {"name": "db-2"}, "data": '{"spec": {"template": {"metadata": {"labels": {"a": "b"}}}}}'}
    assert pod_template_from_controller_revision(revision) == {"metadata": {"labels": {"a": "b"}}}


def test_pod_template_from_controller_revision_errors():
    with pytest.raises(ValueError, match="controllerrevision/r has empty data"):
        pod_template_from_controller_revision({"metadata": {"name": "r"}})
    with pytest.raises(ValueError, match="does not contain spec$"):
        pod_template_from_controller_revision({"metadata": {"name": "r"}, "data": {"x": 1}})
    with pytest.raises(ValueError, match="does not contain spec.template"):
        pod_template_from_controller_revision({"metadata": {"name": "r"}, "data": {"spec": {}}})
    with pytest.raises(ValueError, match="decode controllerrevision/r data"):
        pod_template_from_controller_revision({"metadata": {"name": "r"}, "data": "{not json"})


def owned(kind, name, uid):
    return {"metadata": {"ownerReferences": [{"kind": kind, "name": name, "uid": uid}]}}


def test_replica_set_ownership_by_uid_and_name():
    rs = owned("Deployment", "payment", "dep-uid")
    assert replica_set_owned_by_deployment(rs, {"metadata": {"name": "payment", "uid": "dep-uid"}}) is True
    assert replica_set_owned_by_deployment(rs, {"metadata": {"name": "payment", "uid": "other"}}) is False
    assert replica_set_owned_by_deployment(rs, {"metadata": {"name": "payment"}}) is True
    assert replica_set_owned_by_deployment(rs, {"metadata": {"name": "checkout"}}) is False


def test_controller_revision_ownership_ignores_other_kinds():
    rev = owned("statefulset", "db", "")
    assert controller_revision_owned_by_statefulset(rev, {"metadata": {"name": "db", "uid": "x"}}) is True
    other = owned("Deployment", "db", "")
    assert controller_revision_owned_by_statefulset(other, {"metadata": {"name": "db"}}) is False


def test_apply_container_image_updates_in_place():
    spec = {
        "containers": [{"name": "app", "image": "nginx:1.25"}, {"name": "sidecar", "image": "busybox:1.36"}],
        "initContainers": [{"name": "init", "image": "tool:1"}],
    }
    applied = apply_container_image_updates(spec, {"app": "nginx:1.27", "init": "tool:2"})
    assert applied == {"app": "nginx:1.27", "init": "tool:2"}
    assert spec["containers"][0]["image"] == "nginx:1.27"
    assert spec["containers"][1]["image"] == "busybox:1.36"
    assert spec["initContainers"][0]["image"] == "tool:2"


def test_apply_container_image_updates_reports_missing_sorted():
    spec = {"containers": [{"name": "app", "image": "nginx:1.25"}]}
    with pytest.raises(ValueError, match="container\\(s\\) not found in pod template: api, worker"):
        apply_container_image_updates(spec, {"worker": "x", "api": "y"})