from khelper.events import (
    EventObjectRef,
    list_events_by_objects,
    list_events_by_objects_with_pod_name_prefixes,
)
from khelper.kinds import KIND_DEPLOYMENT, KIND_POD


def event(name, namespace, kind, object_name, uid=""):
    meta = {"name": name, "namespace": namespace}
    if uid:
        meta["uid"] = uid
    return {"metadata": meta, "involvedObject": {"kind": kind, "name": object_name}}


class FakeClient:
    def __init__(self, *events):
        self.events = list(events)
        self.field_selectors = []

    def list(self, resource, namespace="", label_selector="", field_selector=""):
        self.field_selectors.append(field_selector)
        return [e for e in self.events if e["metadata"]["namespace"] == namespace]


def test_returns_only_requested():
    client = FakeClient(
        event("dep-event", "shop", "Deployment", "payment"),
        event("pod-event", "shop", "Pod", "payment-abc"),
        event("rs-event", "shop", "ReplicaSet", "payment-7f4d9b4b5"),
        event("other-event", "shop", "Pod", "checkout-abc"),
    )
    events = list_events_by_objects(
        client,
        "shop",
        [
            EventObjectRef(KIND_DEPLOYMENT, "payment"),
            EventObjectRef(KIND_POD, "payment-abc"),
            EventObjectRef("replicaset", "payment-7f4d9b4b5"),
        ],
    )
    assert [e["metadata"]["name"] for e in events] == ["dep-event", "pod-event", "rs-event"]


def test_object_scoped_queries_for_large_input():
    client = FakeClient(
        event("pod-event-0", "shop", "Pod", "payment-00"),
        event("pod-event-1", "shop", "Pod", "payment-01"),
        event("pod-event-foreign", "shop", "Pod", "checkout-00"),
    )
    refs = [EventObjectRef(KIND_POD, f"payment-{i:02d}") for i in range(25)]
    events = list_events_by_objects(client, "shop", refs)
    assert {e["metadata"]["name"] for e in events} == {"pod-event-0", "pod-event-1"}
    assert len(client.field_selectors) == 25
    assert "involvedObject.kind=Pod" not in client.field_selectors
    assert "involvedObject.kind=Pod,involvedObject.name=payment-00" in client.field_selectors


def test_pod_name_prefixes_included():
    client = FakeClient(
        event("stale-pod-event", "shop", "Pod", "frontend-84578d7b58-6v59m"),
        event("current-pod-event", "shop", "Pod", "frontend-84578d7b58-k8mtn"),
        event("foreign-pod-event", "shop", "Pod", "checkout-7bf5f9d8cf-2nfhx"),
    )
    events = list_events_by_objects_with_pod_name_prefixes(
        client,
        "shop",
        [EventObjectRef(KIND_DEPLOYMENT, "frontend"), EventObjectRef("replicaset", "frontend-84578d7b58")],
        ["frontend-84578d7b58-"],
    )
    assert [e["metadata"]["name"] for e in events] == ["current-pod-event", "stale-pod-event"]


def test_empty_input_makes_no_calls():
    client = FakeClient(event("a", "shop", "Pod", "x"))
    assert list_events_by_objects_with_pod_name_prefixes(client, "shop", [EventObjectRef("", "x")], [" "]) == []
    assert client.field_selectors == []


def test_duplicates_removed_by_uid():
    client = FakeClient(
        event("e1", "shop", "Pod", "payment-1", uid="u1"),
    )
    events = list_events_by_objects_with_pod_name_prefixes(
        client, "shop", [EventObjectRef("pods", "payment-1")], ["payment-"]
    )
    assert len(events) == 1
    assert events[0]["metadata"]["uid"] == "u1"