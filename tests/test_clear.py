import pytest

from khelper.clear import clear_evicted_pods, list_evicted_pods
from khelper.client import ApiError
from khelper.kinds import NAMESPACE_ALL


def pod(namespace, name, reason):
    return {"metadata": {"namespace": namespace, "name": name}, "status": {"reason": reason}}


class FakeClient:
    def __init__(self, *pods, delete_error=None):
        self.pods = list(pods)
        self.delete_error = delete_error
        self.list_calls = []

    def list(self, resource, namespace="", label_selector="", field_selector=""):
        self.list_calls.append((resource, namespace, field_selector))
        return [p for p in self.pods if not namespace or p["metadata"]["namespace"] == namespace]

    def delete(self, resource, namespace, name):
        if self.delete_error:
            raise self.delete_error
        self.pods = [p for p in self.pods if (p["metadata"]["namespace"], p["metadata"]["name"]) != (namespace, name)]


def test_list_filters_and_sorts():
    client = FakeClient(
        pod("shop", "payment-2", "Evicted"),
        pod("shop", "payment-1", "Evicted"),
        pod("ops", "cache-1", "Running"),
        pod("ops", "cache-0", "Evicted"),
    )
    pods = list_evicted_pods(client, NAMESPACE_ALL)
    got = [(p["metadata"]["namespace"], p["metadata"]["name"]) for p in pods]
    assert got == [("ops", "cache-0"), ("shop", "payment-1"), ("shop", "payment-2")]
    assert client.list_calls[0][1] == ""


def test_dry_run_does_not_delete():
    client = FakeClient(pod("shop", "payment-evicted", "Evicted"), pod("shop", "payment-running", "Running"))
    result = clear_evicted_pods(client, "shop", True)
    assert result.target == "evicted"
    assert result.dry_run
    assert result.matched == 1
    assert result.deleted == 0
    assert [p.action for p in result.pods] == ["would-delete"]
    assert len(client.pods) == 2


def test_deletes_pods():
    client = FakeClient(pod("shop", "payment-evicted", "Evicted"), pod("shop", "payment-running", "Running"))
    result = clear_evicted_pods(client, "shop", False)
    assert not result.dry_run
    assert result.matched == 1
    assert result.deleted == 1
    assert [p.action for p in result.pods] == ["deleted"]
    assert [p["metadata"]["name"] for p in client.pods] == ["payment-running"]


def test_already_gone_not_counted():
    client = FakeClient(pod("shop", "payment-evicted", "Evicted"), delete_error=ApiError(404, "NotFound"))
    result = clear_evicted_pods(client, "shop", False)
    assert result.matched == 1
    assert result.deleted == 0
    assert [p.action for p in result.pods] == ["already-gone"]


def test_other_delete_error_raises():
    client = FakeClient(pod("shop", "payment-evicted", "Evicted"), delete_error=ApiError(500, message="boom"))
    with pytest.raises(ApiError, match="delete pod shop/payment-evicted"):
        clear_evicted_pods(client, "shop", False)


def test_uses_failed_phase_field_selector():
    client = FakeClient(pod("shop", "a", "Evicted"))
    list_evicted_pods(client, "shop")
    assert client.list_calls == [("pods", "shop", "status.phase=Failed")]


def test_blank_namespace_defaults():
    client = FakeClient()
    result = clear_evicted_pods(client, "  ", True)
    assert result.namespace == "default"
    assert client.list_calls[0][1] == "default"