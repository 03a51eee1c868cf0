import pytest

from khelper.selectors import (
    SelectorError,
    parse_selector,
    selector_from_label_selector,
    selector_from_labels,
    target_selectors,
)


def test_target_selectors_precedence():
    selectors = target_selectors("payment")
    assert selectors == ["app=payment", "app.kubernetes.io/name=payment"]


def test_target_selectors_empty_target():
    assert target_selectors("   ") == []


def test_selector_from_labels_sorted():
    assert selector_from_labels({"tier": "backend", "app": "payment"}) == "app=payment,tier=backend"


def test_selector_from_labels_empty():
    assert selector_from_labels({}) == ""
    assert selector_from_labels(None) == ""


def test_selector_from_label_selector_formatting():
    sel = selector_from_label_selector(
        {
            "matchLabels": {"app": "payment"},
            "matchExpressions": [
                {"key": "tier", "operator": "In", "values": ["backend", "api"]},
            ],
        }
    )
    assert sel == "app=payment,tier in (api,backend)"
    parsed = parse_selector(sel)
    assert parsed.matches({"app": "payment", "tier": "backend"})
    assert not parsed.matches({"app": "payment", "tier": "web"})


def test_selector_from_label_selector_none_and_empty():
    assert selector_from_label_selector(None) == ""
    assert selector_from_label_selector({}) == ""


def test_selector_from_label_selector_rejects_bad_expressions():
    with pytest.raises(SelectorError):
        selector_from_label_selector({"matchExpressions": [{"key": "tier", "operator": "In", "values": []}]})
    with pytest.raises(SelectorError):
        selector_from_label_selector({"matchExpressions": [{"key": "tier", "operator": "Exists", "values": ["x"]}]})
    with pytest.raises(SelectorError):
        selector_from_label_selector({"matchExpressions": [{"key": "tier", "operator": "Near"}]})


def test_exists_and_not_exists_round_trip():
    sel = selector_from_label_selector(
        {
            "matchExpressions": [
                {"key": "tier", "operator": "Exists"},
                {"key": "canary", "operator": "DoesNotExist"},
            ]
        }
    )
    parsed = parse_selector(sel)
    assert str(parsed) == sel
    assert parsed.matches({"tier": "x"})
    assert not parsed.matches({"tier": "x", "canary": "yes"})
    assert not parsed.matches({})


def test_parse_selector_operators():
    parsed = parse_selector("app=payment, env!=prod, tier notin (web), replicas>2")
    assert parsed.matches({"app": "payment", "env": "dev", "tier": "api", "replicas": "3"})
    assert not parsed.matches({"app": "payment", "env": "prod", "tier": "api", "replicas": "3"})
    assert not parsed.matches({"app": "payment", "tier": "web", "replicas": "3"})
    assert not parsed.matches({"app": "payment", "replicas": "1"})
    assert not parsed.matches({"app": "payment", "replicas": "many"})


def test_parse_empty_selector_matches_everything():
    parsed = parse_selector("")
    assert parsed.matches({"anything": "goes"})
    assert str(parsed) == ""


def test_parse_selector_round_trip_is_sorted():
    parsed = parse_selector("tier=backend,app=payment")
    assert str(parsed) == "app=payment,tier=backend"
    assert str(parse_selector(str(parsed))) == str(parsed)


@pytest.mark.parametrize("text", ["app=(", "=value", "app in (a", "app in a)", "a b"])
def test_parse_selector_errors(text):
    with pytest.raises(SelectorError, match="parse selector"):
        parse_selector(text)