"""Pod and node resource usage from the metrics API."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from khelper.client import ApiError, is_not_found, is_service_unavailable
from khelper.kinds import NAMESPACE_ALL

_MEBIBYTE = 1024 * 1024

_SUFFIXES = {
    "": Decimal(1),
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
    "Ki": Decimal(2**10),
    "Mi": Decimal(2**20),
    "Gi": Decimal(2**30),
    "Ti": Decimal(2**40),
    "Pi": Decimal(2**50),
    "Ei": Decimal(2**60),
}
_QUANTITY_RE = re.compile(
    r"^([+-]?(?:\d+\.?\d*|\.\d+))(?:([eE][+-]?\d+)|(Ki|Mi|Gi|Ti|Pi|Ei|n|u|m|k|M|G|T|P|E))?$"
)


class MetricsUnavailableError(RuntimeError):
    """Raised when the cluster does not serve the metrics API."""


@dataclass
class PodMetricSummary:
    name: str
    cpu_milli: int
    memory_mi: int


@dataclass
class NodeMetricSummary:
    name: str
    cpu_milli: int
    memory_mi: int


def _quantity(text: Any) -> Decimal:
    if text is None or text == "":
        return Decimal(0)
    match = _QUANTITY_RE.match(str(text).strip())
    if not match:
        raise ValueError(f"invalid quantity {text!r}")
    number, exponent, suffix = match.groups()
    if exponent:
        return Decimal(number + exponent)
    return Decimal(number) * _SUFFIXES[suffix or ""]


def _cpu_milli(usage: Mapping[str, Any]) -> int:
    return math.ceil(_quantity(usage.get("cpu")) * 1000)


def _memory_bytes(usage: Mapping[str, Any]) -> int:
    return math.ceil(_quantity(usage.get("memory")))


def _normalize_error(exc: Exception) -> Exception:
    if is_not_found(exc) or is_service_unavailable(exc):
        return MetricsUnavailableError(f"metrics API unavailable: {exc}")
    text = str(exc).lower()
    if "metrics.k8s.io" in text and "not found" in text:
        return MetricsUnavailableError(f"metrics API unavailable: {exc}")
    if "the server could not find the requested resource" in text:
        return MetricsUnavailableError(f"metrics API unavailable: {exc}")
    if isinstance(exc, ApiError):
        return exc.with_context("query metrics API")
    return exc


def _list(client: Any, resource: str, namespace: str) -> list[dict[str, Any]]:
    try:
        return client.list(resource, namespace)
    except Exception as exc:
        normalized = _normalize_error(exc)
        if normalized is exc:
            raise
        raise normalized from exc


def list_pod_metrics(client: Any, namespace: str) -> list[PodMetricSummary]:
    """Summed container usage per pod, ordered by pod name."""
    scope = "" if namespace.strip() == NAMESPACE_ALL else namespace
    out = []
    for item in _list(client, "podmetrics", scope):
        containers = item.get("containers") or []
        cpu = sum(_cpu_milli(c.get("usage") or {}) for c in containers)
        memory = sum(_memory_bytes(c.get("usage") or {}) for c in containers)
        out.append(PodMetricSummary((item.get("metadata") or {}).get("name") or "", cpu, memory // _MEBIBYTE))
    out.sort(key=lambda summary: summary.name)
    return out


def list_node_metrics(client: Any) -> list[NodeMetricSummary]:
    """Usage per node, ordered by node name."""
    out = []
    for item in _list(client, "nodemetrics", ""):
        usage = item.get("usage") or {}
        out.append(
            NodeMetricSummary(
                (item.get("metadata") or {}).get("name") or "",
                _cpu_milli(usage),
                _memory_bytes(usage) // _MEBIBYTE,
            )
        )
    out.sort(key=lambda summary: summary.name)
    return out