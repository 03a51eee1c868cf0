"""Label selectors: building, rendering, parsing and matching."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

LABEL_APP = "app"
LABEL_APP_NAME = "app.kubernetes.io/name"

_KEY_PATTERN = r"[A-Za-z0-9](?:[-A-Za-z0-9_./]*[A-Za-z0-9])?"
_VALUE_PATTERN = r"(?:[A-Za-z0-9](?:[-A-Za-z0-9_.]*[A-Za-z0-9])?)?"

_EXISTS_RE = re.compile(rf"^({_KEY_PATTERN})$")
_NOT_EXISTS_RE = re.compile(rf"^!\s*({_KEY_PATTERN})$")
_SET_RE = re.compile(rf"^({_KEY_PATTERN})\s+(in|notin)\s*\((.*)\)$")
_EQUALITY_RE = re.compile(rf"^({_KEY_PATTERN})\s*(==|!=|=)\s*({_VALUE_PATTERN})$")
_COMPARE_RE = re.compile(rf"^({_KEY_PATTERN})\s*(>|<)\s*(-?\d+)$")
_VALUE_RE = re.compile(rf"^{_VALUE_PATTERN}$")


class SelectorError(ValueError):
    """Raised when a selector cannot be built or parsed."""


class Operator(enum.Enum):
    EQUALS = "="
    NOT_EQUALS = "!="
    IN = "in"
    NOT_IN = "notin"
    EXISTS = "exists"
    DOES_NOT_EXIST = "!"
    GREATER_THAN = ">"
    LESS_THAN = "<"


@dataclass(frozen=True)
class Requirement:
    """One condition of a label selector."""

    key: str
    operator: Operator
    values: tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        present = self.key in labels
        value = labels.get(self.key)
        op = self.operator
        if op is Operator.EXISTS:
            return present
        if op is Operator.DOES_NOT_EXIST:
            return not present
        if op is Operator.EQUALS:
            return present and value == self.values[0]
        if op is Operator.NOT_EQUALS:
            return not present or value != self.values[0]
        if op is Operator.IN:
            return present and value in self.values
        if op is Operator.NOT_IN:
            return not present or value not in self.values
        if not present:
            return False
        try:
            actual = int(value)
        except (TypeError, ValueError):
            return False
        limit = int(self.values[0])
        return actual > limit if op is Operator.GREATER_THAN else actual < limit

    def __str__(self) -> str:
        op = self.operator
        if op is Operator.EXISTS:
            return self.key
        if op is Operator.DOES_NOT_EXIST:
            return f"!{self.key}"
        if op in (Operator.IN, Operator.NOT_IN):
            return f"{self.key} {op.value} ({','.join(sorted(self.values))})"
        return f"{self.key}{op.value}{self.values[0]}"


@dataclass(frozen=True)
class LabelSelector:
    """A conjunction of label requirements; empty selects everything."""

    requirements: tuple[Requirement, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        """Return True if every requirement holds for the given labels."""
        return all(req.matches(labels) for req in self.requirements)

    def __str__(self) -> str:
        return ",".join(str(req) for req in self.requirements)


def _sorted_selector(requirements: Iterable[Requirement]) -> LabelSelector:
    return LabelSelector(tuple(sorted(requirements, key=lambda r: r.key)))


def target_selectors(target: str) -> list[str]:
    """Default selectors used to resolve a target, in precedence order."""
    target = target.strip()
    if not target:
        return []
    return [f"{LABEL_APP}={target}", f"{LABEL_APP_NAME}={target}"]


def selector_from_labels(labels: Mapping[str, str] | None) -> str:
    """Render labels as an equality selector with keys in sorted order."""
    if not labels:
        return ""
    return ",".join(f"{key}={labels[key]}" for key in sorted(labels))


_EXPRESSION_OPERATORS = {
    "In": Operator.IN,
    "NotIn": Operator.NOT_IN,
    "Exists": Operator.EXISTS,
    "DoesNotExist": Operator.DOES_NOT_EXIST,
}


def selector_from_label_selector(selector: Mapping[str, Any] | None) -> str:
    """Render a structured label selector (matchLabels/matchExpressions) as text."""
    if selector is None:
        return ""
    requirements = []
    for key, value in (selector.get("matchLabels") or {}).items():
        if not key:
            raise SelectorError("convert label selector: empty label key")
        if not _VALUE_RE.match(str(value)):
            raise SelectorError(f"convert label selector: invalid label value {value!r}")
        requirements.append(Requirement(key, Operator.EQUALS, (str(value),)))
    for expression in selector.get("matchExpressions") or []:
        key = expression.get("key") or ""
        name = expression.get("operator") or ""
        values = tuple(expression.get("values") or ())
        if not key:
            raise SelectorError("convert label selector: empty label key")
        operator = _EXPRESSION_OPERATORS.get(name)
        if operator is None:
            raise SelectorError(f'convert label selector: "{name}" is not a valid label selector operator')
        if operator in (Operator.IN, Operator.NOT_IN) and not values:
            raise SelectorError(f"convert label selector: values for {key!r} must be non-empty")
        if operator in (Operator.EXISTS, Operator.DOES_NOT_EXIST) and values:
            raise SelectorError(f"convert label selector: values for {key!r} must be empty")
        requirements.append(Requirement(key, operator, values))
    return str(_sorted_selector(requirements))


def _split_terms(text: str) -> list[str]:
    terms: list[str] = []
    depth = 0
    current: list[str] = []
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise SelectorError("unbalanced parentheses")
        if char == "," and depth == 0:
            terms.append("".join(current))
            current = []
        else:
            current.append(char)
    if depth != 0:
        raise SelectorError("unbalanced parentheses")
    terms.append("".join(current))
    return terms


def _parse_term(term: str) -> Requirement:
    if match := _NOT_EXISTS_RE.match(term):
        return Requirement(match.group(1), Operator.DOES_NOT_EXIST)
    if match := _SET_RE.match(term):
        key, op, body = match.groups()
        values = tuple(v.strip() for v in body.split(","))
        if any(not _VALUE_RE.match(v) for v in values):
            raise SelectorError(f"invalid value in {term!r}")
        operator = Operator.IN if op == "in" else Operator.NOT_IN
        return Requirement(key, operator, values)
    if match := _EQUALITY_RE.match(term):
        key, op, value = match.groups()
        operator = Operator.NOT_EQUALS if op == "!=" else Operator.EQUALS
        return Requirement(key, operator, (value,))
    if match := _COMPARE_RE.match(term):
        key, op, value = match.groups()
        operator = Operator.GREATER_THAN if op == ">" else Operator.LESS_THAN
        return Requirement(key, operator, (value,))
    if match := _EXISTS_RE.match(term):
        return Requirement(match.group(1), Operator.EXISTS)
    raise SelectorError(f"invalid requirement {term!r}")


def parse_selector(selector: str) -> LabelSelector:
    """Parse a textual label selector."""
    text = selector.strip()
    if not text:
        return LabelSelector()
    try:
        requirements = [_parse_term(term.strip()) for term in _split_terms(text)]
    except SelectorError as exc:
        raise SelectorError(f'parse selector "{selector}": {exc}') from exc
    return _sorted_selector(requirements)