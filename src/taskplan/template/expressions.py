"""Reference expressions and condition comparisons.

A reference reads the output of an earlier node:

    service{<alias-or-name>}.<dot.path>

The same parsing is used when a template is built (syntax and causal-order
checks) and when an operator evaluates it against produced outputs.
"""

from __future__ import annotations

import operator as _op
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from taskplan.errors import (
    ConditionEvaluationError,
    ReferenceResolutionError,
    ReferenceSyntaxError,
)

REFERENCE_PREFIX = "service{"

_REFERENCE_RE = re.compile(r"^service\{(?P<key>[^{}]+)\}\.(?P<path>[^{}]+)$")


class ComparisonOperator(str, Enum):
    EQ = "==="
    NE = "!=="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="

    @property
    def is_ordering(self) -> bool:
        return self not in (ComparisonOperator.EQ, ComparisonOperator.NE)


_ORDERING: dict[ComparisonOperator, Callable[[Any, Any], bool]] = {
    ComparisonOperator.GT: _op.gt,
    ComparisonOperator.LT: _op.lt,
    ComparisonOperator.GE: _op.ge,
    ComparisonOperator.LE: _op.le,
}


@dataclass(frozen=True, slots=True)
class ReferenceExpression:
    """A parsed `service{key}.path` reference."""

    key: str
    path: tuple[str, ...]

    def __str__(self) -> str:
        return f"{REFERENCE_PREFIX}{self.key}}}.{'.'.join(self.path)}"


def parse_reference(text: object) -> ReferenceExpression:
    """Parse a reference string, raising ReferenceSyntaxError on malformed input."""

    if not isinstance(text, str):
        raise ReferenceSyntaxError(f"reference must be a string, got {type(text).__name__}")
    if not text.startswith(REFERENCE_PREFIX):
        raise ReferenceSyntaxError(f"reference {text!r} must start with {REFERENCE_PREFIX!r}")

    close = text.find("}", len(REFERENCE_PREFIX))
    if close == -1:
        raise ReferenceSyntaxError(f"reference {text!r} has unbalanced braces")
    key = text[len(REFERENCE_PREFIX) : close]
    rest = text[close + 1 :]
    if "{" in key or "{" in rest or "}" in rest:
        raise ReferenceSyntaxError(f"reference {text!r} has unbalanced braces")
    if not key.strip():
        raise ReferenceSyntaxError(f"reference {text!r} names no alias or service")
    if not rest.startswith("."):
        raise ReferenceSyntaxError(f"reference {text!r} must be followed by '.<path>'")

    path = rest[1:]
    if not path:
        raise ReferenceSyntaxError(f"reference {text!r} has an empty path")
    segments = tuple(path.split("."))
    if any(not s for s in segments):
        raise ReferenceSyntaxError(f"reference {text!r} has an empty path segment")
    return ReferenceExpression(key=key, path=segments)


def is_reference(value: object) -> bool:
    return isinstance(value, str) and _REFERENCE_RE.match(value) is not None


def find_references(value: object) -> list[ReferenceExpression]:
    """Collect every reference string embedded in a configuration value."""

    found: list[ReferenceExpression] = []
    if is_reference(value):
        found.append(parse_reference(value))
    elif isinstance(value, Mapping):
        for item in value.values():
            found.extend(find_references(item))
    elif isinstance(value, (list, tuple)):
        for item in value:
            found.extend(find_references(item))
    return found


def resolve_reference(ref: ReferenceExpression, outputs: Mapping[str, Any]) -> Any:
    if ref.key not in outputs:
        raise ReferenceResolutionError(f"{ref}: {ref.key!r} has produced no output")

    value = outputs[ref.key]
    for segment in ref.path:
        if isinstance(value, Mapping) and segment in value:
            value = value[segment]
        elif (
            isinstance(value, (list, tuple))
            and segment.isdigit()
            and int(segment) < len(value)
        ):
            value = value[int(segment)]
        else:
            raise ReferenceResolutionError(f"{ref}: no value at {segment!r}")
    return value


def resolve_configuration(value: Any, outputs: Mapping[str, Any]) -> Any:
    """Return a copy of `value` with every reference string replaced by its value."""

    if is_reference(value):
        return resolve_reference(parse_reference(value), outputs)
    if isinstance(value, Mapping):
        return {k: resolve_configuration(v, outputs) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_configuration(v, outputs) for v in value]
    return value


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _orderable(left: object, right: object) -> bool:
    if _is_number(left) and _is_number(right):
        return True
    return isinstance(left, str) and isinstance(right, str)


def structurally_equal(left: object, right: object) -> bool:
    # Booleans never equal numbers, unlike Python's own ==.
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        return left.keys() == right.keys() and all(
            structurally_equal(left[k], right[k]) for k in left
        )
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(
            structurally_equal(a, b) for a, b in zip(left, right)
        )
    return type(left) is type(right) and left == right


def parse_operator(value: object) -> ComparisonOperator:
    try:
        return ComparisonOperator(value)
    except ValueError:
        allowed = ", ".join(o.value for o in ComparisonOperator)
        raise ReferenceSyntaxError(
            f"unknown comparison operator {value!r} (expected one of {allowed})"
        ) from None


def check_comparable(operator: ComparisonOperator, right_value: object) -> str | None:
    """Build-time check of a condition's literal operand; returns a violation or None."""

    if operator.is_ordering and not (_is_number(right_value) or isinstance(right_value, str)):
        return (
            f"operator {operator.value!r} needs a number or string operand, "
            f"got {right_value!r}"
        )
    return None


def compare(left: object, operator: ComparisonOperator, right: object) -> bool:
    if operator is ComparisonOperator.EQ:
        return structurally_equal(left, right)
    if operator is ComparisonOperator.NE:
        return not structurally_equal(left, right)
    if not _orderable(left, right):
        raise ConditionEvaluationError(
            f"cannot compare {left!r} {operator.value} {right!r}: operands are not ordered alike"
        )
    return _ORDERING[operator](left, right)
