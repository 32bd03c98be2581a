"""Canonical JSON encoding of templates.

The document mirrors the node model. Keys are camelCase, optional keys are
omitted when unset, and child order is preserved (including parallel
children, whose listed order carries no execution meaning).
"""

from __future__ import annotations

import copy
import json
from typing import Any

from taskplan.errors import ReferenceSyntaxError, ValidationError

from .expressions import parse_operator, parse_reference
from .nodes import (
    BranchOnFailure,
    ConditionExpression,
    ConditionNode,
    FailurePolicy,
    Node,
    ParallelNode,
    RetryPolicy,
    SequenceNode,
    ServiceNode,
    SkipOnFailure,
    Template,
)
from .validation import validate_template
from .versions import ANY_VERSION

NODE_TYPES = ("service", "sequence", "parallel", "condition")


def node_to_json(node: Node) -> dict[str, Any]:
    if isinstance(node, ServiceNode):
        out: dict[str, Any] = {
            "type": "service",
            "name": node.name,
            "versionRange": node.version_range,
        }
        if node.configuration is not None:
            out["configuration"] = copy.deepcopy(node.configuration)
        if node.alias is not None:
            out["alias"] = node.alias
        if node.retry is not None:
            out["retry"] = {
                "maxAttempts": node.retry.max_attempts,
                "delayMillis": node.retry.delay_millis,
            }
        if isinstance(node.on_failure, SkipOnFailure):
            out["onFailure"] = {"type": "skip"}
        elif isinstance(node.on_failure, BranchOnFailure):
            out["onFailure"] = {"type": "branch", "node": node_to_json(node.on_failure.node)}
        return out
    if isinstance(node, SequenceNode):
        return {"type": "sequence", "children": [node_to_json(c) for c in node.children]}
    if isinstance(node, ParallelNode):
        return {"type": "parallel", "children": [node_to_json(c) for c in node.children]}
    if isinstance(node, ConditionNode):
        out = {
            "type": "condition",
            "expression": {
                "leftRef": str(node.expression.left_ref),
                "operator": node.expression.operator.value,
                "rightValue": copy.deepcopy(node.expression.right_value),
            },
            "then": node_to_json(node.then_branch),
        }
        if node.else_branch is not None:
            out["else"] = node_to_json(node.else_branch)
        return out
    raise TypeError(f"Not a template node: {node!r}")


def template_to_json(template: Template) -> dict[str, Any] | list[dict[str, Any]]:
    """Validate and encode. A single root is an object, several top-level nodes a list."""

    validate_template(template)
    if len(template.nodes) == 1:
        return node_to_json(template.nodes[0])
    return [node_to_json(n) for n in template.nodes]


class _TemplateReader:
    """Decodes a JSON document, recording every structural problem it meets."""

    def __init__(self) -> None:
        self.violations: list[str] = []

    def _fail(self, location: str, message: str) -> None:
        self.violations.append(f"{location}: {message}")

    def read_node(self, obj: object, location: str) -> Node | None:
        if not isinstance(obj, dict):
            self._fail(location, f"expected a node object, got {type(obj).__name__}")
            return None
        node_type = obj.get("type")
        if node_type == "service":
            return self._read_service(obj, location)
        if node_type in ("sequence", "parallel"):
            children = self._read_children(obj.get("children"), location)
            if children is None:
                return None
            if node_type == "sequence":
                return SequenceNode(children=children)
            return ParallelNode(children=children)
        if node_type == "condition":
            return self._read_condition(obj, location)
        self._fail(location, f"unknown node type {node_type!r} (expected one of {NODE_TYPES})")
        return None

    def _read_children(self, raw: object, location: str) -> tuple[Node, ...] | None:
        if not isinstance(raw, list):
            self._fail(location, "'children' must be a list")
            return None
        children = [self.read_node(item, f"{location}/{i}") for i, item in enumerate(raw)]
        if any(c is None for c in children):
            return None
        return tuple(c for c in children if c is not None)

    def _read_service(self, obj: dict[str, Any], location: str) -> ServiceNode | None:
        name = obj.get("name")
        if not isinstance(name, str):
            self._fail(location, "service 'name' must be a string")
            return None
        version_range = obj.get("versionRange", ANY_VERSION)
        if not isinstance(version_range, str):
            self._fail(location, "'versionRange' must be a string")
            version_range = ANY_VERSION
        alias = obj.get("alias")
        if alias is not None and not isinstance(alias, str):
            self._fail(location, "'alias' must be a string")
            alias = None

        retry: RetryPolicy | None = None
        raw_retry = obj.get("retry")
        if raw_retry is not None:
            if isinstance(raw_retry, dict) and "maxAttempts" in raw_retry:
                retry = RetryPolicy(
                    max_attempts=raw_retry["maxAttempts"],
                    delay_millis=raw_retry.get("delayMillis", 0),
                )
            else:
                self._fail(location, "'retry' must be an object with 'maxAttempts'")

        on_failure: FailurePolicy | None = None
        raw_failure = obj.get("onFailure")
        if raw_failure is not None:
            failure_type = raw_failure.get("type") if isinstance(raw_failure, dict) else None
            if failure_type == "skip":
                on_failure = SkipOnFailure()
            elif failure_type == "branch":
                branch = self.read_node(raw_failure.get("node"), f"{location}/onFailure")
                if branch is not None:
                    on_failure = BranchOnFailure(node=branch)
            else:
                self._fail(
                    location,
                    "'onFailure' must be {'type': 'skip'} or {'type': 'branch', 'node': ...}",
                )

        return ServiceNode(
            name=name,
            version_range=version_range,
            configuration=copy.deepcopy(obj.get("configuration")),
            alias=alias,
            retry=retry,
            on_failure=on_failure,
        )

    def _read_condition(self, obj: dict[str, Any], location: str) -> ConditionNode | None:
        raw_expression = obj.get("expression")
        expression: ConditionExpression | None = None
        if not isinstance(raw_expression, dict):
            self._fail(location, "'expression' must be an object")
        elif "rightValue" not in raw_expression:
            self._fail(location, "'expression' is missing 'rightValue'")
        else:
            try:
                expression = ConditionExpression(
                    left_ref=parse_reference(raw_expression.get("leftRef")),
                    operator=parse_operator(raw_expression.get("operator")),
                    right_value=copy.deepcopy(raw_expression["rightValue"]),
                )
            except ReferenceSyntaxError as exc:
                self._fail(location, str(exc))

        if "then" not in obj:
            self._fail(location, "condition has no 'then' branch")
            return None
        then_branch = self.read_node(obj["then"], f"{location}/then")
        else_branch = None
        if obj.get("else") is not None:
            else_branch = self.read_node(obj["else"], f"{location}/else")
            if else_branch is None:
                return None
        if expression is None or then_branch is None:
            return None
        return ConditionNode(
            expression=expression, then_branch=then_branch, else_branch=else_branch
        )


def template_from_json(document: object) -> Template:
    """Rebuild a Template, raising ValidationError with every problem found."""

    reader = _TemplateReader()
    if isinstance(document, list):
        raw_nodes = document
    elif isinstance(document, dict):
        raw_nodes = [document]
    else:
        raise ValidationError(
            f"template must be a node object or a list of nodes, got {type(document).__name__}"
        )

    nodes = [reader.read_node(raw, f"/{i}") for i, raw in enumerate(raw_nodes)]
    if reader.violations:
        raise ValidationError(reader.violations)
    return validate_template(Template(nodes=tuple(n for n in nodes if n is not None)))


def dumps(template: Template, *, indent: int | None = 2) -> str:
    return json.dumps(template_to_json(template), indent=indent, ensure_ascii=False)


def loads(text: str) -> Template:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"template is not valid JSON: {exc}") from exc
    return template_from_json(document)


__all__ = [
    "dumps",
    "loads",
    "node_to_json",
    "template_from_json",
    "template_to_json",
]
