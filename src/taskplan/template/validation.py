"""Whole-template validation.

Every check runs to completion and all violations are reported together:
- lookup keys (explicit aliases and defaulted service names) are unique
- references resolve to a node earlier in causal order
- version ranges and retry policies are well formed
- condition operands are comparable
"""

from __future__ import annotations

from taskplan.errors import ReferenceSyntaxError, ValidationError

from .expressions import ReferenceExpression, check_comparable, find_references
from .nodes import (
    BranchOnFailure,
    ConditionNode,
    Node,
    ParallelNode,
    SequenceNode,
    ServiceNode,
    Template,
)
from .versions import is_valid_version_range


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class _TemplateValidator:
    def __init__(self) -> None:
        self.violations: list[str] = []
        self._keys: dict[str, tuple[str, bool]] = {}

    def _check_reference(
        self, ref: ReferenceExpression, visible: frozenset[str], location: str
    ) -> None:
        if ref.key not in visible:
            self.violations.append(
                f"{location}: reference '{ref}' does not resolve to a node that runs "
                "earlier (unknown, declared later, or in a parallel sibling)"
            )

    def _claim_key(self, node: ServiceNode, location: str) -> None:
        key = node.key
        explicit = node.alias is not None
        previous = self._keys.get(key)
        if previous is None:
            self._keys[key] = (location, explicit)
            return
        first_location, first_explicit = previous
        if explicit or first_explicit:
            self.violations.append(
                f"{location}: duplicate alias {key!r} (already used at {first_location})"
            )
        else:
            self.violations.append(
                f"{location}: service {key!r} is used more than once without an alias "
                f"(first at {first_location})"
            )

    def visit(self, node: Node, visible: frozenset[str], location: str) -> frozenset[str]:
        """Check `node`; return the keys it makes available to later nodes."""

        if isinstance(node, ServiceNode):
            return self._visit_service(node, visible, location)
        if isinstance(node, SequenceNode):
            if not node.children:
                self.violations.append(f"{location}: sequence has no children")
            current = visible
            produced: frozenset[str] = frozenset()
            for index, child in enumerate(node.children):
                keys = self.visit(child, current, f"{location}/{index}")
                current |= keys
                produced |= keys
            return produced
        if isinstance(node, ParallelNode):
            if not node.children:
                self.violations.append(f"{location}: parallel group has no children")
            produced = frozenset()
            for index, child in enumerate(node.children):
                # Siblings never see each other's outputs.
                produced |= self.visit(child, visible, f"{location}/{index}")
            return produced
        if isinstance(node, ConditionNode):
            expression = node.expression
            self._check_reference(expression.left_ref, visible, location)
            problem = check_comparable(expression.operator, expression.right_value)
            if problem:
                self.violations.append(f"{location}: {problem}")
            produced = self.visit(node.then_branch, visible, f"{location}/then")
            if node.else_branch is not None:
                produced |= self.visit(node.else_branch, visible, f"{location}/else")
            return produced

        self.violations.append(f"{location}: unsupported node {node!r}")
        return frozenset()

    def _visit_service(
        self, node: ServiceNode, visible: frozenset[str], location: str
    ) -> frozenset[str]:
        if not isinstance(node.name, str) or not node.name.strip():
            self.violations.append(f"{location}: service name must be a non-empty string")
            return frozenset()
        where = f"{location} ({node.key})"

        if not is_valid_version_range(node.version_range):
            self.violations.append(
                f"{where}: invalid version range {node.version_range!r}"
            )
        if node.alias is not None and (not isinstance(node.alias, str) or not node.alias.strip()):
            self.violations.append(f"{where}: alias must be a non-empty string")

        retry = node.retry
        if retry is not None:
            if not _is_int(retry.max_attempts) or retry.max_attempts < 1:
                self.violations.append(
                    f"{where}: retry maxAttempts must be an integer >= 1, got {retry.max_attempts!r}"
                )
            if not _is_int(retry.delay_millis) or retry.delay_millis < 0:
                self.violations.append(
                    f"{where}: retry delayMillis must be an integer >= 0, got {retry.delay_millis!r}"
                )

        try:
            references = find_references(node.configuration)
        except ReferenceSyntaxError as exc:
            self.violations.append(f"{where}: {exc}")
            references = []
        for ref in references:
            self._check_reference(ref, visible, where)

        self._claim_key(node, location)
        produced = frozenset({node.key})
        if isinstance(node.on_failure, BranchOnFailure):
            produced |= self.visit(node.on_failure.node, visible, f"{location}/onFailure")
        return produced


def collect_violations(template: Template) -> list[str]:
    validator = _TemplateValidator()
    if not template.nodes:
        validator.violations.append("template has no nodes")
    visible: frozenset[str] = frozenset()
    for index, node in enumerate(template.nodes):
        visible |= validator.visit(node, visible, f"/{index}")
    return validator.violations


def validate_template(template: Template) -> Template:
    """Return `template` unchanged, or raise ValidationError listing every violation."""

    violations = collect_violations(template)
    if violations:
        raise ValidationError(violations)
    return template
