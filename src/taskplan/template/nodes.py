"""Node model for task templates.

A template is a tree of four node kinds:
- ServiceNode: one service invocation (the only leaf)
- SequenceNode: children run in listed order
- ParallelNode: children run concurrently
- ConditionNode: picks a branch from a comparison over earlier outputs

All types are frozen. Builders and deserializers produce new values; nothing
mutates a node after construction.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

from .expressions import (
    ComparisonOperator,
    ReferenceExpression,
    compare,
    resolve_reference,
)
from .versions import ANY_VERSION


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int
    delay_millis: int = 0


@dataclass(frozen=True, slots=True)
class SkipOnFailure:
    """Absorb the failure; execution continues without the node's output."""


@dataclass(frozen=True, slots=True)
class BranchOnFailure:
    """Run `node` in place of the failed service."""

    node: Node


FailurePolicy: TypeAlias = SkipOnFailure | BranchOnFailure


@dataclass(frozen=True, slots=True)
class ServiceNode:
    name: str
    version_range: str = ANY_VERSION
    configuration: Any = None
    alias: str | None = None
    retry: RetryPolicy | None = None
    on_failure: FailurePolicy | None = None

    @property
    def key(self) -> str:
        """Lookup key for this node's output: the alias, or the service name."""

        return self.alias if self.alias is not None else self.name


@dataclass(frozen=True, slots=True)
class SequenceNode:
    children: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class ParallelNode:
    # Listed order is kept for serialization only; execution order is unspecified.
    children: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class ConditionExpression:
    left_ref: ReferenceExpression
    operator: ComparisonOperator
    right_value: Any

    def evaluate(self, outputs: Mapping[str, Any]) -> bool:
        """Resolve the left operand against `outputs` and compare.

        Pure: reads outputs, never changes them.
        """

        left = resolve_reference(self.left_ref, outputs)
        return compare(left, self.operator, self.right_value)

    def __str__(self) -> str:
        return f"{self.left_ref} {self.operator.value} {self.right_value!r}"


@dataclass(frozen=True, slots=True)
class ConditionNode:
    expression: ConditionExpression
    then_branch: Node
    else_branch: Node | None = None


Node: TypeAlias = ServiceNode | SequenceNode | ParallelNode | ConditionNode


def child_nodes(node: Node) -> tuple[Node, ...]:
    """Direct children, including an on-failure substitute."""

    if isinstance(node, (SequenceNode, ParallelNode)):
        return node.children
    if isinstance(node, ConditionNode):
        if node.else_branch is None:
            return (node.then_branch,)
        return (node.then_branch, node.else_branch)
    if isinstance(node.on_failure, BranchOnFailure):
        return (node.on_failure.node,)
    return ()


def walk(node: Node) -> Iterator[Node]:
    """Depth-first, pre-order traversal."""

    yield node
    for child in child_nodes(node):
        yield from walk(child)


@dataclass(frozen=True, slots=True)
class Template:
    """Root container: one node, or top-level nodes forming an implicit sequence."""

    nodes: tuple[Node, ...]

    @property
    def root(self) -> Node:
        if len(self.nodes) == 1:
            return self.nodes[0]
        return SequenceNode(children=self.nodes)

    def services(self) -> list[ServiceNode]:
        return [n for top in self.nodes for n in walk(top) if isinstance(n, ServiceNode)]
