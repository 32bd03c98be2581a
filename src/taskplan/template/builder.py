"""Fluent template construction with value semantics.

Every method returns a new builder; the receiver is never changed, so a
partially built plan can be reused as the base of several templates:

    base = TemplateBuilder().add_service("fetch", "^1.2").with_alias("src")
    a = base.add_service("render")
    b = base.add_service("archive").on_fail_skip()

Modifiers (`with_retry`, `with_configuration`, `with_alias`, `on_fail_skip`,
`on_fail`) attach to the service added immediately before them. Misuse is
recorded and reported, together with every other violation, when the
template is finalized by `build()` or `to_json()`.
"""

from __future__ import annotations

import copy
import dataclasses
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from taskplan.errors import BuilderUsageError, ReferenceSyntaxError, ValidationError

from .expressions import ComparisonOperator, parse_operator, parse_reference
from .nodes import (
    BranchOnFailure,
    ConditionExpression,
    ConditionNode,
    Node,
    ParallelNode,
    RetryPolicy,
    SequenceNode,
    ServiceNode,
    SkipOnFailure,
    Template,
)
from .serialization import template_to_json
from .validation import collect_violations
from .versions import ANY_VERSION

BranchFn = Callable[["TemplateBuilder"], "TemplateBuilder"]


@dataclass(frozen=True, slots=True)
class _ConditionDraft:
    """A condition whose branches are still being attached."""

    expression: ConditionExpression | None
    then_branch: Node | None = None
    else_branch: Node | None = None


@dataclass(frozen=True, slots=True)
class _Problem:
    message: str
    usage: bool = False


class TemplateBuilder:
    __slots__ = ("_items", "_problems")

    def __init__(self) -> None:
        self._items: tuple[Node | _ConditionDraft, ...] = ()
        self._problems: tuple[_Problem, ...] = ()

    def _derive(
        self,
        items: tuple[Node | _ConditionDraft, ...] | None = None,
        problems: tuple[_Problem, ...] = (),
    ) -> TemplateBuilder:
        derived = TemplateBuilder()
        derived._items = self._items if items is None else items
        derived._problems = self._problems + problems
        return derived

    def _misuse(self, message: str) -> TemplateBuilder:
        return self._derive(problems=(_Problem(f"#{len(self._items)}: {message}", usage=True),))

    def __repr__(self) -> str:
        return f"TemplateBuilder(items={len(self._items)}, problems={len(self._problems)})"

    # -- nested scopes ---------------------------------------------------------

    def _open_scope(self, fn: BranchFn, what: str) -> tuple[tuple[Node, ...], tuple[_Problem, ...]]:
        child = fn(TemplateBuilder())
        if not isinstance(child, TemplateBuilder):
            raise TypeError(f"{what} callback must return a TemplateBuilder, got {child!r}")
        nodes, problems = child._finalize_items()
        prefix = f"#{len(self._items)} {what}"
        scoped = tuple(dataclasses.replace(p, message=f"{prefix} > {p.message}") for p in problems)
        return nodes, scoped

    def _branch(self, fn: BranchFn, what: str) -> tuple[Node | None, tuple[_Problem, ...]]:
        nodes, problems = self._open_scope(fn, what)
        if not nodes:
            return None, problems + (
                _Problem(f"#{len(self._items)}: {what} is empty", usage=True),
            )
        if len(nodes) == 1:
            return nodes[0], problems
        return SequenceNode(children=nodes), problems

    def _finalize_items(self) -> tuple[tuple[Node, ...], tuple[_Problem, ...]]:
        nodes: list[Node] = []
        problems = list(self._problems)
        for index, item in enumerate(self._items):
            if not isinstance(item, _ConditionDraft):
                nodes.append(item)
                continue
            if item.then_branch is None:
                problems.append(_Problem(f"#{index}: condition has no then() branch", usage=True))
                continue
            if item.expression is None:
                continue
            nodes.append(
                ConditionNode(
                    expression=item.expression,
                    then_branch=item.then_branch,
                    else_branch=item.else_branch,
                )
            )
        return tuple(nodes), tuple(problems)

    # -- composition -----------------------------------------------------------

    def add_service(self, name: str, version_range: str = ANY_VERSION) -> TemplateBuilder:
        node = ServiceNode(name=name, version_range=version_range)
        return self._derive(items=self._items + (node,))

    def add_sequence(self, fn: BranchFn) -> TemplateBuilder:
        nodes, problems = self._open_scope(fn, "sequence")
        return self._derive(items=self._items + (SequenceNode(children=nodes),), problems=problems)

    def add_parallel(self, fn: BranchFn) -> TemplateBuilder:
        nodes, problems = self._open_scope(fn, "parallel")
        return self._derive(items=self._items + (ParallelNode(children=nodes),), problems=problems)

    def add_condition(
        self, left_ref: str, operator: str | ComparisonOperator, right_value: Any
    ) -> TemplateBuilder:
        try:
            expression: ConditionExpression | None = ConditionExpression(
                left_ref=parse_reference(left_ref),
                operator=parse_operator(operator),
                right_value=copy.deepcopy(right_value),
            )
            problems: tuple[_Problem, ...] = ()
        except ReferenceSyntaxError as exc:
            expression = None
            problems = (_Problem(f"#{len(self._items)}: {exc}"),)
        draft = _ConditionDraft(expression=expression)
        return self._derive(items=self._items + (draft,), problems=problems)

    def then(self, fn: BranchFn) -> TemplateBuilder:
        return self._set_branch(fn, "then")

    def else_(self, fn: BranchFn) -> TemplateBuilder:
        return self._set_branch(fn, "else")

    def _set_branch(self, fn: BranchFn, which: str) -> TemplateBuilder:
        last = self._items[-1] if self._items else None
        if not isinstance(last, _ConditionDraft):
            return self._misuse(f"{which}() needs a preceding add_condition()")
        current = last.then_branch if which == "then" else last.else_branch
        if current is not None:
            return self._misuse(f"{which}() branch is already set")

        branch, problems = self._branch(fn, which)
        if which == "then":
            draft = dataclasses.replace(last, then_branch=branch)
        else:
            draft = dataclasses.replace(last, else_branch=branch)
        return self._derive(items=self._items[:-1] + (draft,), problems=problems)

    # -- modifiers of the preceding service ------------------------------------

    def _update_service(self, method: str, **changes: Any) -> TemplateBuilder:
        last = self._items[-1] if self._items else None
        if not isinstance(last, ServiceNode):
            return self._misuse(f"{method}() needs a preceding add_service()")
        updated = dataclasses.replace(last, **changes)
        return self._derive(items=self._items[:-1] + (updated,))

    def with_retry(self, max_attempts: int, delay_millis: int = 0) -> TemplateBuilder:
        retry = RetryPolicy(max_attempts=max_attempts, delay_millis=delay_millis)
        return self._update_service("with_retry", retry=retry)

    def with_configuration(self, value: Any) -> TemplateBuilder:
        return self._update_service("with_configuration", configuration=copy.deepcopy(value))

    def with_alias(self, alias: str) -> TemplateBuilder:
        return self._update_service("with_alias", alias=alias)

    def on_fail_skip(self) -> TemplateBuilder:
        return self._update_service("on_fail_skip", on_failure=SkipOnFailure())

    def on_fail(self, fn: BranchFn) -> TemplateBuilder:
        if not self._items or not isinstance(self._items[-1], ServiceNode):
            return self._misuse("on_fail() needs a preceding add_service()")
        branch, problems = self._branch(fn, "on_fail")
        if branch is None:
            return self._derive(problems=problems)
        return self._update_service("on_fail", on_failure=BranchOnFailure(node=branch))._derive(
            problems=problems
        )

    # -- finalization ----------------------------------------------------------

    def build(self) -> Template:
        """Validate the whole tree and return the immutable Template."""

        nodes, problems = self._finalize_items()
        template = Template(nodes=nodes)
        violations = [p.message for p in problems] + collect_violations(template)
        if violations:
            if any(p.usage for p in problems):
                raise BuilderUsageError(violations)
            raise ValidationError(violations)
        return template

    def to_json(self) -> dict[str, Any] | list[dict[str, Any]]:
        return template_to_json(self.build())
