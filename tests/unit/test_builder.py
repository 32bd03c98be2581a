"""Unit tests for the fluent template builder."""

from __future__ import annotations

import pytest

from taskplan.errors import BuilderUsageError, ValidationError
from taskplan.template.builder import TemplateBuilder
from taskplan.template.expressions import ComparisonOperator
from taskplan.template.nodes import (
    BranchOnFailure,
    ConditionNode,
    ParallelNode,
    RetryPolicy,
    SequenceNode,
    ServiceNode,
    SkipOnFailure,
)


def test_add_service_defaults_to_any_version(builder: TemplateBuilder) -> None:
    template = builder.add_service("s1").build()

    assert template.nodes == (ServiceNode(name="s1", version_range="*"),)
    assert template.root == ServiceNode(name="s1")


def test_builder_calls_return_new_values(builder: TemplateBuilder) -> None:
    base = builder.add_service("fetch", "^1.2").with_alias("src")
    left = base.add_service("render")
    right = base.add_service("archive").on_fail_skip()

    assert len(base.build().nodes) == 1
    assert [n.name for n in left.build().nodes] == ["fetch", "render"]
    assert [n.name for n in right.build().nodes] == ["fetch", "archive"]
    assert right.build().nodes[1].on_failure == SkipOnFailure()
    assert builder.add_service("only").build().nodes == (ServiceNode(name="only"),)


def test_modifiers_attach_to_preceding_service(builder: TemplateBuilder) -> None:
    template = (
        builder.add_service("s1", "~2.1.0")
        .with_retry(3, 5000)
        .with_configuration({"limit": 5})
        .with_alias("first")
        .build()
    )

    node = template.nodes[0]
    assert isinstance(node, ServiceNode)
    assert node.retry == RetryPolicy(max_attempts=3, delay_millis=5000)
    assert node.configuration == {"limit": 5}
    assert node.alias == "first"
    assert node.key == "first"


def test_with_configuration_copies_the_value(builder: TemplateBuilder) -> None:
    config = {"items": [1, 2]}
    template = builder.add_service("s1").with_configuration(config).build()
    config["items"].append(3)

    assert template.nodes[0].configuration == {"items": [1, 2]}


def test_add_parallel_splices_children(builder: TemplateBuilder) -> None:
    template = builder.add_parallel(lambda p: p.add_service("s1").add_service("s2")).build()

    (node,) = template.nodes
    assert isinstance(node, ParallelNode)
    assert [c.name for c in node.children] == ["s1", "s2"]


def test_add_sequence_nests_inside_parallel(builder: TemplateBuilder) -> None:
    template = (
        builder.add_service("start")
        .add_parallel(
            lambda p: p.add_sequence(lambda s: s.add_service("a1").add_service("a2")).add_service(
                "b"
            )
        )
        .build()
    )

    parallel = template.nodes[1]
    assert isinstance(parallel, ParallelNode)
    assert isinstance(parallel.children[0], SequenceNode)
    assert [c.name for c in parallel.children[0].children] == ["a1", "a2"]


def test_condition_with_then_and_else(builder: TemplateBuilder) -> None:
    template = (
        builder.add_service("s1")
        .add_condition("service{s1}.done", "===", True)
        .then(lambda b: b.add_service("yes"))
        .else_(lambda b: b.add_service("no").add_service("no-2"))
        .build()
    )

    condition = template.nodes[1]
    assert isinstance(condition, ConditionNode)
    assert condition.expression.operator is ComparisonOperator.EQ
    assert condition.expression.right_value is True
    assert condition.then_branch == ServiceNode(name="yes")
    assert isinstance(condition.else_branch, SequenceNode)


def test_condition_without_else_leaves_branch_unset(builder: TemplateBuilder) -> None:
    template = (
        builder.add_service("s1")
        .add_condition("service{s1}.count", ">", 2)
        .then(lambda b: b.add_service("big"))
        .build()
    )

    assert template.nodes[1].else_branch is None


def test_services_can_follow_a_condition(builder: TemplateBuilder) -> None:
    template = (
        builder.add_service("s1")
        .add_condition("service{s1}.done", "===", True)
        .then(lambda b: b.add_service("yes"))
        .add_service("after")
        .build()
    )

    assert [type(n).__name__ for n in template.nodes] == [
        "ServiceNode",
        "ConditionNode",
        "ServiceNode",
    ]


def test_on_fail_attaches_substitute_branch(builder: TemplateBuilder) -> None:
    template = (
        builder.add_service("primary").on_fail(lambda b: b.add_service("fallback")).build()
    )

    assert template.nodes[0].on_failure == BranchOnFailure(node=ServiceNode(name="fallback"))


def test_modifier_without_preceding_service_is_a_build_error(builder: TemplateBuilder) -> None:
    misused = builder.with_retry(3, 100)

    with pytest.raises(BuilderUsageError, match="with_retry"):
        misused.add_service("s1").build()


def test_modifier_after_condition_is_a_build_error(builder: TemplateBuilder) -> None:
    misused = (
        builder.add_service("s1")
        .add_condition("service{s1}.done", "===", True)
        .then(lambda b: b.add_service("yes"))
        .with_alias("oops")
    )

    with pytest.raises(BuilderUsageError, match="with_alias"):
        misused.build()


def test_then_requires_a_condition(builder: TemplateBuilder) -> None:
    with pytest.raises(BuilderUsageError, match="then"):
        builder.add_service("s1").then(lambda b: b.add_service("x")).build()


def test_condition_requires_a_then_branch(builder: TemplateBuilder) -> None:
    with pytest.raises(BuilderUsageError, match="no then"):
        builder.add_service("s1").add_condition("service{s1}.done", "===", True).build()


def test_build_reports_every_violation(builder: TemplateBuilder) -> None:
    broken = (
        builder.on_fail_skip()
        .add_service("s1", "not-a-version")
        .add_service("s1")
        .with_retry(0, -1)
        .add_condition("service{nope}.x", ">", True)
        .then(lambda b: b.add_service("t"))
    )

    with pytest.raises(ValidationError) as excinfo:
        broken.build()

    text = "\n".join(excinfo.value.violations)
    assert "on_fail_skip" in text
    assert "invalid version range 'not-a-version'" in text
    assert "more than once without an alias" in text
    assert "maxAttempts" in text
    assert "delayMillis" in text
    assert "service{nope}.x" in text
    assert "needs a number or string operand" in text
    assert len(excinfo.value.violations) == 7


def test_malformed_condition_reference_is_reported(builder: TemplateBuilder) -> None:
    broken = (
        builder.add_service("s1")
        .add_condition("service{s1.done", "===", True)
        .then(lambda b: b.add_service("t"))
    )

    with pytest.raises(ValidationError, match="unbalanced braces"):
        broken.build()


def test_nested_problems_are_reported_with_their_scope(builder: TemplateBuilder) -> None:
    broken = builder.add_parallel(lambda p: p.with_alias("x").add_service("s1"))

    with pytest.raises(BuilderUsageError, match="parallel > #0: with_alias"):
        broken.build()


def test_callback_must_return_a_builder(builder: TemplateBuilder) -> None:
    with pytest.raises(TypeError):
        builder.add_parallel(lambda p: None)  # type: ignore[arg-type,return-value]


def test_to_json_validates_and_encodes(builder: TemplateBuilder) -> None:
    assert builder.add_service("s1").to_json() == {
        "type": "service",
        "name": "s1",
        "versionRange": "*",
    }
    with pytest.raises(ValidationError):
        builder.add_service("s1").add_service("s1").to_json()
