"""Task template model: nodes, references, builder and wire encoding."""

from taskplan.template.builder import TemplateBuilder
from taskplan.template.expressions import ComparisonOperator, ReferenceExpression, parse_reference
from taskplan.template.nodes import (
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
from taskplan.template.serialization import dumps, loads, template_from_json, template_to_json
from taskplan.template.validation import validate_template

__all__ = [
    "BranchOnFailure",
    "ComparisonOperator",
    "ConditionExpression",
    "ConditionNode",
    "Node",
    "ParallelNode",
    "ReferenceExpression",
    "RetryPolicy",
    "SequenceNode",
    "ServiceNode",
    "SkipOnFailure",
    "Template",
    "TemplateBuilder",
    "dumps",
    "loads",
    "parse_reference",
    "template_from_json",
    "template_to_json",
    "validate_template",
]
