"""Error types raised by the template model, the runner and the connections."""

from __future__ import annotations

from collections.abc import Iterable


class TaskplanError(Exception):
    """Base class for all taskplan errors."""


class ValidationError(TaskplanError):
    """A template (or a fragment of one) violates a structural invariant.

    Collects every violation found instead of stopping at the first one.
    """

    def __init__(self, violations: Iterable[str] | str) -> None:
        if isinstance(violations, str):
            violations = [violations]
        self.violations: list[str] = list(violations)
        super().__init__(self._render())

    def _render(self) -> str:
        if len(self.violations) == 1:
            return self.violations[0]
        lines = [f"{len(self.violations)} template violations:"]
        lines.extend(f"  - {v}" for v in self.violations)
        return "\n".join(lines)


class BuilderUsageError(ValidationError):
    """A builder modifier had nothing to attach to."""


class ReferenceSyntaxError(ValidationError):
    """A `service{ref}.path` string is malformed."""


class ReferenceResolutionError(TaskplanError):
    """A reference points at a node that produced no output, or a missing path."""


class ConditionEvaluationError(TaskplanError):
    """A condition compared values of incompatible types."""


class ServiceExecutionError(TaskplanError):
    """A service invocation failed on the operator."""

    def __init__(self, message: str, *, error_kind: str = "ServiceExecutionError") -> None:
        super().__init__(message)
        self.error_kind = error_kind


class TransportError(TaskplanError):
    """The connection to the operator failed."""
