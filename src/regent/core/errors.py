"""Error taxonomy for plan execution.

Every error raised by the executor and its collaborators derives from
RegentError and carries a short ``kind`` used in log records and the
end-of-run report.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .quality import QualityCheckResult


class RegentError(Exception):
    """Base error for Regent."""

    kind = "error"


@dataclass(frozen=True)
class ValidationIssue:
    """A single plan validation problem.

    Attributes:
        path: Dotted location in the plan (e.g. "steps[2].path")
        message: Human-readable description
        code: Stable machine-readable identifier (e.g. "invalid_date")
    """

    path: str
    message: str
    code: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class SchemaValidationError(RegentError):
    """Plan rejected before any step ran."""

    kind = "schema_validation"

    def __init__(self, issues: List[ValidationIssue]):
        self.issues = list(issues)
        lines = [f"Plan validation failed with {len(self.issues)} error(s):"]
        lines.extend(f"  - {issue}" for issue in self.issues)
        super().__init__("\n".join(lines))


class PlanLoadError(RegentError):
    """Plan file missing or unparseable."""

    kind = "plan_load"


class ConfigError(RegentError):
    """Invalid execute configuration."""

    kind = "config"


class StepExecutionError(RegentError):
    """A step action or one of its subprocesses failed.

    Attributes:
        step_id: Id of the failing step
        output: Raw subprocess output, if any
        error_type: lint, test or build when the failure maps to one
    """

    kind = "step_execution"

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        output: str = "",
        error_type: Optional[str] = None,
    ):
        super().__init__(message)
        self.step_id = step_id
        self.output = output
        self.error_type = error_type


class QualityGateFailure(StepExecutionError):
    """Lint, test or build check failed."""

    kind = "quality_gate"

    def __init__(
        self,
        message: str,
        result: "QualityCheckResult",
        step_id: Optional[str] = None,
        error_type: Optional[str] = None,
    ):
        super().__init__(
            message,
            step_id=step_id,
            output=result.combined_output(failed_only=True),
            error_type=error_type,
        )
        self.result = result


class GitOperationError(RegentError):
    """A git or gh subcommand failed.

    Attributes:
        subcommand: The failed subcommand (e.g. "commit", "pr create")
        stderr: Raw stderr of the failed process
    """

    kind = "git_operation"

    def __init__(self, subcommand: str, stderr: str, message: Optional[str] = None):
        self.subcommand = subcommand
        self.stderr = stderr
        detail = stderr.strip() or "no error output"
        super().__init__(message or f"git {subcommand} failed: {detail}")


class RollbackFailure(RegentError):
    """A compensating action failed and the policy says stop.

    Attributes:
        original: The failure that triggered the rollback
        failures: (step id, error) pairs for the compensations that failed
    """

    kind = "rollback"

    def __init__(self, original: Optional[BaseException], failures: List[tuple]):
        self.original = original
        self.failures = list(failures)
        parts = [f"Rollback failed for {', '.join(step_id for step_id, _ in self.failures)}"]
        for step_id, error in self.failures:
            parts.append(f"  - {step_id}: {error}")
        if original is not None:
            parts.append(f"Original failure: {original}")
        super().__init__("\n".join(parts))


class MetricsError(RegentError):
    """RLHF metrics file unreadable or not writable."""

    kind = "metrics"


class StateTransitionError(RegentError):
    """Illegal step status transition or a second score assignment."""

    kind = "state_transition"
