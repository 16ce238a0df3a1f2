# src/regent/core/plan.py
"""Plan dataclasses for the step executor.

Defines the structure of implementation plans, steps, and their
error-handling policies.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class StepType(Enum):
    """Type of step determining which collaborator executes it."""
    BRANCH = "branch"                # git branch creation
    FOLDER = "folder"                # directory creation
    CREATE_FILE = "create_file"      # write a new file
    REFACTOR_FILE = "refactor_file"  # replace a block inside a file
    DELETE_FILE = "delete_file"      # remove a file
    VALIDATION = "validation"        # run a validation script
    TEST = "test"                    # run a test script
    PULL_REQUEST = "pull_request"    # open a pull request


FILE_STEP_TYPES = frozenset({
    StepType.CREATE_FILE,
    StepType.REFACTOR_FILE,
    StepType.DELETE_FILE,
})

SCRIPT_STEP_TYPES = frozenset({StepType.VALIDATION, StepType.TEST})


class StepStatus(Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"


# Terminal states only move on through rollback.
ALLOWED_TRANSITIONS: Dict[StepStatus, frozenset] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING}),
    StepStatus.RUNNING: frozenset({StepStatus.SUCCESS, StepStatus.FAILED}),
    StepStatus.SUCCESS: frozenset({StepStatus.ROLLED_BACK}),
    StepStatus.FAILED: frozenset({StepStatus.ROLLED_BACK}),
    StepStatus.ROLLED_BACK: frozenset(),
}


class FallbackStrategy(Enum):
    """What to do once a step has exhausted its retries."""
    ROLLBACK = "rollback"
    ALERT = "alert"
    STOP = "stop"


class RollbackFailurePolicy(Enum):
    """What to do when a compensating action itself fails."""
    ALERT = "alert"
    STOP = "stop"


@dataclass(frozen=True)
class ErrorHandling:
    """Retry and fallback policy of a step.

    Attributes:
        retry_count: Extra attempts after the first one
        retry_delay_ms: Delay between attempts
        fallback_strategy: Action once retries are exhausted
        rollback_steps: Step ids to compensate, in declaration order
            (executed last-to-first)
        on_rollback_failure: Policy when a compensation fails
    """
    retry_count: int = 0
    retry_delay_ms: int = 0
    fallback_strategy: FallbackStrategy = FallbackStrategy.STOP
    rollback_steps: List[str] = field(default_factory=list)
    on_rollback_failure: RollbackFailurePolicy = RollbackFailurePolicy.ALERT

    @property
    def max_attempts(self) -> int:
        return 1 + self.retry_count


@dataclass(frozen=True)
class Step:
    """A single step of the plan.

    Attributes:
        id: Unique step identifier
        type: Step type
        layer: Architectural layer (inherits metadata.layer when omitted)
        path: Target file path (file steps)
        template: File content, or REPLACE/WITH blocks for refactors
        action: Type-specific parameters (branch_name, create_folders, ...)
        validation_script: Script run by validation/test steps
        description: Human-readable description, used for commit messages
        timeout_ms: Per-step bound on every subprocess it spawns
        depends_on: Ids of steps that must succeed first
        error_handling: Retry and fallback policy
    """
    id: str
    type: StepType
    layer: str
    path: Optional[str] = None
    template: Optional[str] = None
    action: Dict[str, Any] = field(default_factory=dict)
    validation_script: Optional[str] = None
    description: Optional[str] = None
    timeout_ms: Optional[int] = None
    depends_on: List[str] = field(default_factory=list)
    error_handling: ErrorHandling = field(default_factory=ErrorHandling)

    @property
    def is_file_step(self) -> bool:
        return self.type in FILE_STEP_TYPES

    @property
    def is_script_step(self) -> bool:
        return self.type in SCRIPT_STEP_TYPES

    def summary(self) -> str:
        """Short description used in commit messages and logs."""
        if self.description:
            return self.description
        if self.path:
            return f"{self.type.value.replace('_', ' ')} {self.path}"
        return self.id


@dataclass(frozen=True)
class PlanMetadata:
    """Plan-level metadata.

    Attributes:
        layer: Default architectural layer of the plan's steps
        target: Project target (backend, frontend, fullstack)
        task_id: Identifier of the task this plan implements
        dependencies: Other task ids this plan builds on
        extra: Any remaining metadata keys, untouched
    """
    layer: str
    target: str
    task_id: str
    dependencies: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowPlan:
    """A validated implementation plan.

    Attributes:
        metadata: Plan metadata
        steps: Ordered list of steps
        version: Plan schema version, if declared
        source: Path the plan was loaded from, if any
    """
    metadata: PlanMetadata
    steps: List[Step]
    version: Optional[str] = None
    source: Optional[str] = None

    def get_step(self, step_id: str) -> Optional[Step]:
        """Get a step by id."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def index_of(self, step_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        raise KeyError(step_id)
