# src/regent/core/context.py
"""Execution state threaded through the executor loop.

Holds one StepRecord per plan step plus run-level status. The executor
creates it, collaborators read and update records through it, and run()
returns it to the caller.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import StateTransitionError
from .files import FileChange
from .plan import ALLOWED_TRANSITIONS, Step, StepStatus, WorkflowPlan


class RunStatus(Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    ABORTED = "ABORTED"


@dataclass
class StepRecord:
    """Mutable execution state of one step.

    Attributes:
        step: The plan step
        status: Current lifecycle status
        attempts: Attempts made so far
        output: Subprocess output of the final attempt
        error: Error of the final failed attempt
        error_type: lint, test or build when the failure maps to one
        score: RLHF score, set once at the terminal state
        raw_score: Unrounded score kept for auditing
        duration_ms: Wall time of all attempts
        change: Files and folders written by the successful attempt
        commit_sha: Commit created for the step
        branch: Branch created by a branch step
        previous_branch: Branch checked out before the branch step
        pr_url: Pull request opened by a pull_request step
    """
    step: Step
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    output: str = ""
    error: Optional[BaseException] = None
    error_type: Optional[str] = None
    score: Optional[int] = None
    raw_score: Optional[float] = None
    duration_ms: int = 0
    change: Optional[FileChange] = None
    commit_sha: Optional[str] = None
    branch: Optional[str] = None
    previous_branch: Optional[str] = None
    pr_url: Optional[str] = None

    @property
    def step_id(self) -> str:
        return self.step.id

    @property
    def has_effects(self) -> bool:
        """True when there is something a compensation could undo."""
        return bool(
            self.commit_sha
            or self.branch
            or self.pr_url
            or (self.change and (self.change.snapshots or self.change.created_dirs))
        )

    def transition(self, new_status: StepStatus) -> None:
        """Move to a new status.

        Raises:
            StateTransitionError: If the lifecycle does not allow it
        """
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise StateTransitionError(
                f"Step {self.step_id}: illegal transition {self.status.value} -> {new_status.value}"
            )
        self.status = new_status

    def set_score(self, score: int, raw_score: Optional[float] = None) -> None:
        """Attach the RLHF score.

        Raises:
            StateTransitionError: If the step is not terminal or already scored
        """
        if self.score is not None:
            raise StateTransitionError(f"Step {self.step_id}: score already set to {self.score}")
        if self.status not in (StepStatus.SUCCESS, StepStatus.FAILED):
            raise StateTransitionError(
                f"Step {self.step_id}: cannot score a step in status {self.status.value}"
            )
        self.score = score
        self.raw_score = raw_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.step_id,
            "type": self.step.type.value,
            "layer": self.step.layer,
            "status": self.status.value,
            "attempts": self.attempts,
            "score": self.score,
            "error": str(self.error) if self.error else None,
            "error_type": self.error_type,
            "duration_ms": self.duration_ms,
            "commit_sha": self.commit_sha,
            "pr_url": self.pr_url,
        }


@dataclass
class ExecutionContext:
    """State of one plan run.

    Attributes:
        plan: The plan being executed
        work_dir: Working tree the plan runs against
        records: Step records keyed by step id, in plan order
        status: Run status
        halting_error: The error that stopped the run, if any
        commits: Commit shas created by the run, in order
        rollback_errors: (step id, error) pairs of compensations that failed
    """
    plan: WorkflowPlan
    work_dir: Path
    records: Dict[str, StepRecord] = field(default_factory=dict)
    status: RunStatus = RunStatus.RUNNING
    halting_error: Optional[BaseException] = None
    commits: List[str] = field(default_factory=list)
    rollback_errors: List[tuple] = field(default_factory=list)

    @classmethod
    def for_plan(cls, plan: WorkflowPlan, work_dir: Path) -> "ExecutionContext":
        return cls(
            plan=plan,
            work_dir=Path(work_dir),
            records={step.id: StepRecord(step=step) for step in plan.steps},
        )

    def record(self, step_id: str) -> StepRecord:
        return self.records[step_id]

    def with_status(self, status: StepStatus) -> List[StepRecord]:
        return [record for record in self.records.values() if record.status == status]

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.plan.metadata.task_id,
            "status": self.status.value,
            "error": str(self.halting_error) if self.halting_error else None,
            "commits": list(self.commits),
            "steps": [record.to_dict() for record in self.records.values()],
        }
