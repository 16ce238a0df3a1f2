# src/regent/core/rollback.py
"""Rollback manager.

Compensates completed steps after an unrecoverable failure. Compensations
run last-to-first; each successful one moves its step to ROLLED_BACK.
"""

from dataclasses import dataclass, field
from typing import List

from .context import ExecutionContext, StepRecord
from .errors import GitOperationError, RollbackFailure, StepExecutionError
from .files import remove_empty_dirs
from .git import GitOperations
from .logger import ExecutionLogger
from .plan import RollbackFailurePolicy, Step, StepStatus


@dataclass
class RollbackResult:
    """Outcome of one rollback.

    Attributes:
        rolled_back: Step ids compensated, in execution order
        skipped: Step ids that never completed
        failures: (step id, error) pairs for compensations that failed
    """
    rolled_back: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: List[tuple] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


class RollbackManager:
    """Runs compensating actions for completed steps."""

    def __init__(self, git: GitOperations, logger: ExecutionLogger):
        self.git = git
        self.logger = logger

    def rollback(self, failed_step: Step, context: ExecutionContext) -> RollbackResult:
        """Compensate the steps listed in the failed step's rollback_steps.

        Raises:
            RollbackFailure: If a compensation fails and the step's
                on_rollback_failure policy is "stop"
        """
        handling = failed_step.error_handling
        self.logger.warning(
            f"Rolling back after {failed_step.id}",
            step=failed_step.id,
            targets=",".join(reversed(handling.rollback_steps)) or "none",
        )
        records = [context.record(step_id) for step_id in reversed(handling.rollback_steps)]
        return self._run(records, context, handling.on_rollback_failure)

    def rollback_all(
        self,
        context: ExecutionContext,
        policy: RollbackFailurePolicy = RollbackFailurePolicy.ALERT,
    ) -> RollbackResult:
        """Compensate every completed step, last-to-first."""
        records = [r for r in reversed(list(context.records.values())) if r.status == StepStatus.SUCCESS]
        self.logger.warning("Rolling back all completed steps", count=len(records))
        return self._run(records, context, policy)

    def _run(
        self,
        records: List[StepRecord],
        context: ExecutionContext,
        policy: RollbackFailurePolicy,
    ) -> RollbackResult:
        result = RollbackResult()
        for record in records:
            if record.status != StepStatus.SUCCESS:
                self.logger.debug("Skipping rollback of incomplete step", step=record.step_id,
                                  status=record.status.value)
                result.skipped.append(record.step_id)
                continue

            try:
                self.compensate(record, context)
            except (GitOperationError, StepExecutionError, OSError) as e:
                result.failures.append((record.step_id, e))
                context.rollback_errors.append((record.step_id, e))
                self.logger.error(
                    f"Rollback of {record.step_id} failed",
                    step=record.step_id,
                    kind=getattr(e, "kind", type(e).__name__),
                    error=str(e),
                    policy=policy.value,
                )
                if policy == RollbackFailurePolicy.STOP:
                    raise RollbackFailure(context.halting_error, result.failures) from e
                continue

            record.transition(StepStatus.ROLLED_BACK)
            self.logger.record_rollback(record.step_id)
            self.logger.info(f"Rolled back {record.step_id}", step=record.step_id)
            result.rolled_back.append(record.step_id)

        if result.failures:
            self.logger.error(
                "Rollback incomplete; manual intervention required",
                failed=",".join(step_id for step_id, _ in result.failures),
            )
        return result

    def compensate(self, record: StepRecord, context: ExecutionContext) -> None:
        """Undo the effects of one completed step."""
        if record.pr_url:
            self.git.close_pull_request(record.pr_url)
            self.logger.debug("Closed pull request", step=record.step_id, url=record.pr_url)

        if record.commit_sha:
            revert_sha = self.git.revert_commit(record.commit_sha)
            self.logger.debug("Reverted commit", step=record.step_id, sha=record.commit_sha,
                              revert=revert_sha)
            if record.change:
                remove_empty_dirs(record.change.created_dirs)
        elif record.change:
            record.change.undo()

        if record.branch:
            if self.git.current_branch() == record.branch and record.previous_branch:
                self.git.checkout(record.previous_branch)
            self.git.delete_branch(record.branch)
            self.logger.debug("Deleted branch", step=record.step_id, branch=record.branch)
