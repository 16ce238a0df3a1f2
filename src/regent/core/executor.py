# src/regent/core/executor.py
"""Step executor.

Runs a validated plan step by step against a working tree. Each step moves
PENDING -> RUNNING -> SUCCESS | FAILED (and later, possibly, ROLLED_BACK).
Failed attempts undo their own partial effects, so a retry starts from the
state the step found. Once retries are exhausted the step's fallback
strategy decides whether the run rolls back, stops or carries on.
"""

import math
import time
from pathlib import Path
from typing import Callable, List, Optional

from .commits import generate_commit_message
from .config import ExecuteConfig
from .context import ExecutionContext, RunStatus, StepRecord
from .errors import (
    GitOperationError,
    MetricsError,
    QualityGateFailure,
    RollbackFailure,
    StepExecutionError,
)
from .files import FileChange, create_file, create_folders, delete_file, refactor_file
from .git import GitOperations
from .layers import check_layer_rules
from .logger import ExecutionLogger
from .metrics import RLHFMetricsStore, ScoreRecord
from .plan import FallbackStrategy, Step, StepStatus, StepType, WorkflowPlan
from .quality import QualityChecker, extract_failure_lines
from .rollback import RollbackManager
from .scoring import RLHFScorer, StepOutcome, classify_error_type

# Raw output attached to failure records is capped to keep log lines readable.
MAX_LOGGED_OUTPUT = 4000


class StepExecutor:
    """Executes the steps of a plan.

    Args:
        plan: Validated plan
        work_dir: Working tree (a git repository)
        config: Execute configuration
        logger: Execution logger
        git: Git operations bound to work_dir
        checker: Quality checker
        scorer: RLHF scorer
        metrics: Store the run's scores are appended to; None disables it
        sleep: Delay function used between attempts
        should_abort: Polled between steps; True stops the run
        allow_dirty: Skip the clean working tree check
        commit: Commit file steps (subject to commit config)
    """

    def __init__(
        self,
        plan: WorkflowPlan,
        work_dir: Path,
        config: Optional[ExecuteConfig] = None,
        logger: Optional[ExecutionLogger] = None,
        git: Optional[GitOperations] = None,
        checker: Optional[QualityChecker] = None,
        scorer: Optional[RLHFScorer] = None,
        metrics: Optional[RLHFMetricsStore] = None,
        sleep: Callable[[float], None] = time.sleep,
        should_abort: Optional[Callable[[], bool]] = None,
        allow_dirty: bool = False,
        commit: bool = True,
    ):
        self.plan = plan
        self.work_dir = Path(work_dir)
        self.config = config or ExecuteConfig()
        self.logger = logger or ExecutionLogger()
        self.git = git or GitOperations(
            self.work_dir,
            timeout=self.config.execution.git_timeout_seconds,
            remote=self.config.execution.remote,
        )
        self.checker = checker or QualityChecker()
        self.scorer = scorer or RLHFScorer()
        self.metrics = metrics
        self.sleep = sleep
        self.should_abort = should_abort or (lambda: False)
        self.allow_dirty = allow_dirty
        self.commit_enabled = commit
        self.rollback_manager = RollbackManager(self.git, self.logger)

    def preflight(self) -> None:
        """Checks run before the first step.

        Raises:
            ConfigError: If an enabled quality check has no command
            StepExecutionError: If the working tree has uncommitted changes
            GitOperationError: If the working tree is not a usable repository
        """
        settings = self.config.quality_checks
        for name in settings.enabled_checks():
            self.checker.resolve_command(name, settings, self.work_dir)

        if self.allow_dirty or not self.config.execution.require_clean_tree:
            return
        if not self.git.is_clean(include_untracked=False):
            raise StepExecutionError(
                "Working tree has uncommitted changes; commit or stash them, "
                "or pass --allow-dirty"
            )

    def run(self) -> ExecutionContext:
        """Execute the plan.

        Returns:
            The execution context with per-step records and the run status.

        Raises:
            ConfigError: If the quality gate cannot be configured
        """
        context = ExecutionContext.for_plan(self.plan, self.work_dir)
        self.logger.info(
            f"Executing plan {self.plan.metadata.task_id}",
            plan=self.plan.source,
            steps=len(self.plan.steps),
            layer=self.plan.metadata.layer,
        )

        try:
            self.preflight()
        except (StepExecutionError, GitOperationError) as e:
            context.status = RunStatus.FAILED
            context.halting_error = e
            self.logger.error(f"Preflight failed: {e}", kind=e.kind)
            return context

        try:
            self._run_steps(context)
        except BaseException as e:
            context.status = RunStatus.FAILED
            context.halting_error = e
            raise
        finally:
            self._record_metrics(context)
            self.logger.log_summary()
            self._log_outcome(context)
        return context

    def _run_steps(self, context: ExecutionContext) -> None:
        for step in self.plan.steps:
            if self.should_abort():
                self._abort(context)
                return

            blocked = [
                dep for dep in step.depends_on
                if context.record(dep).status != StepStatus.SUCCESS
            ]
            if blocked:
                context.status = RunStatus.FAILED
                context.halting_error = StepExecutionError(
                    f"Step {step.id} depends on {', '.join(blocked)}, which did not succeed",
                    step_id=step.id,
                )
                self.logger.error(
                    "Halting: dependency not satisfied",
                    step=step.id,
                    blocked_by=",".join(blocked),
                )
                return

            record = self.execute_step(step, context)
            if record.status == StepStatus.SUCCESS:
                continue

            strategy = step.error_handling.fallback_strategy
            if strategy == FallbackStrategy.ALERT:
                self.logger.warning(
                    f"ALERT: step {step.id} failed; continuing with independent steps",
                    step=step.id,
                    kind=getattr(record.error, "kind", "error"),
                )
                continue

            context.status = RunStatus.FAILED
            context.halting_error = record.error
            if strategy == FallbackStrategy.ROLLBACK:
                try:
                    self.rollback_manager.rollback(step, context)
                except RollbackFailure as e:
                    context.halting_error = e
            return

        failed = context.with_status(StepStatus.FAILED)
        context.status = RunStatus.FAILED if failed else RunStatus.SUCCESS
        if failed and context.halting_error is None:
            context.halting_error = failed[0].error

    def _abort(self, context: ExecutionContext) -> None:
        context.status = RunStatus.ABORTED
        context.halting_error = StepExecutionError("Execution aborted")
        self.logger.warning("Execution aborted")
        if self.config.execution.rollback_on_abort:
            try:
                self.rollback_manager.rollback_all(context)
            except RollbackFailure as e:
                context.halting_error = e

    def execute_step(self, step: Step, context: ExecutionContext) -> StepRecord:
        """Run one step with its retry policy and score the final attempt.

        An exception that is not a step failure still leaves the record
        FAILED and scored before it propagates.
        """
        record = context.record(step.id)
        record.transition(StepStatus.RUNNING)
        handling = step.error_handling
        started = time.monotonic()
        self.logger.start_step(step.id, step.type.value, layer=step.layer)

        try:
            for attempt in range(1, handling.max_attempts + 1):
                record.attempts = attempt
                record.error = None
                record.error_type = None
                try:
                    self._attempt(step, record, context)
                    break
                except (StepExecutionError, GitOperationError) as e:
                    record.error = e
                    record.error_type = getattr(e, "error_type", None)
                    record.output = getattr(e, "output", "") or getattr(e, "stderr", "")
                    self.logger.warning(
                        f"Attempt {attempt}/{handling.max_attempts} of {step.id} failed: {e}",
                        step=step.id,
                        attempt=attempt,
                        kind=e.kind,
                    )
                    if attempt < handling.max_attempts and handling.retry_delay_ms:
                        self.sleep(handling.retry_delay_ms / 1000)
        except BaseException as e:
            record.error = e
            self._finish_step(step, record, started)
            raise

        self._finish_step(step, record, started)
        return record

    def _finish_step(self, step: Step, record: StepRecord, started: float) -> None:
        record.duration_ms = int((time.monotonic() - started) * 1000)
        success = record.error is None
        record.transition(StepStatus.SUCCESS if success else StepStatus.FAILED)

        outcome = StepOutcome(success=success, layer=step.layer, error_type=record.error_type)
        record.set_score(self.scorer.score(outcome), self.scorer.raw_score(outcome))

        context_fields = {"attempts": record.attempts}
        if not success:
            context_fields["kind"] = getattr(record.error, "kind", "error")
            context_fields["error_type"] = record.error_type
            context_fields["output"] = record.output[-MAX_LOGGED_OUTPUT:] if record.output else None
        self.logger.complete_step(step.id, record.status.value, score=record.score, **context_fields)

    def _step_timeout(self, step: Step, default: float) -> float:
        if step.timeout_ms:
            return step.timeout_ms / 1000
        return default

    def _attempt(self, step: Step, record: StepRecord, context: ExecutionContext) -> None:
        if step.type == StepType.BRANCH:
            self._run_branch(step, record)
        elif step.type == StepType.PULL_REQUEST:
            self._run_pull_request(step, record)
        elif step.is_script_step:
            self._run_script(step, record)
        else:
            self._run_file_step(step, record, context)

    def _run_branch(self, step: Step, record: StepRecord) -> None:
        timeout = math.ceil(self._step_timeout(step, self.config.execution.git_timeout_seconds))
        previous = self.git.current_branch()
        branch = self.git.create_branch(
            step.action["branch_name"], base=step.action.get("base_branch"), timeout=timeout
        )
        record.branch = branch
        record.previous_branch = previous
        self.logger.info(f"Created branch {branch}", step=step.id, base=step.action.get("base_branch"))

    def _run_pull_request(self, step: Step, record: StepRecord) -> None:
        timeout = math.ceil(self._step_timeout(step, self.config.execution.git_timeout_seconds))
        action = step.action
        url = self.git.create_pull_request(
            action["source_branch"],
            action["target_branch"],
            action["title"],
            action.get("body") or step.description or "",
            timeout=timeout,
        )
        record.pr_url = url
        self.logger.info(f"Opened pull request {url}", step=step.id)

    def _run_script(self, step: Step, record: StepRecord) -> None:
        timeout = self._step_timeout(step, self.config.quality_checks.timeout_seconds)
        result = self.checker.run(step.validation_script, self.work_dir, timeout, name=step.type.value)
        record.output = result.output
        if result.passed:
            self.logger.debug("Script passed", step=step.id, duration_ms=result.duration_ms)
            return

        error_type = classify_error_type(step.validation_script)
        if error_type is None and step.type == StepType.TEST:
            error_type = "test"
        reason = "timed out" if result.timed_out else f"exited with {result.exit_code}"
        for line in extract_failure_lines(result.output, error_type or ""):
            self.logger.debug(f"  {line}", step=step.id)
        raise StepExecutionError(
            f"Script {step.validation_script!r} {reason}",
            step_id=step.id,
            output=result.output,
            error_type=error_type,
        )

    def _apply_file_action(self, step: Step) -> FileChange:
        if step.type == StepType.FOLDER:
            folders = step.action["create_folders"]
            return create_folders(self.work_dir, folders["basePath"], list(folders["folders"]))
        if step.type == StepType.CREATE_FILE:
            self._check_layer(step)
            return create_file(self.work_dir, step.path, step.template or "")
        if step.type == StepType.REFACTOR_FILE:
            return refactor_file(self.work_dir, step.path, step.template or "")
        if step.type == StepType.DELETE_FILE:
            return delete_file(self.work_dir, step.path)
        raise StepExecutionError(f"Unsupported step type: {step.type.value}", step_id=step.id)

    def _run_file_step(self, step: Step, record: StepRecord, context: ExecutionContext) -> None:
        try:
            change = self._apply_file_action(step)
        except StepExecutionError as e:
            e.step_id = step.id
            raise
        except OSError as e:
            raise StepExecutionError(str(e), step_id=step.id) from e

        staged: List[str] = []
        try:
            self._quality_gate(step)
            if self.commit_enabled and step.path and change.snapshots:
                message = generate_commit_message(step, self.config.commit)
                if message and self.git.has_changes([step.path]):
                    staged = [step.path]
                    sha = self.git.commit(message, staged, co_author=self.config.commit.co_author)
                    record.commit_sha = sha
                    context.commits.append(sha)
                    self.logger.info(f"Committed {sha[:8]}", step=step.id, subject=message.splitlines()[0])
        except (StepExecutionError, GitOperationError):
            self._undo_attempt(step, change, staged)
            raise
        except OSError as e:
            self._undo_attempt(step, change, staged)
            raise StepExecutionError(str(e), step_id=step.id) from e
        except BaseException:
            self._undo_attempt(step, change, staged)
            raise

        record.change = change

    def _check_layer(self, step: Step) -> None:
        report = check_layer_rules(step.layer, step.template or "")
        for warning in report.warnings:
            self.logger.warning(f"Layer warning: {warning}", step=step.id, layer=step.layer)
        if not report.ok:
            raise StepExecutionError(
                f"Layer violation in {step.path}: {'; '.join(report.violations)}",
                step_id=step.id,
            )

    def _undo_attempt(self, step: Step, change: FileChange, staged: List[str]) -> None:
        change.undo()
        if staged:
            try:
                self.git.unstage(staged)
            except GitOperationError as e:
                self.logger.error("Could not unstage after failed attempt", step=step.id, error=str(e))
        self.logger.debug("Undid partial effects of failed attempt", step=step.id)

    def _quality_gate(self, step: Step) -> None:
        settings = self.config.quality_checks
        if not settings.enabled_checks():
            return
        timeout = self._step_timeout(step, settings.timeout_seconds)
        result = self.checker.run_checks(settings, self.work_dir, timeout=timeout)
        self.logger.record_quality(result.overall_passed, step=step.id, checks=result.summary())
        if result.overall_passed:
            return

        for check in result.failed_checks:
            for line in extract_failure_lines(check.output, check.name):
                self.logger.debug(f"  {check.name}: {line}", step=step.id)
        raise QualityGateFailure(
            f"Quality checks failed for {step.id}: {result.summary()}",
            result,
            step_id=step.id,
            error_type=result.error_type,
        )

    def _record_metrics(self, context: ExecutionContext) -> None:
        if self.metrics is None:
            return
        metadata = self.plan.metadata
        records = [
            ScoreRecord(
                step_id=record.step_id,
                step_type=record.step.type.value,
                layer=record.step.layer,
                success=record.error is None,
                score=record.score,
                raw_score=record.raw_score if record.raw_score is not None else float(record.score),
                task_id=metadata.task_id,
                target=metadata.target,
                error_type=record.error_type,
                duration_ms=record.duration_ms,
            )
            for record in context.records.values()
            if record.score is not None
        ]
        try:
            self.metrics.append(records)
        except MetricsError as e:
            self.logger.error(f"Could not update RLHF metrics: {e}", kind=e.kind)

    def _log_outcome(self, context: ExecutionContext) -> None:
        if context.status == RunStatus.SUCCESS:
            self.logger.success("Plan executed successfully", commits=len(context.commits))
        elif context.status == RunStatus.ABORTED:
            self.logger.warning("Plan execution aborted")
        else:
            self.logger.error(
                f"Plan execution failed: {context.halting_error}",
                kind=getattr(context.halting_error, "kind", "error"),
            )
