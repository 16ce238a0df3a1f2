"""Tests for the rollback manager."""

from unittest import mock

import pytest

from regent.core.context import ExecutionContext
from regent.core.errors import GitOperationError, RollbackFailure
from regent.core.files import create_file
from regent.core.git import GitOperations
from regent.core.plan import StepStatus
from regent.core.plan_loader import parse_plan
from regent.core.rollback import RollbackManager

from conftest import branch_step, make_plan_dict, pr_step


def file_step(step_id, path, **extra):
    step = {"id": step_id, "type": "create_file", "path": path, "template": "x"}
    step.update(extra)
    return step


def make_context(tmp_path, on_rollback_failure="alert"):
    failing = file_step(
        "create-repo", "src/data/repo.ts",
        error_handling={
            "fallback_strategy": "rollback",
            "rollback_steps": ["create-branch", "create-model"],
            "on_rollback_failure": on_rollback_failure,
        },
    )
    plan = parse_plan(make_plan_dict([
        branch_step(),
        file_step("create-model", "src/domain/model.ts"),
        failing,
        pr_step(),
    ]))
    return ExecutionContext.for_plan(plan, tmp_path)


def complete(context, step_id, status=StepStatus.SUCCESS, **fields):
    record = context.record(step_id)
    record.transition(StepStatus.RUNNING)
    record.transition(status)
    for key, value in fields.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def mock_git():
    git = mock.Mock(spec=GitOperations)
    git.current_branch.return_value = "feat/product"
    git.revert_commit.return_value = "revertsha"
    return git


class TestRollback:
    def test_compensates_last_to_first(self, tmp_path, mock_git, quiet_logger):
        context = make_context(tmp_path)
        complete(context, "create-branch", branch="feat/product", previous_branch="main")
        complete(context, "create-model", commit_sha="abc123")
        complete(context, "create-repo", status=StepStatus.FAILED)

        result = RollbackManager(mock_git, quiet_logger).rollback(
            context.plan.get_step("create-repo"), context
        )

        assert result.rolled_back == ["create-model", "create-branch"]
        assert result.complete
        mock_git.revert_commit.assert_called_once_with("abc123")
        mock_git.checkout.assert_called_once_with("main")
        mock_git.delete_branch.assert_called_once_with("feat/product")
        assert all(r.status == StepStatus.ROLLED_BACK for r in
                   (context.record(s) for s in ("create-branch", "create-model")))
        assert quiet_logger.summary.status_counts["ROLLED_BACK"] == 2

    def test_incomplete_steps_skipped(self, tmp_path, mock_git, quiet_logger):
        context = make_context(tmp_path)
        complete(context, "create-branch", branch="feat/product", previous_branch="main")

        result = RollbackManager(mock_git, quiet_logger).rollback(
            context.plan.get_step("create-repo"), context
        )

        assert result.skipped == ["create-model"]
        assert result.rolled_back == ["create-branch"]

    def test_uncommitted_change_is_undone(self, tmp_path, mock_git, quiet_logger):
        context = make_context(tmp_path)
        (tmp_path / "src").mkdir()
        change = create_file(tmp_path, "src/domain/model.ts", "x")
        complete(context, "create-model", change=change)

        RollbackManager(mock_git, quiet_logger).compensate(context.record("create-model"), context)

        assert not (tmp_path / "src" / "domain").exists()
        assert (tmp_path / "src").is_dir()
        mock_git.revert_commit.assert_not_called()

    def test_failure_with_alert_continues(self, tmp_path, mock_git, quiet_logger):
        context = make_context(tmp_path)
        complete(context, "create-branch", branch="feat/product", previous_branch="main")
        complete(context, "create-model", commit_sha="abc123")
        mock_git.revert_commit.side_effect = GitOperationError("revert", "conflict")

        result = RollbackManager(mock_git, quiet_logger).rollback(
            context.plan.get_step("create-repo"), context
        )

        assert not result.complete
        assert [step_id for step_id, _ in result.failures] == ["create-model"]
        assert result.rolled_back == ["create-branch"]
        assert context.record("create-model").status == StepStatus.SUCCESS
        assert context.rollback_errors[0][0] == "create-model"

    def test_failure_with_stop_raises(self, tmp_path, mock_git, quiet_logger):
        context = make_context(tmp_path, on_rollback_failure="stop")
        complete(context, "create-branch", branch="feat/product", previous_branch="main")
        complete(context, "create-model", commit_sha="abc123")
        mock_git.revert_commit.side_effect = GitOperationError("revert", "conflict")

        with pytest.raises(RollbackFailure) as exc_info:
            RollbackManager(mock_git, quiet_logger).rollback(context.plan.get_step("create-repo"), context)

        assert exc_info.value.failures[0][0] == "create-model"
        mock_git.delete_branch.assert_not_called()
        assert context.record("create-branch").status == StepStatus.SUCCESS

    def test_pull_request_closed(self, tmp_path, mock_git, quiet_logger):
        context = make_context(tmp_path)
        record = complete(context, "open-pr", pr_url="https://github.com/o/r/pull/1")

        RollbackManager(mock_git, quiet_logger).compensate(record, context)

        mock_git.close_pull_request.assert_called_once_with("https://github.com/o/r/pull/1")

    def test_rollback_all(self, tmp_path, mock_git, quiet_logger):
        context = make_context(tmp_path)
        complete(context, "create-branch", branch="feat/product", previous_branch="main")
        complete(context, "create-model", commit_sha="abc123")

        result = RollbackManager(mock_git, quiet_logger).rollback_all(context)

        assert result.rolled_back == ["create-model", "create-branch"]
