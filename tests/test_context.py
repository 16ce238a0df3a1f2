"""Tests for step records and the execution context."""

import pytest

from regent.core.context import ExecutionContext, RunStatus, StepRecord
from regent.core.errors import StateTransitionError
from regent.core.files import FileChange, FileSnapshot
from regent.core.plan import StepStatus
from regent.core.plan_loader import parse_plan

from conftest import branch_step, make_plan_dict, pr_step


@pytest.fixture
def plan():
    return parse_plan(make_plan_dict([branch_step(), pr_step()]))


class TestStepRecord:
    def test_lifecycle(self, plan):
        record = StepRecord(step=plan.steps[0])

        record.transition(StepStatus.RUNNING)
        record.transition(StepStatus.SUCCESS)
        record.transition(StepStatus.ROLLED_BACK)

        assert record.status == StepStatus.ROLLED_BACK

    @pytest.mark.parametrize(
        "path",
        [
            [StepStatus.SUCCESS],
            [StepStatus.RUNNING, StepStatus.PENDING],
            [StepStatus.RUNNING, StepStatus.FAILED, StepStatus.SUCCESS],
            [StepStatus.RUNNING, StepStatus.SUCCESS, StepStatus.ROLLED_BACK, StepStatus.SUCCESS],
        ],
    )
    def test_illegal_transitions(self, plan, path):
        record = StepRecord(step=plan.steps[0])

        with pytest.raises(StateTransitionError, match="illegal transition"):
            for status in path:
                record.transition(status)

    def test_score_set_once(self, plan):
        record = StepRecord(step=plan.steps[0])
        record.transition(StepStatus.RUNNING)
        record.transition(StepStatus.FAILED)

        record.set_score(-1, -0.7)

        assert record.score == -1
        assert record.raw_score == -0.7
        with pytest.raises(StateTransitionError, match="already set"):
            record.set_score(1)

    def test_score_requires_terminal_state(self, plan):
        record = StepRecord(step=plan.steps[0])
        record.transition(StepStatus.RUNNING)

        with pytest.raises(StateTransitionError, match="cannot score"):
            record.set_score(1)

    def test_has_effects(self, plan, tmp_path):
        record = StepRecord(step=plan.steps[0])
        assert not record.has_effects

        record.change = FileChange()
        assert not record.has_effects

        record.change.snapshots.append(FileSnapshot(path=tmp_path / "a", existed=False))
        assert record.has_effects

        assert StepRecord(step=plan.steps[0], branch="feat/x").has_effects


class TestExecutionContext:
    def test_for_plan_creates_pending_records(self, plan, tmp_path):
        context = ExecutionContext.for_plan(plan, tmp_path)

        assert list(context.records) == ["create-branch", "open-pr"]
        assert all(r.status == StepStatus.PENDING for r in context.records.values())
        assert context.status == RunStatus.RUNNING
        assert not context.succeeded

    def test_with_status_and_to_dict(self, plan, tmp_path):
        context = ExecutionContext.for_plan(plan, tmp_path)
        record = context.record("create-branch")
        record.transition(StepStatus.RUNNING)
        record.transition(StepStatus.SUCCESS)
        context.status = RunStatus.SUCCESS

        assert context.with_status(StepStatus.SUCCESS) == [record]
        data = context.to_dict()
        assert data["task_id"] == "T-001"
        assert data["status"] == "SUCCESS"
        assert data["steps"][0]["status"] == "SUCCESS"
        assert data["steps"][1]["status"] == "PENDING"
