"""Tests for plan validation."""

import pytest

from regent.core.errors import SchemaValidationError
from regent.core.plan import FallbackStrategy, StepType
from regent.core.validator import (
    PlanValidator,
    is_safe_relative_path,
    is_valid_date,
    is_valid_semver,
    load_plan,
    validate_plan,
)

from conftest import branch_step, make_plan_dict, pr_step


def create_file_step(step_id="create-product", path="src/domain/models/product.ts", **extra):
    step = {"id": step_id, "type": "create_file", "path": path, "template": "export class Product {}\n"}
    step.update(extra)
    return step


def codes(result):
    return {issue.code for issue in result.issues}


class TestValidPlans:
    def test_minimal_plan_is_valid(self):
        result = validate_plan(make_plan_dict([branch_step(), create_file_step(), pr_step()]))

        assert result.valid
        assert result.issues == []
        assert [s.type for s in result.plan.steps] == [
            StepType.BRANCH, StepType.CREATE_FILE, StepType.PULL_REQUEST,
        ]

    def test_step_inherits_metadata_layer(self):
        data = make_plan_dict(
            [branch_step(), create_file_step(), create_file_step("other", "a.ts", layer="data"), pr_step()],
            layer="domain",
        )

        plan = validate_plan(data).unwrap()

        assert plan.get_step("create-product").layer == "domain"
        assert plan.get_step("other").layer == "data"

    def test_missing_error_handling_defaults_to_stop_without_retries(self):
        plan = validate_plan(make_plan_dict([branch_step(), create_file_step(), pr_step()])).unwrap()

        handling = plan.get_step("create-product").error_handling
        assert handling.retry_count == 0
        assert handling.max_attempts == 1
        assert handling.fallback_strategy == FallbackStrategy.STOP

    def test_content_is_accepted_as_template(self):
        step = {"id": "c", "type": "create_file", "path": "a.ts", "content": "x"}
        plan = validate_plan(make_plan_dict([branch_step(), step, pr_step()])).unwrap()

        assert plan.get_step("c").template == "x"


class TestPlaceholders:
    def test_placeholder_in_template_rejected(self):
        step = create_file_step(template="export class __ENTITY_NAME__ {}")
        result = validate_plan(make_plan_dict([branch_step(), step, pr_step()]))

        assert not result.valid
        issue = next(i for i in result.issues if i.code == "unresolved_placeholder")
        assert issue.path == "steps[1].template"
        assert "__ENTITY_NAME__" in issue.message

    def test_placeholder_in_metadata_rejected(self):
        result = validate_plan(make_plan_dict([branch_step(), pr_step()], taskId="__TASK_ID__"))

        assert "unresolved_placeholder" in codes(result)

    def test_placeholder_in_key_rejected(self):
        step = create_file_step(action={"__FEATURE__": "x"})
        result = validate_plan(make_plan_dict([branch_step(), step, pr_step()]))

        assert any(
            i.code == "unresolved_placeholder" and i.path == "steps[1].action.__FEATURE__"
            for i in result.issues
        )

    def test_dunder_lowercase_is_not_a_placeholder(self):
        step = create_file_step(template="def __init__(self): pass")
        result = validate_plan(make_plan_dict([branch_step(), step, pr_step()]))

        assert result.valid


class TestVersionsAndDates:
    @pytest.mark.parametrize("value", ["1.0.0", "0.1.2-beta.1", "10.20.30+build.5"])
    def test_valid_semver(self, value):
        assert is_valid_semver(value)

    @pytest.mark.parametrize("value", ["v1.0.0", "1.0", "01.0.0", "1.0.0-", "1.2.3.4"])
    def test_invalid_semver(self, value):
        assert not is_valid_semver(value)

    def test_invalid_plan_version_reported(self):
        data = make_plan_dict([branch_step(), pr_step()])
        data["version"] = "v2.0.0"

        result = validate_plan(data)

        assert any(i.code == "invalid_version" and i.path == "version" for i in result.issues)

    def test_impossible_date_rejected(self):
        result = validate_plan(make_plan_dict([branch_step(), pr_step()], lastUpdated="2024-02-30"))

        assert not result.valid
        issue = next(i for i in result.issues if i.code == "invalid_date")
        assert issue.path == "metadata.lastUpdated"
        assert "2024-02-30" in issue.message

    def test_leap_day_accepted(self):
        assert is_valid_date("2024-02-29")
        assert not is_valid_date("2023-02-29")
        assert not is_valid_date("2024-2-01")

    def test_impossible_date_from_yaml_file(self, tmp_path):
        plan_file = tmp_path / "plan.yaml"
        plan_file.write_text(
            "metadata:\n"
            "  layer: domain\n"
            "  target: backend\n"
            "  taskId: T-1\n"
            "  lastUpdated: 2024-02-30\n"
            "steps:\n"
            "  - id: b\n"
            "    type: branch\n"
            "    action: {branch_name: feat/x}\n"
            "  - id: pr\n"
            "    type: pull_request\n"
            "    action: {source_branch: feat/x, target_branch: main, title: X}\n"
        )

        with pytest.raises(SchemaValidationError) as exc_info:
            load_plan(plan_file)

        assert any(i.code == "invalid_date" for i in exc_info.value.issues)


class TestDependencies:
    def test_cycle_rejected(self):
        steps = [
            branch_step(),
            create_file_step("a", "a.ts", depends_on=["b"]),
            create_file_step("b", "b.ts", depends_on=["a"]),
            pr_step(),
        ]

        result = validate_plan(make_plan_dict(steps))

        assert "dependency_cycle" in codes(result)

    def test_self_dependency_rejected(self):
        steps = [branch_step(), create_file_step("a", "a.ts", depends_on=["a"]), pr_step()]

        assert "self_dependency" in codes(validate_plan(make_plan_dict(steps)))

    def test_unknown_dependency_rejected(self):
        steps = [branch_step(), create_file_step("a", "a.ts", depends_on=["missing"]), pr_step()]

        assert "unknown_dependency" in codes(validate_plan(make_plan_dict(steps)))

    def test_forward_dependency_rejected(self):
        steps = [
            branch_step(),
            create_file_step("a", "a.ts", depends_on=["b"]),
            create_file_step("b", "b.ts"),
            pr_step(),
        ]

        assert "forward_dependency" in codes(validate_plan(make_plan_dict(steps)))


class TestStepStructure:
    def test_workflow_order_enforced(self):
        result = validate_plan(make_plan_dict([create_file_step(), pr_step(), branch_step()]))

        order_issues = [i for i in result.issues if i.code == "workflow_order"]
        assert {i.path for i in order_issues} == {"steps[0].type", "steps[2].type"}

    def test_all_issues_reported_together(self):
        data = make_plan_dict(
            [
                {"id": "x", "type": "create_file"},
                {"id": "x", "type": "unknown"},
            ],
            lastUpdated="2024-13-01",
        )
        data["version"] = "1.0"

        result = validate_plan(data)

        assert {
            "missing_field",
            "duplicate_id",
            "invalid_step_type",
            "invalid_date",
            "invalid_version",
            "workflow_order",
        } <= codes(result)

    def test_missing_metadata_keys(self):
        result = validate_plan({"metadata": {"layer": "domain"}, "steps": [branch_step(), pr_step()]})

        paths = {i.path for i in result.issues}
        assert {"metadata.target", "metadata.taskId"} <= paths

    def test_missing_top_level_keys(self):
        result = validate_plan({})

        assert {i.path for i in result.issues} >= {"metadata", "steps"}

    def test_validation_step_requires_script(self):
        steps = [branch_step(), {"id": "v", "type": "validation"}, pr_step()]

        result = validate_plan(make_plan_dict(steps))

        assert any(i.path == "steps[1].validation_script" for i in result.issues)

    def test_unsafe_path_rejected(self):
        steps = [branch_step(), create_file_step(path="../outside.ts"), pr_step()]

        assert "unsafe_path" in codes(validate_plan(make_plan_dict(steps)))

    def test_refactor_requires_blocks(self):
        steps = [branch_step(), {"id": "r", "type": "refactor_file", "path": "a.ts", "template": "x"}, pr_step()]

        assert "invalid_template" in codes(validate_plan(make_plan_dict(steps)))

    def test_non_string_text_fields_rejected(self):
        pr = pr_step()
        pr["action"]["body"] = ["not", "text"]
        steps = [branch_step(), create_file_step(template=2024, description=5), pr]

        result = validate_plan(make_plan_dict(steps))

        type_issues = {i.path for i in result.issues if i.code == "invalid_type"}
        assert type_issues == {"steps[1].template", "steps[1].description", "steps[2].action.body"}

    def test_rollback_strategy_requires_rollback_steps(self):
        step = create_file_step(error_handling={"fallback_strategy": "rollback"})

        result = validate_plan(make_plan_dict([branch_step(), step, pr_step()]))

        assert any(i.path == "steps[1].error_handling.rollback_steps" for i in result.issues)

    def test_rollback_steps_must_be_earlier(self):
        step = create_file_step(
            error_handling={"fallback_strategy": "rollback", "rollback_steps": ["open-pr"]}
        )

        result = validate_plan(make_plan_dict([branch_step(), step, pr_step()]))

        assert "invalid_rollback_reference" in codes(result)

    def test_negative_retry_count_rejected(self):
        step = create_file_step(error_handling={"retry_count": -1})

        result = validate_plan(make_plan_dict([branch_step(), step, pr_step()]))

        assert any(i.path == "steps[1].error_handling.retry_count" for i in result.issues)


class TestEnsureValid:
    def test_raises_with_every_issue(self):
        result = PlanValidator().validate(make_plan_dict([create_file_step()], lastUpdated="2024-02-30"))

        with pytest.raises(SchemaValidationError) as exc_info:
            result.ensure_valid()

        assert len(exc_info.value.issues) == len(result.issues)
        assert "2024-02-30" in str(exc_info.value)

    def test_validator_has_no_side_effects(self):
        data = make_plan_dict([branch_step(), create_file_step(), pr_step()])
        before = repr(data)

        validate_plan(data)
        validate_plan(data)

        assert repr(data) == before


class TestSafePaths:
    @pytest.mark.parametrize("value", ["src/a.ts", "a/b/c", "./a.ts"])
    def test_safe(self, value):
        assert is_safe_relative_path(value)

    @pytest.mark.parametrize("value", ["/etc/passwd", "../a", "a/../../b", "C:\\a", ""])
    def test_unsafe(self, value):
        assert not is_safe_relative_path(value)
