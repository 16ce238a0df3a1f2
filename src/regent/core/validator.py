# src/regent/core/validator.py
"""Plan validator.

Checks a raw plan document before anything runs and reports every
violation it finds in one pass. Nothing here touches the filesystem or
git; the only input is the plan document itself.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import SchemaValidationError, ValidationIssue
from .plan import FallbackStrategy, RollbackFailurePolicy, StepType, WorkflowPlan
from .plan_loader import load_plan_document, parse_plan

PLACEHOLDER_PATTERN = re.compile(r"__[A-Z][A-Z0-9_]*__")

_SEMVER_IDENT = r"(?:0|[1-9]\d*|\d*[A-Za-z-][0-9A-Za-z-]*)"
SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    rf"(?:-{_SEMVER_IDENT}(?:\.{_SEMVER_IDENT})*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)

DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")

REFACTOR_REPLACE_PATTERN = re.compile(r"<<<REPLACE>>>(.*?)<<</REPLACE>>>", re.DOTALL)
REFACTOR_WITH_PATTERN = re.compile(r"<<<WITH>>>(.*?)<<</WITH>>>", re.DOTALL)

REQUIRED_TOP_LEVEL = ("metadata", "steps")
REQUIRED_METADATA = ("layer", "target", "taskId")
VERSION_FIELDS = ("version", "metadata.version", "metadata.templateVersion")
DATE_FIELDS = ("metadata.lastUpdated", "metadata.createdAt", "metadata.date")

_STEP_TYPES = {t.value for t in StepType}
_FALLBACKS = {f.value for f in FallbackStrategy}
_ROLLBACK_POLICIES = {p.value for p in RollbackFailurePolicy}


@dataclass
class ValidationResult:
    """Outcome of validating a plan: either a plan or the list of issues."""

    plan: Optional[WorkflowPlan] = None
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues and self.plan is not None

    def unwrap(self) -> WorkflowPlan:
        """Return the plan or raise SchemaValidationError with every issue."""
        if not self.valid:
            raise SchemaValidationError(self.issues)
        return self.plan

    ensure_valid = unwrap


def _get_nested(obj: Dict[str, Any], dotted: str) -> Any:
    current: Any = obj
    for part in dotted.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _walk_strings(obj: Any, path: str = "") -> Iterator[Tuple[str, str]]:
    """Yield (path, text) for every string key and value in the document."""
    if isinstance(obj, str):
        yield path, obj
    elif isinstance(obj, dict):
        for key, value in obj.items():
            child = f"{path}.{key}" if path else str(key)
            if isinstance(key, str):
                yield child, key
            yield from _walk_strings(value, child)
    elif isinstance(obj, list):
        for index, item in enumerate(obj):
            yield from _walk_strings(item, f"{path}[{index}]")


def is_valid_semver(value: str) -> bool:
    return bool(SEMVER_PATTERN.match(value))


def is_valid_date(value: str) -> bool:
    match = DATE_PATTERN.match(value)
    if not match:
        return False
    year, month, day = (int(g) for g in match.groups())
    try:
        date(year, month, day)
    except ValueError:
        return False
    return True


def is_safe_relative_path(value: str) -> bool:
    """True for relative paths that stay inside the working tree."""
    if not value or PurePosixPath(value).is_absolute() or PureWindowsPath(value).is_absolute():
        return False
    if PureWindowsPath(value).drive:
        return False
    parts = re.split(r"[\\/]", value)
    return ".." not in parts


class PlanValidator:
    """Validates raw plan documents.

    The validator is stateless; each call to validate() collects issues into
    a fresh list.
    """

    def validate(self, data: Any, source: Optional[str] = None) -> ValidationResult:
        """Validate a raw plan document.

        Args:
            data: Raw plan document (as read from YAML/JSON)
            source: Where the document came from, kept on the plan

        Returns:
            ValidationResult holding the parsed plan or every issue found
        """
        issues: List[ValidationIssue] = []

        if not isinstance(data, dict):
            issues.append(ValidationIssue("", "Plan must be a mapping", "invalid_type"))
            return ValidationResult(issues=issues)

        self._check_required_keys(data, issues)
        self._check_placeholders(data, issues)
        self._check_versions(data, issues)
        self._check_dates(data, issues)

        steps = data.get("steps")
        if isinstance(steps, list) and steps:
            self._check_steps(steps, issues)
            self._check_dependencies(steps, issues)
            self._check_workflow_order(steps, issues)

        if issues:
            return ValidationResult(issues=issues)
        return ValidationResult(plan=parse_plan(data, source=source))

    def _check_required_keys(self, data: Dict[str, Any], issues: List[ValidationIssue]) -> None:
        for key in REQUIRED_TOP_LEVEL:
            if key not in data or data[key] is None:
                issues.append(ValidationIssue(key, f"Missing required field '{key}'", "missing_field"))

        metadata = data.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            issues.append(ValidationIssue("metadata", "Must be a mapping", "invalid_type"))
        elif isinstance(metadata, dict):
            for key in REQUIRED_METADATA:
                value = metadata.get(key)
                if value is None or (isinstance(value, str) and not value.strip()):
                    issues.append(ValidationIssue(
                        f"metadata.{key}", f"Missing required field '{key}'", "missing_field"
                    ))
            deps = metadata.get("dependencies")
            if deps is not None and not (isinstance(deps, list) and all(isinstance(d, str) for d in deps)):
                issues.append(ValidationIssue(
                    "metadata.dependencies", "Must be a list of strings", "invalid_type"
                ))

        steps = data.get("steps")
        if steps is not None:
            if not isinstance(steps, list):
                issues.append(ValidationIssue("steps", "Must be a list", "invalid_type"))
            elif not steps:
                issues.append(ValidationIssue("steps", "Plan has no steps", "empty_steps"))

    def _check_placeholders(self, data: Dict[str, Any], issues: List[ValidationIssue]) -> None:
        for path, text in _walk_strings(data):
            found = sorted(set(PLACEHOLDER_PATTERN.findall(text)))
            if found:
                issues.append(ValidationIssue(
                    path,
                    f"Unresolved placeholder(s): {', '.join(found)}",
                    "unresolved_placeholder",
                ))

    def _check_versions(self, data: Dict[str, Any], issues: List[ValidationIssue]) -> None:
        for dotted in VERSION_FIELDS:
            value = _get_nested(data, dotted)
            if value is None:
                continue
            if not isinstance(value, str):
                issues.append(ValidationIssue(
                    dotted,
                    f"Semantic version must be a string like '1.2.3', got {value!r}",
                    "invalid_version",
                ))
            elif not is_valid_semver(value):
                issues.append(ValidationIssue(
                    dotted,
                    f"Invalid semantic version '{value}' (expected MAJOR.MINOR.PATCH[-pre][+build])",
                    "invalid_version",
                ))

    def _check_dates(self, data: Dict[str, Any], issues: List[ValidationIssue]) -> None:
        for dotted in DATE_FIELDS:
            value = _get_nested(data, dotted)
            if value is None:
                continue
            if not isinstance(value, str) or not is_valid_date(value):
                issues.append(ValidationIssue(
                    dotted,
                    f"Invalid date '{value}'. Use a real calendar date in YYYY-MM-DD format.",
                    "invalid_date",
                ))

    def _check_steps(self, steps: List[Any], issues: List[ValidationIssue]) -> None:
        seen: Dict[str, int] = {}
        for index, step in enumerate(steps):
            where = f"steps[{index}]"
            if not isinstance(step, dict):
                issues.append(ValidationIssue(where, "Step must be a mapping", "invalid_type"))
                continue

            step_id = step.get("id")
            if not isinstance(step_id, str) or not step_id.strip():
                issues.append(ValidationIssue(f"{where}.id", "Missing required field 'id'", "missing_field"))
            elif step_id in seen:
                issues.append(ValidationIssue(
                    f"{where}.id",
                    f"Duplicate step id '{step_id}' (first used by steps[{seen[step_id]}])",
                    "duplicate_id",
                ))
            else:
                seen[step_id] = index

            step_type = step.get("type")
            if step_type is None:
                issues.append(ValidationIssue(f"{where}.type", "Missing required field 'type'", "missing_field"))
            elif step_type not in _STEP_TYPES:
                issues.append(ValidationIssue(
                    f"{where}.type",
                    f"Unknown step type '{step_type}'. Must be one of: {sorted(_STEP_TYPES)}",
                    "invalid_step_type",
                ))
            else:
                self._check_step_fields(StepType(step_type), step, where, issues)

            for key in ("layer", "template", "content", "description"):
                value = step.get(key)
                if value is not None and not isinstance(value, str):
                    issues.append(ValidationIssue(f"{where}.{key}", "Must be a string", "invalid_type"))

            timeout = step.get("timeout_ms")
            if timeout is not None and (not _is_int(timeout) or timeout <= 0):
                issues.append(ValidationIssue(
                    f"{where}.timeout_ms", "Must be a positive integer", "invalid_value"
                ))

            deps = step.get("depends_on")
            if deps is not None and not (isinstance(deps, list) and all(isinstance(d, str) for d in deps)):
                issues.append(ValidationIssue(
                    f"{where}.depends_on", "Must be a list of step ids", "invalid_type"
                ))

            self._check_error_handling(step.get("error_handling"), where, index, steps, issues)

    def _check_step_fields(
        self,
        step_type: StepType,
        step: Dict[str, Any],
        where: str,
        issues: List[ValidationIssue],
    ) -> None:
        action = step.get("action") or {}
        if not isinstance(action, dict):
            issues.append(ValidationIssue(f"{where}.action", "Must be a mapping", "invalid_type"))
            action = {}

        def require_action(key: str) -> None:
            value = action.get(key)
            if not isinstance(value, str) or not value.strip():
                issues.append(ValidationIssue(
                    f"{where}.action.{key}",
                    f"{step_type.value} step requires 'action.{key}'",
                    "missing_field",
                ))

        for key in ("base_branch", "body"):
            value = action.get(key)
            if value is not None and not isinstance(value, str):
                issues.append(ValidationIssue(f"{where}.action.{key}", "Must be a string", "invalid_type"))

        if step_type in (StepType.CREATE_FILE, StepType.REFACTOR_FILE, StepType.DELETE_FILE):
            path = step.get("path")
            if not isinstance(path, str) or not path.strip():
                issues.append(ValidationIssue(
                    f"{where}.path", f"{step_type.value} step requires 'path'", "missing_field"
                ))
            elif not is_safe_relative_path(path):
                issues.append(ValidationIssue(
                    f"{where}.path",
                    f"Path '{path}' must be relative and stay inside the working tree",
                    "unsafe_path",
                ))

        if step_type == StepType.REFACTOR_FILE:
            template = step.get("template", step.get("content"))
            if not isinstance(template, str) or not (
                REFACTOR_REPLACE_PATTERN.search(template) and REFACTOR_WITH_PATTERN.search(template)
            ):
                issues.append(ValidationIssue(
                    f"{where}.template",
                    "refactor_file template requires <<<REPLACE>>>...<<</REPLACE>>> and "
                    "<<<WITH>>>...<<</WITH>>> blocks",
                    "invalid_template",
                ))

        if step_type in (StepType.VALIDATION, StepType.TEST):
            script = step.get("validation_script")
            if not isinstance(script, str) or not script.strip():
                issues.append(ValidationIssue(
                    f"{where}.validation_script",
                    f"{step_type.value} step requires 'validation_script'",
                    "missing_field",
                ))

        if step_type == StepType.BRANCH:
            require_action("branch_name")

        if step_type == StepType.PULL_REQUEST:
            for key in ("source_branch", "target_branch", "title"):
                require_action(key)

        if step_type == StepType.FOLDER:
            folders_spec = action.get("create_folders")
            if not isinstance(folders_spec, dict):
                issues.append(ValidationIssue(
                    f"{where}.action.create_folders",
                    "folder step requires 'action.create_folders'",
                    "missing_field",
                ))
                return
            base = folders_spec.get("basePath")
            if not isinstance(base, str) or not base.strip():
                issues.append(ValidationIssue(
                    f"{where}.action.create_folders.basePath",
                    "folder step requires 'basePath'",
                    "missing_field",
                ))
            elif not is_safe_relative_path(base):
                issues.append(ValidationIssue(
                    f"{where}.action.create_folders.basePath",
                    f"Path '{base}' must be relative and stay inside the working tree",
                    "unsafe_path",
                ))
            folders = folders_spec.get("folders")
            if not isinstance(folders, list) or not folders:
                issues.append(ValidationIssue(
                    f"{where}.action.create_folders.folders",
                    "folder step requires a non-empty 'folders' list",
                    "missing_field",
                ))
            else:
                for i, folder in enumerate(folders):
                    if not isinstance(folder, str) or not is_safe_relative_path(folder):
                        issues.append(ValidationIssue(
                            f"{where}.action.create_folders.folders[{i}]",
                            f"Folder '{folder}' must be a relative path inside the working tree",
                            "unsafe_path",
                        ))

    def _check_error_handling(
        self,
        handling: Any,
        where: str,
        index: int,
        steps: List[Any],
        issues: List[ValidationIssue],
    ) -> None:
        if handling is None:
            return
        where = f"{where}.error_handling"
        if not isinstance(handling, dict):
            issues.append(ValidationIssue(where, "Must be a mapping", "invalid_type"))
            return

        for key in ("retry_count", "retry_delay_ms"):
            value = handling.get(key)
            if value is not None and (not _is_int(value) or value < 0):
                issues.append(ValidationIssue(
                    f"{where}.{key}", "Must be a non-negative integer", "invalid_value"
                ))

        strategy = handling.get("fallback_strategy")
        if strategy is not None and strategy not in _FALLBACKS:
            issues.append(ValidationIssue(
                f"{where}.fallback_strategy",
                f"Invalid fallback_strategy '{strategy}'. Must be one of: {sorted(_FALLBACKS)}",
                "invalid_value",
            ))

        policy = handling.get("on_rollback_failure")
        if policy is not None and policy not in _ROLLBACK_POLICIES:
            issues.append(ValidationIssue(
                f"{where}.on_rollback_failure",
                f"Invalid on_rollback_failure '{policy}'. Must be one of: {sorted(_ROLLBACK_POLICIES)}",
                "invalid_value",
            ))

        rollback_steps = handling.get("rollback_steps")
        if rollback_steps is None:
            if strategy == FallbackStrategy.ROLLBACK.value:
                issues.append(ValidationIssue(
                    f"{where}.rollback_steps",
                    "fallback_strategy 'rollback' requires 'rollback_steps'",
                    "missing_field",
                ))
            return
        if not isinstance(rollback_steps, list) or not all(isinstance(s, str) for s in rollback_steps):
            issues.append(ValidationIssue(
                f"{where}.rollback_steps", "Must be a list of step ids", "invalid_type"
            ))
            return

        earlier = {
            s.get("id") for s in steps[:index] if isinstance(s, dict)
        }
        for target in rollback_steps:
            if target not in earlier:
                issues.append(ValidationIssue(
                    f"{where}.rollback_steps",
                    f"Rollback step '{target}' must name a step declared before this one",
                    "invalid_rollback_reference",
                ))

    def _check_dependencies(self, steps: List[Any], issues: List[ValidationIssue]) -> None:
        positions: Dict[str, int] = {}
        for index, step in enumerate(steps):
            if isinstance(step, dict) and isinstance(step.get("id"), str):
                positions.setdefault(step["id"], index)

        graph: Dict[str, List[str]] = {}
        for index, step in enumerate(steps):
            if not isinstance(step, dict) or not isinstance(step.get("id"), str):
                continue
            deps = step.get("depends_on") or []
            if not isinstance(deps, list):
                continue
            step_id = step["id"]
            graph.setdefault(step_id, [])
            for dep in deps:
                if not isinstance(dep, str):
                    continue
                where = f"steps[{index}].depends_on"
                if dep == step_id:
                    issues.append(ValidationIssue(
                        where, f"Step '{step_id}' depends on itself", "self_dependency"
                    ))
                elif dep not in positions:
                    issues.append(ValidationIssue(
                        where, f"Step '{step_id}' depends on unknown step '{dep}'", "unknown_dependency"
                    ))
                else:
                    if positions[dep] > index:
                        issues.append(ValidationIssue(
                            where,
                            f"Step '{step_id}' depends on '{dep}', which is declared later",
                            "forward_dependency",
                        ))
                    graph[step_id].append(dep)

        cycle = _find_cycle(graph)
        if cycle:
            issues.append(ValidationIssue(
                "steps",
                f"Dependency cycle detected: {' -> '.join(cycle)}",
                "dependency_cycle",
            ))

    def _check_workflow_order(self, steps: List[Any], issues: List[ValidationIssue]) -> None:
        first, last = steps[0], steps[-1]
        if isinstance(first, dict) and first.get("type") != StepType.BRANCH.value:
            issues.append(ValidationIssue(
                "steps[0].type",
                f"First step must be of type 'branch', got '{first.get('type')}'",
                "workflow_order",
            ))
        if isinstance(last, dict) and last.get("type") != StepType.PULL_REQUEST.value:
            issues.append(ValidationIssue(
                f"steps[{len(steps) - 1}].type",
                f"Last step must be of type 'pull_request', got '{last.get('type')}'",
                "workflow_order",
            ))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _find_cycle(graph: Dict[str, List[str]]) -> Optional[List[str]]:
    """Return one dependency cycle as a list of ids, or None."""
    visiting, done = set(), set()
    stack: List[str] = []

    def visit(node: str) -> Optional[List[str]]:
        visiting.add(node)
        stack.append(node)
        for dep in graph.get(node, []):
            if dep in visiting:
                return stack[stack.index(dep):] + [dep]
            if dep not in done:
                found = visit(dep)
                if found:
                    return found
        visiting.discard(node)
        done.add(node)
        stack.pop()
        return None

    for node in graph:
        if node not in done:
            found = visit(node)
            if found:
                return found
    return None


def validate_plan(data: Any, source: Optional[str] = None) -> ValidationResult:
    """Validate a raw plan document with a fresh PlanValidator."""
    return PlanValidator().validate(data, source=source)


def load_plan(path: Path) -> WorkflowPlan:
    """Load and validate a plan file.

    Raises:
        PlanLoadError: If the file cannot be read or parsed
        SchemaValidationError: If the plan is invalid
    """
    data = load_plan_document(path)
    return validate_plan(data, source=str(path)).unwrap()
