# src/regent/core/plan_loader.py
"""Plan file loader.

Reads plan documents from YAML or JSON files and converts structurally
valid documents into WorkflowPlan objects. Structural checks live in the
validator; parse_plan assumes its input already passed them.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import PlanLoadError
from .plan import (
    ErrorHandling,
    FallbackStrategy,
    PlanMetadata,
    RollbackFailurePolicy,
    Step,
    StepType,
    WorkflowPlan,
)

_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


class _PlanYamlLoader(yaml.SafeLoader):
    """SafeLoader that leaves dates as strings.

    The default resolver turns 2024-02-30 into a constructor error before the
    validator can report it.
    """


_PlanYamlLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def load_plan_document(path: Path) -> Dict[str, Any]:
    """Read a plan file into a raw dictionary.

    Args:
        path: Path to a .yaml/.yml or .json plan file

    Returns:
        The raw plan document

    Raises:
        PlanLoadError: If the file is missing, unparseable or not a mapping
    """
    path = Path(path)
    if not path.is_file():
        raise PlanLoadError(f"Plan file not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlanLoadError(f"Could not read plan file {path}: {e}") from e

    return parse_plan_text(text, fmt="json" if path.suffix.lower() == ".json" else "yaml", source=str(path))


def parse_plan_text(text: str, fmt: str = "yaml", source: str = "<string>") -> Dict[str, Any]:
    """Parse plan text in the given format into a raw dictionary."""
    try:
        if fmt == "json":
            data = json.loads(text)
        else:
            data = yaml.load(text, Loader=_PlanYamlLoader)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise PlanLoadError(f"Could not parse plan {source}: {e}") from e

    if not isinstance(data, dict):
        raise PlanLoadError(
            f"Plan {source} must be a mapping at the top level, got {type(data).__name__}"
        )
    return data


def _parse_error_handling(data: Optional[Dict[str, Any]]) -> ErrorHandling:
    if not data:
        return ErrorHandling()
    return ErrorHandling(
        retry_count=int(data.get("retry_count", 0)),
        retry_delay_ms=int(data.get("retry_delay_ms", 0)),
        fallback_strategy=FallbackStrategy(data.get("fallback_strategy", "stop")),
        rollback_steps=list(data.get("rollback_steps") or []),
        on_rollback_failure=RollbackFailurePolicy(data.get("on_rollback_failure", "alert")),
    )


def _parse_step(data: Dict[str, Any], default_layer: str) -> Step:
    return Step(
        id=data["id"],
        type=StepType(data["type"]),
        layer=data.get("layer") or default_layer,
        path=data.get("path"),
        template=data.get("template", data.get("content")),
        action=dict(data.get("action") or {}),
        validation_script=data.get("validation_script"),
        description=data.get("description"),
        timeout_ms=data.get("timeout_ms"),
        depends_on=list(data.get("depends_on") or []),
        error_handling=_parse_error_handling(data.get("error_handling")),
    )


def _parse_metadata(data: Dict[str, Any]) -> PlanMetadata:
    known = {"layer", "target", "taskId", "dependencies"}
    return PlanMetadata(
        layer=data["layer"],
        target=data["target"],
        task_id=str(data["taskId"]),
        dependencies=list(data.get("dependencies") or []),
        extra={k: v for k, v in data.items() if k not in known},
    )


def parse_plan(data: Dict[str, Any], source: Optional[str] = None) -> WorkflowPlan:
    """Convert a validated plan document into a WorkflowPlan."""
    metadata = _parse_metadata(data["metadata"])
    steps: List[Step] = [_parse_step(s, metadata.layer) for s in data["steps"]]
    version = data.get("version")
    return WorkflowPlan(
        metadata=metadata,
        steps=steps,
        version=str(version) if version is not None else None,
        source=source,
    )
