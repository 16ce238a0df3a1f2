"""Conventional commit messages for file steps."""

import re
from pathlib import PurePosixPath
from typing import Optional

from .config import CommitSettings
from .plan import Step

MAX_SUBJECT_LENGTH = 72

_LAYER_SEGMENT = re.compile(r"/(domain|data|infra|infrastructure|presentation|main)/", re.IGNORECASE)

# Folder name hints checked when no layer folder is in the path.
_SCOPE_HINTS = (
    (("/models/", "/entities/", "/value-objects/"), "domain"),
    (("/usecases/", "/use-cases/"), "data"),
    (("/repositories/", "/adapters/"), "infra"),
    (("/controllers/", "/components/"), "presentation"),
    (("/factories/", "/composition/"), "main"),
)

DEFAULT_SCOPE = "core"


def extract_scope(path: Optional[str]) -> str:
    """Extract the architectural layer of a file path for the commit scope.

    Example:
        >>> extract_scope("src/features/product/domain/models/product.ts")
        'domain'
        >>> extract_scope("src/infrastructure/db/user-repository.ts")
        'infra'
    """
    if not path:
        return DEFAULT_SCOPE
    normalized = "/" + path.replace("\\", "/").lstrip("/")

    match = _LAYER_SEGMENT.search(normalized)
    if match:
        layer = match.group(1).lower()
        return "infra" if layer == "infrastructure" else layer

    for hints, scope in _SCOPE_HINTS:
        if any(hint in normalized for hint in hints):
            return scope
    return DEFAULT_SCOPE


def _lower_first(text: str) -> str:
    return text[:1].lower() + text[1:]


def generate_commit_message(step: Step, settings: CommitSettings) -> Optional[str]:
    """Build the commit message for a completed step.

    Returns:
        The message, or None when the step type is not committed
        (commits disabled, or the type maps to no commit type).
    """
    if not settings.enabled:
        return None
    commit_type = settings.type_mapping.get(step.type.value)
    if not commit_type:
        return None

    description = step.summary().strip().splitlines()[0]

    if not settings.conventional_commits:
        return description[:MAX_SUBJECT_LENGTH]

    scope = extract_scope(step.path)
    prefix = f"{commit_type}({scope}): "
    subject = prefix + _lower_first(description)
    if len(subject) > MAX_SUBJECT_LENGTH:
        available = MAX_SUBJECT_LENGTH - len(prefix) - 3
        subject = prefix + _lower_first(description)[:available].rstrip() + "..."

    if step.path:
        return f"{subject}\n\nStep: {step.id}\nFile: {PurePosixPath(step.path)}"
    return f"{subject}\n\nStep: {step.id}"
