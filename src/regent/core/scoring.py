# src/regent/core/scoring.py
"""Deterministic RLHF scoring of step outcomes.

Scores are integers in [-2, 2]:
    -2: catastrophic failure
    -1: failure on a critical layer, or a build failure
     0: failure without a severe cause
    +1: step completed
    +2: reserved for perfect execution

The scorer is pure: the same outcome always yields the same score and no
state is read or written.
"""

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional, Tuple

MIN_SCORE = -2
MAX_SCORE = 2

SUCCESS_BASE = 1.0
FAILURE_BASE = 0.0

# layer -> (success score, failure score); replaces the base for that layer.
LAYER_POLICY: Dict[str, Tuple[float, float]] = {
    "domain": (1.2, -0.5),
    "main": (1.2, -0.5),
}

ERROR_PENALTIES: Dict[str, float] = {
    "lint": -0.2,
    "test": -0.3,
    "build": -0.5,
}

# Most severe first; only one penalty applies per step.
ERROR_SEVERITY = ("build", "test", "lint")

_ERROR_KEYWORDS = (
    ("build", re.compile(r"\b(build|compile|tsc|webpack|vite build)\b", re.IGNORECASE)),
    ("test", re.compile(r"\b(test|tests|jest|vitest|pytest|mocha)\b", re.IGNORECASE)),
    ("lint", re.compile(r"\b(lint|eslint|flake8|ruff|pylint|prettier)\b", re.IGNORECASE)),
)


@dataclass(frozen=True)
class StepOutcome:
    """What the scorer needs to know about a finished step."""
    success: bool
    layer: str
    error_type: Optional[str] = None


def most_severe_error_type(error_types: Iterable[Optional[str]]) -> Optional[str]:
    """Pick the most severe known error type (build > test > lint)."""
    present = {error_type for error_type in error_types if error_type}
    for error_type in ERROR_SEVERITY:
        if error_type in present:
            return error_type
    return None


def classify_error_type(text: Optional[str]) -> Optional[str]:
    """Map a script name or failure text to lint, test or build.

    Example:
        >>> classify_error_type("npm run lint")
        'lint'
        >>> classify_error_type("pnpm test --run")
        'test'
    """
    if not text:
        return None
    return most_severe_error_type(
        kind for kind, pattern in _ERROR_KEYWORDS if pattern.search(text)
    )


def round_half_away_from_zero(value: float) -> int:
    # Rounded to 6 places first so float noise (e.g. -0.7000000000000001)
    # never decides the direction.
    return int(Decimal(str(round(value, 6))).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class RLHFScorer:
    """Layer-aware scorer.

    Args:
        layer_policy: Per-layer (success, failure) scores replacing the base
        error_penalties: Penalty added on failure per error type
    """

    def __init__(
        self,
        layer_policy: Optional[Dict[str, Tuple[float, float]]] = None,
        error_penalties: Optional[Dict[str, float]] = None,
    ):
        self.layer_policy = dict(LAYER_POLICY if layer_policy is None else layer_policy)
        self.error_penalties = dict(ERROR_PENALTIES if error_penalties is None else error_penalties)

    def raw_score(self, outcome: StepOutcome) -> float:
        """Unrounded score, clamped to [-2, 2]."""
        success_score, failure_score = self.layer_policy.get(
            outcome.layer, (SUCCESS_BASE, FAILURE_BASE)
        )
        if outcome.success:
            value = success_score
        else:
            value = failure_score + self.error_penalties.get(outcome.error_type or "", 0.0)
        return max(float(MIN_SCORE), min(float(MAX_SCORE), value))

    def score(self, outcome: StepOutcome) -> int:
        """Integer score in [-2, 2], rounded half away from zero."""
        return round_half_away_from_zero(self.raw_score(outcome))


_default_scorer = RLHFScorer()


def score(outcome: StepOutcome) -> int:
    """Score an outcome with the default policy."""
    return _default_scorer.score(outcome)


def raw_score(outcome: StepOutcome) -> float:
    return _default_scorer.raw_score(outcome)
