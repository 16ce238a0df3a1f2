"""RLHF metrics store.

Keeps the score history of executed steps and per-pattern success rates in
a single JSON file:

    {
      "version": 1,
      "scores": [{"stepId": ..., "score": 1, ...}, ...],   # last 1000 records
      "patterns": {"domain_create_file_lint": {...}, ...}
    }

The executor only appends; existing records are never rewritten except for
dropping the oldest beyond the cap.
"""

import contextlib
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import MetricsError
from .paths import ensure_directory

MAX_SCORE_RECORDS = 1000
FORMAT_VERSION = 1

# A pattern gets a suggested fix once it is seen this often and mostly fails.
SUGGESTION_MIN_OCCURRENCES = 3
SUGGESTION_MAX_SUCCESS_RATE = 0.5

_FIX_SUGGESTIONS = {
    "lint": "Add an automatic lint fix step before validation",
    "test": "Review test expectations and mock data",
    "build": "Add type definitions or fix type mismatches before building",
    "git_operation": "Add a git status check and recovery steps",
    "quality_gate": "Run the quality checks locally before executing the plan",
}

_LAYER_HINTS = {
    "domain": " Ensure no external dependencies in the domain layer.",
    "data": " Implement domain interfaces and use the repository pattern.",
    "infra": " Add proper error handling around external services.",
    "presentation": " Keep presentation logic separate from business logic.",
    "main": " Use dependency injection and factory patterns.",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def suggest_fix(error_type: Optional[str], layer: Optional[str]) -> str:
    suggestion = _FIX_SUGGESTIONS.get(error_type or "", "Review and debug the failing step")
    return suggestion + _LAYER_HINTS.get(layer or "", "")


@dataclass
class ScoreRecord:
    """One scored step execution."""
    step_id: str
    step_type: str
    layer: str
    success: bool
    score: int
    raw_score: float
    task_id: Optional[str] = None
    target: Optional[str] = None
    error_type: Optional[str] = None
    duration_ms: int = 0
    timestamp: str = field(default_factory=_now)

    @property
    def pattern_key(self) -> str:
        return f"{self.layer}_{self.step_type}_{self.error_type or 'success'}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepId": self.step_id,
            "stepType": self.step_type,
            "layer": self.layer,
            "success": self.success,
            "score": self.score,
            "rawScore": self.raw_score,
            "taskId": self.task_id,
            "target": self.target,
            "errorType": self.error_type,
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreRecord":
        return cls(
            step_id=data["stepId"],
            step_type=data["stepType"],
            layer=data.get("layer", ""),
            success=bool(data["success"]),
            score=int(data["score"]),
            raw_score=float(data.get("rawScore", data["score"])),
            task_id=data.get("taskId"),
            target=data.get("target"),
            error_type=data.get("errorType"),
            duration_ms=int(data.get("durationMs", 0)),
            timestamp=data.get("timestamp", ""),
        )


@dataclass
class PatternStats:
    """Success statistics of one layer/step-type/error-type pattern."""
    pattern: str
    occurrences: int = 0
    success_rate: float = 0.0
    last_seen: str = ""
    layer: Optional[str] = None
    suggested_fix: Optional[str] = None

    def record(self, success: bool, error_type: Optional[str], when: str) -> None:
        self.occurrences += 1
        self.last_seen = when
        hits = self.success_rate * (self.occurrences - 1) + (1 if success else 0)
        self.success_rate = hits / self.occurrences
        if (
            not success
            and self.occurrences > SUGGESTION_MIN_OCCURRENCES
            and self.success_rate < SUGGESTION_MAX_SUCCESS_RATE
        ):
            self.suggested_fix = suggest_fix(error_type, self.layer)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.pattern,
            "occurrences": self.occurrences,
            "successRate": self.success_rate,
            "lastSeen": self.last_seen,
            "layer": self.layer,
            "suggestedFix": self.suggested_fix,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternStats":
        return cls(
            pattern=data["pattern"],
            occurrences=int(data.get("occurrences", 0)),
            success_rate=float(data.get("successRate", 0.0)),
            last_seen=data.get("lastSeen", ""),
            layer=data.get("layer"),
            suggested_fix=data.get("suggestedFix"),
        )


@dataclass
class MetricsReport:
    """Aggregate view over the metrics file."""
    total: int
    success_rate: float
    mean_score: float
    histogram: Dict[int, int]
    top_patterns: List[PatternStats]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["top_patterns"] = [p.to_dict() for p in self.top_patterns]
        return data


class RLHFMetricsStore:
    """JSON-backed store for score history and learning patterns."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        """Read the metrics file.

        Returns:
            The document; an empty one when the file does not exist yet.

        Raises:
            MetricsError: If the file exists but is not valid metrics JSON.
        """
        if not self.path.exists():
            return {"version": FORMAT_VERSION, "scores": [], "patterns": {}}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except ValueError as e:
            raise MetricsError(f"Invalid metrics file {self.path}: {e}") from e
        except OSError as e:
            raise MetricsError(f"Cannot read metrics file {self.path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("scores", []), list):
            raise MetricsError(f"Invalid metrics file {self.path}: unexpected structure")
        data.setdefault("version", FORMAT_VERSION)
        data.setdefault("scores", [])
        data.setdefault("patterns", {})
        return data

    def scores(self) -> List[ScoreRecord]:
        return [ScoreRecord.from_dict(item) for item in self.load()["scores"]]

    def patterns(self) -> Dict[str, PatternStats]:
        return {
            key: PatternStats.from_dict(value)
            for key, value in self.load()["patterns"].items()
        }

    def append(self, records: List[ScoreRecord]) -> None:
        """Append score records and update pattern statistics.

        Raises:
            MetricsError: If the existing file is invalid or cannot be written.
        """
        if not records:
            return
        data = self.load()
        patterns = {
            key: PatternStats.from_dict(value) for key, value in data["patterns"].items()
        }

        for record in records:
            data["scores"].append(record.to_dict())
            stats = patterns.get(record.pattern_key)
            if stats is None:
                stats = PatternStats(pattern=record.pattern_key, layer=record.layer)
                patterns[record.pattern_key] = stats
            stats.record(record.success, record.error_type, record.timestamp)

        data["scores"] = data["scores"][-MAX_SCORE_RECORDS:]
        data["patterns"] = {key: stats.to_dict() for key, stats in patterns.items()}
        self._write(data)

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_file = self.path.with_suffix(".json.tmp")
        try:
            ensure_directory(self.path.parent)
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            tmp_file.replace(self.path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_file.unlink(missing_ok=True)
            raise MetricsError(f"Cannot save metrics file {self.path}: {e}") from e

    def report(self, layer: Optional[str] = None, top: int = 10) -> MetricsReport:
        """Summarize the stored scores, optionally for one layer."""
        records = [r for r in self.scores() if layer is None or r.layer == layer]
        histogram = {value: 0 for value in range(-2, 3)}
        for record in records:
            histogram[record.score] = histogram.get(record.score, 0) + 1

        total = len(records)
        patterns = [p for p in self.patterns().values() if layer is None or p.layer == layer]
        patterns.sort(key=lambda p: p.occurrences, reverse=True)
        return MetricsReport(
            total=total,
            success_rate=(sum(1 for r in records if r.success) / total) if total else 0.0,
            mean_score=(sum(r.score for r in records) / total) if total else 0.0,
            histogram=histogram,
            top_patterns=patterns[:top],
        )
