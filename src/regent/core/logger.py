# src/regent/core/logger.py
"""Execution logger.

Wraps stdlib logging with a SUCCESS level, key=value context on every
record, click-styled console output and an append-only plain-text log file.
Each ExecutionLogger owns its own logger so concurrent instances (and tests)
never share handlers.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import click

from .paths import ensure_directory

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

PACKAGE_LOGGER = "regent"

_LEVEL_STYLES = {
    logging.DEBUG: {"fg": "bright_black"},
    logging.INFO: {},
    SUCCESS: {"fg": "green"},
    logging.WARNING: {"fg": "yellow"},
    logging.ERROR: {"fg": "red", "bold": True},
}


def format_context(context: Optional[Dict[str, Any]]) -> str:
    """Render context as space separated key=value pairs, in insertion order."""
    if not context:
        return ""
    parts = []
    for key, value in context.items():
        if value is None:
            continue
        text = str(value)
        if not text or any(ch.isspace() for ch in text) or '"' in text:
            text = '"' + text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n") + '"'
        parts.append(f"{key}={text}")
    return " ".join(parts)


class ContextFormatter(logging.Formatter):
    """Formatter that appends the record's key=value context."""

    def __init__(self, fmt: str = "%(message)s", datefmt: Optional[str] = None, plain: bool = False):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.plain = plain

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = format_context(getattr(record, "context", None))
        if context:
            text = f"{text} {context}"
        if self.plain:
            text = click.unstyle(text)
        return text


class ClickHandler(logging.Handler):
    """Console handler writing through click.echo; errors go to stderr."""

    def __init__(self, level: int = logging.INFO, color: bool = True):
        super().__init__(level=level)
        self.color = color

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            if self.color:
                message = click.style(message, **_LEVEL_STYLES.get(record.levelno, {}))
            click.echo(message, err=record.levelno >= logging.ERROR, color=self.color)
        except Exception:
            self.handleError(record)


@dataclass
class ExecutionSummary:
    """Aggregate of one run, rebuilt from the records the logger saw."""
    status_counts: Counter = field(default_factory=Counter)
    quality_passed: int = 0
    quality_failed: int = 0
    score_histogram: Dict[int, int] = field(default_factory=lambda: {v: 0 for v in range(-2, 3)})
    durations_ms: List[int] = field(default_factory=list)

    @property
    def scores(self) -> List[int]:
        return [score for score, count in self.score_histogram.items() for _ in range(count)]

    @property
    def mean_score(self) -> Optional[float]:
        scores = self.scores
        return sum(scores) / len(scores) if scores else None

    @property
    def total_duration_ms(self) -> int:
        return sum(self.durations_ms)

    @property
    def average_duration_ms(self) -> float:
        return self.total_duration_ms / len(self.durations_ms) if self.durations_ms else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status_counts": dict(self.status_counts),
            "quality_checks": {"passed": self.quality_passed, "failed": self.quality_failed},
            "score_histogram": dict(self.score_histogram),
            "mean_score": self.mean_score,
            "total_duration_ms": self.total_duration_ms,
            "average_duration_ms": self.average_duration_ms,
        }

    def lines(self) -> List[str]:
        statuses = ", ".join(f"{k}={v}" for k, v in sorted(self.status_counts.items())) or "none"
        histogram = " ".join(f"{k:+d}:{v}" for k, v in sorted(self.score_histogram.items()))
        mean = f"{self.mean_score:.2f}" if self.mean_score is not None else "n/a"
        return [
            f"Steps: {statuses}",
            f"Quality checks: {self.quality_passed} passed, {self.quality_failed} failed",
            f"Scores: {histogram} (mean {mean})",
            f"Duration: {self.total_duration_ms}ms total, {self.average_duration_ms:.0f}ms average",
        ]


class ExecutionLogger:
    """Logger for one plan execution.

    Args:
        log_file: Append-only plain-text log; None disables file logging
        verbose: Show DEBUG records on the console
        quiet: Show only ERROR records on the console (wins over verbose)
        color: Style console output
        name: Logger name shown in the log file
        route_package_logs: Also send regent.* module loggers to these handlers
            until close()
    """

    def __init__(
        self,
        log_file: Optional[Path] = None,
        verbose: bool = False,
        quiet: bool = False,
        color: bool = True,
        name: str = "regent.execution",
        route_package_logs: bool = False,
    ):
        self.log_file = Path(log_file) if log_file else None
        self.summary = ExecutionSummary()
        self._step_started: Dict[str, float] = {}

        # Not registered with logging.getLogger, so handlers stay private.
        self._logger = logging.Logger(name, level=logging.DEBUG)
        self._logger.propagate = False

        if quiet:
            console_level = logging.ERROR
        elif verbose:
            console_level = logging.DEBUG
        else:
            console_level = logging.INFO
        self._console = ClickHandler(level=console_level, color=color)
        self._console.setFormatter(ContextFormatter())
        self._handlers: List[logging.Handler] = [self._console]

        if self.log_file is not None:
            ensure_directory(self.log_file.parent)
            file_handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                ContextFormatter(
                    "%(asctime)s | %(levelname)-8s | %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                    plain=True,
                )
            )
            self._handlers.append(file_handler)

        for handler in self._handlers:
            self._logger.addHandler(handler)

        # Module loggers (regent.core.*) share the same handlers while this
        # logger is open.
        self._package_logger = logging.getLogger(PACKAGE_LOGGER) if route_package_logs else None
        if self._package_logger is not None:
            self._package_level = self._package_logger.level
            self._package_logger.setLevel(logging.DEBUG)
            for handler in self._handlers:
                self._package_logger.addHandler(handler)

    def log(self, level: int, message: str, **context: Any) -> None:
        self._logger.log(level, message, extra={"context": context})

    def debug(self, message: str, **context: Any) -> None:
        self.log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self.log(logging.INFO, message, **context)

    def success(self, message: str, **context: Any) -> None:
        self.log(SUCCESS, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self.log(logging.WARNING, message, **context)

    warn = warning

    def error(self, message: str, **context: Any) -> None:
        self.log(logging.ERROR, message, **context)

    def start_step(self, step_id: str, step_type: str, attempt: int = 1, **context: Any) -> None:
        self._step_started[step_id] = time.monotonic()
        self.info(f"Starting step {step_id}", step=step_id, type=step_type, attempt=attempt, **context)

    def complete_step(
        self,
        step_id: str,
        status: str,
        score: Optional[int] = None,
        **context: Any,
    ) -> int:
        """Record the terminal state of a step.

        Returns:
            Duration in milliseconds since start_step (0 if never started)
        """
        started = self._step_started.pop(step_id, None)
        duration_ms = int((time.monotonic() - started) * 1000) if started is not None else 0

        self.summary.status_counts[status] += 1
        self.summary.durations_ms.append(duration_ms)
        if score is not None:
            self.summary.score_histogram[score] = self.summary.score_histogram.get(score, 0) + 1

        level = SUCCESS if status == "SUCCESS" else logging.ERROR
        self.log(
            level,
            f"Step {step_id} {status}",
            step=step_id,
            status=status,
            score=score,
            duration_ms=duration_ms,
            **context,
        )
        return duration_ms

    def record_quality(self, passed: bool, **context: Any) -> None:
        if passed:
            self.summary.quality_passed += 1
            self.debug("Quality checks passed", **context)
        else:
            self.summary.quality_failed += 1
            self.warning("Quality checks failed", **context)

    def record_rollback(self, step_id: str) -> None:
        """Count a step that moved to ROLLED_BACK after its terminal state."""
        self.summary.status_counts["ROLLED_BACK"] += 1

    def log_summary(self, title: str = "Execution summary") -> None:
        self.info(title)
        for line in self.summary.lines():
            self.info(f"  {line}")

    def close(self) -> None:
        """Detach and close every handler this logger added."""
        for handler in self._handlers:
            self._logger.removeHandler(handler)
            if self._package_logger is not None:
                self._package_logger.removeHandler(handler)
            handler.close()
        if self._package_logger is not None:
            self._package_logger.setLevel(self._package_level)
            self._package_logger = None
        self._handlers = []

    def __enter__(self) -> "ExecutionLogger":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
