# src/regent/core/quality.py
"""Quality checker for plan steps.

Runs lint, test and build commands (and the scripts of validation/test
steps), captures output, and maps exit codes to pass/fail results. Nothing
here retries; retry policy belongs to the executor.
"""

import re
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .config import QualityCheckSettings
from .errors import ConfigError
from .package_manager import build_command, detect_package_manager
from .scoring import most_severe_error_type

TIMEOUT_EXIT_CODE = 124  # Standard timeout exit code
NOT_FOUND_EXIT_CODE = 127
NOT_EXECUTABLE_EXIT_CODE = 126

MAX_FAILURE_LINES = 10

Command = Union[str, Sequence[str]]


@dataclass
class CheckResult:
    """Result of a single quality check."""
    name: str
    passed: bool
    output: str
    exit_code: int
    timed_out: bool = False
    duration_ms: int = 0


@dataclass
class QualityCheckResult:
    """Aggregate of the checks run for one step."""
    checks: Dict[str, CheckResult] = field(default_factory=dict)

    @property
    def overall_passed(self) -> bool:
        return all(check.passed for check in self.checks.values())

    @property
    def failed_checks(self) -> List[CheckResult]:
        return [check for check in self.checks.values() if not check.passed]

    @property
    def error_type(self) -> Optional[str]:
        """Most severe failed check kind (build > test > lint), if any."""
        return most_severe_error_type(check.name for check in self.failed_checks)

    def add(self, check: CheckResult) -> None:
        self.checks[check.name] = check

    def combined_output(self, failed_only: bool = False) -> str:
        """Concatenate check outputs under a header per check."""
        parts = []
        for check in self.checks.values():
            if failed_only and check.passed:
                continue
            status = "PASSED" if check.passed else "FAILED"
            parts.append(f"--- {check.name}: {status} (exit {check.exit_code}) ---\n{check.output.rstrip()}")
        return "\n".join(parts)

    def summary(self) -> str:
        return ", ".join(
            f"{name}={'passed' if check.passed else 'failed'}"
            for name, check in self.checks.items()
        )


def _as_text(value: Union[str, bytes, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class QualityChecker:
    """Runs quality-check commands with a bounded timeout.

    String commands go through the shell, like script phases; argv lists
    (package manager commands) are executed directly.
    """

    def run(
        self,
        command: Command,
        cwd: Path,
        timeout: float,
        name: str = "check",
    ) -> CheckResult:
        """Run a single command.

        Args:
            command: Shell command line or argv list
            cwd: Working directory for the command
            timeout: Maximum execution time in seconds
            name: Check name recorded in the result

        Returns:
            CheckResult. Timeouts and missing executables are failed results,
            never exceptions.
        """
        shell = isinstance(command, str)
        started = time.monotonic()
        timed_out = False
        try:
            result = subprocess.run(
                command if shell else list(command),
                shell=shell,
                cwd=cwd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
            exit_code = result.returncode
            output = result.stdout + result.stderr
        except subprocess.TimeoutExpired as e:
            timed_out = True
            exit_code = TIMEOUT_EXIT_CODE
            output = f"Command timed out after {timeout}s\n{_as_text(e.stdout)}{_as_text(e.stderr)}"
        except FileNotFoundError as e:
            exit_code = NOT_FOUND_EXIT_CODE
            output = f"Command not found: {e.filename or command}"
        except PermissionError as e:
            exit_code = NOT_EXECUTABLE_EXIT_CODE
            output = f"Command not executable: {e}"

        duration_ms = int((time.monotonic() - started) * 1000)
        return CheckResult(
            name=name,
            passed=exit_code == 0,
            output=output,
            exit_code=exit_code,
            timed_out=timed_out,
            duration_ms=duration_ms,
        )

    def resolve_command(self, name: str, settings: QualityCheckSettings, work_dir: Path) -> Command:
        """Resolve the command of an enabled check.

        An explicit <name>_command wins; otherwise the package.json script of
        the same name is run with the detected package manager.

        Raises:
            ConfigError: If neither is available
        """
        explicit = settings.command_for(name)
        if explicit:
            return explicit
        if (Path(work_dir) / "package.json").exists():
            return build_command(detect_package_manager(work_dir), name)
        raise ConfigError(
            f"quality_checks.{name} is enabled but no {name}_command is set "
            f"and {work_dir} has no package.json"
        )

    def run_checks(
        self,
        settings: QualityCheckSettings,
        cwd: Path,
        timeout: Optional[float] = None,
    ) -> QualityCheckResult:
        """Run every enabled check sequentially.

        Args:
            settings: Which checks run and their commands
            cwd: Project root
            timeout: Per-check timeout in seconds (defaults to settings)

        Returns:
            QualityCheckResult with one entry per enabled check

        Raises:
            ConfigError: If an enabled check has no resolvable command
        """
        if timeout is None:
            timeout = settings.timeout_seconds
        commands = [
            (name, self.resolve_command(name, settings, cwd))
            for name in settings.enabled_checks()
        ]
        result = QualityCheckResult()
        for name, command in commands:
            result.add(self.run(command, cwd, timeout, name=name))
        return result


_LINT_LOCATION = re.compile(r"^\s*\d+:\d+\s+(error|warning)")
_LINT_FILE = re.compile(r"^/.*\.(ts|js|tsx|jsx|py)$")
_TEST_FAILURE = re.compile(r"FAIL|✕|×|failed", re.IGNORECASE)


def extract_failure_lines(output: str, kind: str) -> List[str]:
    """Pull the most relevant error lines out of lint or test output.

    Args:
        output: Raw check output
        kind: "lint" or "test"; anything else returns the last lines

    Returns:
        At most ten stripped lines
    """
    lines = output.splitlines()
    found: List[str] = []

    if kind == "lint":
        for line in lines:
            if _LINT_LOCATION.match(line) or _LINT_FILE.match(line):
                found.append(line.strip())
    elif kind == "test":
        in_failure = False
        for line in lines:
            if _TEST_FAILURE.search(line):
                in_failure = True
                found.append(line.strip())
            elif in_failure and line.strip():
                found.append(line.strip())
            if len(found) >= MAX_FAILURE_LINES:
                break
    else:
        found = [line.strip() for line in lines if line.strip()][-MAX_FAILURE_LINES:]

    return found[:MAX_FAILURE_LINES]
