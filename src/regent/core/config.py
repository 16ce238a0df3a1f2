"""Execute configuration for Regent.

This module manages the per-repository configuration stored in
.regent/config/execute.yml. A missing file means defaults; a file that is
present but invalid is an error, never silently replaced by defaults.
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError
from .paths import get_config_file

COMMIT_TYPES = {"feat", "fix", "chore", "refactor", "test", "docs"}

DEFAULT_TYPE_MAPPING: Dict[str, Optional[str]] = {
    "create_file": "feat",
    "refactor_file": "refactor",
    "delete_file": "chore",
    "folder": None,
    "branch": None,
    "pull_request": None,
    "validation": None,
    "test": None,
}

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class CommitSettings:
    """Commit behavior after successful file steps."""

    enabled: bool = True
    conventional_commits: bool = True
    type_mapping: Dict[str, Optional[str]] = field(
        default_factory=lambda: dict(DEFAULT_TYPE_MAPPING)
    )
    co_author: Optional[str] = None


@dataclass
class QualityCheckSettings:
    """Quality gate run after every file step.

    Commands are shell command lines. When a command is not set the
    package manager script of the same name is used (e.g. ``npm run lint``).
    """

    lint: bool = True
    lint_command: Optional[str] = None
    test: bool = True
    test_command: Optional[str] = None
    build: bool = False
    build_command: Optional[str] = None
    timeout_seconds: int = 300

    def enabled_checks(self) -> List[str]:
        return [name for name in ("lint", "test", "build") if getattr(self, name)]

    def command_for(self, name: str) -> Optional[str]:
        return getattr(self, f"{name}_command")


@dataclass
class ExecutionSettings:
    """Run-level behavior."""

    require_clean_tree: bool = True
    rollback_on_abort: bool = True
    git_timeout_seconds: int = 120
    remote: str = "origin"


@dataclass
class LoggingSettings:
    """Console and log file behavior."""

    log_dir: Optional[str] = None
    color: bool = True
    verbose: bool = False
    quiet: bool = False


@dataclass
class ExecuteConfig:
    """Complete execute configuration.

    Stored in <work dir>/.regent/config/execute.yml
    """

    commit: CommitSettings = field(default_factory=CommitSettings)
    quality_checks: QualityCheckSettings = field(default_factory=QualityCheckSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    metrics_file: Optional[str] = None

    @classmethod
    def load(cls, work_dir: Path, path: Optional[Path] = None) -> "ExecuteConfig":
        """Load configuration for a working tree.

        Args:
            work_dir: Repository working tree
            path: Explicit config file. Defaults to .regent/config/execute.yml.

        Returns:
            ExecuteConfig with environment overrides applied.

        Raises:
            ConfigError: If the file exists but cannot be parsed or is invalid,
                or if an explicit path does not exist.
        """
        explicit = path is not None
        if path is None:
            path = get_config_file(work_dir)

        if not path.exists():
            if explicit:
                raise ConfigError(f"Config file not found: {path}")
            config = cls()
        else:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except (yaml.YAMLError, OSError) as e:
                raise ConfigError(f"Could not read config {path}: {e}") from e
            config = cls.from_dict(data, source=str(path))

        config.apply_env()
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "<config>") -> "ExecuteConfig":
        """Create config from a dictionary, validating every field.

        Raises:
            ConfigError: Listing every invalid field.
        """
        errors: List[str] = []
        if not isinstance(data, dict):
            raise ConfigError(f"{source}: top level must be a mapping")

        unknown = set(data) - {"commit", "quality_checks", "execution", "logging", "metrics"}
        for key in sorted(unknown):
            errors.append(f"unknown section '{key}'")

        commit_data = _section(data, "commit", errors)
        quality_data = _section(data, "quality_checks", errors)
        execution_data = _section(data, "execution", errors)
        logging_data = _section(data, "logging", errors)
        metrics_data = _section(data, "metrics", errors)

        mapping = dict(DEFAULT_TYPE_MAPPING)
        raw_mapping = commit_data.get("type_mapping") or {}
        if not isinstance(raw_mapping, dict):
            errors.append("commit.type_mapping: must be a mapping")
        else:
            for step_type, commit_type in raw_mapping.items():
                if step_type not in DEFAULT_TYPE_MAPPING:
                    errors.append(f"commit.type_mapping.{step_type}: unknown step type")
                elif commit_type is not None and commit_type not in COMMIT_TYPES:
                    errors.append(
                        f"commit.type_mapping.{step_type}: must be one of {sorted(COMMIT_TYPES)} or null"
                    )
                else:
                    mapping[step_type] = commit_type

        co_author = commit_data.get("co_author")
        if co_author is not None and (not isinstance(co_author, str) or "<" not in co_author):
            errors.append('commit.co_author: must be in format "Name <email@example.com>"')

        config = cls(
            commit=CommitSettings(
                enabled=_bool(commit_data, "enabled", True, "commit", errors),
                conventional_commits=_bool(commit_data, "conventional_commits", True, "commit", errors),
                type_mapping=mapping,
                co_author=co_author,
            ),
            quality_checks=QualityCheckSettings(
                lint=_bool(quality_data, "lint", True, "quality_checks", errors),
                lint_command=_opt_str(quality_data, "lint_command", "quality_checks", errors),
                test=_bool(quality_data, "test", True, "quality_checks", errors),
                test_command=_opt_str(quality_data, "test_command", "quality_checks", errors),
                build=_bool(quality_data, "build", False, "quality_checks", errors),
                build_command=_opt_str(quality_data, "build_command", "quality_checks", errors),
                timeout_seconds=_positive_int(quality_data, "timeout_seconds", 300, "quality_checks", errors),
            ),
            execution=ExecutionSettings(
                require_clean_tree=_bool(execution_data, "require_clean_tree", True, "execution", errors),
                rollback_on_abort=_bool(execution_data, "rollback_on_abort", True, "execution", errors),
                git_timeout_seconds=_positive_int(execution_data, "git_timeout_seconds", 120, "execution", errors),
                remote=_opt_str(execution_data, "remote", "execution", errors) or "origin",
            ),
            logging=LoggingSettings(
                log_dir=_opt_str(logging_data, "log_dir", "logging", errors),
                color=_bool(logging_data, "color", True, "logging", errors),
            ),
            metrics_file=_opt_str(metrics_data, "file", "metrics", errors),
        )

        if errors:
            raise ConfigError(
                f"Invalid configuration in {source}:\n" + "\n".join(f"  - {e}" for e in errors)
            )
        return config

    def apply_env(self) -> None:
        """Apply REGENT_VERBOSE, REGENT_QUIET and NO_COLOR."""
        if os.environ.get("REGENT_VERBOSE", "").lower() in _TRUTHY:
            self.logging.verbose = True
        if os.environ.get("REGENT_QUIET", "").lower() in _TRUTHY:
            self.logging.quiet = True
        if "NO_COLOR" in os.environ:
            self.logging.color = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary.

        Returns:
            Dictionary representation.
        """
        return asdict(self)


def _section(data: Dict[str, Any], name: str, errors: List[str]) -> Dict[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        errors.append(f"{name}: must be a mapping")
        return {}
    return value


def _bool(data: Dict[str, Any], key: str, default: bool, section: str, errors: List[str]) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        errors.append(f"{section}.{key}: must be true or false")
        return default
    return value


def _opt_str(data: Dict[str, Any], key: str, section: str, errors: List[str]) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        errors.append(f"{section}.{key}: must be a non-empty string")
        return None
    return value


def _positive_int(data: Dict[str, Any], key: str, default: int, section: str, errors: List[str]) -> int:
    value = data.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        errors.append(f"{section}.{key}: must be a positive integer")
        return default
    return value
