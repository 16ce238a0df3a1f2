"""XDG-compliant path resolution for Regent.

This module provides standardized paths for Regent data following XDG Base
Directory Specification via platformdirs, plus the per-plan log and metrics
locations.

Directory structure:
    ~/.local/share/regent/           # REGENT_DATA_DIR
    └── rlhf-metrics.json            # Score history for plans outside spec/

    spec/001-feature/                # Plans inside a spec folder
    ├── logs/execution.log
    └── metrics/rlhf-metrics.json

    path/to/plan.yaml                # Plans anywhere else
    └── .logs/plan/execution.log
"""

import os
import re
from pathlib import Path
from typing import Optional

import platformdirs

LOG_FILE_NAME = "execution.log"
METRICS_FILE_NAME = "rlhf-metrics.json"
CONFIG_RELATIVE_PATH = Path(".regent") / "config" / "execute.yml"

_SPEC_DIR_PATTERN = re.compile(r"((?:.*[\\/])?spec[\\/]\d{3}-[\w-]+)")


def get_data_dir() -> Path:
    """Get the Regent data directory.

    Uses XDG standard paths via platformdirs:
    - Linux: ~/.local/share/regent
    - macOS: ~/Library/Application Support/regent
    - Windows: ~/AppData/Local/regent

    Can be overridden with REGENT_DATA_DIR environment variable.

    Returns:
        Path to the data directory.
    """
    env_dir = os.environ.get("REGENT_DATA_DIR")
    if env_dir:
        return Path(env_dir).expanduser().resolve()
    return Path(platformdirs.user_data_dir("regent", appauthor=False))


def find_spec_dir(plan_path: Path) -> Optional[Path]:
    """Return the enclosing spec/NNN-feature directory of a plan, if any."""
    match = _SPEC_DIR_PATTERN.match(str(plan_path))
    if match:
        return Path(match.group(1))
    return None


def resolve_log_dir(plan_path: Path) -> Path:
    """Resolve the log directory for a plan.

    Plans inside spec/NNN-feature/ log to spec/NNN-feature/logs; any other plan
    logs to <plan dir>/.logs/<plan stem>.
    """
    plan_path = Path(plan_path)
    spec_dir = find_spec_dir(plan_path)
    if spec_dir is not None:
        return spec_dir / "logs"
    return plan_path.parent / ".logs" / plan_path.stem


def resolve_metrics_file(plan_path: Optional[Path] = None) -> Path:
    """Resolve the RLHF metrics file for a plan.

    Plans inside spec/NNN-feature/ keep metrics in spec/NNN-feature/metrics;
    everything else shares the file in the data directory.
    """
    if plan_path is not None:
        spec_dir = find_spec_dir(Path(plan_path))
        if spec_dir is not None:
            return spec_dir / "metrics" / METRICS_FILE_NAME
    return get_data_dir() / METRICS_FILE_NAME


def get_config_file(work_dir: Path) -> Path:
    """Get the execute config file of a working tree."""
    return Path(work_dir) / CONFIG_RELATIVE_PATH


def ensure_directory(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists.

    Returns:
        The same path.
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
