# src/regent/core/package_manager.py
"""Package manager detection and safe script commands.

Quality checks fall back to the project's own lint/test/build scripts when
no explicit command is configured. Script names are sanitized and turned
into argv lists so they never pass through a shell.
"""

import re
from pathlib import Path
from typing import List

LOCK_FILES = (
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
)

DEFAULT_PACKAGE_MANAGER = "npm"

_UNSAFE_SCRIPT_CHARS = re.compile(r"[^a-zA-Z0-9\-_:\s]")


def detect_package_manager(work_dir: Path) -> str:
    """Detect the package manager of a project from its lock files.

    Args:
        work_dir: Project root

    Returns:
        "pnpm", "yarn" or "npm" (the default when no lock file is found)
    """
    for lock_file, manager in LOCK_FILES:
        if (Path(work_dir) / lock_file).exists():
            return manager
    return DEFAULT_PACKAGE_MANAGER


def sanitize_script_name(script: str) -> str:
    """Remove every character outside [A-Za-z0-9_:- ] from a script name."""
    return _UNSAFE_SCRIPT_CHARS.sub("", script).strip()


def build_command(manager: str, script: str) -> List[str]:
    """Build the argv list that runs a package script.

    Example:
        >>> build_command("npm", "test --run")
        ['npm', 'run', 'test', '--run']
        >>> build_command("pnpm", "lint")
        ['pnpm', 'lint']

    Raises:
        ValueError: If nothing is left of the script name after sanitizing
    """
    parts = sanitize_script_name(script).split()
    if not parts:
        raise ValueError(f"Invalid script name: {script!r}")
    if manager in ("pnpm", "yarn"):
        return [manager] + parts
    return ["npm", "run"] + parts
