# src/regent/core/files.py
"""Filesystem actions of file and folder steps.

Every action returns a FileChange describing what it touched, including the
bytes a file held before, so the change can be undone after a failed
attempt or compensated during rollback.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import StepExecutionError

logger = logging.getLogger(__name__)

REPLACE_BLOCK = re.compile(r"<<<REPLACE>>>(.*?)<<</REPLACE>>>", re.DOTALL)
WITH_BLOCK = re.compile(r"<<<WITH>>>(.*?)<<</WITH>>>", re.DOTALL)


@dataclass
class FileSnapshot:
    """State of one file before a step touched it."""
    path: Path
    existed: bool
    content: Optional[bytes] = None


@dataclass
class FileChange:
    """Everything one step attempt changed on disk.

    Attributes:
        snapshots: Files written or removed, with their previous state
        created_dirs: Directories that did not exist before, in creation order
    """
    snapshots: List[FileSnapshot] = field(default_factory=list)
    created_dirs: List[Path] = field(default_factory=list)

    @property
    def touched_files(self) -> List[Path]:
        return [snapshot.path for snapshot in self.snapshots]

    def undo(self) -> None:
        """Restore every snapshot, then remove created directories that are empty.

        Raises:
            OSError: If a file cannot be restored
        """
        for snapshot in reversed(self.snapshots):
            restore_snapshot(snapshot)
        remove_empty_dirs(self.created_dirs)


def resolve_in_tree(work_dir: Path, relative: str) -> Path:
    """Resolve a plan path inside the working tree.

    Raises:
        StepExecutionError: If the path escapes the working tree
    """
    root = Path(work_dir).resolve()
    target = (root / relative).resolve()
    if target != root and root not in target.parents:
        raise StepExecutionError(f"Path escapes the working tree: {relative}")
    return target


def take_snapshot(path: Path) -> FileSnapshot:
    if path.is_file():
        return FileSnapshot(path=path, existed=True, content=path.read_bytes())
    return FileSnapshot(path=path, existed=False)


def restore_snapshot(snapshot: FileSnapshot) -> None:
    """Put a file back the way it was: rewrite its bytes or remove it."""
    if snapshot.existed:
        snapshot.path.parent.mkdir(parents=True, exist_ok=True)
        snapshot.path.write_bytes(snapshot.content or b"")
    elif snapshot.path.exists():
        snapshot.path.unlink()


def _make_dirs(path: Path) -> List[Path]:
    """mkdir -p that reports which directories it actually created."""
    missing = []
    current = path
    while not current.exists():
        missing.append(current)
        current = current.parent
    missing.reverse()
    for directory in missing:
        directory.mkdir()
    return missing


def remove_empty_dirs(dirs: List[Path]) -> List[Path]:
    """Remove directories deepest first, leaving any that are not empty.

    Returns:
        Directories that were kept because they still hold files
    """
    kept = []
    for directory in sorted(dirs, key=lambda p: len(p.parts), reverse=True):
        if not directory.is_dir():
            continue
        if any(directory.iterdir()):
            logger.debug("Keeping non-empty directory %s", directory)
            kept.append(directory)
            continue
        directory.rmdir()
    return kept


def create_file(work_dir: Path, relative: str, content: str) -> FileChange:
    """Write a file, creating parent directories as needed.

    An existing file is overwritten; its previous bytes are kept in the
    returned change.
    """
    target = resolve_in_tree(work_dir, relative)
    change = FileChange()
    change.snapshots.append(take_snapshot(target))
    try:
        change.created_dirs.extend(_make_dirs(target.parent))
        target.write_text(content, encoding="utf-8")
    except OSError as e:
        change.undo()
        raise StepExecutionError(f"Could not create {relative}: {e}") from e
    return change


def parse_refactor_template(template: str) -> List[Tuple[str, str]]:
    """Pair REPLACE and WITH blocks in order, trimming surrounding whitespace.

    Raises:
        StepExecutionError: If the blocks are missing or unbalanced
    """
    replaces = [block.strip() for block in REPLACE_BLOCK.findall(template)]
    withs = [block.strip() for block in WITH_BLOCK.findall(template)]
    if not replaces or not withs:
        raise StepExecutionError("Invalid refactor template: missing <<<REPLACE>>> or <<<WITH>>> blocks")
    if len(replaces) != len(withs):
        raise StepExecutionError(
            f"Invalid refactor template: {len(replaces)} REPLACE block(s) but {len(withs)} WITH block(s)"
        )
    if any(not old for old in replaces):
        raise StepExecutionError("Invalid refactor template: empty <<<REPLACE>>> block")
    return list(zip(replaces, withs))


def refactor_file(work_dir: Path, relative: str, template: str) -> FileChange:
    """Apply REPLACE/WITH blocks to an existing file.

    Each REPLACE block must be found; its first occurrence is replaced.
    """
    target = resolve_in_tree(work_dir, relative)
    if not target.is_file():
        raise StepExecutionError(f"File to refactor does not exist: {relative}")

    pairs = parse_refactor_template(template)
    snapshot = take_snapshot(target)
    try:
        text = (snapshot.content or b"").decode("utf-8")
    except UnicodeDecodeError as e:
        raise StepExecutionError(f"Cannot refactor {relative}: not valid UTF-8 ({e.reason} at byte {e.start})") from e
    for old, new in pairs:
        if old not in text:
            raise StepExecutionError(f"Could not find the block to replace in {relative}:\n{old}")
        text = text.replace(old, new, 1)

    change = FileChange(snapshots=[snapshot])
    try:
        target.write_text(text, encoding="utf-8")
    except OSError as e:
        change.undo()
        raise StepExecutionError(f"Could not write {relative}: {e}") from e
    return change


def delete_file(work_dir: Path, relative: str) -> FileChange:
    """Delete a file, keeping its bytes. A missing file is a warning, not an error."""
    target = resolve_in_tree(work_dir, relative)
    if not target.exists():
        logger.warning("File to delete does not exist: %s", relative)
        return FileChange()
    if not target.is_file():
        raise StepExecutionError(f"Not a file: {relative}")

    snapshot = take_snapshot(target)
    try:
        target.unlink()
    except OSError as e:
        raise StepExecutionError(f"Could not delete {relative}: {e}") from e
    return FileChange(snapshots=[snapshot])


def create_folders(work_dir: Path, base_path: str, folders: List[str]) -> FileChange:
    """Create base_path/<folder> for every folder.

    Only directories that did not already exist are recorded, so undoing the
    change never removes pre-existing directories.
    """
    change = FileChange()
    try:
        for folder in folders:
            target = resolve_in_tree(work_dir, str(Path(base_path) / folder))
            change.created_dirs.extend(_make_dirs(target))
    except OSError as e:
        change.undo()
        raise StepExecutionError(f"Could not create folders under {base_path}: {e}") from e
    except StepExecutionError:
        change.undo()
        raise
    return change
