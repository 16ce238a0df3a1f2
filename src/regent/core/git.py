"""Git and GitHub CLI operations for plan execution.

This module wraps the git and gh command line tools. Every command runs as
an argv list; free text and branch names are sanitized before they reach a
command line. Nothing here retries: a failed command raises
GitOperationError and the executor decides what happens next.
"""

import re
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import GitOperationError

# Characters with shell meaning; stripped from every free-text argument.
_UNSAFE_TEXT_CHARS = re.compile(r"[`${}|&;<>'\"]")
_BRANCH_DISALLOWED = re.compile(r"[^A-Za-z0-9/_-]")
_BRANCH_REPEATED_SEPARATORS = re.compile(r"([/_-])[/_-]+")
_CO_AUTHOR_PATTERN = re.compile(r"^[^<>\n]+ <[^<>\s]+@[^<>\s]+>$")

DEFAULT_TIMEOUT = 120


def sanitize_text(text: str) -> str:
    """Strip shell metacharacters from free text (messages, titles, bodies)."""
    return _UNSAFE_TEXT_CHARS.sub("", text)


def sanitize_branch_name(name: str) -> str:
    """Reduce a branch name to [A-Za-z0-9/_-].

    Whitespace becomes "-", runs of separators collapse to the first one,
    and leading/trailing separators are stripped.

    Raises:
        GitOperationError: If nothing usable is left
    """
    cleaned = re.sub(r"\s+", "-", name.strip())
    cleaned = _BRANCH_DISALLOWED.sub("", cleaned)
    cleaned = _BRANCH_REPEATED_SEPARATORS.sub(r"\1", cleaned)
    cleaned = cleaned.strip("/_-")
    if not cleaned:
        raise GitOperationError(
            "branch", "", message=f"Invalid branch name {name!r}: nothing left after sanitizing"
        )
    return cleaned


def run_git(
    args: List[str],
    cwd: Optional[Path] = None,
    capture: bool = True,
    check: bool = True,
    timeout: int = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Run a git command.

    Args:
        args: Git command arguments (without 'git' prefix).
        cwd: Working directory. Defaults to current directory.
        capture: Whether to capture output.
        check: Whether to raise on non-zero exit.
        timeout: Maximum execution time in seconds.

    Returns:
        CompletedProcess instance.

    Raises:
        GitOperationError: If command fails and check=True, times out, or
            git is not installed.
    """
    return _run_tool("git", args, cwd, capture, check, timeout)


def run_gh(
    args: List[str],
    cwd: Optional[Path] = None,
    capture: bool = True,
    check: bool = True,
    timeout: int = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Run a GitHub CLI command.

    Args:
        args: gh command arguments (without 'gh' prefix).
        cwd: Working directory. Defaults to current directory.
        capture: Whether to capture output.
        check: Whether to raise on non-zero exit.
        timeout: Maximum execution time in seconds.

    Returns:
        CompletedProcess instance.

    Raises:
        GitOperationError: If command fails and check=True, times out, or
            gh is not installed.
    """
    return _run_tool("gh", args, cwd, capture, check, timeout)


def _run_tool(
    tool: str,
    args: List[str],
    cwd: Optional[Path],
    capture: bool,
    check: bool,
    timeout: int,
) -> subprocess.CompletedProcess:
    subcommand = " ".join(args[:2]) if tool == "gh" else args[0]
    try:
        result = subprocess.run(
            [tool] + args,
            cwd=cwd,
            capture_output=capture,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise GitOperationError(
            subcommand, "", message=f"{tool} {subcommand} timed out after {timeout}s"
        ) from e
    except FileNotFoundError as e:
        hint = " Install from: https://cli.github.com/" if tool == "gh" else ""
        raise GitOperationError(
            subcommand, "", message=f"{tool} is not installed or not in PATH.{hint}"
        ) from e

    if check and result.returncode != 0:
        raise GitOperationError(subcommand, result.stderr or result.stdout or "")
    return result


class GitOperations:
    """Git operations bound to one working tree.

    Args:
        work_dir: Repository working tree
        timeout: Per-command timeout in seconds
        remote: Remote pushed to before opening pull requests
    """

    def __init__(self, work_dir: Path, timeout: int = DEFAULT_TIMEOUT, remote: str = "origin"):
        self.work_dir = Path(work_dir)
        self.timeout = timeout
        self.remote = remote

    def _git(self, args: List[str], check: bool = True, timeout: Optional[int] = None) -> subprocess.CompletedProcess:
        return run_git(args, cwd=self.work_dir, check=check, timeout=timeout or self.timeout)

    def _gh(self, args: List[str], timeout: Optional[int] = None) -> subprocess.CompletedProcess:
        return run_gh(args, cwd=self.work_dir, timeout=timeout or self.timeout)

    # Queries

    def current_branch(self) -> str:
        return self._git(["rev-parse", "--abbrev-ref", "HEAD"]).stdout.strip()

    def head_sha(self) -> str:
        return self._git(["rev-parse", "HEAD"]).stdout.strip()

    def is_clean(self, include_untracked: bool = True) -> bool:
        """True when the working tree has no staged or unstaged changes.

        Untracked files count as changes unless include_untracked is False.
        """
        args = ["status", "--porcelain"]
        if not include_untracked:
            args.append("--untracked-files=no")
        return not self._git(args).stdout.strip()

    def has_changes(self, paths: List[str]) -> bool:
        """True when any of the given paths differs from HEAD or is untracked."""
        return bool(self._git(["status", "--porcelain", "--"] + list(paths)).stdout.strip())

    def unstage(self, paths: List[str], timeout: Optional[int] = None) -> None:
        self._git(["reset", "-q", "--"] + list(paths), timeout=timeout)

    def branch_exists(self, name: str) -> bool:
        result = self._git(
            ["rev-parse", "--verify", "--quiet", f"refs/heads/{name}"], check=False
        )
        return result.returncode == 0

    # Branches

    def create_branch(self, name: str, base: Optional[str] = None, timeout: Optional[int] = None) -> str:
        """Create and check out a branch.

        Args:
            name: Branch name (sanitized before use)
            base: Optional start point

        Returns:
            The sanitized branch name actually created
        """
        branch = sanitize_branch_name(name)
        args = ["checkout", "-b", branch]
        if base:
            args.append(sanitize_branch_name(base))
        self._git(args, timeout=timeout)
        return branch

    def checkout(self, name: str, timeout: Optional[int] = None) -> None:
        self._git(["checkout", sanitize_branch_name(name)], timeout=timeout)

    def delete_branch(self, name: str, timeout: Optional[int] = None) -> None:
        self._git(["branch", "-D", sanitize_branch_name(name)], timeout=timeout)

    # Commits

    def commit(
        self,
        message: str,
        files: List[str],
        co_author: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> str:
        """Stage the given paths and commit them.

        Args:
            message: Commit message (sanitized before use)
            files: Paths relative to the working tree; deletions are staged too
            co_author: Optional "Name <email>" trailer

        Returns:
            The new commit sha
        """
        text = sanitize_text(message).strip()
        if not text:
            raise GitOperationError("commit", "", message="Refusing to commit with an empty message")
        if co_author:
            if not _CO_AUTHOR_PATTERN.match(co_author):
                raise GitOperationError(
                    "commit", "", message=f"Invalid co-author trailer: {co_author!r}"
                )
            text = f"{text}\n\nCo-Authored-By: {co_author}"

        self._git(["add", "-A", "--"] + list(files), timeout=timeout)
        self._git(["commit", "-m", text], timeout=timeout)
        return self.head_sha()

    def revert_commit(self, sha: str, timeout: Optional[int] = None) -> str:
        """Revert a commit with a new commit and return its sha."""
        self._git(["revert", "--no-edit", sha], timeout=timeout)
        return self.head_sha()

    # Pull requests

    def push(self, branch: str, timeout: Optional[int] = None) -> None:
        self._git(["push", "-u", self.remote, sanitize_branch_name(branch)], timeout=timeout)

    def create_pull_request(
        self,
        source: str,
        target: str,
        title: str,
        body: str = "",
        timeout: Optional[int] = None,
    ) -> str:
        """Push the source branch and open a pull request.

        Returns:
            URL of the new pull request
        """
        source_branch = sanitize_branch_name(source)
        target_branch = sanitize_branch_name(target)
        self.push(source_branch, timeout=timeout)
        result = self._gh(
            [
                "pr", "create",
                "--head", source_branch,
                "--base", target_branch,
                "--title", sanitize_text(title),
                "--body", sanitize_text(body),
            ],
            timeout=timeout,
        )
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not lines:
            raise GitOperationError("pr create", result.stderr, message="gh pr create returned no URL")
        return lines[-1]

    def close_pull_request(self, url: str, timeout: Optional[int] = None) -> None:
        self._gh(["pr", "close", url], timeout=timeout)
