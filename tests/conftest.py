"""Shared fixtures for Regent tests."""

import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List

import pytest

from regent.core.config import ExecuteConfig
from regent.core.logger import ExecutionLogger


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep environment overrides and the data directory test-local."""
    for name in ("REGENT_VERBOSE", "REGENT_QUIET", "NO_COLOR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("REGENT_DATA_DIR", str(tmp_path / "data"))


@pytest.fixture
def git_repo(tmp_path) -> Path:
    """A git repository on branch main with one commit."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "checkout", "-q", "-b", "main")
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Dev")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("# demo\n")
    git(repo, "add", "README.md")
    git(repo, "commit", "-q", "-m", "initial commit")
    return repo


@pytest.fixture
def quiet_logger(tmp_path):
    logger = ExecutionLogger(log_file=tmp_path / "logs" / "execution.log", quiet=True, color=False)
    yield logger
    logger.close()


@pytest.fixture
def no_checks_config() -> ExecuteConfig:
    """Config with every quality check disabled."""
    config = ExecuteConfig()
    config.quality_checks.lint = False
    config.quality_checks.test = False
    config.quality_checks.build = False
    return config


def make_plan_dict(steps: List[Dict[str, Any]], **metadata: Any) -> Dict[str, Any]:
    meta = {"layer": "domain", "target": "backend", "taskId": "T-001"}
    meta.update(metadata)
    return {"version": "1.0.0", "metadata": meta, "steps": steps}


def branch_step(branch_name: str = "feat/product", **extra: Any) -> Dict[str, Any]:
    step = {"id": "create-branch", "type": "branch", "action": {"branch_name": branch_name}}
    step.update(extra)
    return step


def pr_step(**extra: Any) -> Dict[str, Any]:
    step = {
        "id": "open-pr",
        "type": "pull_request",
        "action": {
            "source_branch": "feat/product",
            "target_branch": "main",
            "title": "Add product domain",
        },
    }
    step.update(extra)
    return step
