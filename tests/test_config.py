"""Tests for execute configuration."""

import pytest

from regent.core.config import ExecuteConfig
from regent.core.errors import ConfigError
from regent.core.paths import CONFIG_RELATIVE_PATH


def write_config(work_dir, text):
    path = work_dir / CONFIG_RELATIVE_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestDefaults:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = ExecuteConfig.load(tmp_path)

        assert config.commit.enabled
        assert config.commit.type_mapping["create_file"] == "feat"
        assert config.commit.type_mapping["branch"] is None
        assert config.quality_checks.enabled_checks() == ["lint", "test"]
        assert config.quality_checks.timeout_seconds == 300
        assert config.execution.remote == "origin"
        assert config.execution.require_clean_tree

    def test_explicit_missing_file_is_error(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            ExecuteConfig.load(tmp_path, tmp_path / "nope.yml")


class TestLoad:
    def test_reads_sections(self, tmp_path):
        write_config(tmp_path, """
commit:
  enabled: true
  co_author: "Dev <dev@example.com>"
  type_mapping:
    folder: chore
quality_checks:
  lint_command: ruff check .
  test: false
  build: true
  build_command: make build
  timeout_seconds: 60
execution:
  require_clean_tree: false
  remote: upstream
logging:
  log_dir: build/logs
  color: false
metrics:
  file: metrics/rlhf.json
""")

        config = ExecuteConfig.load(tmp_path)

        assert config.commit.co_author == "Dev <dev@example.com>"
        assert config.commit.type_mapping["folder"] == "chore"
        assert config.commit.type_mapping["create_file"] == "feat"
        assert config.quality_checks.enabled_checks() == ["lint", "build"]
        assert config.quality_checks.command_for("build") == "make build"
        assert config.quality_checks.timeout_seconds == 60
        assert not config.execution.require_clean_tree
        assert config.execution.remote == "upstream"
        assert config.logging.log_dir == "build/logs"
        assert not config.logging.color
        assert config.metrics_file == "metrics/rlhf.json"

    def test_empty_file_gives_defaults(self, tmp_path):
        write_config(tmp_path, "")

        assert ExecuteConfig.load(tmp_path).commit.enabled

    def test_every_problem_reported(self, tmp_path):
        write_config(tmp_path, """
commit:
  enabled: "yes"
  type_mapping:
    create_file: feature
quality_checks:
  timeout_seconds: -5
surprise: 1
""")

        with pytest.raises(ConfigError) as exc_info:
            ExecuteConfig.load(tmp_path)

        message = str(exc_info.value)
        assert "commit.enabled" in message
        assert "commit.type_mapping.create_file" in message
        assert "quality_checks.timeout_seconds" in message
        assert "unknown section 'surprise'" in message

    def test_unparseable_yaml(self, tmp_path):
        write_config(tmp_path, "commit: [\n")

        with pytest.raises(ConfigError, match="Could not read config"):
            ExecuteConfig.load(tmp_path)

    def test_invalid_co_author(self, tmp_path):
        write_config(tmp_path, "commit:\n  co_author: someone\n")

        with pytest.raises(ConfigError, match="co_author"):
            ExecuteConfig.load(tmp_path)


class TestEnvironment:
    def test_verbose_and_quiet(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REGENT_VERBOSE", "1")
        monkeypatch.setenv("REGENT_QUIET", "true")

        config = ExecuteConfig.load(tmp_path)

        assert config.logging.verbose
        assert config.logging.quiet

    def test_no_color(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "")

        assert not ExecuteConfig.load(tmp_path).logging.color

    def test_to_dict(self, tmp_path):
        data = ExecuteConfig.load(tmp_path).to_dict()

        assert data["execution"]["remote"] == "origin"
        assert data["quality_checks"]["lint"] is True
