"""Tests for package manager detection."""

import pytest

from regent.core.package_manager import build_command, detect_package_manager, sanitize_script_name


class TestDetectPackageManager:
    def test_defaults_to_npm(self, tmp_path):
        assert detect_package_manager(tmp_path) == "npm"

    def test_pnpm_lock(self, tmp_path):
        (tmp_path / "pnpm-lock.yaml").write_text("")
        assert detect_package_manager(tmp_path) == "pnpm"

    def test_yarn_lock(self, tmp_path):
        (tmp_path / "yarn.lock").write_text("")
        assert detect_package_manager(tmp_path) == "yarn"

    def test_pnpm_wins_over_yarn(self, tmp_path):
        (tmp_path / "pnpm-lock.yaml").write_text("")
        (tmp_path / "yarn.lock").write_text("")
        assert detect_package_manager(tmp_path) == "pnpm"


class TestBuildCommand:
    def test_npm_uses_run(self):
        assert build_command("npm", "test --run") == ["npm", "run", "test", "--run"]

    def test_yarn_and_pnpm_run_directly(self):
        assert build_command("yarn", "lint") == ["yarn", "lint"]
        assert build_command("pnpm", "test:unit") == ["pnpm", "test:unit"]

    def test_shell_characters_removed(self):
        assert sanitize_script_name("lint; rm -rf /") == "lint rm -rf"
        assert build_command("npm", "test && echo $HOME") == ["npm", "run", "test", "echo", "HOME"]

    def test_empty_script_rejected(self):
        with pytest.raises(ValueError):
            build_command("npm", "$$;")
