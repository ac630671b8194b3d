"""Tests for .stepflow/config.toml settings and environment switches."""

from pathlib import Path

import pytest

from stepflow.config import ConfigError
from stepflow.orchestrator.workflow import RunOptions
from stepflow.settings import (
    RESUME_DISABLED_ENV,
    RUNTIME_DIR_ENV,
    default_runtime_root,
    find_flow_dir,
    load_settings,
    merge_settings_and_options,
    parse_truthy,
    resume_disabled,
)


def _write_settings(root: Path, body: str) -> Path:
    flow_dir = root / ".stepflow"
    flow_dir.mkdir(parents=True, exist_ok=True)
    path = flow_dir / "config.toml"
    path.write_text(body)
    return path


class TestDiscovery:
    def test_find_flow_dir_searches_upward(self, tmp_path):
        (tmp_path / ".git").mkdir()
        (tmp_path / ".stepflow").mkdir()
        nested = tmp_path / "src" / "pkg"
        nested.mkdir(parents=True)
        assert find_flow_dir(nested) == (tmp_path / ".stepflow").resolve()

    def test_find_flow_dir_stops_at_git_boundary(self, tmp_path):
        (tmp_path / ".stepflow").mkdir()
        project = tmp_path / "project"
        (project / ".git").mkdir(parents=True)
        assert find_flow_dir(project) is None


class TestLoadSettings:
    def test_missing_file_returns_empty(self, tmp_path):
        (tmp_path / ".git").mkdir()
        assert load_settings(tmp_path) == {}

    def test_valid_settings(self, tmp_path):
        (tmp_path / ".git").mkdir()
        _write_settings(tmp_path, "[stepflow]\nverbose = true\nmock_delay_ms = 20\n")
        assert load_settings(tmp_path) == {"verbose": True, "mock_delay_ms": 20}

    def test_unknown_keys_filtered(self, tmp_path):
        (tmp_path / ".git").mkdir()
        _write_settings(tmp_path, "[stepflow]\nverbose = false\nfuture_option = 1\n")
        assert load_settings(tmp_path) == {"verbose": False}

    def test_invalid_toml(self, tmp_path):
        (tmp_path / ".git").mkdir()
        _write_settings(tmp_path, "[stepflow\n")
        with pytest.raises(ConfigError, match="Invalid TOML syntax"):
            load_settings(tmp_path)

    def test_wrong_type(self, tmp_path):
        (tmp_path / ".git").mkdir()
        _write_settings(tmp_path, '[stepflow]\nverbose = "yes"\n')
        with pytest.raises(ConfigError, match="expected boolean, got str"):
            load_settings(tmp_path)

    def test_negative_delay(self, tmp_path):
        (tmp_path / ".git").mkdir()
        _write_settings(tmp_path, "[stepflow]\nmock_delay_ms = -5\n")
        with pytest.raises(ConfigError, match="must be non-negative"):
            load_settings(tmp_path)


class TestMergeSettings:
    def test_settings_fill_unset_options(self):
        merged = merge_settings_and_options(
            {"verbose": True, "mock_delay_ms": 250}, RunOptions()
        )
        assert merged.verbose is True
        assert merged.mock_delay == pytest.approx(0.25)

    def test_explicit_options_win(self):
        options = RunOptions(mock_delay=0.0)
        merged = merge_settings_and_options({"mock_delay_ms": 250}, options)
        assert merged.mock_delay == 0.0

    def test_run_options_from_settings(self, tmp_path):
        (tmp_path / ".git").mkdir()
        _write_settings(tmp_path, "[stepflow]\nverbose = true\n")
        options = RunOptions.from_settings(tmp_path, mock=True)
        assert options.verbose is True
        assert options.mock is True


class TestEnvironment:
    @pytest.mark.parametrize("value,expected", [
        ("1", True), ("true", True), ("", True), ("yes", True),
        ("0", False), ("false", False), ("OFF", False), ("no", False),
    ])
    def test_parse_truthy(self, value, expected):
        assert parse_truthy(value) is expected

    def test_parse_truthy_unset(self):
        assert parse_truthy(None) is False

    def test_resume_disabled(self, monkeypatch):
        assert resume_disabled() is False
        monkeypatch.setenv(RESUME_DISABLED_ENV, "1")
        assert resume_disabled() is True

    def test_runtime_root_default_and_override(self, monkeypatch, tmp_path):
        assert default_runtime_root() == Path(".stepflow") / "runtime"
        monkeypatch.setenv(RUNTIME_DIR_ENV, str(tmp_path))
        assert default_runtime_root() == tmp_path
