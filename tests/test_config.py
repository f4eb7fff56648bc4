"""Tests for installer configuration loading."""

import tempfile
from pathlib import Path

import pytest

from modsync.config import (
    CONFIG_FILE,
    ENV_SOURCE_ROOT,
    ModsyncConfig,
    RegenerationRules,
    load_config,
)
from modsync.errors import ConfigError


def test_defaults_without_file(monkeypatch):
    monkeypatch.delenv(ENV_SOURCE_ROOT, raising=False)
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(tmpdir)
        assert config == ModsyncConfig()
        assert config.install_root(tmpdir) == Path(tmpdir) / "_modsync"
        assert config.state_dir(config.install_root(tmpdir)) == Path(tmpdir) / "_modsync" / "_config"


def test_file_values_and_unknown_keys():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / CONFIG_FILE).write_text(
            "folder_name: _content\ntext_extensions: ['.MD', '.txt']\nsomething_else: 1\n"
        )
        config = load_config(tmpdir)
        assert config.folder_name == "_content"
        assert config.text_extensions == [".md", ".txt"]


def test_env_overrides_source_root(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / CONFIG_FILE).write_text("source_root: /from/file\n")
        monkeypatch.setenv(ENV_SOURCE_ROOT, "/from/env")
        assert load_config(tmpdir).source_root == "/from/env"


def test_invalid_yaml_raises():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / CONFIG_FILE).write_text("folder_name: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(tmpdir)


def test_non_mapping_raises():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / CONFIG_FILE).write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(tmpdir)


def test_explicit_missing_path_raises():
    with pytest.raises(ConfigError):
        load_config(path="/nonexistent/modsync.yaml")


def test_invalid_values_raise():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / CONFIG_FILE).write_text("folder_name: a/b\n")
        with pytest.raises(ConfigError):
            load_config(tmpdir)
        (Path(tmpdir) / CONFIG_FILE).write_text("backup_suffix: bak\n")
        with pytest.raises(ConfigError):
            load_config(tmpdir)


def test_regeneration_rules_default_patterns():
    rules = RegenerationRules()
    assert rules.matches("bmm/config.yaml")
    assert rules.matches("bmm/agents/pm.md")
    assert rules.matches("bmm/agents/nested/pm.md")
    assert rules.matches("beta/.partial")
    assert not rules.matches("bmm/workflows/x/workflow.md")
    assert not rules.matches("bmm/agents/notes.txt")


def test_regeneration_rules_are_configurable():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / CONFIG_FILE).write_text("regenerated_patterns: ['*/generated/*']\n")
        rules = load_config(tmpdir).regeneration
        assert rules.matches("bmm/generated/x.md")
        assert not rules.matches("bmm/agents/pm.md")
