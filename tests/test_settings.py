"""Tests for settings loading and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from flowguard.core.errors import SettingsError
from flowguard.core.settings import ENV_CATALOG, ENV_PROFILE, SettingsLoader, ValidatorSettings


@pytest.fixture
def project_dir(tmp_path: Path, monkeypatch) -> Path:
    """Empty project directory with an isolated home directory."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    project = tmp_path / "project"
    project.mkdir()
    return project


def write_config(project: Path, text: str) -> Path:
    config_dir = project / ".flowguard"
    config_dir.mkdir(exist_ok=True)
    path = config_dir / "config.yaml"
    path.write_text(text)
    return path


class TestSettingsLoader:
    """Settings file discovery, validation and overrides."""

    def test_defaults_without_file(self, project_dir):
        settings = SettingsLoader(project_dir).load(environ={})

        assert settings == ValidatorSettings()
        assert settings.default_profile == "runtime"
        assert settings.max_expression_depth == 100

    def test_project_file(self, project_dir):
        write_config(project_dir, "default_profile: strict\nlong_chain_threshold: 4\n")

        settings = SettingsLoader(project_dir).load(environ={})

        assert settings.default_profile == "strict"
        assert settings.long_chain_threshold == 4

    def test_user_file_used_when_project_has_none(self, project_dir, tmp_path):
        user_dir = tmp_path / "home" / ".flowguard"
        user_dir.mkdir(parents=True)
        (user_dir / "config.yaml").write_text("max_operations_per_batch: 5\n")

        settings = SettingsLoader(project_dir).load(environ={})

        assert settings.max_operations_per_batch == 5

    def test_environment_overrides_file(self, project_dir, tmp_path):
        write_config(project_dir, "default_profile: strict\n")
        environ = {ENV_PROFILE: "minimal", ENV_CATALOG: str(tmp_path / "nodes.yaml")}

        settings = SettingsLoader(project_dir).load(environ=environ)

        assert settings.default_profile == "minimal"
        assert settings.catalog_path == tmp_path / "nodes.yaml"

    def test_unknown_profile_rejected(self, project_dir):
        write_config(project_dir, "default_profile: lenient\n")

        with pytest.raises(SettingsError, match="Path: default_profile"):
            SettingsLoader(project_dir).load(environ={})

    def test_unknown_key_rejected(self, project_dir):
        write_config(project_dir, "colour: blue\n")

        with pytest.raises(SettingsError):
            SettingsLoader(project_dir).load(environ={})

    def test_non_mapping_rejected(self, project_dir):
        write_config(project_dir, "- a\n- b\n")

        with pytest.raises(SettingsError, match="must contain a mapping"):
            SettingsLoader(project_dir).load(environ={})

    def test_invalid_env_profile_rejected(self, project_dir):
        with pytest.raises(SettingsError, match="environment"):
            SettingsLoader(project_dir).load(environ={ENV_PROFILE: "nope"})

    def test_explicit_path_wins(self, project_dir, tmp_path):
        write_config(project_dir, "default_profile: strict\n")
        explicit = tmp_path / "other.yaml"
        explicit.write_text("default_profile: ai-friendly\n")

        settings = SettingsLoader(project_dir).load(explicit, environ={})

        assert settings.default_profile == "ai-friendly"


def test_catalog_path_string_becomes_path():
    settings = ValidatorSettings(catalog_path="~/nodes.yaml")

    assert isinstance(settings.catalog_path, Path)
    assert settings.catalog_path.name == "nodes.yaml"
