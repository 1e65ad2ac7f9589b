"""Tests for run configuration loading."""

from __future__ import annotations

import json

import pytest

from depcensus.core.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_TARGET_PACKAGE,
    AnalysisConfig,
    load_config,
    load_deny_list,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in (
        "GITHUB_TOKEN",
        "DEPCENSUS_TARGET_PACKAGE",
        "DEPCENSUS_BATCH_SIZE",
        "DEPCENSUS_DATA_DIR",
        "DEPCENSUS_OUTPUT_DIR",
        "DEPCENSUS_DATABASE_URL",
    ):
        monkeypatch.delenv(key, raising=False)


class TestLoadConfig:
    def test_defaults_use_bundled_data(self, tmp_path):
        config = load_config(data_dir=tmp_path)
        assert config.analysis.target_package == DEFAULT_TARGET_PACKAGE
        assert config.batch_size == DEFAULT_BATCH_SIZE
        assert config.analysis.is_denied("alphagov", "govuk-frontend")
        assert config.output_dir == tmp_path
        assert config.github_token is None

    def test_data_dir_overrides_bundled_files(self, tmp_path):
        (tmp_path / "deny_list.json").write_text(json.dumps([{"owner": "o", "name": "r"}]))
        (tmp_path / "service_owners.json").write_text(json.dumps({"o": {"svc": {"name": "S"}}}))
        config = load_config(data_dir=tmp_path)
        assert config.analysis.deny_list == frozenset({("o", "r")})
        assert config.analysis.is_service_owner("o")
        assert config.analysis.service_for("o", "svc") == {"name": "S"}
        assert config.analysis.service_for("o", "other") is None

    def test_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEPCENSUS_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("DEPCENSUS_OUTPUT_DIR", str(tmp_path / "out"))
        monkeypatch.setenv("DEPCENSUS_TARGET_PACKAGE", "nhsuk-frontend")
        monkeypatch.setenv("DEPCENSUS_BATCH_SIZE", "25")
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_x")
        monkeypatch.setenv("DEPCENSUS_DATABASE_URL", "sqlite://")
        config = load_config()
        assert config.data_dir == tmp_path
        assert config.output_dir == tmp_path / "out"
        assert config.analysis.target_package == "nhsuk-frontend"
        assert config.batch_size == 25
        assert config.github_token == "ghp_x"
        assert config.database_url == "sqlite://"

    def test_arguments_win_over_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEPCENSUS_BATCH_SIZE", "25")
        config = load_config(data_dir=tmp_path, batch_size=3, target_package="x")
        assert config.batch_size == 3
        assert config.analysis.target_package == "x"

    def test_negative_batch_size(self, tmp_path):
        with pytest.raises(ValueError):
            load_config(data_dir=tmp_path, batch_size=-1)

    def test_service_owners_must_be_object(self, tmp_path):
        (tmp_path / "service_owners.json").write_text("[]")
        with pytest.raises(ValueError):
            load_config(data_dir=tmp_path)


class TestAnalysisConfig:
    def test_deny_list_pairs(self, tmp_path):
        path = tmp_path / "deny.json"
        path.write_text(json.dumps([{"owner": "a", "name": "b"}, {"owner": "c", "name": "d"}]))
        assert load_deny_list(path) == frozenset({("a", "b"), ("c", "d")})

    def test_empty_config_denies_nothing(self):
        config = AnalysisConfig()
        assert not config.is_denied("alphagov", "govuk-frontend")
        assert not config.is_service_owner("alphagov")
