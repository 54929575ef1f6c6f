"""
Tests for Credential Stores and Configuration
"""

import json
from datetime import datetime
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from pipeline.config import PipelineConfig
from pipeline.credentials import (
    EnvCredentialStore,
    JsonCredentialStore,
    build_credential_store,
)
from pipeline.models import Credential


class TestEnvCredentialStore:
    """Tests for environment-variable credentials."""

    def test_lookup(self):
        store = EnvCredentialStore({
            "SEC_API_API_KEY": "sec-key",
            "SEC_API_RATE_LIMIT": "10",
            "SEC_API_RATE_WINDOW": "second",
            "SEC_API_EXPIRES_AT": "2025-06-01",
        })

        cred = store.lookup("sec_api")

        assert cred.api_key == "sec-key"
        assert cred.rate_limit == 10
        assert cred.rate_window == "second"
        assert cred.expires_at == datetime(2025, 6, 1)

    def test_missing(self):
        assert EnvCredentialStore({}).lookup("polygon") is None

    def test_all(self):
        store = EnvCredentialStore({"POLYGON_API_KEY": "p", "OPENAI_API_KEY": "o", "HOME": "/root"})

        assert sorted(c.service_name for c in store.all()) == ["openai", "polygon"]


class TestJsonCredentialStore:
    """Tests for file-backed credentials."""

    def test_load(self, tmp_path):
        path = tmp_path / "credentials.json"
        path.write_text(json.dumps({"credentials": [
            {"service_name": "polygon", "api_key": "p", "expires_at": "2025-02-01"},
        ]}))

        store = JsonCredentialStore(str(path))

        assert store.lookup("polygon").expires_at == datetime(2025, 2, 1)
        assert store.lookup("sec_api") is None

    def test_environment_selects_file(self, tmp_path, monkeypatch):
        path = tmp_path / "credentials.json"
        path.write_text(json.dumps({"credentials": []}))
        monkeypatch.setenv("CATALYST_CREDENTIALS_PATH", str(path))

        assert isinstance(build_credential_store(), JsonCredentialStore)


class TestCredentialExpiry:

    def test_expires_within(self):
        cred = Credential(service_name="polygon", api_key="p", expires_at=datetime(2025, 2, 1))

        assert cred.expires_within(30, now=datetime(2025, 1, 15)) is True
        assert cred.expires_within(10, now=datetime(2025, 1, 15)) is False

    def test_secret_not_serialized(self):
        cred = Credential(service_name="polygon", api_key="secret")

        assert "api_key" not in cred.to_dict()


class TestPipelineConfig:
    """Tests for configuration loading."""

    def test_defaults_without_file(self, tmp_path):
        config = PipelineConfig(config_path=str(tmp_path / "missing.json"))

        assert config.get("predictor.cache_ttl_seconds") == 3600
        assert config.get("freshness.sources.regulatory.max_age_hours") == 2880
        assert config.get("no.such.key", "fallback") == "fallback"

    def test_file_merges_over_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"predictor": {"cache_ttl_seconds": 60}}))

        config = PipelineConfig(config_path=str(path))

        assert config.get("predictor.cache_ttl_seconds") == 60
        assert config.get("predictor.similar_events_k") == 3

    def test_overrides_and_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CATALYST_DB_URL", "sqlite:///:memory:")

        config = PipelineConfig(
            config_path=str(tmp_path / "missing.json"),
            overrides={"scorer": {"default_impact": 0.4}},
        )

        assert config.database_url == "sqlite:///:memory:"
        assert config.section("scorer")["default_impact"] == 0.4
        assert config.section("scorer")["impact_base"]["earnings"] == 0.5
