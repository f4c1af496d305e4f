from __future__ import annotations

from pathlib import Path

import allure
import pytest

from sf_org_source.config import (
    DEFAULT_API_VERSION,
    DEFAULT_METADATA_TYPES,
    ExecutorSettings,
    RetrievalSettings,
    SecurityPolicy,
    Settings,
    resolve_api_version,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def test_from_env_defaults(isolated_env) -> None:
    settings = Settings.from_env()

    assert settings.retrieval.cache_root == isolated_env
    assert settings.retrieval.api_version == DEFAULT_API_VERSION
    assert settings.retrieval.default_metadata_types == DEFAULT_METADATA_TYPES
    assert settings.executor.default_timeout_seconds == 60.0
    assert settings.security.max_argument_length == 8192
    assert settings.log_level == "WARNING"


def test_explicit_cache_root_wins_over_env(isolated_env, tmp_path) -> None:
    override = tmp_path / "elsewhere"
    assert Settings.from_env(cache_root=override).retrieval.cache_root == override


def test_from_env_reads_overrides(isolated_env, monkeypatch) -> None:
    monkeypatch.setenv("SF_ORG_SOURCE_API_VERSION", "60.0")
    monkeypatch.setenv("SF_ORG_SOURCE_METADATA_TYPES", "ApexClass, Flow,ApexClass,")
    monkeypatch.setenv("SF_ORG_SOURCE_COMMAND_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("SF_ORG_SOURCE_KILL_GRACE_SECONDS", "0")
    monkeypatch.setenv("SF_ORG_SOURCE_LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.retrieval.api_version == "60.0"
    assert settings.retrieval.default_metadata_types == ("ApexClass", "Flow")
    assert settings.executor.default_timeout_seconds == 12.5
    assert settings.executor.kill_grace_seconds == 0.0
    assert settings.log_level == "DEBUG"


def test_unsupported_api_version_falls_back_to_default(caplog) -> None:
    assert resolve_api_version("45.0") == DEFAULT_API_VERSION
    assert "Unsupported API version: 45.0" in caplog.text
    assert resolve_api_version(" 61.0 ") == "61.0"


def test_unknown_metadata_type_in_env_is_rejected(isolated_env, monkeypatch) -> None:
    monkeypatch.setenv("SF_ORG_SOURCE_METADATA_TYPES", "ApexClass,InstalledPackage")

    with pytest.raises(ValueError, match="unsupported types: InstalledPackage"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(security=SecurityPolicy(max_argument_length=0)), "MAX_ARGUMENT_LENGTH"),
        (Settings(executor=ExecutorSettings(default_timeout_seconds=0)), "COMMAND_TIMEOUT"),
        (Settings(executor=ExecutorSettings(probe_timeout_seconds=-1)), "PROBE_TIMEOUT"),
        (Settings(executor=ExecutorSettings(kill_grace_seconds=-1)), "KILL_GRACE"),
        (Settings(retrieval=RetrievalSettings(retrieval_timeout_seconds=0)), "RETRIEVAL_TIMEOUT"),
        (Settings(retrieval=RetrievalSettings(default_metadata_types=())), "at least one type"),
        (Settings(log_level="LOUD"), "Invalid SF_ORG_SOURCE_LOG_LEVEL"),
    ],
)
def test_validate_rejects_out_of_range_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_effective_security_allows_cache_root(tmp_path) -> None:
    settings = Settings(retrieval=RetrievalSettings(cache_root=tmp_path))

    policy = settings.effective_security()

    assert policy.allowed_roots == (tmp_path,)
    assert settings.security.allowed_roots == ()
    assert policy.with_allowed_roots(tmp_path).allowed_roots == (tmp_path,)
    assert isinstance(policy.allowed_roots[0], Path)
