from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from solana_amm_farming.config import settings


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "RPC__PRIMARY_URL",
        "RPC__FALLBACK_URLS",
        "RPC__REQUEST_TIMEOUT",
        "EXECUTION__MAX_SUBMIT_ATTEMPTS",
        "PROGRAMS__STAKE_PROGRAM_ID",
        "WALLET__PRIVATE_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


def test_app_config_loads_profiles_and_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    config_path = tmp_path / "app.toml"
    config_path.write_text(
        """
[default.rpc]
primary_url = "https://api.default"
request_timeout = 9.5

[default.execution]
max_submit_attempts = 2
confirm_timeout_seconds = 30

[local.cluster]
name = "localnet"

[local.rpc]
primary_url = "http://127.0.0.1:8899"
fallback_urls = ["http://127.0.0.1:8899", "http://127.0.0.1:8898"]
"""
    )
    monkeypatch.setenv("FARM_CONFIG_FILE", str(config_path))
    monkeypatch.setenv("FARM_PROFILE", "local")
    monkeypatch.setenv("RPC__REQUEST_TIMEOUT", "18")

    settings.get_app_config.cache_clear()
    try:
        cfg = settings.get_app_config()
        assert cfg.cluster.name == "localnet"
        assert cfg.cluster.config_file == config_path
        assert str(cfg.rpc.primary_url).startswith("http://127.0.0.1:8899")
        assert len(cfg.rpc.fallback_urls) == 2
        assert cfg.rpc.request_timeout == 18.0
        assert cfg.execution.max_submit_attempts == 2
        assert cfg.execution.confirm_timeout_seconds == 30.0
        assert cfg.execution.wsol_overprovision_lamports == 10_000_000
        assert cfg.analytics.blocks_per_second == 2.0
        assert settings.get_app_config() is cfg
    finally:
        settings.get_app_config.cache_clear()


def test_defaults_without_config_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    monkeypatch.setenv("FARM_CONFIG_FILE", str(tmp_path / "missing.toml"))
    monkeypatch.delenv("FARM_PROFILE", raising=False)

    cfg = settings.AppConfig()

    assert cfg.programs.stake_program_id == settings.V3_STAKE_PROGRAM_ID
    assert cfg.programs.default_stake_farm == "RAY"
    assert cfg.execution.max_submit_attempts == 1
    assert cfg.cluster.config_file is None


def test_stake_program_ids_must_be_distinct(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    _clear_env(monkeypatch)
    monkeypatch.setenv("FARM_CONFIG_FILE", str(tmp_path / "missing.toml"))
    monkeypatch.setenv("PROGRAMS__STAKE_PROGRAM_ID", settings.V4_STAKE_PROGRAM_ID)
    with pytest.raises(PydanticValidationError):
        settings.AppConfig()
