"""Configuration management for the AMM liquidity and farming toolkit."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "FARM_CONFIG_FILE"
PROFILE_ENV_VAR = "FARM_PROFILE"

V3_STAKE_PROGRAM_ID = "EhhTKczWMGQt46ynNeRX1WfeagwwJd7ufHvCDjRxjo5Q"
V4_STAKE_PROGRAM_ID = "CBuCnLe26faBpcBP2fktp4rp8abpcAnTWft6ZrP5Q4T"
V5_STAKE_PROGRAM_ID = "9KEPoZmtHUrBbhWN1v1KWLMkkvwY6WLtAVUCPRtRjP4z"


def _resolve_config_path() -> Path:
    path = Path(os.getenv(CONFIG_FILE_ENV_VAR) or DEFAULT_CONFIG_FILE)
    return path if path.is_absolute() else Path.cwd() / path


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _profile_sections(document: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay the requested profile table on ``[default]``.

    The profile comes from ``FARM_PROFILE`` or ``default.cluster.profile``. A
    file without a ``[default]`` table is used as-is.
    """

    defaults = cast(Dict[str, Any], document.get("default", {}))
    if not defaults:
        return document
    cluster = defaults.get("cluster") if isinstance(defaults.get("cluster"), dict) else {}
    profile = (os.getenv(PROFILE_ENV_VAR) or cluster.get("profile") or "default").lower()
    overlay = document.get(profile) if profile != "default" else None
    if not isinstance(overlay, dict):
        return defaults
    merged = _deep_merge(defaults, overlay)
    merged["cluster"] = {**merged.get("cluster", {}), "profile": profile}
    return merged


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        sections = _profile_sections(tomllib.load(handle))
    cluster = dict(sections.get("cluster") or {})
    cluster.setdefault("config_file", str(path))
    return {**sections, "cluster": cluster}, path


class ClusterConfig(BaseModel):
    """Which Solana cluster the toolkit talks to."""

    name: str = Field(default="mainnet-beta")
    profile: str = Field(default="default")
    config_file: Optional[Path] = None


class RPCConfig(BaseModel):
    """RPC configuration for Solana endpoints."""

    primary_url: AnyHttpUrl = Field(default="https://api.mainnet-beta.solana.com")
    fallback_urls: List[AnyHttpUrl] = Field(default_factory=list)
    request_timeout: float = Field(default=12.0, ge=1.0, le=60.0)
    commitment: str = Field(default="confirmed")
    max_accounts_per_request: int = Field(default=100, ge=1, le=100)

    @field_validator("fallback_urls", mode="before")
    @classmethod
    def _unique_urls(cls, value: Iterable[AnyHttpUrl]) -> List[AnyHttpUrl]:
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]
        seen: set[str] = set()
        unique: List[AnyHttpUrl] = []
        for url in value:
            if str(url) not in seen:
                unique.append(url)
                seen.add(str(url))
        return unique

    @field_validator("request_timeout", mode="before")
    @classmethod
    def _parse_request_timeout(cls, value) -> float:
        if isinstance(value, str):
            return float(value)
        return value


class ProgramConfig(BaseModel):
    """Deployed program addresses of the farming programs."""

    stake_program_id: str = Field(default=V3_STAKE_PROGRAM_ID)
    stake_program_id_v4: str = Field(default=V4_STAKE_PROGRAM_ID)
    stake_program_id_v5: str = Field(default=V5_STAKE_PROGRAM_ID)
    default_stake_farm: str = Field(default="RAY")
    default_stake_farm_version: int = Field(default=3, ge=1, le=5)


class RegistryConfig(BaseModel):
    """Location of the static pool/farm/token catalog."""

    catalog_path: Path = Field(default=Path("config/catalog.toml"))


class ExecutionConfig(BaseModel):
    """Transaction building and submission behaviour."""

    wsol_overprovision_lamports: int = Field(default=10_000_000, ge=0)
    confirm_timeout_seconds: float = Field(default=60.0, ge=0.0)
    confirm_poll_interval_seconds: float = Field(default=0.5, gt=0.0)
    max_submit_attempts: int = Field(default=1, ge=1, le=10)
    retry_backoff_seconds: float = Field(default=0.75, ge=0.0)
    skip_preflight: bool = False


class AnalyticsConfig(BaseModel):
    """Constants used by the yield analytics engine."""

    blocks_per_second: float = Field(default=2.0, gt=0.0)
    days_per_year: int = Field(default=365, ge=1)
    max_workers: int = Field(default=4, ge=1, le=64)


class WalletConfig(BaseModel):
    """Wallet and signer configuration."""

    private_key: Optional[str] = None
    keypair_path: Optional[Path] = None


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field(default="INFO")
    json_logs: bool = True


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    rpc: RPCConfig = Field(default_factory=RPCConfig)
    programs: ProgramConfig = Field(default_factory=ProgramConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, _ = _load_toml_config()
            return payload

        # Environment variables win over the TOML profile.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _check_stake_programs(self) -> "AppConfig":
        ids = [
            self.programs.stake_program_id,
            self.programs.stake_program_id_v4,
            self.programs.stake_program_id_v5,
        ]
        if len(set(ids)) != len(ids):
            raise ValueError("Stake program ids must be distinct")
        return self


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AnalyticsConfig",
    "AppConfig",
    "ClusterConfig",
    "ExecutionConfig",
    "MonitoringConfig",
    "ProgramConfig",
    "RPCConfig",
    "RegistryConfig",
    "WalletConfig",
    "get_app_config",
]
