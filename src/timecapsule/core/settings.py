"""
Central configuration for timecapsule.

This module provides a single, typed configuration object that reads from
environment variables (12-factor style) using pydantic-settings.

Usage:

    from timecapsule.core.settings import get_settings

    settings = get_settings()
    for url in settings.storage.gateways:
        ...

List-valued settings accept either JSON or a comma-separated string:

    TIMECAPSULE_STORAGE_GATEWAYS=http://node-a:8080,http://node-b:8080
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_csv(v):
    if isinstance(v, str):
        return [x.strip() for x in v.split(",") if x.strip()]
    return v


class StorageSettings(BaseSettings):
    """
    Content-addressed storage: upload endpoint plus ranked read gateways.
    """

    model_config = SettingsConfigDict(env_prefix="TIMECAPSULE_STORAGE_")

    gateways: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["http://127.0.0.1:8080"],
        description="Ordered gateway base URLs, most preferred first.",
    )
    gateway_path: str = Field(
        default="/content/{cid}",
        description="Path template appended to each gateway base. Public IPFS gateways use '/ipfs/{cid}'.",
    )
    upload_url: str = Field(
        default="https://node.lighthouse.storage/api/v0/add",
        description="Upload endpoint (IPFS api/v0/add compatible).",
    )
    api_key: str = Field(default="", description="Bearer token for the upload endpoint.")
    gateway_timeout: float = Field(default=10.0, description="Per-gateway request timeout (s).")
    upload_timeout: float = Field(default=60.0, description="Per-attempt upload timeout (s).")
    upload_retries: int = Field(default=3, ge=1, description="Upload attempts before giving up.")
    retry_backoff: float = Field(default=0.5, ge=0, description="Base backoff between uploads (s).")
    fetch_deadline: float = Field(
        default=30.0,
        description="Overall deadline for one fetch across all gateways (s).",
    )

    @field_validator("gateways", mode="before")
    @classmethod
    def _parse_gateways(cls, v):
        return _split_csv(v)


class TimeLockSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TIMECAPSULE_TIMELOCK_")

    threshold: int = Field(default=2, ge=1, description="Shares required to release a key.")
    custodian_count: int = Field(
        default=3,
        ge=1,
        description="Number of in-process custodians when no custodian URLs are configured.",
    )
    custodian_urls: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Remote share-holder base URLs (one share each).",
    )
    custodian_timeout: float = Field(default=10.0, description="Per-custodian call timeout (s).")
    block_time_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Average block interval, used to estimate time for height conditions.",
    )
    lock_expiry_seconds: Optional[int] = Field(
        default=None,
        description="If set, custodians discard shares this long after the condition is met.",
    )

    @field_validator("custodian_urls", mode="before")
    @classmethod
    def _parse_custodians(cls, v):
        return _split_csv(v)


class VerificationSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TIMECAPSULE_VERIFY_")

    authoritative_tolerance: int = Field(default=300, description="Max skew for the ledger clock (s).")
    external_tolerance: int = Field(default=1800, description="Max skew for external time sources (s).")
    max_latency_ms: int = Field(default=15000, description="Max round trip for an external source.")
    source_timeout: float = Field(default=10.0, description="Per-source request timeout (s).")
    min_valid_sources: int = Field(default=1, ge=1)
    require_external_corroboration: bool = Field(
        default=False,
        description="Require at least one external source to agree with the ledger clock.",
    )
    time_sources: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["worldtimeapi", "timeapi"],
        description="External time source presets or 'name=url' pairs.",
    )

    @field_validator("time_sources", mode="before")
    @classmethod
    def _parse_sources(cls, v):
        return _split_csv(v)


class LedgerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TIMECAPSULE_LEDGER_")

    rpc_url: Optional[str] = Field(
        default=None,
        description="JSON-RPC endpoint of the reference chain. Unset uses the system clock.",
    )
    timeout: float = Field(default=10.0)
    genesis_timestamp: int = Field(
        default=0,
        description="Height 0 timestamp for the system-clock ledger.",
    )


class AuditSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TIMECAPSULE_AUDIT_")

    enabled: bool = Field(default=True)
    dir: str = Field(default=".timecapsule/audit")
    sync: bool = Field(default=True, description="fsync audit writes (disable only for testing).")
    signing_key: str = Field(default="", description="Hex Ed25519 private key for signed entries.")


class ApiSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TIMECAPSULE_API_")

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)


class RuntimeSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TIMECAPSULE_")

    log_level: str = Field(default="INFO", description="Root log level (DEBUG/INFO/WARNING/ERROR).")
    content_cache_size: int = Field(
        default=128,
        ge=0,
        description="Unlocked plaintexts kept in memory (LRU). 0 disables the cache.",
    )


class TimeCapsuleSettings(BaseSettings):
    """
    Root configuration object for timecapsule.

    Aggregates:
      - Storage
      - TimeLock
      - Verification
      - Ledger
      - Audit
      - Api
      - Runtime
    """

    model_config = SettingsConfigDict(env_prefix="TIMECAPSULE_")

    storage: StorageSettings = Field(default_factory=StorageSettings)
    timelock: TimeLockSettings = Field(default_factory=TimeLockSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)


@lru_cache(maxsize=1)
def get_settings() -> TimeCapsuleSettings:
    """
    Cached accessor for TimeCapsuleSettings.

    Usage:
        from timecapsule.core.settings import get_settings
        settings = get_settings()
    """
    return TimeCapsuleSettings()
