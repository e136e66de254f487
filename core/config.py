from __future__ import annotations

"""
Configuration loader for the Veridity trust core.

- Reads environment variables (optionally from `.env`) via pydantic-settings.
- Provides strongly typed sub-configs for tokens, zk artifacts, the worker
  pool and the nonce ledger.
- Exposes a cached `get_settings()` accessor; every service also accepts an
  explicit settings object so tests and embedders never depend on globals.

Environment variables (prefix ``VERIDITY_``, nested with ``__``):
    VERIDITY_ENVIRONMENT                  production | development | test
    VERIDITY_LOG_LEVEL                    DEBUG, INFO, WARNING, ERROR
    VERIDITY_LOG_FORMAT                   json | console

Tokens:
    VERIDITY_TOKEN__SIGNING_SECRET        HMAC-SHA256 key material
    VERIDITY_TOKEN__ENCRYPTION_SECRET     input keying material for the AES-256-GCM key
    VERIDITY_TOKEN__DEFAULT_EXPIRY_MINUTES
    VERIDITY_TOKEN__FRONTEND_URL          base for the scannable QR url

ZK:
    VERIDITY_ZK__ARTIFACTS_DIR            root of the artifact store
    VERIDITY_ZK__ALLOW_MOCK               explicit development-only mock switch
    VERIDITY_ZK__TRUSTED_MERKLE_ROOTS     JSON list of accepted registry roots

Pool / ledger:
    VERIDITY_POOL__MAX_WORKERS, VERIDITY_POOL__REQUEST_TIMEOUT
    VERIDITY_LEDGER__BACKEND              memory | sqlite
    VERIDITY_LEDGER__SQLITE_PATH

Notes
-----
- Lists set through the environment are JSON arrays; direct construction
  also accepts comma-separated strings.
- In ``production`` the mock switch and the built-in development secrets are
  refused at load time (ConfigError).
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigError

# ----------------------------- Helpers & Models ------------------------------ #

DEV_SIGNING_SECRET = "veridity-dev-signing-secret-change-me"
DEV_ENCRYPTION_SECRET = "veridity-dev-encryption-secret-change-me"

Environment = Literal["production", "development", "test"]


def _parse_list(val: Optional[str | List[str]]) -> List[str]:
    if val is None:
        return []
    if isinstance(val, list):
        return [str(x) for x in val]
    s = str(val).strip()
    if not s:
        return []
    if s.startswith("[") and s.endswith("]"):
        try:
            return [str(x) for x in json.loads(s)]
        except ValueError:
            pass
    return [x.strip() for x in s.split(",") if x.strip()]


class TokenSettings(BaseModel):
    """Secure QR/deep-link token protocol."""

    signing_secret: SecretStr = SecretStr(DEV_SIGNING_SECRET)
    encryption_secret: SecretStr = SecretStr(DEV_ENCRYPTION_SECRET)
    current_version: str = "1.0"
    default_expiry_minutes: int = Field(15, ge=1)
    min_expiry_minutes: int = Field(1, ge=1)
    max_expiry_minutes: int = Field(1440, ge=1)
    deep_link_base: str = "/verify"
    frontend_url: str = "http://localhost:5000"
    nonce_bytes: int = Field(32, ge=32, description="Random bytes per nonce (hex encoded).")
    clock_skew_seconds: int = Field(30, ge=0)

    @model_validator(mode="after")
    def _check_window(self) -> "TokenSettings":
        if not (self.min_expiry_minutes <= self.default_expiry_minutes <= self.max_expiry_minutes):
            raise ValueError("expiry window must satisfy min <= default <= max")
        return self


class ZkSettings(BaseModel):
    """Circuit artifacts, toolchain and proof policy."""

    artifacts_dir: Path = Path("./.veridity/artifacts")
    sources_dir: Path = Path(__file__).resolve().parent.parent / "circuits" / "sources"
    circomlib_dir: Optional[Path] = Path("./node_modules")
    circom_bin: str = "circom"
    snarkjs_bin: str = "snarkjs"
    command_timeout: float = Field(900.0, gt=0)
    ceremony_contributions: int = Field(1, ge=1)
    allow_mock: bool = False
    max_proof_age_seconds: Optional[int] = Field(3600, ge=1)
    trusted_merkle_roots: List[str] = Field(default_factory=list)

    @field_validator("trusted_merkle_roots", mode="before")
    @classmethod
    def _coerce_roots(cls, v):
        return _parse_list(v)


class PoolSettings(BaseModel):
    """Bounded worker pool used for proving and pairing checks."""

    kind: Literal["thread", "process"] = "thread"
    max_workers: Optional[int] = Field(None, ge=1)
    batch_window: int = Field(8, ge=1)
    request_timeout: Optional[float] = Field(30.0, gt=0)


class LedgerSettings(BaseModel):
    """Nonce ledger backend."""

    backend: Literal["memory", "sqlite"] = "memory"
    sqlite_path: Path = Path("./.veridity/nonces.db")
    max_entries: int = Field(1_000_000, ge=1)
    busy_timeout_ms: int = Field(5000, ge=0)


# --------------------------------- Settings ---------------------------------- #


class Settings(BaseSettings):
    environment: Environment = "development"
    service_name: str = "veridity"
    log_level: str = Field("INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_format: Literal["json", "console"] = "json"

    token: TokenSettings = Field(default_factory=TokenSettings)
    zk: ZkSettings = Field(default_factory=ZkSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)

    model_config = SettingsConfigDict(
        env_prefix="VERIDITY_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def mock_enabled(self) -> bool:
        """Mock proving/verification is only ever reachable outside production."""
        return self.zk.allow_mock and not self.is_production

    def check_production(self) -> None:
        """Refuse configurations that are unsafe for production."""
        if not self.is_production:
            return
        if self.zk.allow_mock:
            raise ConfigError("mock proofs cannot be enabled in production", field="zk.allow_mock")
        if self.token.signing_secret.get_secret_value() == DEV_SIGNING_SECRET:
            raise ConfigError("development signing secret used in production", field="token.signing_secret")
        if self.token.encryption_secret.get_secret_value() == DEV_ENCRYPTION_SECRET:
            raise ConfigError(
                "development encryption secret used in production", field="token.encryption_secret"
            )


# ------------------------------- Accessor API -------------------------------- #


def load_settings(**overrides) -> Settings:
    """Build settings from env + overrides and apply the production guard."""
    s = Settings(**overrides)
    s.check_production()
    return s


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached process-wide settings instance."""
    return load_settings()


__all__ = [
    "DEV_SIGNING_SECRET",
    "DEV_ENCRYPTION_SECRET",
    "TokenSettings",
    "ZkSettings",
    "PoolSettings",
    "LedgerSettings",
    "Settings",
    "load_settings",
    "get_settings",
]
