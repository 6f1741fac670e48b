"""
Configuration management using Pydantic Settings.
Service-wide settings come from the environment; per-pool settings come from
a JSON document (inline via POOLS or a file via POOLS_CONFIG_PATH).
"""

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

import structlog

logger = structlog.get_logger(__name__)


class Settings(BaseSettings):
    """Application settings with environment-based configuration."""

    # Application
    app_name: str = "Pool Payments"
    app_version: str = "0.1.0"
    environment: str = Field(default="production", alias="ENVIRONMENT")

    # Pools
    pools: Optional[str] = Field(default=None, alias="POOLS")
    pools_config_path: Optional[Path] = Field(default=None, alias="POOLS_CONFIG_PATH")

    # Payment processing
    recovery_dir: Path = Field(default=Path("."), alias="PAYMENTS_RECOVERY_DIR")
    max_rounds_per_cycle: int = 500
    withhold_step: Decimal = Decimal("0.01")
    first_run_delay: float = 0.1  # seconds

    # Timeouts
    rpc_timeout: float = 30.0  # seconds
    redis_socket_timeout: float = 10.0  # seconds

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console
    log_file: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["development", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("max_rounds_per_cycle")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("withhold_step")
    @classmethod
    def validate_withhold_step(cls, v: Decimal) -> Decimal:
        if v <= 0 or v > 1:
            raise ValueError("withhold_step must be in (0, 1]")
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


# Global settings instance
settings = Settings()


class DaemonConfig(BaseModel):
    """Connection parameters for the coin daemon's JSON-RPC endpoint."""
    host: str = "127.0.0.1"
    port: int = Field(default=8332, gt=0, lt=65536)
    user: str = ""
    password: str = ""

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


class RedisConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=6379, gt=0, lt=65536)
    db: int = 0
    password: Optional[str] = None

    @property
    def url(self) -> str:
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class PaymentProcessingConfig(BaseModel):
    enabled: bool = False
    payment_interval: int = Field(default=600, gt=0)  # seconds
    minimum_payment: Decimal = Field(default=Decimal("0.01"), ge=0)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)

    @field_validator("minimum_payment", mode="before")
    @classmethod
    def coerce_decimal(cls, value: Any) -> Decimal:
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))


class PoolConfig(BaseModel):
    """One pool's configuration as found in the pools document."""
    coin: str = Field(min_length=1, max_length=64)
    address: str = Field(min_length=1)
    payment_processing: PaymentProcessingConfig = Field(default_factory=PaymentProcessingConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)


def _normalize_pools_payload(payload: Any) -> Iterable[Dict[str, Any]]:
    """Accept either a list of pool objects or a mapping of coin -> pool object."""
    if isinstance(payload, list):
        for item in payload:
            if isinstance(item, dict):
                yield dict(item)
    elif isinstance(payload, dict):
        for coin, value in payload.items():
            if isinstance(value, dict):
                candidate = dict(value)
                candidate.setdefault("coin", coin)
                yield candidate


def load_pool_configs(config: Optional[Settings] = None) -> List[PoolConfig]:
    """
    Load every pool that has payment processing enabled.

    Args:
        config: Settings to read sources from (defaults to global settings)

    Returns:
        Validated pool configs, one per coin, in source order
    """
    config = config or settings
    sources: List[tuple] = []

    if config.pools:
        try:
            sources.append(("env:POOLS", json.loads(config.pools)))
        except json.JSONDecodeError as e:
            logger.error("Failed to parse POOLS JSON", error=str(e))

    if config.pools_config_path:
        path = Path(config.pools_config_path).expanduser()
        if path.exists():
            try:
                with path.open("r", encoding="utf-8") as handle:
                    sources.append((f"file:{path}", json.load(handle)))
            except (OSError, json.JSONDecodeError) as e:
                logger.error("Failed to read pools config file", path=str(path), error=str(e))
        else:
            logger.warning("Pools config file not found", path=str(path))

    pools: List[PoolConfig] = []
    seen = set()
    for source, payload in sources:
        for candidate in _normalize_pools_payload(payload):
            try:
                pool = PoolConfig.model_validate(candidate)
            except ValidationError as e:
                logger.error("Invalid pool entry", source=source, error=str(e))
                continue

            if pool.coin in seen:
                logger.debug("Skipping duplicate pool entry", coin=pool.coin, source=source)
                continue
            seen.add(pool.coin)

            if not pool.payment_processing.enabled:
                logger.debug("Payment processing disabled for pool", coin=pool.coin)
                continue
            pools.append(pool)

    return pools
