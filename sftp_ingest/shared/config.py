# Configuration loader with environment variable support
# YAML supplies defaults per ENV; environment variables override per deployment

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field, ValidationError, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import IngestBaseModel

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"
DEFAULT_TIMESTAMP_PATTERN = r"UsageAcct(\d{12})\.csv"
DEFAULT_RETENTION_DAYS = 90


class DedupStrategy(str, Enum):
    AUTO = "auto"
    EXACT = "exact"
    WATERMARK = "watermark"
    NONE = "none"


class AppConfig(BaseModel):
    name: str = "sftp-ingest"
    log_level: str = "INFO"


class CredentialsConfig(BaseModel):
    secret_name: Optional[str] = None
    region: Optional[str] = None


class SourceConfig(BaseModel):
    remote_dir: str = "/data/inbound"
    connect_timeout_seconds: float = Field(default=30.0, gt=0)

    @validator("remote_dir")
    def validate_remote_dir(cls, v):
        if not v or not v.strip():
            raise ValueError("remote_dir cannot be empty")
        return v.strip()


class TargetConfig(BaseModel):
    bucket: Optional[str] = None
    prefix: str = ""
    multipart_threshold_bytes: int = Field(default=8 * 1024 * 1024, gt=0)


class DedupConfig(BaseModel):
    strategy: DedupStrategy = DedupStrategy.AUTO
    lookback_minutes: int = Field(default=15, ge=0)
    table: Optional[str] = None
    redis_uri: Optional[str] = None
    redis_namespace: str = "ingest"
    retention_days: int = Field(default=DEFAULT_RETENTION_DAYS, gt=0)
    timestamp_pattern: str = DEFAULT_TIMESTAMP_PATTERN

    @validator("timestamp_pattern")
    def validate_timestamp_pattern(cls, v):
        """Pattern must compile and capture exactly one token group"""
        try:
            compiled = re.compile(v)
        except re.error as e:
            raise ValueError(f"timestamp_pattern is not a valid regex: {e}")
        if compiled.groups != 1:
            raise ValueError(
                f"timestamp_pattern must have exactly one capture group, got {compiled.groups}"
            )
        return v


class TransferConfig(BaseModel):
    max_workers: int = Field(default=4, gt=0)
    run_timeout_seconds: Optional[float] = Field(default=None, gt=0)


class Config(IngestBaseModel):
    """Main configuration model"""

    app: AppConfig = Field(default_factory=AppConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    target: TargetConfig = Field(default_factory=TargetConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)


class Settings(BaseSettings):
    """Environment-based settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="development", alias="ENV")
    config_path: Optional[str] = Field(default=None, alias="CONFIG_PATH")

    # Credentials
    secret_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("SECRET_NAME", "SFTP_SECRET_NAME")
    )
    aws_region: Optional[str] = Field(default=None, alias="AWS_REGION")

    # Source / target
    remote_dir: Optional[str] = Field(default=None, alias="REMOTE_DIR")
    target_bucket: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("TARGET_BUCKET", "S3_BUCKET")
    )
    target_prefix: Optional[str] = Field(default=None, alias="TARGET_PREFIX")

    # Dedup
    dedup_strategy: Optional[DedupStrategy] = Field(
        default=None, alias="DEDUP_STRATEGY"
    )
    lookback_minutes: Optional[int] = Field(default=None, alias="LOOKBACK_MINUTES")
    ddb_table: Optional[str] = Field(default=None, alias="DDB_TABLE")
    redis_uri: Optional[str] = Field(default=None, alias="REDIS_URI")

    # Transfer
    max_workers: Optional[int] = Field(default=None, alias="MAX_WORKERS")
    run_timeout_seconds: Optional[float] = Field(
        default=None, alias="RUN_TIMEOUT_SECONDS"
    )

    # Logging
    log_level: Optional[str] = Field(default=None, alias="LOG_LEVEL")


@dataclass(frozen=True)
class RunConfig:
    """Fully resolved settings for one ingestion run."""

    secret_name: str
    region: Optional[str]
    bucket: str
    prefix: str
    remote_dir: str
    strategy: DedupStrategy
    lookback_minutes: int
    ledger_table: Optional[str]
    redis_uri: Optional[str]
    redis_namespace: str
    retention_days: int
    timestamp_pattern: str
    max_workers: int
    run_timeout_seconds: Optional[float]
    multipart_threshold_bytes: int
    connect_timeout_seconds: float
    log_level: str

    @property
    def uses_time_window(self) -> bool:
        return self.strategy in (DedupStrategy.EXACT, DedupStrategy.NONE)


def _pick(env_value, config_value):
    return config_value if env_value is None else env_value


def resolve_strategy(
    requested: DedupStrategy, table: Optional[str], redis_uri: Optional[str]
) -> DedupStrategy:
    """
    Resolve AUTO into a concrete strategy.

    AUTO picks EXACT when any ledger store is configured and NONE otherwise.
    EXACT without a store is a configuration error.
    """
    has_store = bool(table or redis_uri)
    if requested == DedupStrategy.AUTO:
        return DedupStrategy.EXACT if has_store else DedupStrategy.NONE
    if requested == DedupStrategy.EXACT and not has_store:
        raise ConfigurationError(
            "Dedup strategy 'exact' requires DDB_TABLE or REDIS_URI to be set"
        )
    return requested


def resolve_run_config(config: Config, settings: Settings) -> RunConfig:
    """
    Merge YAML config and environment settings into a RunConfig.

    Raises:
        ConfigurationError: If required values are missing or invalid
    """
    secret_name = _pick(settings.secret_name, config.credentials.secret_name)
    bucket = _pick(settings.target_bucket, config.target.bucket)

    missing: List[str] = []
    if not secret_name:
        missing.append("SECRET_NAME")
    if not bucket:
        missing.append("TARGET_BUCKET")
    if missing:
        raise ConfigurationError(f"Missing environment variables: {', '.join(missing)}")

    lookback = _pick(settings.lookback_minutes, config.dedup.lookback_minutes)
    max_workers = _pick(settings.max_workers, config.transfer.max_workers)
    if lookback < 0:
        raise ConfigurationError(f"LOOKBACK_MINUTES must be >= 0, got {lookback}")
    if max_workers <= 0:
        raise ConfigurationError(f"MAX_WORKERS must be positive, got {max_workers}")

    table = _pick(settings.ddb_table, config.dedup.table)
    redis_uri = _pick(settings.redis_uri, config.dedup.redis_uri)
    strategy = resolve_strategy(
        _pick(settings.dedup_strategy, config.dedup.strategy), table, redis_uri
    )

    return RunConfig(
        secret_name=secret_name,
        region=_pick(settings.aws_region, config.credentials.region),
        bucket=bucket,
        prefix=_pick(settings.target_prefix, config.target.prefix),
        remote_dir=_pick(settings.remote_dir, config.source.remote_dir),
        strategy=strategy,
        lookback_minutes=lookback,
        ledger_table=table,
        redis_uri=redis_uri,
        redis_namespace=config.dedup.redis_namespace,
        retention_days=config.dedup.retention_days,
        timestamp_pattern=config.dedup.timestamp_pattern,
        max_workers=max_workers,
        run_timeout_seconds=_pick(
            settings.run_timeout_seconds, config.transfer.run_timeout_seconds
        ),
        multipart_threshold_bytes=config.target.multipart_threshold_bytes,
        connect_timeout_seconds=config.source.connect_timeout_seconds,
        log_level=_pick(settings.log_level, config.app.log_level),
    )


def load_config() -> tuple[Config, Settings]:
    """
    Load configuration from YAML file and environment variables.

    Returns:
        tuple: (Config, Settings) - YAML config and environment settings

    Raises:
        ConfigurationError: If an explicit config file is missing or invalid
    """
    try:
        settings = Settings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid environment settings: {e}") from e

    if settings.config_path:
        config_path = Path(settings.config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
    else:
        config_path = DEFAULT_CONFIG_DIR / f"{settings.env}.yaml"

    config_dict = {}
    if config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f) or {}
    else:
        logger.warning(
            f"No configuration file at {config_path}; using built-in defaults"
        )

    try:
        config = Config(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    return config, settings


# Global config instances (loaded once at startup)
_config: Optional[Config] = None
_settings: Optional[Settings] = None


def get_config() -> Config:
    """Get the global Config instance"""
    global _config
    if _config is None:
        _config, _ = load_config()
    return _config


def get_settings() -> Settings:
    """Get the global Settings instance"""
    global _settings
    if _settings is None:
        _, _settings = load_config()
    return _settings


def reload_config() -> tuple[Config, Settings]:
    """Force reload of config/settings from disk and environment."""
    global _config, _settings
    _config, _settings = load_config()
    return _config, _settings


def get_run_config() -> RunConfig:
    """Resolve the RunConfig from the global config and settings"""
    return resolve_run_config(get_config(), get_settings())
