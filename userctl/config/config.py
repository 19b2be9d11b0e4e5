"""
Configuration models for userctl.

Uses Pydantic for validation and type safety.
"""
from typing import List, Literal, Optional
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml
from pathlib import Path
import os
import re

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

_ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)')


class DataConfig(BaseSettings):
    """Database configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    # Any SQLAlchemy URL; PostgreSQL in production, SQLite for local use
    database_url: str = "sqlite:///userctl.db"


class LockConfig(BaseSettings):
    """Per-user advisory lock configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    lock_timeout_seconds: float = Field(default=30.0, gt=0, le=3600)
    extended_lock_timeout_seconds: float = Field(
        default=1800.0, gt=0, le=7200,
        description="Timeout for the untracked storage path, which touches every application",
    )
    retry_interval_seconds: float = Field(default=0.5, gt=0, le=10)

    @model_validator(mode="after")
    def _extended_not_shorter(self) -> "LockConfig":
        if self.extended_lock_timeout_seconds < self.lock_timeout_seconds:
            raise ValueError("extended_lock_timeout_seconds must be >= lock_timeout_seconds")
        return self


class PlatformConfig(BaseSettings):
    """Platform policy: feature flags, gear sizes and defaults for new users."""
    model_config = SettingsConfigDict(extra="ignore")

    allow_ha_applications: bool = False
    valid_gear_sizes: List[str] = Field(default_factory=lambda: ["small", "medium", "large"])
    default_gear_sizes: List[str] = Field(default_factory=lambda: ["small"])
    default_plan_id: Optional[str] = "free"
    default_max_domains: int = Field(default=10, ge=0)
    default_max_gears: int = Field(default=100, ge=0)
    default_max_teams: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _defaults_are_valid_sizes(self) -> "PlatformConfig":
        unknown = [s for s in self.default_gear_sizes if s not in self.valid_gear_sizes]
        if unknown:
            raise ValueError(f"default_gear_sizes not in valid_gear_sizes: {unknown}")
        return self


class MonitoringConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    log_format: Literal["json", "text"] = "text"
    log_file: Optional[str] = None


class UserCtlConfig(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        extra="ignore",
    )

    data: DataConfig = Field(default_factory=DataConfig)
    locking: LockConfig = Field(default_factory=LockConfig)
    platform: PlatformConfig = Field(default_factory=PlatformConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    environment: Literal["dev", "test", "prod"] = "prod"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "UserCtlConfig":
        """Load configuration from YAML file."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # Return original if not found

        config_dict = yaml.safe_load(_ENV_VAR_PATTERN.sub(replace_match, raw_content)) or {}

        if "ENVIRONMENT" in os.environ:
            config_dict["environment"] = os.environ["ENVIRONMENT"]

        db_url = os.getenv("DATABASE_URL")
        if db_url:
            if not isinstance(config_dict.get("data"), dict):
                config_dict["data"] = {}
            config_dict["data"]["database_url"] = db_url

        return cls(**config_dict)


def load_config(config_path: str | Path | None = None) -> UserCtlConfig:
    """
    Load and validate configuration.

    Args:
        config_path: Path to a YAML file. Falls back to USERCTL_CONFIG, then the
            packaged config.yaml.

    Returns:
        Validated UserCtlConfig object

    Raises:
        FileNotFoundError: If config file not found
        ValueError: If configuration validation fails
    """
    if config_path is None:
        config_path = os.getenv("USERCTL_CONFIG") or DEFAULT_CONFIG_PATH

    return UserCtlConfig.from_yaml(config_path)
