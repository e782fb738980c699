"""
Central configuration management using Pydantic settings.

Provides type-safe configuration with validation, environment variable
support (nested keys use ``__``, e.g. ``EXPERIMENTS__P_VALUE_METHOD``),
and YAML configuration file loading.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent.parent
CONFIG_DIR = Path(__file__).resolve().parent

P_VALUE_METHODS = ("exact", "banded")
STORAGE_BACKENDS = ("memory", "sql")


class DatabaseSettings(BaseModel):
    """Storage configuration settings."""

    backend: str = Field(default="memory", description="Test store backend (memory or sql)")
    dsn: str | None = Field(default=None, description="Full SQLAlchemy URL, overrides host/port/name")
    host: str = "localhost"
    port: int = 5432
    name: str = "campaign_experiments"
    user: str = "postgres"
    password: str = ""
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in STORAGE_BACKENDS:
            raise ValueError(f"backend must be one of {STORAGE_BACKENDS}")
        return v

    @property
    def url(self) -> str:
        """Get the database connection URL."""
        if self.dsn:
            return self.dsn
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


class ExperimentSettings(BaseModel):
    """Defaults and tuning for the experimentation engine."""

    default_significance_level: float = Field(default=0.05, description="Alpha used when a test omits one")
    default_minimum_sample_size: int = Field(default=1000, description="Sample size gate when a test omits one")
    default_sample_size_event: str = Field(default="impression", description="Event that drives sampleSize")
    min_significance_level: float = Field(default=0.01, description="Lowest accepted alpha")
    max_significance_level: float = Field(default=0.10, description="Highest accepted alpha")
    traffic_split_tolerance: float = Field(default=0.1, description="Allowed deviation of split sum from 100")
    confidence_level: float = Field(default=0.95, description="Level of the per-variant confidence interval")
    p_value_method: str = Field(default="exact", description="exact (normal CDF) or banded")
    results_refresh_every: int = Field(
        default=0,
        description="Recompute provisional results every N events per test (0 disables)",
    )

    @field_validator("p_value_method")
    @classmethod
    def validate_p_value_method(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in P_VALUE_METHODS:
            raise ValueError(f"p_value_method must be one of {P_VALUE_METHODS}")
        return v

    @field_validator("confidence_level")
    @classmethod
    def validate_confidence_level(cls, v: float) -> float:
        if not 0 < v < 1:
            raise ValueError("confidence_level must be in (0, 1)")
        return v

    @field_validator("results_refresh_every")
    @classmethod
    def validate_refresh(cls, v: int) -> int:
        if v < 0:
            raise ValueError("results_refresh_every must be >= 0")
        return v


class ApiSettings(BaseModel):
    """HTTP API configuration settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins allowed by the CORS middleware",
    )


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json or text)")
    file_path: Path | None = Field(default=None, description="Log file path")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application settings
    app_name: str = "Campaign Experiments"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = Field(default="development", description="Environment (development, staging, production)")

    # Component settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    experiments: ExperimentSettings = Field(default_factory=ExperimentSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load_yaml_config(cls, config_path: Path) -> dict[str, Any]:
        """Load configuration from a YAML file."""
        if config_path.exists():
            with open(config_path, "r") as f:
                return yaml.safe_load(f) or {}
        return {}

    def load_experiment_config(self, config_path: Path | None = None) -> ExperimentSettings:
        """Overlay engine defaults from YAML on top of the current values.

        Fields set explicitly through the environment or constructor keep
        their values; YAML only fills the ones left at their defaults.
        """
        config = self.load_yaml_config(config_path or CONFIG_DIR / "experiments.yaml")
        if config:
            explicit = self.experiments.model_fields_set
            merged = self.experiments.model_dump()
            merged.update({k: v for k, v in config.items() if k not in explicit})
            return ExperimentSettings(**merged)
        return self.experiments


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance with all configurations loaded.

    Loads configurations in order:
    1. Base settings from environment and .env file
    2. Engine defaults from experiments.yaml, for fields the environment
       does not set
    """
    settings = Settings()
    settings.experiments = settings.load_experiment_config()
    return settings
