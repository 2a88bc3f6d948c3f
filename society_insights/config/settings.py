"""Application settings and configuration management.

This file implements the application-level configuration using Pydantic Settings. It
controls how the command-line tools run: logging, CPU threads, the default
hyperparameters they pass to the insights pipelines, and where models are saved.

The ML core does not read these settings. Callers that embed the core construct an
``InsightsConfig`` themselves, or build one from settings with
``InsightsConfig.from_settings(settings)``.

Configuration Sources (in priority order):
1. Environment variables prefixed with ``INSIGHTS_`` (e.g. ``INSIGHTS_LOG_LEVEL=DEBUG``)
2. .env file values
3. Default values defined here
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the insights command-line tools."""

    model_config = SettingsConfigDict(
        env_prefix="INSIGHTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # Logging Configuration
    log_level: str = "INFO"  # DEBUG shows the per-epoch loss lines
    log_file: Path | None = None  # Optional log file in addition to stdout

    # Runtime Configuration
    num_cpu_threads: int = Field(default=4, ge=1)  # torch.set_num_threads for CLI runs
    random_seed: int = 42  # Seed for weight initialization and batch shuffling
    model_dir: Path = Path("models")  # Default directory for saved models

    # Forecasting defaults
    forecast_epochs: int = Field(default=100, ge=1)
    forecast_learning_rate: float = Field(default=0.001, gt=0)

    # Anomaly detection defaults
    anomaly_epochs: int = Field(default=50, ge=1)
    anomaly_learning_rate: float = Field(default=0.001, gt=0)

    # Engagement classifier defaults
    engagement_epochs: int = Field(default=50, ge=1)
    engagement_learning_rate: float = Field(default=0.01, gt=0)

    validation_split: float = Field(default=0.2, ge=0, lt=1)

    # Empirical constants, see InsightsConfig
    confidence_scale: float = Field(default=10000.0, gt=0)
    fence_multiplier: float = Field(default=1.5, ge=0)


# Module-level settings instance used by the CLI
settings = Settings()
