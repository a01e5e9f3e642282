"""Config models and loader.

This module defines Pydantic models for file- and environment-based
configuration: backend connection settings used by the exporters, and the
analysis settings (snapshot paths, result limit, deadline) used by the
reconciler.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceConfig(BaseModel):
    """Connection settings for a monitoring backend (Prometheus or Grafana).

    Attributes
    ----------
    endpoint: str
        Base URL of the backend HTTP API.
    api_key: Optional[str]
        Optional bearer token used to authenticate to the backend.
    timeout_seconds: int
        HTTP request timeout in seconds.
    """

    endpoint: str = Field(..., description="Base URL of the backend HTTP API")
    api_key: Optional[str] = Field(None, description="Authentication token")
    timeout_seconds: int = Field(30, ge=1)
    max_retries: int = Field(1, ge=0, description="Number of retry attempts")
    backoff_initial_ms: int = Field(
        200, ge=0, description="Initial backoff in milliseconds"
    )
    backoff_multiplier: float = Field(
        2.0, ge=1.0, description="Backoff multiplier per attempt"
    )


class AnalysisConfig(BaseModel):
    """Settings shared by every reconciliation analysis.

    Attributes
    ----------
    limit: int
        Maximum number of results an analysis returns. Clamped to the number
        of candidates, so any non-negative value is safe.
    timeout_seconds: Optional[float]
        Deadline for a whole analysis, including snapshot loading.
    recording_rules_only: bool
        When set, only recording-rule names satisfy a dashboard reference.
        By default every rule name does.
    """

    rules_file: Path = Field(Path("rules.csv"))
    metrics_file: Path = Field(Path("metrics.csv"))
    dashboards_file: Path = Field(Path("dashboards.csv"))
    limit: int = Field(10, ge=0)
    batch_size: int = Field(100, ge=1, description="Rows per flush when writing")
    timeout_seconds: Optional[float] = Field(None, gt=0)
    recording_rules_only: bool = False


class AppConfig(BaseModel):
    """Top-level application configuration.

    Attributes
    ----------
    prometheus: Optional[SourceConfig]
        Prometheus API used to export rules and metric names.
    grafana: Optional[SourceConfig]
        Grafana API used to export dashboards.
    analysis: AnalysisConfig
        Defaults for the analysis commands.
    """

    prometheus: Optional[SourceConfig] = None
    grafana: Optional[SourceConfig] = None
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)

    @staticmethod
    def load(path: Path) -> "AppConfig":
        """Load application config from a JSON file."""
        return AppConfig.model_validate_json(path.read_bytes())


class EnvSettings(BaseSettings):
    """Environment-driven settings and .env support.

    Attributes
    ----------
    log_level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".
    prometheus_addr: str
        Prometheus base URL used when no config file names one.
    grafana_addr: str
        Grafana base URL used when no config file names one.
    grafana_token: Optional[str]
        Grafana service account token.
    """

    model_config = SettingsConfigDict(env_file=".env", env_prefix="OWL_")

    log_level: str = Field("INFO")
    prometheus_addr: str = Field("https://demo.promlabs.com/")
    grafana_addr: str = Field("https://play.grafana.org/")
    grafana_token: Optional[str] = None
    timeout_seconds: int = Field(30, ge=1)
