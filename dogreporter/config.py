"""Configuration models using Pydantic for validation."""
from typing import Dict, FrozenSet, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import os

from dogreporter.expansions import Expansion, parse_expansion, parse_expansions
from dogreporter.tags import normalize_tags
from dogreporter.transport import DEFAULT_SERIES_URL
from dogreporter.units import TimeUnit


class ReporterConfig(BaseModel):
    """How metrics are translated and how often they are reported."""
    period_s: float = Field(default=10.0, gt=0)
    host: Optional[str] = None
    use_ec2_host: bool = False
    prefix: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    expansions: Optional[List[str]] = None  # None means all
    rate_unit: str = "seconds"
    duration_unit: str = "milliseconds"
    name_separator: str = "."
    self_metrics: bool = True

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v):
        """Accept a list of tag strings or a ``key: value`` mapping."""
        if v is None:
            return []
        if not isinstance(v, (list, tuple, dict)):
            raise ValueError("tags must be a list or a mapping")
        return normalize_tags(v)

    @field_validator("expansions")
    @classmethod
    def validate_expansions(cls, v):
        if v is None:
            return v
        for name in v:
            parse_expansion(name)
        return v

    @field_validator("rate_unit", "duration_unit")
    @classmethod
    def validate_unit(cls, v):
        TimeUnit.parse(v)
        return v

    @model_validator(mode="after")
    def validate_host(self):
        if self.host and self.use_ec2_host:
            raise ValueError("Set either 'host' or 'use_ec2_host', not both")
        return self

    def active_expansions(self) -> FrozenSet[Expansion]:
        return parse_expansions(self.expansions)


class HttpTransportConfig(BaseModel):
    """Series API push transport configuration."""
    api_key: Optional[str] = None
    url: str = DEFAULT_SERIES_URL
    timeout_s: float = Field(default=5.0, gt=0)


class PrometheusTransportConfig(BaseModel):
    """Prometheus pull transport configuration."""
    port: Optional[int] = 8000
    prefix: str = ""
    bind_address: str = "0.0.0.0"


class OTELTransportConfig(BaseModel):
    """OpenTelemetry push transport configuration."""
    endpoint: str = "localhost:4317"
    insecure: bool = True
    prefix: str = ""
    export_interval_s: int = Field(default=10, gt=0)
    headers: Dict[str, str] = Field(default_factory=dict)
    resource: Dict[str, str] = Field(default_factory=dict)


class TransportConfig(BaseModel):
    """Which transport to use and its settings."""
    type: Literal["http", "prometheus", "otel"] = "http"
    http: HttpTransportConfig = Field(default_factory=HttpTransportConfig)
    prometheus: PrometheusTransportConfig = Field(default_factory=PrometheusTransportConfig)
    otel: OTELTransportConfig = Field(default_factory=OTELTransportConfig)

    @model_validator(mode="after")
    def validate_selected(self):
        if self.type == "http" and not self.http.api_key:
            raise ValueError("transport.http.api_key is required for the http transport")
        return self


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    control_api_enabled: bool = True
    control_api_port: int = 8081


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    reporter: ReporterConfig = Field(default_factory=ReporterConfig)
    transport: TransportConfig


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_api_key := os.getenv('DATADOG_API_KEY'):
        raw_config.setdefault('transport', {}).setdefault('http', {})['api_key'] = env_api_key

    if env_prefix := os.getenv('DOGREPORTER_PREFIX'):
        raw_config.setdefault('reporter', {})['prefix'] = env_prefix

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    try:
        config = Config(**raw_config)
        return config
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
