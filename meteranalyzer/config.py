"""Configuration models using Pydantic for validation."""
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import os

from meteranalyzer.family import DownsamplingType
from meteranalyzer.lookback import LookbackMissPolicy


class PrometheusExporterConfig(BaseModel):
    """Prometheus pull exporter configuration."""
    enabled: bool = True
    port: int = 8000
    prefix: str = "meter_"
    bind_address: str = "0.0.0.0"


class OTELExporterConfig(BaseModel):
    """OpenTelemetry push exporter configuration."""
    enabled: bool = False
    endpoint: str = "localhost:4317"
    insecure: bool = True
    prefix: str = "meter_"
    export_interval_s: int = 10
    headers: Dict[str, str] = Field(default_factory=dict)
    resource: Dict[str, str] = Field(default_factory=dict)


class ExportersConfig(BaseModel):
    """Configuration for all exporters."""
    prometheus: PrometheusExporterConfig = Field(default_factory=PrometheusExporterConfig)
    otel: OTELExporterConfig = Field(default_factory=OTELExporterConfig)


class LookbackConfig(BaseModel):
    """History kept for rate-style functions."""
    miss_policy: LookbackMissPolicy = LookbackMissPolicy.SELF
    retention_s: Optional[int] = 3600

    @field_validator('retention_s')
    @classmethod
    def validate_retention(cls, v):
        if v is not None and v <= 0:
            raise ValueError("retention_s must be positive")
        return v


class StepConfig(BaseModel):
    """One resolved operator invocation."""
    op: str
    args: List[Any] = Field(default_factory=list)
    kwargs: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('op')
    @classmethod
    def validate_op(cls, v):
        from meteranalyzer.pipeline import OPERATORS

        if v not in OPERATORS:
            raise ValueError(f"Unknown operator '{v}'")
        return v


class RuleConfig(BaseModel):
    """A derived metric: a source family run through a pipeline."""
    name: str
    source: str
    # None keeps whatever the source family carries
    downsampling: Optional[DownsamplingType] = None
    pipeline: List[StepConfig] = Field(default_factory=list)


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    evaluation_interval_s: int = 10
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    control_api_port: int = 8081


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    lookback: LookbackConfig = Field(default_factory=LookbackConfig)
    exporters: ExportersConfig = Field(default_factory=ExportersConfig)
    rules: List[RuleConfig] = Field(default_factory=list)

    @field_validator('rules')
    @classmethod
    def validate_rules(cls, v):
        """Validate rule configurations."""
        names = [r.name for r in v]
        if len(names) != len(set(names)):
            raise ValueError("Rule names must be unique")
        return v

    @model_validator(mode='after')
    def validate_sources(self):
        """A rule may not read its own output."""
        for rule in self.rules:
            if rule.source == rule.name:
                raise ValueError(f"Rule '{rule.name}' uses itself as source")
        return self


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_endpoint := os.getenv('OTEL_ENDPOINT'):
        raw_config.setdefault('exporters', {}).setdefault('otel', {})['endpoint'] = env_endpoint

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
