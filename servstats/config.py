"""Configuration management with Pydantic models and validation."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from servstats.errors import ConfigError, ValidationError

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


DEFAULT_METER_NAME = "stats"
DEFAULT_METER_VERSION = "1.2.0"
DEFAULT_SCHEMA_URL = "https://opentelemetry.io/schemas/1.2.0"
DEFAULT_SCRAPE_HOST = "localhost"
DEFAULT_SCRAPE_PORT = 9464

CONFIG_FILE_NAME = "servstats.toml"

TRUE_VALUES = ("true", "1", "yes", "on")


# Environment variable mapping: config key -> env var names, in order of preference
ENV_VAR_MAPPING = {
    # Exporters
    "enable_scrape_exporter": ["SERVSTATS_ENABLE_SCRAPE", "SERVSTATS_ENABLE_PROMETHEUS"],
    "scrape_host": ["SERVSTATS_SCRAPE_HOST"],
    "scrape_port": ["SERVSTATS_SCRAPE_PORT"],
    "enable_stream_exporter": ["SERVSTATS_ENABLE_STREAM", "SERVSTATS_ENABLE_OSTREAM"],
    "stream_interval_millis": ["SERVSTATS_STREAM_INTERVAL"],
    "stream_timeout_millis": ["SERVSTATS_STREAM_TIMEOUT"],

    # Meter identity
    "meter_name": ["SERVSTATS_METER_NAME"],

    # Logging
    "debug": ["SERVSTATS_DEBUG"],
}


class StreamReaderOptions(BaseModel):
    """Options for the periodic stream (console) exporter."""

    export_interval_millis: int = Field(
        default=60000,
        gt=0,
        description="Interval in milliseconds between two consecutive exports"
    )
    export_timeout_millis: int = Field(
        default=30000,
        gt=0,
        description="Maximum time in milliseconds an export may take"
    )
    output: Literal["stdout", "stderr"] = Field(
        default="stdout",
        description="Stream the exporter writes to"
    )


class ScrapeExporterOptions(BaseModel):
    """Options for the pull-style Prometheus scrape endpoint."""

    host: str = Field(
        default=DEFAULT_SCRAPE_HOST,
        description="Address the scrape HTTP server binds to"
    )
    port: int = Field(
        default=DEFAULT_SCRAPE_PORT,
        ge=0,
        le=65535,
        description="Port the scrape HTTP server listens on"
    )
    disable_target_info: bool = Field(
        default=False,
        description="Do not emit the target_info metric"
    )

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/metrics"


class ExporterConfig(BaseModel):
    """Exporter configuration section."""

    enable_scrape_exporter: bool = Field(
        default=False,
        description="Expose metrics on an HTTP endpoint for Prometheus to scrape"
    )
    enable_stream_exporter: bool = Field(
        default=False,
        description="Periodically write metrics to a console stream"
    )
    stream_reader: StreamReaderOptions = Field(default_factory=StreamReaderOptions)
    scrape_exporter: ScrapeExporterOptions = Field(default_factory=ScrapeExporterOptions)

    @model_validator(mode='after')
    def check_scrape_address(self) -> 'ExporterConfig':
        """An enabled scrape exporter needs somewhere to bind."""
        if self.enable_scrape_exporter and not self.scrape_exporter.host:
            raise ValidationError(
                "Scrape exporter is enabled but no host is configured.",
                details={
                    "enable_scrape_exporter": self.enable_scrape_exporter,
                    "host": self.scrape_exporter.host,
                }
            )
        return self

    @property
    def any_enabled(self) -> bool:
        return self.enable_scrape_exporter or self.enable_stream_exporter


class MeterConfig(BaseModel):
    """Identity of the meter every instrument is created from."""

    name: str = Field(default=DEFAULT_METER_NAME, min_length=1)
    version: str = Field(default=DEFAULT_METER_VERSION)
    schema_url: str = Field(default=DEFAULT_SCHEMA_URL)
    service_name: Optional[str] = Field(
        default=None,
        description="service.name resource attribute attached to exported metrics"
    )
    install_global: bool = Field(
        default=True,
        description="Register the provider as the process-wide OpenTelemetry meter provider"
    )


class HistogramConfig(BaseModel):
    """Aggregation tuning for the latency histograms."""

    max_buckets: int = Field(
        default=255,
        gt=1,
        description="Maximum number of buckets per exponential histogram"
    )
    max_scale: int = Field(
        default=20,
        ge=-10,
        le=20,
        description="Maximum scale of the exponential histogram"
    )


class LoggingConfig(BaseModel):
    """Logging configuration section."""

    debug: bool = Field(
        default=False,
        description="Enable debug logging for servstats"
    )


class ServstatsConfig(BaseModel):
    """
    Complete servstats configuration.

    This model validates and merges configuration from multiple sources:
    1. Config file (servstats.toml)
    2. Environment variables
    3. Explicit parameters
    """

    exporters: ExporterConfig = Field(default_factory=ExporterConfig)
    meter: MeterConfig = Field(default_factory=MeterConfig)
    histograms: HistogramConfig = Field(default_factory=HistogramConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_dotenv(path: str = ".env") -> None:
    """Minimal .env loader (no external dependency)."""
    if not os.path.exists(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key, value = key.strip(), value.strip().strip("\"'")
                if key and key not in os.environ:
                    os.environ[key] = value
    except OSError:
        # Best effort.
        return


def find_config_file() -> Optional[str]:
    """
    Find servstats.toml config file in standard locations.

    Lookup order:
    1. ./servstats.toml (current directory)
    2. ~/.servstats/config.toml (user home)

    Returns:
        Path to config file if found, None otherwise
    """
    cwd_config = Path.cwd() / CONFIG_FILE_NAME
    if cwd_config.exists():
        return str(cwd_config)

    home_config = Path.home() / ".servstats" / "config.toml"
    if home_config.exists():
        return str(home_config)

    return None


def load_toml_config(path: str) -> Dict[str, Any]:
    """
    Load configuration from a TOML file.

    Args:
        path: Path to the TOML config file

    Returns:
        Dictionary with nested config structure
    """
    if not os.path.exists(path):
        return {}

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load config file: {e}", details={"path": path})


def get_env_value(config_key: str) -> Optional[str]:
    """
    Get environment variable value for a config key.

    Tries multiple environment variable names in order of preference.
    """
    env_vars = ENV_VAR_MAPPING.get(config_key, [])
    for env_var in env_vars:
        value = os.getenv(env_var)
        if value is not None:
            return value
    return None


def _env_int(config_key: str) -> Optional[int]:
    value = get_env_value(config_key)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"Invalid {config_key} value: {value}. Must be an integer.")


def _env_bool(config_key: str) -> Optional[bool]:
    value = get_env_value(config_key)
    if value is None:
        return None
    return value.lower() in TRUE_VALUES


def load_config_from_env() -> Dict[str, Any]:
    """
    Load configuration from environment variables.

    Returns:
        Nested dictionary of config values found in the environment
    """
    exporters: Dict[str, Any] = {}
    stream: Dict[str, Any] = {}
    scrape: Dict[str, Any] = {}
    env_config: Dict[str, Any] = {
        "exporters": exporters,
        "meter": {},
        "logging": {},
    }

    for key in ["enable_scrape_exporter", "enable_stream_exporter"]:
        value = _env_bool(key)
        if value is not None:
            exporters[key] = value

    host = get_env_value("scrape_host")
    if host is not None:
        scrape["host"] = host
    port = _env_int("scrape_port")
    if port is not None:
        scrape["port"] = port

    interval = _env_int("stream_interval_millis")
    if interval is not None:
        stream["export_interval_millis"] = interval
    timeout = _env_int("stream_timeout_millis")
    if timeout is not None:
        stream["export_timeout_millis"] = timeout

    if scrape:
        exporters["scrape_exporter"] = scrape
    if stream:
        exporters["stream_reader"] = stream

    meter_name = get_env_value("meter_name")
    if meter_name is not None:
        env_config["meter"]["name"] = meter_name

    debug = _env_bool("debug")
    if debug is not None:
        env_config["logging"]["debug"] = debug

    # Remove empty sections
    return {k: v for k, v in env_config.items() if v}


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two config dictionaries.

    Args:
        base: Base configuration
        override: Override configuration (takes precedence)

    Returns:
        Merged configuration
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> ServstatsConfig:
    """
    Load and validate servstats configuration from multiple sources.

    Priority (highest to lowest):
    1. Explicit overrides (passed as parameters)
    2. Environment variables
    3. Config file (./servstats.toml or ~/.servstats/config.toml)
    4. Defaults

    Args:
        config_file: Optional explicit path to config file
        overrides: Optional dict of explicit parameter overrides

    Returns:
        Validated ServstatsConfig instance

    Raises:
        ConfigError: If configuration is invalid or conflicting
    """
    merged_config: Dict[str, Any] = {}

    config_file = config_file or find_config_file()
    if config_file:
        merged_config = merge_configs(merged_config, load_toml_config(config_file))

    merged_config = merge_configs(merged_config, load_config_from_env())

    if overrides:
        merged_config = merge_configs(merged_config, overrides)

    try:
        return ServstatsConfig(**merged_config)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}", details=e.details)
    except ValueError as e:
        raise ConfigError(f"Configuration validation failed: {e}")


def validate_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> tuple[bool, str, Optional[ServstatsConfig]]:
    """
    Validate configuration without installing it.

    Used by the `servstats doctor` CLI command.

    Returns:
        Tuple of (is_valid, message, config_or_none)
    """
    try:
        config = load_config(config_file=config_file, overrides=overrides)
        return True, "Configuration is valid", config
    except ConfigError as e:
        return False, f"Configuration error: {e}", None
