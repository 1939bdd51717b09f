"""Configuration loading and Pydantic models for s3odm."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class EndpointConfig(BaseModel):
    """Object store endpoint: one hostname, bucket and region per client."""

    hostname: str = ""
    bucket: str = ""
    region: str = "auto"
    timeout: float = 30.0
    page_size: int = Field(default=1000, ge=1, le=1000)


class CredentialsConfig(BaseModel):
    """Access key pair used to sign every request."""

    access_key: str = ""
    secret_key: str = ""


class LoggingConfig(BaseModel):
    """Log level and output format."""

    level: str = "INFO"
    format: str = "text"


class MetricsConfig(BaseModel):
    """Client-side Prometheus metrics.

    ``textfile`` is where the CLI writes the registry when it exits, in the
    node_exporter textfile collector format.
    """

    enabled: bool = False
    textfile: str = ""


class S3ODMConfig(BaseModel):
    """Top-level s3odm configuration."""

    endpoint: EndpointConfig = Field(default_factory=EndpointConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def _parse_endpoint(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the endpoint section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return {
        "hostname": data.get("hostname", ""),
        "bucket": data.get("bucket", ""),
        "region": data.get("region", "auto"),
        "timeout": data.get("timeout", 30.0),
        "page_size": data.get("page_size", 1000),
    }


def _parse_credentials(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the credentials section from YAML data."""
    if data is None:
        return {}
    return {
        "access_key": data.get("access_key", ""),
        "secret_key": data.get("secret_key", ""),
    }


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def _parse_metrics(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the metrics section from YAML data."""
    if data is None:
        return {}
    return {
        "enabled": data.get("enabled", False),
        "textfile": data.get("textfile", ""),
    }


def load_config(path: Path) -> S3ODMConfig:
    """Load an S3ODMConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated S3ODMConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a value has the wrong type or range.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return S3ODMConfig(
        endpoint=EndpointConfig(**_parse_endpoint(raw.get("endpoint"))),
        credentials=CredentialsConfig(**_parse_credentials(raw.get("credentials"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        metrics=MetricsConfig(**_parse_metrics(raw.get("metrics"))),
    )
