"""
Central configuration management for peerstack.

This module provides type-safe configuration management using Pydantic,
read from the environment (and an optional ``.env`` file) once, and turned
into an explicit ``DeploymentConfig`` that is passed to the orchestrator.
"""

import ipaddress
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings


class DeploymentSettings(BaseSettings):
    """Region pair, hostname and naming for the deployment."""

    account: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("CDK_DEFAULT_ACCOUNT", "account")
    )
    primary_region: str = Field(
        default="",
        validation_alias=AliasChoices(
            "CDK_DEFAULT_REGION", "AWS_DEFAULT_REGION", "primary_region"
        ),
    )
    secondary_region: str = Field(
        default="",
        validation_alias=AliasChoices("SECONDARY_AWS_REGION", "secondary_region"),
    )
    app_hostname: str = Field(
        default="", validation_alias=AliasChoices("APP_HOSTNAME", "app_hostname")
    )
    stage: str = Field(
        default="staging", validation_alias=AliasChoices("STAGE", "stage")
    )
    app_name: str = Field(
        default="live-beats", validation_alias=AliasChoices("APP_NAME", "app_name")
    )
    # peered networks can't have overlapping ranges
    primary_cidr: str = Field(
        default="10.0.0.0/22",
        validation_alias=AliasChoices("PRIMARY_CIDR", "primary_cidr"),
    )
    secondary_cidr: str = Field(
        default="10.0.5.0/22",
        validation_alias=AliasChoices("SECONDARY_CIDR", "secondary_cidr"),
    )

    @field_validator("primary_cidr", "secondary_cidr")
    @classmethod
    def validate_cidr(cls, v):
        """Validate CIDR is an IPv4 network. Host bits are allowed and kept."""
        try:
            network = ipaddress.ip_network(str(v).strip(), strict=False)
        except ValueError as e:
            raise ValueError(f"Invalid CIDR block: {e}")
        if network.version != 4:
            raise ValueError("Only IPv4 CIDR blocks are supported")
        return str(v).strip()

    model_config = {"env_prefix": "", "case_sensitive": False, "extra": "ignore"}


class CloudSettings(BaseSettings):
    """Cloud provider credentials."""

    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    aws_session_token: Optional[str] = Field(default=None)

    model_config = {"env_prefix": "", "case_sensitive": False, "extra": "ignore"}


class ExecutionSettings(BaseSettings):
    """Orchestrator and tool execution settings."""

    strategy: str = Field(default="sequential", validation_alias="EXECUTION_STRATEGY")
    max_concurrent_units: int = Field(default=4, validation_alias="MAX_CONCURRENT_UNITS")
    unit_timeout: int = Field(default=3600, validation_alias="UNIT_TIMEOUT")  # seconds
    retry_count: int = Field(default=3, validation_alias="TOOL_RETRY_COUNT")
    retry_delay: float = Field(default=5.0, validation_alias="TOOL_RETRY_DELAY")

    @field_validator("strategy")
    @classmethod
    def validate_strategy(cls, v):
        """Validate execution strategy name."""
        if v.lower() not in ["sequential", "parallel"]:
            raise ValueError("Strategy must be 'sequential' or 'parallel'")
        return v.lower()

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "extra": "ignore",
        "populate_by_name": True,
    }


class MonitoringSettings(BaseSettings):
    """Logging configuration."""

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text
    log_file: Optional[str] = Field(default=None)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format."""
        if v not in ["json", "text"]:
            raise ValueError("Log format must be 'json' or 'text'")
        return v

    model_config = {"env_prefix": "", "case_sensitive": False, "extra": "ignore"}


class AppSettings(BaseSettings):
    """Main application settings."""

    app_version: str = Field(default="0.1.0")
    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    cloud: CloudSettings = Field(default_factory=CloudSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment name."""
        valid_envs = ["development", "testing", "staging", "production", "ci"]
        if v not in valid_envs:
            raise ValueError(f"Environment must be one of: {valid_envs}")
        return v

    def get_safe_dict(self) -> Dict[str, Any]:
        """Get configuration dict with sensitive values masked."""
        config = self.model_dump()

        def mask_sensitive(obj):
            """Recursively mask sensitive fields."""
            if isinstance(obj, dict):
                for key, value in obj.items():
                    if any(
                        sensitive in key.lower()
                        for sensitive in ["password", "secret", "key", "token"]
                    ):
                        if value and str(value).strip():
                            obj[key] = "***MASKED***"
                    elif isinstance(value, (dict, list)):
                        mask_sensitive(value)
            elif isinstance(obj, list):
                for item in obj:
                    if isinstance(item, (dict, list)):
                        mask_sensitive(item)

        mask_sensitive(config)
        return config

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


class DeploymentConfig(BaseModel):
    """
    Explicit deployment configuration threaded into the orchestrator.

    Built once, before the run starts; nothing in the pipeline reads the
    environment after this point.
    """

    model_config = ConfigDict(frozen=True)

    account: Optional[str] = None
    primary_region: str = ""
    secondary_region: str = ""
    app_hostname: str = ""
    stage: str = "staging"
    app_name: str = "live-beats"
    primary_cidr: str = "10.0.0.0/22"
    secondary_cidr: str = "10.0.5.0/22"

    @classmethod
    def from_settings(cls, settings: Optional[AppSettings] = None) -> "DeploymentConfig":
        settings = settings or get_settings()
        return cls(**settings.deployment.model_dump())

    @property
    def prefix(self) -> str:
        return f"{self.stage}-{self.app_name}"

    def configuration_warnings(self) -> List[str]:
        """Missing optional inputs that leave the deployment degraded."""
        warnings = []
        if not self.primary_region:
            warnings.append(
                "Primary region not set. Export CDK_DEFAULT_REGION (or AWS_DEFAULT_REGION)"
            )
        if not self.secondary_region:
            warnings.append(
                "Secondary region not set. Remember to export SECONDARY_AWS_REGION"
            )
        if not self.app_hostname:
            warnings.append(
                "APP_HOSTNAME not set. Once you know it (after the routing unit is "
                "applied) run e.g. export APP_HOSTNAME=example.com and deploy again"
            )
        return warnings


# Singleton pattern for settings
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get application settings singleton."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def reload_settings() -> AppSettings:
    """Force reload of settings (useful for testing)."""
    global _settings
    _settings = None
    return get_settings()
