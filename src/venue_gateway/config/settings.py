"""Configuration settings using Pydantic for validation."""

from typing import Any, Optional
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import os
import re


class VenueConfig(BaseModel):
    """Venue REST endpoints."""
    rest_base_url: str = Field(default="https://api.exchange.example.com", description="Venue REST API base URL")
    exchange_api_url: Optional[str] = Field(default=None, description="Base URL for reference data such as currencies")
    request_timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")

    # Time-sync endpoint used to derive nonces
    time_endpoint: str = Field(default="/time", description="Server time endpoint path")
    time_field: str = Field(default="iso", description="Field holding the ISO-8601 server time")

    products_endpoint: str = Field(default="/products", description="Market metadata endpoint path")
    currencies_endpoint: str = Field(default="/currencies", description="Currencies endpoint path")

    @field_validator('request_timeout_seconds')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        return v


class CredentialsConfig(BaseModel):
    """API credentials for private calls."""
    api_key: Optional[SecretStr] = Field(default=None, description="API key identifier")
    api_secret: Optional[SecretStr] = Field(default=None, description="Base64 encoded API secret")
    passphrase: Optional[SecretStr] = Field(default=None, description="API passphrase, if the venue requires one")

    @property
    def is_configured(self) -> bool:
        return bool(
            self.api_key and self.api_key.get_secret_value()
            and self.api_secret and self.api_secret.get_secret_value()
        )


class RateLimitConfig(BaseModel):
    """Outbound request budget shared by public and private calls."""
    max_requests: int = Field(default=9, description="Maximum requests per window")
    window_seconds: float = Field(default=1.0, description="Window length in seconds")

    @field_validator('max_requests')
    @classmethod
    def validate_max_requests(cls, v):
        if v <= 0:
            raise ValueError("max_requests must be greater than zero")
        return v

    @field_validator('window_seconds')
    @classmethod
    def validate_window(cls, v):
        if v <= 0:
            raise ValueError("window_seconds must be greater than zero")
        return v


class StreamConfig(BaseModel):
    """Websocket ticker feed configuration."""
    ws_url: str = Field(default="wss://ws-feed.exchange.example.com", description="Websocket feed URL")
    channel: str = Field(default="ticker", description="Channel subscribed for snapshots")
    snapshot_timeout_seconds: float = Field(default=10.0, description="Deadline for a ticker snapshot")
    ping_interval_seconds: float = Field(default=20.0, description="Websocket ping interval")

    @field_validator('snapshot_timeout_seconds')
    @classmethod
    def validate_snapshot_timeout(cls, v):
        if v <= 0:
            raise ValueError("snapshot_timeout_seconds must be positive")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v.lower() not in ['json', 'text']:
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()


class GatewaySettings(BaseSettings):
    """Main gateway settings."""

    service_name: str = Field(default="venue-gateway", description="Service name")
    environment: str = Field(default="local", description="Environment: local, dev, prod")

    venue: VenueConfig = Field(default_factory=VenueConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['local', 'dev', 'prod']:
            raise ValueError("Environment must be 'local', 'dev', or 'prod'")
        return v

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value

    Raises:
        ValueError: If required environment variable is not found
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)
            else:
                var_name = var_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(f"Required environment variable '{var_name}' is not set")
                return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> GatewaySettings:
    """
    Load settings from config file and environment variables.

    The config file supports environment variable substitution using ${VAR_NAME} syntax.

    Args:
        config_file: Path to YAML configuration file

    Returns:
        GatewaySettings: Validated configuration object

    Raises:
        ValueError: If required environment variables are missing
        FileNotFoundError: If config file doesn't exist
    """
    if config_file and os.path.exists(config_file):
        import yaml

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        config_data = substitute_env_vars(raw_config)
        return GatewaySettings(**config_data)

    elif config_file:
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    return GatewaySettings()
