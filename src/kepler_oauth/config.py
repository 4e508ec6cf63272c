"""Configuration management for kepler-oauth.

Provides configuration loading from environment variables, .env files,
and optional configuration files with proper precedence handling.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from kepler_oauth.oauth.models import ClientConfig
from kepler_oauth.oauth.pkce import MAX_VERIFIER_BYTES, MIN_VERIFIER_BYTES, PkceMethod
from kepler_oauth.oauth.state import MIN_STATE_BYTES
from kepler_oauth.security import Secret

logger = logging.getLogger(__name__)

ENV_PREFIX = "KEPLER_OAUTH_"


class ConfigError(Exception):
    """Raised when configuration validation fails."""


class LogLevel(str, Enum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Config(BaseModel):
    """Configuration model for kepler-oauth.

    Configuration can be loaded from:
    - Environment variables with KEPLER_OAUTH_ prefix
    - Optional .env file in the working directory
    - Optional configuration file (JSON or YAML)
    """

    app_name: str = Field(default="kepler-oauth", description="Application name")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    # Client registration and authorization server endpoints
    oauth_authorization_url: str | None = Field(
        default=None, description="OAuth authorization endpoint URL"
    )
    oauth_token_url: str | None = Field(default=None, description="OAuth token endpoint URL")
    oauth_client_id: str | None = Field(default=None, description="OAuth client identifier")
    oauth_client_secret: SecretStr | None = Field(
        default=None, description="OAuth client secret (confidential clients only)"
    )
    oauth_scope: str | None = Field(default=None, description="OAuth scopes (space-separated)")
    oauth_redirect_uri: str | None = Field(
        default=None, description="OAuth callback/redirect URI"
    )
    oauth_pkce_method: PkceMethod = Field(
        default=PkceMethod.S256, description="PKCE code challenge method"
    )

    # Entropy of generated values
    pkce_verifier_bytes: int = Field(
        default=MIN_VERIFIER_BYTES,
        ge=MIN_VERIFIER_BYTES,
        le=MAX_VERIFIER_BYTES,
        description="Random bytes behind the PKCE code verifier",
    )
    state_bytes: int = Field(
        default=MIN_STATE_BYTES, ge=MIN_STATE_BYTES, description="Random bytes behind the state"
    )

    # Reference HTTP transport
    http_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")

    # Suspended flow storage
    flow_store_path: str | None = Field(
        default=None, description="Path for persistent suspended flow storage"
    )
    flow_store_encryption_key: SecretStr | None = Field(
        default=None, description="Fernet encryption key for flow storage"
    )

    model_config = {
        "extra": "allow",
        "validate_assignment": True,
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("oauth_pkce_method", mode="before")
    @classmethod
    def normalize_pkce_method(cls, v: Any) -> Any:
        """Accept any casing of S256 and plain."""
        if isinstance(v, str):
            return "S256" if v.upper() == "S256" else v.lower()
        return v

    @model_validator(mode="after")
    def validate_flow_store(self) -> Config:
        """Validate flow store configuration."""
        if self.flow_store_path and not self.flow_store_encryption_key:
            msg = "flow_store_encryption_key is required when flow_store_path is set"
            raise ValueError(msg)
        return self

    def to_client_config(self) -> ClientConfig:
        """Build the client configuration used by the flow engine.

        Raises:
            ConfigError: If a required OAuth setting is missing
        """
        required_fields = [
            ("oauth_authorization_url", self.oauth_authorization_url),
            ("oauth_token_url", self.oauth_token_url),
            ("oauth_client_id", self.oauth_client_id),
            ("oauth_redirect_uri", self.oauth_redirect_uri),
        ]
        missing = [name for name, value in required_fields if not value]
        if missing:
            msg = f"OAuth client configuration is missing required fields: {', '.join(missing)}"
            raise ConfigError(msg)

        client_secret = (
            Secret(self.oauth_client_secret.get_secret_value())
            if self.oauth_client_secret
            else None
        )
        return ClientConfig(
            client_id=self.oauth_client_id or "",
            authorization_endpoint=self.oauth_authorization_url or "",
            token_endpoint=self.oauth_token_url or "",
            redirect_uri=self.oauth_redirect_uri or "",
            scopes=tuple((self.oauth_scope or "").split()),
            client_secret=client_secret,
            pkce_method=self.oauth_pkce_method,
        )


def _get_env_value(key: str, prefix: str = ENV_PREFIX) -> str | None:
    """Get environment variable value with prefix."""
    return os.environ.get(f"{prefix}{key.upper()}")


def _load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    int_fields = ("pkce_verifier_bytes", "state_bytes")

    config: dict[str, Any] = {}
    for field_name in Config.model_fields:
        value: Any = _get_env_value(field_name)
        if value is None:
            continue
        if field_name in int_fields:
            with contextlib.suppress(ValueError):
                value = int(value)
        elif field_name == "http_timeout":
            with contextlib.suppress(ValueError):
                value = float(value)
        config[field_name] = value

    return config


def _load_file_config(path: str | Path) -> dict[str, Any]:
    """Load configuration from a file (JSON or YAML)."""
    path = Path(path)
    if not path.exists():
        msg = f"Configuration file not found: {path}"
        raise ConfigError(msg)

    suffix = path.suffix.lower()
    content = path.read_text()

    try:
        if suffix == ".json":
            data = json.loads(content)
        elif suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        else:
            msg = f"Unsupported configuration file format: {suffix}"
            raise ConfigError(msg)
    except (ValueError, yaml.YAMLError) as e:
        msg = f"Failed to parse configuration file {path}: {e}"
        raise ConfigError(msg) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Configuration file must contain a mapping: {path}"
        raise ConfigError(msg)
    return data


def _redact_for_log(key: str, value: Any) -> str:
    """Redact sensitive values for logging."""
    secret_keys = {
        "oauth_client_secret",
        "flow_store_encryption_key",
    }
    if key in secret_keys and value:
        return "***"
    return str(value)


def load_config(
    path: str | Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> Config:
    """Load and validate configuration.

    Precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Configuration file
    4. Model defaults

    Args:
        path: Optional path to configuration file
        cli_args: Optional CLI argument overrides

    Returns:
        Validated Config instance

    Raises:
        ConfigError: If configuration is invalid
    """
    load_dotenv()

    config_dict: dict[str, Any] = {}
    if path:
        logger.debug("Loading configuration from file: %s", path)
        config_dict.update(_load_file_config(path))

    for key, value in _load_env_config().items():
        config_dict[key] = value
        logger.debug("Config %s from environment: %s", key, _redact_for_log(key, value))

    if cli_args:
        for key, value in cli_args.items():
            if value is not None:
                config_dict[key] = value
                logger.debug("Config %s from CLI: %s", key, _redact_for_log(key, value))

    try:
        return Config(**config_dict)
    except Exception as e:
        msg = f"Configuration validation failed: {e}"
        raise ConfigError(msg) from e
