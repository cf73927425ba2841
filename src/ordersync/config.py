"""Configuration schema for the ordersync server.

Defines Pydantic models for loading and validating server configuration
from YAML files and environment variables.
"""

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=1024, le=65535, description="Bind port")
    path: str = Field(default="/ws", description="Request path accepted for upgrades")
    max_connections: int = Field(default=500, ge=1, description="Maximum concurrent connections")
    max_message_bytes: int = Field(
        default=64 * 1024, ge=1024, description="Maximum inbound message size"
    )
    send_timeout_s: float = Field(
        default=2.0,
        gt=0,
        le=60,
        description="Upper bound on a single delivery to one connection",
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate that the path is absolute."""
        if not v.startswith("/"):
            raise ValueError(f"WebSocket path must start with '/', got '{v}'")
        return v


class TransportConfig(BaseModel):
    """Transport layer configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)


class HttpConfig(BaseModel):
    """HTTP API configuration (session create/lookup, health, metrics)."""

    enabled: bool = Field(default=True, description="Serve the HTTP API")
    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8081, ge=1024, le=65535, description="Bind port")
    cors_allow_origin: str = Field(
        default="*", description="Value for the Access-Control-Allow-Origin header"
    )


class SessionConfig(BaseModel):
    """Session lifecycle configuration."""

    timeout_seconds: int = Field(
        default=4 * 60 * 60,
        ge=60,
        le=7 * 24 * 60 * 60,
        description="Age after which a session expires",
    )
    sweep_interval_seconds: int = Field(
        default=10 * 60,
        ge=1,
        le=24 * 60 * 60,
        description="Interval between expiry sweeps",
    )
    code_length: int = Field(default=6, ge=4, le=12, description="Session code length")
    max_code_attempts: int = Field(
        default=100, ge=1, description="Attempts at drawing an unused session code"
    )


class LimitsConfig(BaseModel):
    """Bounds applied to order items and tax."""

    max_item_name_length: int = Field(default=25, ge=1)
    max_notes_length: int = Field(default=30, ge=0)
    max_name_length: int = Field(default=40, ge=1)
    max_quantity: int = Field(default=999, ge=1)
    max_price: float = Field(default=50000, gt=0)
    default_tax_percent: float = Field(default=13, ge=0)
    max_tax_percent: float = Field(default=50, ge=0)

    @model_validator(mode="after")
    def validate_default_tax(self) -> "LimitsConfig":
        """Validate that the default tax rate is within the allowed range."""
        if self.default_tax_percent > self.max_tax_percent:
            raise ValueError(
                f"default_tax_percent ({self.default_tax_percent}) exceeds "
                f"max_tax_percent ({self.max_tax_percent})"
            )
        return self


class OrderSyncConfig(BaseModel):
    """Root server configuration."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize the log level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "OrderSyncConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        _apply_env_overrides(data)
        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "OrderSyncConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        data: dict[str, Any] = {}
        _apply_env_overrides(data)
        return cls.model_validate(data)


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Apply environment variable overrides onto raw config data in place."""
    if ws_port := os.getenv("WS_PORT"):
        data.setdefault("transport", {}).setdefault("websocket", {})["port"] = int(ws_port)

    # PORT is honoured as an alias for the HTTP port
    if http_port := os.getenv("HTTP_PORT") or os.getenv("PORT"):
        data.setdefault("http", {})["port"] = int(http_port)

    if log_level := os.getenv("LOG_LEVEL"):
        data["log_level"] = log_level

    if timeout := os.getenv("SESSION_TIMEOUT_SECONDS"):
        data.setdefault("session", {})["timeout_seconds"] = int(timeout)

    if interval := os.getenv("SWEEP_INTERVAL_SECONDS"):
        data.setdefault("session", {})["sweep_interval_seconds"] = int(interval)
