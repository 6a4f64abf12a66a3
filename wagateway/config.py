"""
Configuration for the WhatsApp gateway.

Supports loading configuration from:
- YAML/JSON files
- Environment variables
- Command line arguments (see wagateway.main)
"""

import os
import re
import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
from pathlib import Path
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

INSTANCE_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9._-]*$')
HOSTNAME_PATTERN = re.compile(
    r'^[a-zA-Z0-9_]([a-zA-Z0-9_\-]{0,61}[a-zA-Z0-9_])?(\.[a-zA-Z0-9_]([a-zA-Z0-9_\-]{0,61}[a-zA-Z0-9_])?)*$'
)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_origins(value: str) -> List[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def validate_url(url: str, schemes=("http", "https")) -> str:
    """
    Validate the shape of an absolute URL.

    Only the scheme and hostname are checked; reachability is not.

    Args:
        url: URL to validate
        schemes: Allowed URL schemes

    Returns:
        The stripped URL

    Raises:
        ValueError: If the URL is malformed or uses another scheme
    """
    if not url or not isinstance(url, str):
        raise ValueError("URL must be a non-empty string")

    url = url.strip()
    if not url:
        raise ValueError("URL cannot be empty")

    try:
        parsed = urlparse(url)
    except Exception as e:
        raise ValueError(f"Invalid URL format: {str(e)}")

    if parsed.scheme.lower() not in schemes:
        raise ValueError(
            f"URL scheme '{parsed.scheme}' is not allowed. "
            f"Expected one of: {', '.join(schemes)}"
        )

    if not parsed.netloc:
        raise ValueError("URL must include a hostname")

    hostname = parsed.hostname or ""
    if not hostname:
        raise ValueError("URL must include a hostname")

    # IPv6 literals are accepted as-is; underscores are allowed for container service names
    if ":" not in hostname and not HOSTNAME_PATTERN.match(hostname):
        raise ValueError(f"Invalid hostname format: '{hostname}'")

    return url


@dataclass
class GatewayConfig:
    """
    Gateway configuration.

    Configuration priority (highest to lowest):
    1. Command line arguments
    2. Environment variables
    3. Configuration file (gateway.json or gateway.yaml)
    4. Default values

    Environment variables:
        INSTANCE_NAME: Name of the single managed instance
        WEBHOOK_URL: Destination for inbound message notifications
        AUTHENTICATION_API_KEY: Shared secret for the REST API
        SERVER_URL: Public URL of this service (sent in webhook payloads)
        HOST, PORT: Listen address
        BRIDGE_URL: WebSocket URL of the WhatsApp bridge
        BRIDGE_API_KEY: Key sent to the bridge
        AUTH_DIR: Directory holding the session credentials
        RECONNECT_DELAY: Seconds before reconnecting after a closure
        CONNECT_ERROR_DELAY: Seconds before retrying a failed connect
        WEBHOOK_TIMEOUT: Timeout for webhook deliveries
        SEND_TIMEOUT: Timeout waiting for a send acknowledgement
        PRINT_QR_IN_TERMINAL: Log pairing QR codes as ASCII art
        CORS_ALLOWED_ORIGINS: Comma-separated list of allowed origins
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    """

    # Instance identity
    instance_name: str = "kore"
    auth_key: Optional[str] = None
    server_url: Optional[str] = None

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8080
    cors_allowed_origins: List[str] = field(default_factory=list)

    # Webhook relay
    webhook_url: Optional[str] = None
    webhook_timeout: float = 10.0

    # Bridge session
    bridge_url: str = "ws://127.0.0.1:3001/session"
    bridge_api_key: Optional[str] = None
    auth_dir: str = "./auth_info"
    connection_timeout: float = 30.0
    send_timeout: float = 60.0
    print_qr_in_terminal: bool = True

    # Reconnect policy
    reconnect_delay: float = 3.0
    connect_error_delay: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def from_file(cls, path: str) -> "GatewayConfig":
        """Load configuration from a file."""
        file_path = Path(path)

        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(file_path, "r") as f:
            if file_path.suffix in [".yaml", ".yml"]:
                import yaml

                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GatewayConfig":
        """Create configuration from a dictionary."""
        if not isinstance(data, dict):
            raise TypeError(f"Expected dict, got {type(data).__name__}")

        config = cls()

        # Field name -> expected type(s) for validation
        _FIELD_TYPES: Dict[str, type] = {
            "instance_name": str,
            "auth_key": str,
            "server_url": str,
            "host": str,
            "port": int,
            "cors_allowed_origins": list,
            "webhook_url": str,
            "webhook_timeout": (int, float),
            "bridge_url": str,
            "bridge_api_key": str,
            "auth_dir": str,
            "connection_timeout": (int, float),
            "send_timeout": (int, float),
            "print_qr_in_terminal": bool,
            "reconnect_delay": (int, float),
            "connect_error_delay": (int, float),
            "log_level": str,
            "log_format": str,
        }

        for field_name, expected_type in _FIELD_TYPES.items():
            if field_name in data:
                value = data[field_name]
                if value is not None and not isinstance(value, expected_type):
                    raise TypeError(
                        f"Config field '{field_name}' expected {expected_type}, "
                        f"got {type(value).__name__}"
                    )
                setattr(config, field_name, value)

        return config

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Create configuration from environment variables."""
        config = cls()

        env_mapping = {
            "INSTANCE_NAME": "instance_name",
            "AUTHENTICATION_API_KEY": "auth_key",
            "SERVER_URL": "server_url",
            "HOST": "host",
            "PORT": ("port", int),
            "CORS_ALLOWED_ORIGINS": ("cors_allowed_origins", _parse_origins),
            "WEBHOOK_URL": "webhook_url",
            "WEBHOOK_TIMEOUT": ("webhook_timeout", float),
            "BRIDGE_URL": "bridge_url",
            "BRIDGE_API_KEY": "bridge_api_key",
            "AUTH_DIR": "auth_dir",
            "CONNECTION_TIMEOUT": ("connection_timeout", float),
            "SEND_TIMEOUT": ("send_timeout", float),
            "PRINT_QR_IN_TERMINAL": ("print_qr_in_terminal", _parse_bool),
            "RECONNECT_DELAY": ("reconnect_delay", float),
            "CONNECT_ERROR_DELAY": ("connect_error_delay", float),
            "LOG_LEVEL": "log_level",
        }

        config._env_fields: set = set()
        for env_var, field_info in env_mapping.items():
            value = os.environ.get(env_var)
            if value:
                if isinstance(field_info, tuple):
                    field_name, converter = field_info
                    try:
                        setattr(config, field_name, converter(value))
                    except ValueError:
                        logger.warning(f"Ignoring invalid value for {env_var}: {value!r}")
                        continue
                else:
                    field_name = field_info
                    setattr(config, field_name, value)
                config._env_fields.add(field_name)

        return config

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "GatewayConfig":
        """
        Load configuration with proper precedence.

        1. Start with defaults
        2. Override with file config (if provided)
        3. Override with environment variables
        """
        config = cls()

        if config_path:
            config = cls.from_file(config_path)

        env_config = cls.from_env()

        # Merge environment overrides (only fields actually set via env vars)
        env_fields = getattr(env_config, "_env_fields", set())
        for field_name in env_fields:
            setattr(config, field_name, getattr(env_config, field_name))

        return config

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.instance_name:
            errors.append("instance_name is required")
        elif not INSTANCE_NAME_PATTERN.match(self.instance_name):
            errors.append(
                "instance_name must contain only alphanumeric characters, "
                "dots, hyphens, and underscores"
            )

        if not self.auth_key:
            errors.append("auth_key is required (AUTHENTICATION_API_KEY)")

        if not 0 < self.port < 65536:
            errors.append(f"port must be between 1 and 65535, got {self.port}")

        if self.webhook_url:
            try:
                validate_url(self.webhook_url)
            except ValueError as e:
                errors.append(f"webhook_url is invalid: {e}")

        if self.server_url:
            try:
                validate_url(self.server_url)
            except ValueError as e:
                errors.append(f"server_url is invalid: {e}")

        try:
            validate_url(self.bridge_url, schemes=("ws", "wss", "http", "https"))
        except ValueError as e:
            errors.append(f"bridge_url is invalid: {e}")

        for name in ("reconnect_delay", "connect_error_delay", "webhook_timeout",
                     "send_timeout", "connection_timeout"):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")

        return errors

    @property
    def public_url(self) -> str:
        """URL of this service as advertised to webhook receivers."""
        return self.server_url or f"http://localhost:{self.port}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (excluding sensitive data)."""
        return {
            "instance_name": self.instance_name,
            "server_url": self.server_url,
            "host": self.host,
            "port": self.port,
            "webhook_url": self.webhook_url,
            "webhook_timeout": self.webhook_timeout,
            "bridge_url": self.bridge_url,
            "auth_dir": self.auth_dir,
            "send_timeout": self.send_timeout,
            "reconnect_delay": self.reconnect_delay,
            "connect_error_delay": self.connect_error_delay,
            "log_level": self.log_level,
            "has_auth_key": bool(self.auth_key),
            "cors_origins_count": len(self.cors_allowed_origins),
        }
