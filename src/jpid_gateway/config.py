"""
jpid Gateway Configuration
==========================

This module handles configuration loading for the gateway.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    JPID_CONFIG_PATH        -> path of the YAML file to load
    JPID_UPSTREAM_PREFIX    -> upstream.api_prefix
    JPID_CONNECT_TIMEOUT    -> upstream.connect_timeout_seconds
    JPID_REQUEST_TIMEOUT    -> upstream.request_timeout_seconds
    JPID_RELAY_QUEUE_SIZE   -> relay.queue_size
    JPID_DISCONNECT_POLL    -> relay.disconnect_poll_seconds
    JPID_SUPERSEDE_STREAMS  -> relay.supersede_existing
    JPID_REGISTRY_PATH      -> registry.path
    JPID_UNIQUE_URLS        -> registry.enforce_unique_urls
    JPID_GATEWAY_PORT       -> server.port
    JPID_LOG_LEVEL          -> logging.level
    JPID_LOG_FORMAT         -> logging.format
    PORT                    -> server.port (container platforms)

Example:
    from jpid_gateway.config import settings

    print(settings.upstream.api_prefix)
    print(settings.relay.queue_size)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class GatewayConfig(BaseModel):
    """Gateway identification configuration."""

    name: str = Field(default="jpid-gateway", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")


class UpstreamConfig(BaseModel):
    """Job-server connection configuration."""

    api_prefix: str = Field(
        default="/jpid",
        description="Path prefix of the upstream API ('' for bare routes)",
    )
    connect_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for establishing upstream connections",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Read timeout for direct (non-streaming) calls",
    )
    max_connections: int = Field(
        default=256,
        ge=1,
        description="Connection pool size for streams, shared by all upstreams",
    )
    max_direct_connections: int = Field(
        default=64,
        ge=1,
        description="Separate pool size for direct (non-streaming) calls",
    )


class RelayConfig(BaseModel):
    """Streaming relay configuration."""

    queue_size: int = Field(
        default=8,
        ge=1,
        description="Frames held between upstream reader and downstream writer",
    )
    disconnect_poll_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Client disconnect polling interval (0 = rely on the ASGI server)",
    )
    supersede_existing: bool = Field(
        default=False,
        description="Cancel an active stream when the same process is started again",
    )


class SeedServer(BaseModel):
    """Registry entry declared in the config file."""

    id: Optional[str] = None
    url: str
    description: str = ""


class RegistryConfig(BaseModel):
    """Server registry configuration."""

    path: Optional[str] = Field(
        default=None,
        description="JSON file used to persist the registry (None = memory only)",
    )
    enforce_unique_urls: bool = Field(
        default=True,
        description="Reject a server whose URL is already registered",
    )
    servers: List[SeedServer] = Field(
        default_factory=list,
        description="Servers registered at startup",
    )


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the jpid gateway.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, uses JPID_CONFIG_PATH
            or searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        config_path = os.environ.get("JPID_CONFIG_PATH")

    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found, using defaults and environment variables")

    # Apply environment variable overrides
    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Upstream settings
    if (env_prefix := os.environ.get("JPID_UPSTREAM_PREFIX")) is not None:
        config_data.setdefault("upstream", {})["api_prefix"] = env_prefix
    if env_connect := os.environ.get("JPID_CONNECT_TIMEOUT"):
        config_data.setdefault("upstream", {})["connect_timeout_seconds"] = float(env_connect)
    if env_request := os.environ.get("JPID_REQUEST_TIMEOUT"):
        config_data.setdefault("upstream", {})["request_timeout_seconds"] = float(env_request)

    # Relay settings
    if env_queue := os.environ.get("JPID_RELAY_QUEUE_SIZE"):
        config_data.setdefault("relay", {})["queue_size"] = int(env_queue)
    if env_poll := os.environ.get("JPID_DISCONNECT_POLL"):
        config_data.setdefault("relay", {})["disconnect_poll_seconds"] = float(env_poll)
    if env_supersede := os.environ.get("JPID_SUPERSEDE_STREAMS"):
        config_data.setdefault("relay", {})["supersede_existing"] = _env_flag(env_supersede)

    # Registry settings
    if env_registry := os.environ.get("JPID_REGISTRY_PATH"):
        config_data.setdefault("registry", {})["path"] = env_registry
    if env_unique := os.environ.get("JPID_UNIQUE_URLS"):
        config_data.setdefault("registry", {})["enforce_unique_urls"] = _env_flag(env_unique)

    # Server settings (container platforms use PORT)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("JPID_GATEWAY_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("JPID_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log
    if env_format := os.environ.get("JPID_LOG_FORMAT"):
        config_data.setdefault("logging", {})["format"] = env_format


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
