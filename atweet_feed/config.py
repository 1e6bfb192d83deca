"""Configuration module for the atweet feed service."""

import os
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from .logging_setup import get_logger

log = get_logger(__name__)

DEFAULT_PDS_URL = "https://bsky.social"
DEFAULT_JETSTREAM_ENDPOINT = "wss://jetstream2.us-east.bsky.network/subscribe"


class ConfigurationError(ValueError):
    """Raised when a configured value cannot be used."""


def sanitize_url(value: str, fallback: str = DEFAULT_PDS_URL) -> str:
    """Normalize a service URL, falling back to the default when unparseable."""
    parsed = urlparse(value.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        log.warning("invalid_service_url", value=value, fallback=fallback)
        return fallback
    return value.strip().rstrip("/")


def validate_endpoint(endpoint: str) -> str:
    """Return the Jetstream endpoint or raise ConfigurationError."""
    parsed = urlparse(endpoint)
    if parsed.scheme not in ("ws", "wss") or not parsed.netloc:
        raise ConfigurationError(f"Invalid Jetstream endpoint: {endpoint!r}")
    return endpoint


class Settings(BaseModel):
    """Application settings with environment variable support."""

    service_name: str = Field(default="atweet-feed")

    # Jetstream Configuration
    jetstream_enabled: bool = Field(default=True)
    jetstream_endpoint: str = Field(default=DEFAULT_JETSTREAM_ENDPOINT)
    jetstream_initial_cursor: Optional[int] = Field(default=None)
    jetstream_cursor_file: str = Field(default=".data/jetstream.cursor")
    cursor_flush_delay: float = Field(default=1.0)
    reconnect_delay: float = Field(default=5.0)
    max_reconnect_delay: float = Field(default=60.0)

    # Storage Configuration
    twit_repository_backend: str = Field(default="memory")
    twit_repository_file: str = Field(default=".data/twits.sqlite")
    max_buffer: int = Field(default=500)

    # PDS used by the publishing path
    atp_pds_url: str = Field(default=DEFAULT_PDS_URL)

    # HTTP Configuration
    http_host: str = Field(default="0.0.0.0")
    http_port: int = Field(default=8080)
    metrics_enabled: bool = Field(default=True)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    def __init__(self, **kwargs):
        # Load from environment variables
        env_values = {}

        env_mapping = {
            "SERVICE_NAME": "service_name",
            "JETSTREAM_ENABLED": "jetstream_enabled",
            "JETSTREAM_ENDPOINT": "jetstream_endpoint",
            "JETSTREAM_INITIAL_CURSOR": "jetstream_initial_cursor",
            "JETSTREAM_CURSOR_FILE": "jetstream_cursor_file",
            "CURSOR_FLUSH_DELAY": "cursor_flush_delay",
            "JETSTREAM_RECONNECT_DELAY": "reconnect_delay",
            "JETSTREAM_MAX_RECONNECT_DELAY": "max_reconnect_delay",
            "TWIT_REPOSITORY_BACKEND": "twit_repository_backend",
            "TWIT_REPOSITORY_FILE": "twit_repository_file",
            "TWIT_MAX_BUFFER": "max_buffer",
            "ATP_PDS_URL": "atp_pds_url",
            "HTTP_HOST": "http_host",
            "HTTP_PORT": "http_port",
            "METRICS_ENABLED": "metrics_enabled",
            "LOG_LEVEL": "log_level",
            "LOG_FORMAT": "log_format",
        }

        for env_var, field_name in env_mapping.items():
            if env_var not in os.environ:
                continue
            value = os.environ[env_var]

            # Convert types; unparseable numbers keep the default
            if field_name in ["jetstream_initial_cursor", "max_buffer", "http_port"]:
                try:
                    value = int(value)
                except ValueError:
                    continue
            elif field_name in ["cursor_flush_delay", "reconnect_delay", "max_reconnect_delay"]:
                try:
                    value = float(value)
                except ValueError:
                    continue
            elif field_name in ["jetstream_enabled", "metrics_enabled"]:
                value = value.lower() in ("true", "1", "yes", "on")

            env_values[field_name] = value

        # Merge kwargs with env values (kwargs take precedence)
        final_values = {**env_values, **kwargs}
        super().__init__(**final_values)
        self.atp_pds_url = sanitize_url(self.atp_pds_url)
