"""Configuration settings for the hookrelay agent.

All settings are loaded from environment variables (or a ``.env`` file) using
pydantic-settings. Variables are prefixed with ``HOOKRELAY_`` so they never
collide with the host application's own environment. The ``get_settings()``
function returns a cached singleton instance.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CAPTCHA_MARKERS = [
    "arkose",
    "arkoselabs",
    "funcaptcha",
    "hcaptcha",
    "recaptcha",
    "grecaptcha",
    "geetest",
    "turnstile",
    "captcha-delivery",
]


class Settings(BaseSettings):
    """Agent settings loaded from environment variables.

    Attributes:
        collector_host: Hostname of the out-of-process Collector.
        collector_port: TCP port the Collector listens on.
        relay_queue_size: Maximum events buffered in-process. When full the
            oldest event is dropped.
        relay_connect_timeout_seconds: Timeout for a single connect attempt.
        relay_send_timeout_seconds: Socket timeout while writing a frame.
        relay_backoff_initial_seconds: First reconnect delay.
        relay_backoff_max_seconds: Upper bound for the reconnect delay.
        relay_max_frame_bytes: Largest serialized event the relay will send.
        relay_flush_timeout_seconds: Time allowed for flushing on detach.
        correlation_window_seconds: How long an ``api_call`` waits for its
            response before the pending entry is pruned.
        correlation_max_pending: Hard cap on pending correlation entries.
        capture_max_bytes: Truncation limit for captured bodies and scripts
            (0 disables truncation).
        captcha_markers: Case-insensitive substrings that tag captured
            WebView content as CAPTCHA-related.
        include_builtin_targets: Load the bundled hook target catalog.
        hook_target_paths: Extra YAML hook target catalogs.
        log_level: Logging level for the ``hookrelay`` logger.
    """

    model_config = SettingsConfigDict(
        env_prefix="HOOKRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Collector
    collector_host: str = "127.0.0.1"
    collector_port: int = 27050

    # Relay
    relay_queue_size: int = Field(default=4096, ge=1)
    relay_connect_timeout_seconds: float = 3.0
    relay_send_timeout_seconds: float = 5.0
    relay_backoff_initial_seconds: float = 0.5
    relay_backoff_max_seconds: float = 30.0
    relay_max_frame_bytes: int = 16 * 1024 * 1024
    relay_flush_timeout_seconds: float = 2.0

    # Correlation
    correlation_window_seconds: float = 300.0
    correlation_max_pending: int = Field(default=10000, ge=1)

    # Capture
    capture_max_bytes: int = Field(default=0, ge=0)
    captcha_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_CAPTCHA_MARKERS))

    # Hook targets
    include_builtin_targets: bool = True
    hook_target_paths: list[Path] = Field(default_factory=list)

    # Logging
    log_level: str = "info"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Singleton Settings instance loaded from environment variables.
    """
    return Settings()
