"""
Configuration management for the generation orchestrator.

Centralizes all configuration including:
- Video proxy and webhook endpoints
- Model selections
- Video polling bounds
- Usage gating thresholds
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class APIConfig:
    """Remote endpoint configuration."""

    # Video proxy (submit / upload / status / download)
    veo_proxy_base: str = field(
        default_factory=lambda: os.getenv("VEO_PROXY_URL", "http://localhost:3001")
    )

    # Optional per-deployment webhook for generated results
    webhook_url: str = field(default_factory=lambda: os.getenv("WEBHOOK_URL", ""))

    request_timeout: float = field(
        default_factory=lambda: _env_float("HTTP_TIMEOUT_SECONDS", 120.0)
    )


@dataclass
class DatabaseConfig:
    """Database configuration for the credential source, activity log and usage tracker."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_min_size: int = 2
    pool_max_size: int = 10


@dataclass
class ModelConfig:
    """Model selection configuration."""

    text: str = "gemini-2.5-flash"
    image_generation: str = "gemini-2.5-flash-image"
    image_edit: str = "gemini-2.5-flash-image"
    speech: str = "gemini-2.5-flash-preview-tts"

    video_default: str = "veo-3.1-fast-generate-001"
    video_options: list[str] = field(default_factory=lambda: [
        "veo-3.1-fast-generate-001",  # Veo 3 (Fast)
        "veo-3.1-generate-001",       # Veo 3 (Standard)
    ])

    # Used only by the minimal per-key video probe
    video_probe: str = "veo-3.0-generate-001"


@dataclass
class PollingConfig:
    """Bounds for the asynchronous video job polling loop."""
    interval_seconds: float = field(
        default_factory=lambda: _env_float("VIDEO_POLL_INTERVAL", 10.0)
    )
    # 90 checks at 10s = 15 minutes
    max_poll_attempts: int = field(
        default_factory=lambda: _env_int("VIDEO_MAX_POLLS", 90)
    )
    max_consecutive_errors: int = 3


@dataclass
class RepairConfig:
    """Auto-repair coordinator settings."""
    # How long Success/Failed stays visible before the state returns to Idle
    status_display_seconds: float = 4.0


@dataclass
class UsageConfig:
    """Usage-based credential gating."""
    shared_master_image_threshold: int = 100


@dataclass
class AudioConfig:
    """Raw PCM format returned by the speech model."""
    sample_rate: int = 24000
    channels: int = 1
    bits_per_sample: int = 16


@dataclass
class Config:
    """Main configuration class."""

    api: APIConfig = field(default_factory=APIConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    repair: RepairConfig = field(default_factory=RepairConfig)
    usage: UsageConfig = field(default_factory=UsageConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)

    # Activity log output is truncated to this many characters
    activity_output_max_chars: int = 2000

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.database.url:
            issues.append("DATABASE_URL not configured (credential pool unavailable)")

        if not self.api.veo_proxy_base:
            issues.append("VEO_PROXY_URL not configured (video generation unavailable)")

        if self.polling.interval_seconds < 0:
            issues.append("VIDEO_POLL_INTERVAL must not be negative")

        if self.polling.max_poll_attempts < 1:
            issues.append("VIDEO_MAX_POLLS must be at least 1")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
