"""
Health Service

Minimal per-key probes for auto-repair and the full text/image/video
diagnostic.
"""

from .prober import (
    TINY_PNG_BASE64,
    HealthCheckResult,
    HealthProber,
    HealthStatus,
    KeyCheckResult,
    MinimalHealth,
    ServiceClass,
)

__all__ = [
    "TINY_PNG_BASE64",
    "HealthCheckResult",
    "HealthProber",
    "HealthStatus",
    "KeyCheckResult",
    "MinimalHealth",
    "ServiceClass",
]
