"""
Orchestrator Core Components

Provides foundational infrastructure for the generation orchestrator:
- Configuration loaded from the environment
- Error taxonomy and classification
- In-process event channel
"""

from .config import Config, get_config
from .errors import (
    ClassifiedError,
    CredentialRepairError,
    ErrorCategory,
    GenerationError,
    RemoteServiceError,
    classify,
)
from .events import EventChannel, EventTopic

__all__ = [
    "Config",
    "get_config",
    "ClassifiedError",
    "CredentialRepairError",
    "ErrorCategory",
    "GenerationError",
    "RemoteServiceError",
    "classify",
    "EventChannel",
    "EventTopic",
]
