"""
Error boundary for generation calls.

Logs the original failure, classifies it, requests an auto-repair for
credential failures and re-raises a user-facing error.
"""

import logging
from typing import Any, NoReturn

from core.errors import (
    CredentialRepairError,
    ErrorCategory,
    GenerationError,
    classify,
    suggestion_for,
)
from core.events import EventChannel, EventTopic

logger = logging.getLogger(__name__)

VEO_REPAIR_MESSAGE = (
    "Veo authorization failed. Attempting to refresh token automatically. "
    "Please try again in a moment."
)
API_KEY_REPAIR_MESSAGE = (
    "API Key is invalid or has expired. Attempting to claim a new key automatically. "
    "Please try again in a moment."
)


class ErrorBoundary:
    def __init__(self, events: EventChannel):
        self.events = events

    def raise_for(self, error: Any) -> NoReturn:
        """Translate a failure into CredentialRepairError or GenerationError."""
        logger.error(f"Original API error: {error}")
        classified = classify(error)
        cause = error if isinstance(error, BaseException) else None

        if classified.category == ErrorCategory.VEO_AUTH_FAILURE:
            logger.info("Video auth failure detected, requesting token refresh")
            self.events.publish(EventTopic.INITIATE_AUTO_VEO_KEY_CLAIM)
            raise CredentialRepairError(
                VEO_REPAIR_MESSAGE, classified.category, classified.code
            ) from cause

        if classified.category == ErrorCategory.AUTH_INVALID:
            logger.info("API key failure detected, requesting a replacement key")
            self.events.publish(EventTopic.INITIATE_AUTO_API_KEY_CLAIM)
            raise CredentialRepairError(
                API_KEY_REPAIR_MESSAGE, classified.category, classified.code
            ) from cause

        raise GenerationError(
            classified.message.split("\n")[0],
            category=classified.category,
            code=classified.code,
            suggestion=suggestion_for(classified),
        ) from cause
