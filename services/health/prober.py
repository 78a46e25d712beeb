"""
Health Prober - synthetic calls that tell whether a credential works.

Two granularities:
- Minimal boolean probes (image model, video model) used by auto-repair
  before a pool key is claimed
- A full diagnostic across text, image and video that reports
  operational / degraded / error per service

Probes never raise. Every failure is logged at debug level and turned into
False or an error result.
"""

import asyncio
import base64
import logging
from enum import Enum
from typing import Any, Callable, Optional, Union

from google.genai import types
from pydantic import BaseModel

from core.config import Config, get_config
from core.errors import ErrorCategory, classify, short_error_message
from services.credentials import AuthTokenSet, Credential
from services.transport import GenAIClient, VeoClient

logger = logging.getLogger(__name__)

# 1x1 transparent PNG used as the synthetic image payload
TINY_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

TEXT_SERVICE = "Text Generation"
IMAGE_SERVICE = "Image Generation/Editing"
VIDEO_SERVICE = "VEO 3.1 Generation"


class ServiceClass(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class HealthStatus(str, Enum):
    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    ERROR = "error"


class HealthCheckResult(BaseModel):
    """Outcome of one diagnostic probe; produced fresh, never cached."""
    service: str
    model: str
    status: HealthStatus
    message: str
    details: Optional[str] = None
    category: Optional[ErrorCategory] = None
    code: Optional[str] = None


class MinimalHealth(BaseModel):
    image: bool
    video: bool


class KeyCheckResult(BaseModel):
    success: bool
    message: str


def _secret(credential: Union[Credential, str, None]) -> Optional[str]:
    if isinstance(credential, Credential):
        return credential.secret
    return credential or None


def _error_result(service: str, model: str, error: Any, details: Optional[str] = None) -> HealthCheckResult:
    classified = classify(error)
    return HealthCheckResult(
        service=service,
        model=model,
        status=HealthStatus.ERROR,
        message=short_error_message(error),
        details=details,
        category=classified.category,
        code=classified.code,
    )


class HealthProber:
    """
    Usage:
        prober = HealthProber()

        if await prober.probe(candidate, ServiceClass.IMAGE):
            ...

        results = await prober.run_api_health_check(api_key, pool.get_auth_tokens())
    """

    def __init__(
        self,
        client_factory: Callable[[str], GenAIClient] = GenAIClient,
        veo_client: Optional[VeoClient] = None,
        config: Optional[Config] = None,
    ):
        self.client_factory = client_factory
        self.config = config or get_config()
        self._veo_client = veo_client

    @property
    def veo_client(self) -> VeoClient:
        if self._veo_client is None:
            self._veo_client = VeoClient()
        return self._veo_client

    def _image_probe_contents(self) -> list:
        return [
            types.Part.from_bytes(
                data=base64.b64decode(TINY_PNG_BASE64),
                mime_type="image/png",
            ),
            types.Part.from_text(text="test"),
        ]

    async def _image_call(self, api_key: str, modalities: list[str]):
        client = self.client_factory(api_key)
        return await client.generate_content(
            model=self.config.models.image_edit,
            contents=self._image_probe_contents(),
            config=types.GenerateContentConfig(response_modalities=modalities),
            service="image",
        )

    async def _text_call(self, api_key: str):
        client = self.client_factory(api_key)
        return await client.generate_content(
            model=self.config.models.text,
            contents="test",
            config=types.GenerateContentConfig(
                max_output_tokens=2,
                thinking_config=types.ThinkingConfig(thinking_budget=1),
            ),
        )

    async def _video_call(self, api_key: str) -> bool:
        client = self.client_factory(api_key)
        operation = await client.generate_videos(
            model=self.config.models.video_probe,
            prompt="test",
        )
        # An operation that comes back already carrying an error is a failure
        return getattr(operation, "error", None) is None

    # ============================================================
    # Minimal probes
    # ============================================================

    async def probe(self, credential: Union[Credential, str, None], service: ServiceClass) -> bool:
        """True if one minimal call for the service class succeeds."""
        api_key = _secret(credential)
        if not api_key:
            return False

        try:
            if service == ServiceClass.IMAGE:
                await self._image_call(api_key, ["TEXT"])
                return True
            if service == ServiceClass.VIDEO:
                return await self._video_call(api_key)
            await self._text_call(api_key)
            return True
        except Exception as e:
            logger.debug(f"{service.value} probe failed for key ...{api_key[-4:]}: {e}")
            return False

    async def is_image_model_healthy(self, api_key: Optional[str]) -> bool:
        return await self.probe(api_key, ServiceClass.IMAGE)

    async def run_minimal_health_check(self, api_key: Optional[str]) -> MinimalHealth:
        """Probe image and video concurrently for one key."""
        if not api_key:
            return MinimalHealth(image=False, video=False)

        image_ok, video_ok = await asyncio.gather(
            self.probe(api_key, ServiceClass.IMAGE),
            self.probe(api_key, ServiceClass.VIDEO),
        )
        return MinimalHealth(image=image_ok, video=video_ok)

    async def check_user_api_key(self, api_key: Optional[str]) -> KeyCheckResult:
        """Validate a user's key with one image-model call."""
        if not api_key:
            return KeyCheckResult(success=False, message="API Key is empty.")

        try:
            await self._image_call(api_key, ["TEXT"])
        except Exception as e:
            message = str(e).split("\n")[0] or "Unknown validation error."
            logger.debug(f"User API key check failed: {message}")
            return KeyCheckResult(success=False, message=message)
        return KeyCheckResult(success=True, message="API Key is valid.")

    # ============================================================
    # Full diagnostic
    # ============================================================

    async def run_api_health_check(
        self,
        api_key: Optional[str],
        auth_tokens: Optional[AuthTokenSet] = None,
    ) -> list[HealthCheckResult]:
        """Probe text, image and video services in turn."""
        models = self.config.models

        if not api_key:
            return [
                HealthCheckResult(
                    service="API Key",
                    model="-",
                    status=HealthStatus.ERROR,
                    message="An API Key is required for a health check.",
                    category=ErrorCategory.AUTH_INVALID,
                )
            ]

        results = []

        try:
            await self._text_call(api_key)
            results.append(HealthCheckResult(
                service=TEXT_SERVICE, model=models.text,
                status=HealthStatus.OPERATIONAL, message="OK",
            ))
        except Exception as e:
            results.append(_error_result(TEXT_SERVICE, models.text, e))

        try:
            await self._image_call(api_key, ["IMAGE", "TEXT"])
            results.append(HealthCheckResult(
                service=IMAGE_SERVICE, model=models.image_edit,
                status=HealthStatus.OPERATIONAL, message="OK",
            ))
        except Exception as e:
            results.append(_error_result(IMAGE_SERVICE, models.image_edit, e))

        results.append(await self._check_video(auth_tokens or AuthTokenSet()))

        operational = sum(1 for r in results if r.status == HealthStatus.OPERATIONAL)
        logger.info(f"Health check finished: {operational}/{len(results)} services operational")
        return results

    async def _check_video(self, auth_tokens: AuthTokenSet) -> HealthCheckResult:
        video_model = self.config.models.video_default

        # A missing token is a configuration gap, not an outage
        if not auth_tokens:
            return HealthCheckResult(
                service=VIDEO_SERVICE,
                model=video_model,
                status=HealthStatus.DEGRADED,
                message="Health check skipped. Auth Token not found.",
            )

        last_error: Any = None
        for index, auth_token in enumerate(auth_tokens, start=1):
            try:
                operations = await self.veo_client.generate_video(
                    prompt="test",
                    auth_token=auth_token.token,
                    aspect_ratio="landscape",
                    use_standard_model="fast" not in video_model,
                )
                first_error = operations[0].get("error") if operations else None
                if not operations or first_error:
                    message = None
                    if isinstance(first_error, dict):
                        message = first_error.get("message")
                    raise RuntimeError(message or "Initial request failed without specific error.")
            except Exception as e:
                logger.debug(f"Video health check failed with token #{index}: {e}")
                last_error = e
                continue

            return HealthCheckResult(
                service=VIDEO_SERVICE,
                model=video_model,
                status=HealthStatus.OPERATIONAL,
                message="Initial request successful.",
                details=f"(Using token #{index})",
            )

        return _error_result(
            VIDEO_SERVICE, video_model, last_error,
            details="(All available tokens failed)",
        )
