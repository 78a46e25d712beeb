"""
Video Job - submit / poll / resolve state machine with per-token fallback.

    NoToken
    ForEachToken:
        Submitting -> Uploading (reference image only) -> Polling
            -> Completed | TokenFailed
    AllTokensFailed | Completed

Tokens are tried strictly in order, never in parallel. Polling runs on a
fixed interval and is bounded by PollingConfig.max_poll_attempts.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from core.config import Config, get_config
from core.errors import (
    ErrorCategory,
    RemoteServiceError,
    VeoTokenRequiredError,
    VideoGenerationCancelled,
)
from services.credentials import AuthToken, AuthTokenSet
from services.transport import (
    CROPPABLE_ASPECT_RATIOS,
    MediaInput,
    VeoClient,
    aspect_ratio_class,
    crop_image_to_aspect_ratio,
)

from .activity_log import ActivityRecorder

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = (
    "MEDIA_GENERATION_STATUS_COMPLETED",
    "MEDIA_GENERATION_STATUS_SUCCESS",
    "MEDIA_GENERATION_STATUS_SUCCESSFUL",
)
FAILED_STATUS = "MEDIA_GENERATION_STATUS_FAILED"

NO_OUTPUT_MESSAGE = (
    "Video generation finished without an error, but no output was produced. "
    "This may happen if your request was blocked by safety policies. "
    "Please try modifying your prompt or using a different image."
)
SERVER_FAILED_MESSAGE = (
    "Video generation failed on the server. This often happens if your request "
    "was blocked by safety policies. Please try modifying your prompt or using "
    "a different image."
)


class VideoJobState(str, Enum):
    SUBMITTING = "submitting"
    UPLOADING = "uploading"
    POLLING = "polling"
    COMPLETED = "completed"
    TOKEN_FAILED = "token_failed"
    NO_TOKEN = "no_token"
    ALL_TOKENS_FAILED = "all_tokens_failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            VideoJobState.COMPLETED,
            VideoJobState.NO_TOKEN,
            VideoJobState.ALL_TOKENS_FAILED,
            VideoJobState.CANCELLED,
        )


@dataclass
class GenerationJob:
    """One video request, from submission to a terminal state."""
    prompt: str
    model: str
    aspect_ratio: str = "16:9"
    negative_prompt: str = ""
    image: Optional[MediaInput] = None

    state: VideoJobState = VideoJobState.SUBMITTING
    attempted_token_index: int = -1
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    last_error: Optional[BaseException] = None
    transitions: list[VideoJobState] = field(default_factory=list)


def _dig(data: Any, *path: Any) -> Any:
    for key in path:
        if isinstance(key, int):
            if not isinstance(data, list) or len(data) <= key:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[key] if isinstance(key, int) else data.get(key)
    return data


def is_operation_completed(operation: dict) -> bool:
    return operation.get("done") is True or operation.get("status") in COMPLETED_STATUSES


def extract_video_url(operation: dict) -> Optional[str]:
    """Output URL of a completed operation, wherever the service put it."""
    return (
        _dig(operation, "operation", "metadata", "video", "fifeUrl")
        or _dig(operation, "metadata", "video", "fifeUrl")
        or _dig(operation, "result", "generatedVideo", 0, "fifeUrl")
        or _dig(operation, "result", "generatedVideos", 0, "fifeUrl")
        or _dig(operation, "video", "fifeUrl")
        or operation.get("fifeUrl")
    )


def extract_thumbnail_url(operation: dict) -> Optional[str]:
    return (
        _dig(operation, "operation", "metadata", "video", "servingBaseUri")
        or _dig(operation, "metadata", "video", "servingBaseUri")
    )


class VideoJobRunner:
    """
    Drives a GenerationJob through the token list.

    Usage:
        runner = VideoJobRunner(veo_client, recorder)
        job = GenerationJob(prompt="A lighthouse at dusk", model="veo-3.1-fast-generate-001")
        await runner.run(job, pool.get_auth_tokens())
        print(job.result_url)
    """

    def __init__(
        self,
        veo_client: VeoClient,
        recorder: ActivityRecorder,
        config: Optional[Config] = None,
    ):
        self.veo_client = veo_client
        self.recorder = recorder
        self.config = config or get_config()

    def _transition(self, job: GenerationJob, state: VideoJobState):
        job.state = state
        job.transitions.append(state)
        logger.debug(f"Video job [{job.model}] -> {state.value}")

    async def run(
        self,
        job: GenerationJob,
        auth_tokens: AuthTokenSet,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GenerationJob:
        """
        Run the job to a terminal state.

        Returns the completed job. Raises VeoTokenRequiredError for an empty
        token set, VideoGenerationCancelled when cancelled, and otherwise the
        last token's error once every token has failed.
        """
        if not auth_tokens:
            self._transition(job, VideoJobState.NO_TOKEN)
            raise VeoTokenRequiredError()

        for index, auth_token in enumerate(auth_tokens):
            self._raise_if_cancelled(job, cancel_event)
            job.attempted_token_index = index
            number = index + 1

            await self.recorder.success(
                job.model,
                f"Attempting video generation with token #{number}",
                f"Using token ending in {auth_token.masked}",
            )

            try:
                url, thumbnail = await self._attempt(job, auth_token, cancel_event)
            except VideoGenerationCancelled:
                raise
            except Exception as e:
                job.last_error = e
                self._transition(job, VideoJobState.TOKEN_FAILED)
                logger.warning(f"Video token #{number} failed: {e}")
                await self.recorder.failure(
                    job.model, job.prompt, e, output=f"Token #{number} failed: {e}"
                )
                if index < len(auth_tokens) - 1:
                    await self.recorder.success(
                        job.model, "Retrying with next token...", "Fallback mechanism initiated."
                    )
                continue

            job.result_url = url
            job.thumbnail_url = thumbnail
            self._transition(job, VideoJobState.COMPLETED)
            await self.recorder.success(job.model, job.prompt, "Video ready for streaming.")
            logger.info(f"Video job completed with token #{number}")
            return job

        self._transition(job, VideoJobState.ALL_TOKENS_FAILED)
        await self.recorder.failure(
            job.model, job.prompt, job.last_error, output="All VEO auth tokens failed."
        )
        raise job.last_error

    def _raise_if_cancelled(self, job: GenerationJob, cancel_event: Optional[asyncio.Event]):
        if cancel_event is not None and cancel_event.is_set():
            self._transition(job, VideoJobState.CANCELLED)
            logger.info(f"Video job [{job.model}] cancelled")
            raise VideoGenerationCancelled("Video generation was cancelled.")

    def _prepare_image(self, job: GenerationJob) -> Optional[MediaInput]:
        image = job.image
        if image is None or job.aspect_ratio not in CROPPABLE_ASPECT_RATIOS:
            return image
        try:
            cropped = crop_image_to_aspect_ratio(image.data, job.aspect_ratio)
        except Exception as e:
            logger.warning(f"Image cropping failed, proceeding with original image: {e}")
            return image
        return MediaInput(data=cropped, mime_type=image.mime_type)

    async def _attempt(
        self,
        job: GenerationJob,
        auth_token: AuthToken,
        cancel_event: Optional[asyncio.Event],
    ) -> tuple[str, Optional[str]]:
        aspect_class = aspect_ratio_class(job.aspect_ratio)
        image = self._prepare_image(job)

        image_media_id = None
        if image is not None:
            self._transition(job, VideoJobState.UPLOADING)
            await self.recorder.success(job.model, "Uploading reference image...", "In progress...")
            image_media_id = await self.veo_client.upload_image(
                image.data, image.mime_type, aspect_class, auth_token.token
            )

        self._transition(job, VideoJobState.SUBMITTING)
        await self.recorder.success(job.model, job.prompt, "Starting video generation via proxy...")
        operations = await self.veo_client.generate_video(
            prompt=job.prompt,
            auth_token=auth_token.token,
            aspect_ratio=aspect_class,
            use_standard_model="fast" not in job.model,
            image_media_id=image_media_id,
            negative_prompt=job.negative_prompt or None,
        )
        if not operations:
            raise RemoteServiceError(
                "Video generation failed to start. The API did not return any operations.",
                service="video",
            )

        return await self._poll(job, operations, auth_token, cancel_event)

    async def _wait(self, cancel_event: Optional[asyncio.Event]):
        """Sleep one polling interval, waking early on cancellation."""
        interval = self.config.polling.interval_seconds
        if cancel_event is None or cancel_event.is_set():
            await asyncio.sleep(0 if cancel_event is not None else interval)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    async def _poll(
        self,
        job: GenerationJob,
        operations: list[dict],
        auth_token: AuthToken,
        cancel_event: Optional[asyncio.Event],
    ) -> tuple[str, Optional[str]]:
        polling = self.config.polling
        self._transition(job, VideoJobState.POLLING)
        consecutive_errors = 0

        for _ in range(polling.max_poll_attempts):
            await self._wait(cancel_event)
            self._raise_if_cancelled(job, cancel_event)

            await self.recorder.success(job.model, job.prompt, "Checking video status...")
            try:
                status = await self.veo_client.check_video_status(operations, auth_token.token)
            except RemoteServiceError as e:
                if e.category == ErrorCategory.NETWORK and consecutive_errors < polling.max_consecutive_errors:
                    consecutive_errors += 1
                    logger.warning(f"Status check failed ({consecutive_errors}), retrying: {e}")
                    continue
                raise
            consecutive_errors = 0

            current = (status or {}).get("operations") or []
            if not current:
                logger.warning("Empty status response, retrying...")
                continue

            operations = current
            operation = current[0]

            if is_operation_completed(operation):
                url = extract_video_url(operation)
                if not url:
                    logger.error(f"Operation finished but no video URL was returned: {operation}")
                    raise RemoteServiceError(NO_OUTPUT_MESSAGE, service="video")
                return url, extract_thumbnail_url(operation)

            error = operation.get("error")
            if error:
                detail = error
                if isinstance(error, dict):
                    detail = error.get("message") or error.get("code") or "Unknown error"
                raise RemoteServiceError(f"Video generation failed: {detail}", service="video")

            if operation.get("status") == FAILED_STATUS:
                logger.error(f"Video generation failed with status FAILED: {operation}")
                raise RemoteServiceError(SERVER_FAILED_MESSAGE, service="video")

        raise RemoteServiceError(
            f"Video generation did not finish after {polling.max_poll_attempts} status checks.",
            service="video",
        )
