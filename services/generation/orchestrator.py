"""
Generation Orchestrator - the single call surface for text, image, speech
and video generation.

Every call:
- reads the active credential from the session at call time
- appends one success or error record to the activity log
- routes failures through the ErrorBoundary (auto-repair for credential
  failures, remediation suggestions for everything else)
- notifies the webhook / usage collaborators on success
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from google.genai import types
from langfuse import observe

from core.config import Config, get_config
from core.errors import ApiKeyMissingError, ErrorCategory, RemoteServiceError, VideoGenerationCancelled
from core.events import EventChannel, EventTopic
from services.credentials import CredentialPool
from services.transport import (
    ChatSession,
    GenAIClient,
    MediaInput,
    VeoClient,
    blocked_categories,
    create_wav_bytes,
    extract_inline_data,
    extract_text,
    response_parts,
    usage_token_count,
)

from .activity_log import ActivityLog, ActivityRecorder, InMemoryActivityLog
from .error_boundary import ErrorBoundary
from .notifications import HistoryStore, ResultType, UsageTracker, WebhookNotifier
from .video_job import GenerationJob, VideoJobRunner, VideoJobState

logger = logging.getLogger(__name__)


@dataclass
class ComposeResult:
    text: Optional[str] = None
    image: Optional[bytes] = None


@dataclass
class VideoGenerationResult:
    """
    A finished video job.

    video_url streams through the proxy right away; artifact_task resolves
    to the downloaded bytes (or None) once background materialization ends.
    """
    video_url: str
    thumbnail_url: Optional[str]
    job: GenerationJob
    artifact_task: Optional[asyncio.Task] = None


class GenerationOrchestrator:
    """
    Usage:
        orchestrator = GenerationOrchestrator(pool, events, activity_log=log)

        text = await orchestrator.generate_text("Summarize this")
        images = await orchestrator.generate_images("A red fox", negative_prompt="blurry")
        result = await orchestrator.generate_video("A lighthouse at dusk", aspect_ratio="9:16")
    """

    def __init__(
        self,
        pool: CredentialPool,
        events: EventChannel,
        activity_log: Optional[ActivityLog] = None,
        webhook: Optional[WebhookNotifier] = None,
        history: Optional[HistoryStore] = None,
        usage: Optional[UsageTracker] = None,
        veo_client: Optional[VeoClient] = None,
        client_factory: Callable[[str], GenAIClient] = GenAIClient,
        config: Optional[Config] = None,
    ):
        self.config = config or get_config()
        self.pool = pool
        self.session = pool.session
        self.events = events
        self.client_factory = client_factory

        self.recorder = ActivityRecorder(activity_log or InMemoryActivityLog(), self.session, self.config)
        self.boundary = ErrorBoundary(events)
        self.webhook = webhook or WebhookNotifier()
        self.history = history
        self.usage = usage
        self.veo_client = veo_client or VeoClient()
        self.video_runner = VideoJobRunner(self.veo_client, self.recorder, self.config)

        self._background: set[asyncio.Task] = set()

    # ============================================================
    # Credentials
    # ============================================================

    def _client(self) -> GenAIClient:
        credential = self.pool.get_active()
        if credential is None:
            raise ApiKeyMissingError()
        return self.client_factory(credential.secret)

    async def _image_client(self, model: str) -> GenAIClient:
        """
        Client for image calls.

        Non-trial users under the lifetime image threshold are served by the
        shared master key when one is configured and reachable.
        """
        user = self.session.user
        threshold = self.config.usage.shared_master_image_threshold
        if user is not None and not user.is_trial and user.total_image < threshold:
            try:
                master = await self.pool.get_shared_master()
            except Exception as e:
                logger.warning(f"Shared key lookup failed, using the active key: {e}")
                master = None
            if master is not None:
                await self.recorder.success(
                    model,
                    f"System: Using shared API key for user with low image count ({user.total_image}).",
                    "Internal action",
                )
                return self.client_factory(master.secret)
        return self._client()

    async def _increment_usage(self, result_type: ResultType):
        user = self.session.user
        if user is None or self.usage is None:
            return
        try:
            if result_type == ResultType.VIDEO:
                updated = await self.usage.increment_video_usage(user.id)
            else:
                updated = await self.usage.increment_image_usage(user.id)
        except Exception as e:
            logger.warning(f"Usage increment ({result_type.value}) failed for {user.id}: {e}")
            return
        if updated is not None:
            self.events.publish(EventTopic.USER_USAGE_UPDATED, updated)

    # ============================================================
    # Text
    # ============================================================

    async def create_chat_session(self, system_instruction: str) -> ChatSession:
        """Chat bound to the key that is active right now."""
        return self._client().create_chat(self.config.models.text, system_instruction)

    async def stream_chat_response(self, chat: ChatSession, prompt: str) -> AsyncIterator[str]:
        model = f"{chat.model} (stream)"
        try:
            stream = await chat.send_message_stream(prompt)
        except Exception as e:
            await self.recorder.failure(model, prompt, e)
            self.boundary.raise_for(e)
        await self.recorder.success(model, prompt, "Streaming response started...")
        return stream

    async def _generate_text_response(
        self,
        prompt: str,
        config: types.GenerateContentConfig,
        contents=None,
        log_prompt: Optional[str] = None,
    ) -> types.GenerateContentResponse:
        model = self.config.models.text
        log_prompt = log_prompt or prompt
        try:
            response = await self._client().generate_content(
                model=model,
                contents=contents if contents is not None else prompt,
                config=config,
            )
        except Exception as e:
            await self.recorder.failure(model, log_prompt, e)
            self.boundary.raise_for(e)

        text = extract_text(response)
        await self.recorder.success(model, log_prompt, text, usage_token_count(response))
        self.webhook.notify(ResultType.TEXT, prompt, text)
        return response

    @observe(name="generate_text")
    async def generate_text(self, prompt: str) -> str:
        response = await self._generate_text_response(
            prompt,
            types.GenerateContentConfig(thinking_config=types.ThinkingConfig(thinking_budget=0)),
        )
        return extract_text(response)

    @observe(name="generate_content_with_google_search")
    async def generate_content_with_google_search(self, prompt: str) -> types.GenerateContentResponse:
        """Grounded answer; the full response is returned for its grounding metadata."""
        return await self._generate_text_response(
            prompt,
            types.GenerateContentConfig(
                tools=[types.Tool(google_search=types.GoogleSearch())],
                thinking_config=types.ThinkingConfig(thinking_budget=0),
            ),
        )

    @observe(name="generate_multimodal_content")
    async def generate_multimodal_content(self, prompt: str, images: list[MediaInput]) -> str:
        response = await self._generate_text_response(
            prompt,
            types.GenerateContentConfig(thinking_config=types.ThinkingConfig(thinking_budget=0)),
            contents=[*(image.to_part() for image in images), types.Part.from_text(text=prompt)],
            log_prompt=f"{prompt} [{len(images)} image(s)]",
        )
        return extract_text(response)

    # ============================================================
    # Image
    # ============================================================

    @observe(name="generate_images")
    async def generate_images(self, prompt: str, negative_prompt: Optional[str] = None) -> list[bytes]:
        model = self.config.models.image_generation
        full_prompt = prompt
        if negative_prompt:
            full_prompt += f"\n\nNegative prompt (things to avoid in the image): {negative_prompt}"

        try:
            client = await self._image_client(model)
            response = await client.generate_content(
                model=model,
                contents=full_prompt,
                config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
                service="image",
            )
            images = extract_inline_data(response)
            if not images:
                blocked = blocked_categories(response)
                if blocked:
                    message = (
                        "The AI did not return an image. Your prompt may have been blocked by "
                        f"safety filters for these categories: {', '.join(blocked)}. "
                        "Please try a different prompt."
                    )
                else:
                    message = (
                        "The AI did not return an image. This could be due to a safety block "
                        "or an issue with the prompt. Please try again with a different prompt."
                    )
                raise RemoteServiceError(
                    message, code="400", category=ErrorCategory.BAD_REQUEST, service="image"
                )
        except Exception as e:
            await self.recorder.failure(model, full_prompt, e)
            self.boundary.raise_for(e)

        await self.recorder.success(
            model, full_prompt, f"{len(images)} image(s) generated.", usage_token_count(response)
        )
        await self._increment_usage(ResultType.IMAGE)
        for image in images:
            self.webhook.notify(ResultType.IMAGE, full_prompt, image, "image/png")
        return images

    @observe(name="compose_image")
    async def compose_image(self, prompt: str, images: list[MediaInput]) -> ComposeResult:
        """Edit or combine source images following a text instruction."""
        model = self.config.models.image_edit
        log_prompt = f"{prompt} [{len(images)} image(s)]"

        try:
            client = await self._image_client(model)
            response = await client.generate_content(
                model=model,
                contents=[*(image.to_part() for image in images), types.Part.from_text(text=prompt)],
                config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
                service="image",
            )
        except Exception as e:
            await self.recorder.failure(model, log_prompt, e)
            self.boundary.raise_for(e)

        result = ComposeResult()
        for part in response_parts(response, first_candidate_only=True):
            if getattr(part, "text", None):
                result.text = part.text
            elif getattr(part, "inline_data", None) is not None and part.inline_data.data:
                result.image = part.inline_data.data

        if result.image:
            output = "1 image generated."
        else:
            output = result.text or "No output."
        await self.recorder.success(model, log_prompt, output, usage_token_count(response))

        if result.image:
            self.webhook.notify(ResultType.IMAGE, log_prompt, result.image, "image/png")
            await self._increment_usage(ResultType.IMAGE)
        if result.text:
            self.webhook.notify(ResultType.TEXT, log_prompt, result.text)
        return result

    # ============================================================
    # Speech
    # ============================================================

    @observe(name="generate_voice_over")
    async def generate_voice_over(
        self,
        script: str,
        voice_name: str,
        instruction: str = "",
    ) -> bytes:
        """
        Synthesize speech and return it as WAV bytes.

        Args:
            script: Text to speak
            voice_name: Prebuilt voice name (e.g. "Kore")
            instruction: Optional delivery prefix, e.g. "Say cheerfully: "

        Returns:
            A complete WAV file
        """
        model = self.config.models.speech
        audio = self.config.audio
        log_prompt = f"Voice: {voice_name}, Script: {script[:100]}..."

        try:
            response = await self._client().generate_content(
                model=model,
                contents=f"{instruction}{script}",
                config=types.GenerateContentConfig(
                    response_modalities=["AUDIO"],
                    speech_config=types.SpeechConfig(
                        voice_config=types.VoiceConfig(
                            prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_name),
                        ),
                    ),
                ),
                service="audio",
            )
            payloads = extract_inline_data(response, first_candidate_only=True)
            if not payloads:
                raise RemoteServiceError("No audio data received from API.", service="audio")
        except Exception as e:
            await self.recorder.failure(model, log_prompt, e)
            self.boundary.raise_for(e)

        wav = create_wav_bytes(payloads[0], audio.sample_rate, audio.channels, audio.bits_per_sample)
        await self.recorder.success(model, log_prompt, "1 audio file generated.")
        self.webhook.notify(ResultType.AUDIO, log_prompt, wav, "audio/wav")
        return wav

    # ============================================================
    # Video
    # ============================================================

    @observe(name="generate_video")
    async def generate_video(
        self,
        prompt: str,
        model: Optional[str] = None,
        aspect_ratio: str = "16:9",
        negative_prompt: str = "",
        image: Optional[MediaInput] = None,
        history_prompt: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> VideoGenerationResult:
        """
        Run a video job across the session's auth tokens.

        Returns as soon as an output URL is known; the artifact is downloaded
        and handed to history, webhook and usage bookkeeping in the
        background.
        """
        job = GenerationJob(
            prompt=prompt,
            model=model or self.config.models.video_default,
            aspect_ratio=aspect_ratio,
            negative_prompt=negative_prompt,
            image=image,
        )

        try:
            await self.video_runner.run(job, self.pool.get_auth_tokens(), cancel_event)
        except VideoGenerationCancelled:
            raise
        except Exception as e:
            # Token failures were already recorded by the runner
            if job.state == VideoJobState.NO_TOKEN:
                await self.recorder.failure(job.model, prompt, e)
            self.boundary.raise_for(e)

        download_url = self.veo_client.download_url(job.result_url)
        task = asyncio.get_running_loop().create_task(
            self._materialize_video(job, download_url, history_prompt or f"Video: {prompt}", cancel_event)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        return VideoGenerationResult(
            video_url=download_url,
            thumbnail_url=job.thumbnail_url,
            job=job,
            artifact_task=task,
        )

    async def _materialize_video(
        self,
        job: GenerationJob,
        download_url: str,
        final_prompt: str,
        cancel_event: Optional[asyncio.Event],
    ) -> Optional[bytes]:
        try:
            data = await self.veo_client.download_video(download_url)
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Video job cancelled before its artifact was stored")
                return None

            await self.recorder.success(job.model, final_prompt, "1 video generated successfully (streamed).")
            self.webhook.notify(ResultType.VIDEO, final_prompt, data, "video/mp4")
            if self.history is not None:
                await self.history.add_item(ResultType.VIDEO, final_prompt, data)
            await self._increment_usage(ResultType.VIDEO)
            return data
        except Exception as e:
            logger.error(f"Error saving streamed video to history: {e}")
            return None

    # ============================================================
    # Lifecycle
    # ============================================================

    async def drain(self):
        """Wait for background materialization and webhook deliveries."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.webhook.drain()

    async def close(self):
        await self.drain()
        await self.webhook.close()
        await self.veo_client.close()
