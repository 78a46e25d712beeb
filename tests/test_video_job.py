"""
Video Job Tests

Covers:
1. Sequential per-token fallback
2. Polling outcomes (done, no output, server failure, ceiling)
3. Transient status errors and cancellation
4. Reference image cropping

Run with:
    python -m pytest tests/test_video_job.py -v
"""

import asyncio
import io
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from core.errors import (
    ErrorCategory,
    RemoteServiceError,
    VeoTokenRequiredError,
    VideoGenerationCancelled,
)
from services.credentials import AuthTokenSet
from services.generation import (
    ActivityRecorder,
    ActivityStatus,
    GenerationJob,
    InMemoryActivityLog,
    VideoJobRunner,
    VideoJobState,
    extract_video_url,
)
from services.generation.video_job import NO_OUTPUT_MESSAGE, SERVER_FAILED_MESSAGE

FAST_MODEL = "veo-3.1-fast-generate-001"
VIDEO_URL = "https://storage.example.com/video-1.mp4"

DONE_STATUS = {
    "operations": [{
        "status": "MEDIA_GENERATION_STATUS_SUCCESSFUL",
        "operation": {
            "metadata": {
                "video": {"fifeUrl": VIDEO_URL, "servingBaseUri": "https://storage.example.com/thumb-1.jpg"},
            },
        },
    }],
}
PENDING_STATUS = {"operations": [{"status": "MEDIA_GENERATION_STATUS_PENDING"}]}


def network_error() -> RemoteServiceError:
    return RemoteServiceError(
        "Failed to fetch /api/veo/status: ReadTimeout",
        code="NET",
        category=ErrorCategory.NETWORK,
        service="video",
    )


def png_bytes(width: int, height: int) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def veo():
    client = MagicMock()
    client.upload_image = AsyncMock(return_value="media-1")
    client.generate_video = AsyncMock(return_value=[{"operation": {"name": "op-1"}}])
    client.check_video_status = AsyncMock(return_value=DONE_STATUS)
    return client


@pytest.fixture
def activity():
    return InMemoryActivityLog()


@pytest.fixture
def runner(veo, activity, config):
    return VideoJobRunner(veo, ActivityRecorder(activity, config=config), config)


def make_tokens(count: int) -> AuthTokenSet:
    return AuthTokenSet.from_records([{"token": f"ya29.token-{i}-abcdef"} for i in range(1, count + 1)])


def make_job(**kwargs) -> GenerationJob:
    return GenerationJob(prompt="A lighthouse at dusk", model=kwargs.pop("model", FAST_MODEL), **kwargs)


class TestTokenFallback:

    @pytest.mark.asyncio
    async def test_third_token_succeeds(self, runner, veo, activity):
        veo.generate_video.side_effect = [
            RemoteServiceError("[401] Unauthorized", code="401", service="video"),
            RemoteServiceError("[401] Unauthorized", code="401", service="video"),
            [{"operation": {"name": "op-3"}}],
        ]
        job = make_job()

        await runner.run(job, make_tokens(3))

        assert job.state == VideoJobState.COMPLETED
        assert job.result_url == VIDEO_URL
        assert job.thumbnail_url == "https://storage.example.com/thumb-1.jpg"
        assert job.attempted_token_index == 2

        used = [call.kwargs["auth_token"] for call in veo.generate_video.call_args_list]
        assert used == ["ya29.token-1-abcdef", "ya29.token-2-abcdef", "ya29.token-3-abcdef"]

        token_failures = [r for r in activity.records if r.output.startswith("Token #")]
        assert len(token_failures) == 2
        assert all(r.status == ActivityStatus.ERROR for r in token_failures)

    @pytest.mark.asyncio
    async def test_all_tokens_fail_raises_last_error(self, runner, veo, activity):
        first = RemoteServiceError("[401] Unauthorized", code="401", service="video")
        last = RemoteServiceError("[403] Forbidden", code="403", service="video")
        veo.generate_video.side_effect = [first, last]
        job = make_job()

        with pytest.raises(RemoteServiceError) as exc_info:
            await runner.run(job, make_tokens(2))

        assert exc_info.value is last
        assert job.state == VideoJobState.ALL_TOKENS_FAILED
        assert activity.records[-1].output == "All VEO auth tokens failed."

    @pytest.mark.asyncio
    async def test_empty_token_set(self, runner, veo):
        job = make_job()

        with pytest.raises(VeoTokenRequiredError):
            await runner.run(job, AuthTokenSet())

        assert job.state == VideoJobState.NO_TOKEN
        veo.generate_video.assert_not_called()

    @pytest.mark.asyncio
    async def test_model_selects_fast_or_standard(self, runner, veo):
        await runner.run(make_job(), make_tokens(1))
        assert veo.generate_video.call_args.kwargs["use_standard_model"] is False

        await runner.run(make_job(model="veo-3.1-generate-001"), make_tokens(1))
        assert veo.generate_video.call_args.kwargs["use_standard_model"] is True

    @pytest.mark.asyncio
    async def test_no_operations_returned(self, runner, veo):
        veo.generate_video.return_value = []

        with pytest.raises(RemoteServiceError, match="did not return any operations"):
            await runner.run(make_job(), make_tokens(1))

    @pytest.mark.asyncio
    async def test_negative_prompt_and_portrait(self, runner, veo):
        await runner.run(make_job(aspect_ratio="9:16", negative_prompt="text, watermark"), make_tokens(1))

        kwargs = veo.generate_video.call_args.kwargs
        assert kwargs["aspect_ratio"] == "portrait"
        assert kwargs["negative_prompt"] == "text, watermark"


class TestPolling:

    @pytest.mark.asyncio
    async def test_done_without_output(self, runner, veo):
        veo.check_video_status.return_value = {"operations": [{"done": True}]}

        with pytest.raises(RemoteServiceError) as exc_info:
            await runner.run(make_job(), make_tokens(1))

        assert str(exc_info.value) == NO_OUTPUT_MESSAGE

    @pytest.mark.asyncio
    async def test_server_failed_status(self, runner, veo):
        veo.check_video_status.return_value = {"operations": [{"status": "MEDIA_GENERATION_STATUS_FAILED"}]}

        with pytest.raises(RemoteServiceError) as exc_info:
            await runner.run(make_job(), make_tokens(1))

        assert str(exc_info.value) == SERVER_FAILED_MESSAGE

    @pytest.mark.asyncio
    async def test_operation_error(self, runner, veo):
        veo.check_video_status.return_value = {"operations": [{"error": {"message": "Safety block"}}]}

        with pytest.raises(RemoteServiceError, match="Video generation failed: Safety block"):
            await runner.run(make_job(), make_tokens(1))

    @pytest.mark.asyncio
    async def test_pending_until_done(self, runner, veo):
        veo.check_video_status.side_effect = [PENDING_STATUS, None, PENDING_STATUS, DONE_STATUS]
        job = make_job()

        await runner.run(job, make_tokens(1))

        assert job.result_url == VIDEO_URL
        assert veo.check_video_status.call_count == 4

    @pytest.mark.asyncio
    async def test_poll_ceiling(self, runner, veo, config):
        veo.check_video_status.return_value = PENDING_STATUS

        with pytest.raises(RemoteServiceError, match="did not finish after 10 status checks"):
            await runner.run(make_job(), make_tokens(1))

        assert veo.check_video_status.call_count == config.polling.max_poll_attempts

    @pytest.mark.asyncio
    async def test_transient_network_errors_tolerated(self, runner, veo):
        veo.check_video_status.side_effect = [network_error(), network_error(), DONE_STATUS]
        job = make_job()

        await runner.run(job, make_tokens(1))

        assert job.state == VideoJobState.COMPLETED

    @pytest.mark.asyncio
    async def test_persistent_network_errors_fail_token(self, runner, veo, config):
        veo.check_video_status.side_effect = network_error()

        with pytest.raises(RemoteServiceError) as exc_info:
            await runner.run(make_job(), make_tokens(1))

        assert exc_info.value.category == ErrorCategory.NETWORK
        assert veo.check_video_status.call_count == config.polling.max_consecutive_errors + 1

    @pytest.mark.asyncio
    async def test_auth_error_during_polling_is_not_tolerated(self, runner, veo):
        veo.check_video_status.side_effect = [
            RemoteServiceError("[401] Unauthorized", code="401", service="video"),
            DONE_STATUS,
        ]

        with pytest.raises(RemoteServiceError, match="401"):
            await runner.run(make_job(), make_tokens(1))

        assert veo.check_video_status.call_count == 1


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, runner, veo):
        cancel = asyncio.Event()
        cancel.set()
        job = make_job()

        with pytest.raises(VideoGenerationCancelled):
            await runner.run(job, make_tokens(2), cancel_event=cancel)

        assert job.state == VideoJobState.CANCELLED
        veo.generate_video.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_during_polling_skips_remaining_tokens(self, runner, veo):
        cancel = asyncio.Event()

        async def status_then_cancel(operations, token):
            cancel.set()
            return PENDING_STATUS

        veo.check_video_status.side_effect = status_then_cancel
        job = make_job()

        with pytest.raises(VideoGenerationCancelled):
            await runner.run(job, make_tokens(3), cancel_event=cancel)

        assert job.state == VideoJobState.CANCELLED
        assert veo.generate_video.call_count == 1
        assert veo.check_video_status.call_count == 1


class TestReferenceImage:

    @pytest.mark.asyncio
    async def test_image_is_cropped_and_uploaded(self, runner, veo):
        from services.transport import MediaInput

        job = make_job(image=MediaInput(png_bytes(200, 100)))

        await runner.run(job, make_tokens(1))

        uploaded, mime, aspect, token = veo.upload_image.call_args.args
        assert Image.open(io.BytesIO(uploaded)).size == (178, 100)
        assert (mime, aspect, token) == ("image/png", "landscape", "ya29.token-1-abcdef")
        assert veo.generate_video.call_args.kwargs["image_media_id"] == "media-1"
        assert VideoJobState.UPLOADING in job.transitions

    @pytest.mark.asyncio
    async def test_crop_failure_uses_original_image(self, runner, veo):
        from services.transport import MediaInput

        job = make_job(image=MediaInput(b"not really an image"))

        await runner.run(job, make_tokens(1))

        assert veo.upload_image.call_args.args[0] == b"not really an image"
        assert job.state == VideoJobState.COMPLETED

    @pytest.mark.asyncio
    async def test_other_ratios_are_not_cropped(self, runner, veo):
        from services.transport import MediaInput

        original = png_bytes(200, 100)
        await runner.run(make_job(aspect_ratio="1:1", image=MediaInput(original)), make_tokens(1))

        assert veo.upload_image.call_args.args[0] == original


class TestExtractVideoUrl:

    @pytest.mark.parametrize("operation", [
        {"operation": {"metadata": {"video": {"fifeUrl": VIDEO_URL}}}},
        {"metadata": {"video": {"fifeUrl": VIDEO_URL}}},
        {"result": {"generatedVideo": [{"fifeUrl": VIDEO_URL}]}},
        {"result": {"generatedVideos": [{"fifeUrl": VIDEO_URL}]}},
        {"video": {"fifeUrl": VIDEO_URL}},
        {"fifeUrl": VIDEO_URL},
    ])
    def test_known_locations(self, operation):
        assert extract_video_url(operation) == VIDEO_URL

    def test_missing(self):
        assert extract_video_url({"result": {"generatedVideo": []}}) is None
