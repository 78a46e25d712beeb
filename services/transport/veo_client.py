"""
Veo Proxy Client - asynchronous video jobs authorized by short-lived tokens.

Usage:
    client = VeoClient(base_url="https://proxy.example.com")

    media_id = await client.upload_image(png_bytes, "image/png", "landscape", token)
    operations = await client.generate_video(
        prompt="A lighthouse at dusk",
        auth_token=token,
        aspect_ratio="landscape",
        use_standard_model=False,
        image_media_id=media_id,
    )
    status = await client.check_video_status(operations, token)

All non-2xx responses are raised as RemoteServiceError(service="video").
"""

import base64
import logging
from typing import Any, Literal, Optional
from urllib.parse import quote

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import get_config
from core.errors import NETWORK_CODE, ErrorCategory, RemoteServiceError

logger = logging.getLogger(__name__)

AspectClass = Literal["landscape", "portrait"]

_ASPECT_ENUMS = {
    "landscape": "VIDEO_ASPECT_RATIO_LANDSCAPE",
    "portrait": "VIDEO_ASPECT_RATIO_PORTRAIT",
}


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return response.text


class VeoClient:
    """HTTP client for the video generation proxy."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        config = get_config()
        self.base_url = (base_url or config.api.veo_proxy_base).rstrip("/")
        self._timeout = timeout or config.api.request_timeout
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _post(self, path: str, payload: dict, auth_token: str) -> Any:
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={
                    "Authorization": f"Bearer {auth_token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.TransportError as e:
            raise RemoteServiceError(
                f"Failed to fetch {path}: {type(e).__name__}: {e}",
                code=NETWORK_CODE,
                category=ErrorCategory.NETWORK,
                service="video",
            ) from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(f"Video proxy {path} returned {response.status_code}: {message}")
            raise RemoteServiceError(
                f"[{response.status_code}] {message}",
                code=str(response.status_code),
                service="video",
            )

        if not response.content:
            return None
        return response.json()

    async def upload_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        aspect_ratio: AspectClass,
        auth_token: str,
    ) -> str:
        """Upload a reference image and return its media handle."""
        data = await self._post(
            "/api/veo/upload",
            {
                "imageInput": {
                    "rawImageBytes": base64.b64encode(image_bytes).decode("ascii"),
                    "mimeType": mime_type,
                    "aspectRatio": _ASPECT_ENUMS[aspect_ratio],
                },
            },
            auth_token,
        )
        media_id = None
        if isinstance(data, dict):
            media_id = (
                data.get("mediaId")
                or (data.get("mediaGenerationId") or {}).get("mediaGenerationId")
            )
        if not media_id:
            raise RemoteServiceError(
                "Image upload did not return a media id.",
                service="video",
            )
        logger.info(f"Reference image uploaded: {media_id}")
        return media_id

    async def generate_video(
        self,
        prompt: str,
        auth_token: str,
        aspect_ratio: AspectClass,
        use_standard_model: bool,
        image_media_id: Optional[str] = None,
        negative_prompt: Optional[str] = None,
    ) -> list[dict]:
        """Submit a generation request; returns its operation handles."""
        payload: dict[str, Any] = {
            "prompt": prompt,
            "aspectRatio": _ASPECT_ENUMS[aspect_ratio],
            "useStandardModel": use_standard_model,
        }
        if negative_prompt:
            payload["negativePrompt"] = negative_prompt
        if image_media_id:
            payload["imageMediaId"] = image_media_id

        path = "/api/veo/generate-i2v" if image_media_id else "/api/veo/generate-t2v"
        data = await self._post(path, payload, auth_token)
        operations = (data or {}).get("operations") if isinstance(data, dict) else None
        return list(operations or [])

    async def check_video_status(self, operations: list[dict], auth_token: str) -> Optional[dict]:
        """Fetch status for the given operation handles."""
        data = await self._post("/api/veo/status", {"operations": operations}, auth_token)
        return data if isinstance(data, dict) else None

    def download_url(self, video_url: str) -> str:
        """Streamable proxy URL for a finished video."""
        return f"{self.base_url}/api/veo/download-video?url={quote(video_url, safe='')}"

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _fetch_bytes(self, url: str) -> httpx.Response:
        client = await self._get_client()
        return await client.get(url, follow_redirects=True)

    async def download_video(self, download_url: str) -> bytes:
        """Materialize a finished video through the proxy."""
        try:
            response = await self._fetch_bytes(download_url)
        except httpx.TransportError as e:
            raise RemoteServiceError(
                f"Background download failed: {type(e).__name__}: {e}",
                code=NETWORK_CODE,
                category=ErrorCategory.NETWORK,
                service="video",
            ) from e

        if response.status_code >= 400:
            raise RemoteServiceError(
                f"Background download failed: {response.status_code}",
                code=str(response.status_code),
                service="video",
            )

        logger.info(f"Video downloaded ({len(response.content) / 1024 / 1024:.1f} MB)")
        return response.content
