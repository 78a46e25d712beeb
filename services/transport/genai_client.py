"""
GenAI Client - google-genai wrapper bound to one API key.

Usage:
    client = GenAIClient(api_key)
    response = await client.generate_content(
        model="gemini-2.5-flash",
        contents="Hello",
    )

Every SDK failure leaves this module as a RemoteServiceError carrying the
HTTP status code, so callers never have to sniff SDK exception text.
"""

import logging
from contextlib import contextmanager
from typing import Any, AsyncIterator, Iterator, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from core.errors import NETWORK_CODE, ErrorCategory, RemoteServiceError

logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(service: str) -> Iterator[None]:
    """Re-raise SDK and transport failures as RemoteServiceError."""
    try:
        yield
    except RemoteServiceError:
        raise
    except genai_errors.APIError as e:
        raise RemoteServiceError(
            str(e),
            code=str(e.code) if e.code is not None else None,
            service=service,
        ) from e
    except httpx.TransportError as e:
        raise RemoteServiceError(
            f"Failed to fetch: {type(e).__name__}: {e}",
            code=NETWORK_CODE,
            category=ErrorCategory.NETWORK,
            service=service,
        ) from e


class ChatSession:
    """A chat bound to the credential that was active when it was created."""

    def __init__(self, chat: Any, model: str):
        self._chat = chat
        self.model = model

    async def send_message_stream(self, message: str) -> AsyncIterator[str]:
        """Send a message and return an iterator of incremental text chunks."""
        with translate_errors("text"):
            stream = await self._chat.send_message_stream(message)
        return self._iter_text(stream)

    @staticmethod
    async def _iter_text(stream: Any) -> AsyncIterator[str]:
        with translate_errors("text"):
            async for chunk in stream:
                text = getattr(chunk, "text", None)
                if text:
                    yield text


class GenAIClient:
    """Async google-genai client bound to a single API key."""

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("GenAIClient requires an API key")
        self._client = genai.Client(api_key=api_key)

    async def generate_content(
        self,
        model: str,
        contents: Any,
        config: Optional[types.GenerateContentConfig] = None,
        service: str = "text",
    ) -> types.GenerateContentResponse:
        with translate_errors(service):
            return await self._client.aio.models.generate_content(
                model=model,
                contents=contents,
                config=config,
            )

    def create_chat(self, model: str, system_instruction: str) -> ChatSession:
        chat = self._client.aio.chats.create(
            model=model,
            config=types.GenerateContentConfig(
                system_instruction=system_instruction,
                thinking_config=types.ThinkingConfig(thinking_budget=0),
            ),
        )
        return ChatSession(chat, model)

    async def generate_videos(self, model: str, prompt: str) -> Any:
        """Submit a minimal video request; returns the SDK operation."""
        with translate_errors("video"):
            return await self._client.aio.models.generate_videos(
                model=model,
                prompt=prompt,
                config=types.GenerateVideosConfig(number_of_videos=1),
            )


# ============================================================
# Response helpers
# ============================================================

def response_parts(response: Any, first_candidate_only: bool = False) -> list[Any]:
    parts = []
    candidates = getattr(response, "candidates", None) or []
    if first_candidate_only:
        candidates = candidates[:1]
    for candidate in candidates:
        content = getattr(candidate, "content", None)
        parts.extend(getattr(content, "parts", None) or [])
    return parts


def extract_inline_data(response: Any, first_candidate_only: bool = False) -> list[bytes]:
    """Raw bytes of every inline payload (images, audio) in the response."""
    payloads = []
    for part in response_parts(response, first_candidate_only):
        inline = getattr(part, "inline_data", None)
        if inline is not None and getattr(inline, "data", None):
            payloads.append(inline.data)
    return payloads


def extract_text(response: Any) -> str:
    try:
        return response.text or ""
    except (AttributeError, ValueError):
        return ""


def usage_token_count(response: Any) -> int:
    usage = getattr(response, "usage_metadata", None)
    return getattr(usage, "total_token_count", None) or 0


def blocked_categories(response: Any) -> list[str]:
    """Safety categories that blocked the first candidate, if any."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    ratings = getattr(candidates[0], "safety_ratings", None) or []
    categories = []
    for rating in ratings:
        if getattr(rating, "blocked", False):
            category = getattr(rating, "category", None)
            categories.append(getattr(category, "value", None) or str(category))
    return categories
