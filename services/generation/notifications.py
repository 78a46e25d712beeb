"""
Downstream collaborators notified after a successful generation.

- WebhookNotifier: fire-and-forget POST of each result to a user webhook
- HistoryStore: where finished artifacts are kept
- UsageTracker: lifetime image/video counters per user
"""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Optional, Union

import asyncpg
import httpx

from core.config import get_config
from services.credentials import UserRecord

logger = logging.getLogger(__name__)


class ResultType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


# ============================================================
# Webhook
# ============================================================

class WebhookNotifier:
    """
    Posts generation results to a configured webhook URL.

    Deliveries run as background tasks; failures are logged only.
    Without a URL every notification is a no-op.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        config = get_config()
        self.url = url if url is not None else config.api.webhook_url
        self._timeout = config.api.request_timeout
        self._http_client = http_client
        self._pending: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def notify(
        self,
        result_type: ResultType,
        prompt: str,
        result: Union[str, bytes],
        mime_type: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        if not self.enabled:
            return None

        payload = {
            "type": result_type.value,
            "prompt": prompt,
            "result": base64.b64encode(result).decode("ascii") if isinstance(result, bytes) else result,
            "mimeType": mime_type,
            "timestamp": datetime.utcnow().isoformat(),
        }
        task = asyncio.get_running_loop().create_task(self._deliver(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(self, payload: dict):
        try:
            client = await self._get_client()
            response = await client.post(self.url, json=payload)
            response.raise_for_status()
            logger.debug(f"Webhook delivered ({payload['type']})")
        except httpx.HTTPError as e:
            logger.warning(f"Webhook delivery failed: {e}")

    async def drain(self):
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self):
        await self.drain()
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


# ============================================================
# History
# ============================================================

class HistoryStore(ABC):
    """Storage for finished artifacts (gallery/history)."""

    @abstractmethod
    async def add_item(self, result_type: ResultType, prompt: str, result: Union[str, bytes]):
        ...


class InMemoryHistoryStore(HistoryStore):
    def __init__(self):
        self.items: list[tuple[ResultType, str, Union[str, bytes]]] = []

    async def add_item(self, result_type: ResultType, prompt: str, result: Union[str, bytes]):
        self.items.append((result_type, prompt, result))


# ============================================================
# Usage
# ============================================================

class UsageTracker(ABC):
    """Increments lifetime usage counters and returns the updated user."""

    @abstractmethod
    async def increment_image_usage(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def increment_video_usage(self, user_id: str) -> Optional[UserRecord]:
        ...


class PostgresUsageTracker(UsageTracker):
    """
    Usage counters stored on the users table.

    Usage:
        tracker = PostgresUsageTracker(db_pool)
        user = await tracker.increment_image_usage(user_id)
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    @staticmethod
    def _user_from_row(row) -> UserRecord:
        return UserRecord(
            id=str(row["id"]),
            username=row["username"] or "",
            status=row["status"] or "subscription",
            api_key=row["api_key"],
            total_image=row["total_image"] or 0,
            total_video=row["total_video"] or 0,
        )

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, username, status, api_key, total_image, total_video
                FROM users
                WHERE id::text = $1
                """,
                user_id,
            )
        return self._user_from_row(row) if row else None

    async def _increment(self, user_id: str, column: str) -> Optional[UserRecord]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE users
                SET {column} = COALESCE({column}, 0) + 1
                WHERE id::text = $1
                RETURNING id, username, status, api_key, total_image, total_video
                """,
                user_id,
            )

        if row is None:
            logger.warning(f"Usage increment ({column}) found no user {user_id}")
            return None
        return self._user_from_row(row)

    async def increment_image_usage(self, user_id: str) -> Optional[UserRecord]:
        return await self._increment(user_id, "total_image")

    async def increment_video_usage(self, user_id: str) -> Optional[UserRecord]:
        return await self._increment(user_id, "total_video")
