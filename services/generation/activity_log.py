"""
Activity Log - write-only audit trail of generation calls.

One record per call attempt (success or failure), plus informational
records for internal actions such as a shared-key override or a token
fallback. The orchestrator never reads these back.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Optional, Union

import asyncpg
from pydantic import BaseModel, ConfigDict, Field

from core.config import Config, get_config
from services.credentials import SessionContext

logger = logging.getLogger(__name__)


class ActivityStatus(str, Enum):
    SUCCESS = "Success"
    ERROR = "Error"


class ActivityRecord(BaseModel):
    """One immutable audit entry."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=datetime.utcnow)
    model: str
    prompt: str
    output: str
    token_count: int = 0
    status: ActivityStatus = ActivityStatus.SUCCESS
    error: Optional[str] = None
    user_id: Optional[str] = None


class ActivityLog(ABC):
    """Append-only sink for activity records."""

    @abstractmethod
    async def append(self, record: ActivityRecord):
        ...


class InMemoryActivityLog(ActivityLog):
    """Keeps records in a list; used by the CLI and in tests."""

    def __init__(self):
        self.records: list[ActivityRecord] = []

    async def append(self, record: ActivityRecord):
        self.records.append(record)


class PostgresActivityLog(ActivityLog):
    """
    Persists activity records to PostgreSQL.

    Usage:
        log = PostgresActivityLog(db_pool)
        await log.append(record)
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def append(self, record: ActivityRecord):
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO ai_activity_log (
                    user_id,
                    model,
                    prompt,
                    output,
                    token_count,
                    status,
                    error,
                    created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                record.user_id,
                record.model,
                record.prompt,
                record.output,
                record.token_count,
                record.status.value,
                record.error,
                record.timestamp,
            )


class ActivityRecorder:
    """
    Builds records for the current session and appends them.

    An append that fails is logged and dropped; auditing never fails the
    generation call it describes.
    """

    def __init__(
        self,
        log: ActivityLog,
        session: Optional[SessionContext] = None,
        config: Optional[Config] = None,
    ):
        self.log = log
        self.session = session
        self.config = config or get_config()

    async def record(
        self,
        model: str,
        prompt: str,
        output: str,
        status: ActivityStatus = ActivityStatus.SUCCESS,
        token_count: int = 0,
        error: Optional[str] = None,
    ) -> ActivityRecord:
        user = self.session.user if self.session else None
        record = ActivityRecord(
            model=model,
            prompt=prompt,
            output=output[: self.config.activity_output_max_chars],
            token_count=token_count,
            status=status,
            error=error,
            user_id=user.id if user else None,
        )
        try:
            await self.log.append(record)
        except Exception as e:
            logger.warning(f"Failed to append activity record for {model}: {e}")
        return record

    async def success(self, model: str, prompt: str, output: str, token_count: int = 0) -> ActivityRecord:
        return await self.record(model, prompt, output, token_count=token_count)

    async def failure(
        self,
        model: str,
        prompt: str,
        error: Union[BaseException, str],
        output: Optional[str] = None,
    ) -> ActivityRecord:
        message = str(error)
        return await self.record(
            model,
            prompt,
            output if output is not None else f"Error: {message}",
            status=ActivityStatus.ERROR,
            error=message,
        )
