"""
Credential Source - upstream store of claimable keys, the shared master key
and video auth tokens.

The pool never talks to storage directly; it goes through a CredentialSource.
PostgresCredentialSource is the production implementation.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import asyncpg
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .models import AuthTokenSet, ClaimResult, Credential, CredentialOrigin

logger = logging.getLogger(__name__)

# Connection-level failures are retried; query errors are not
_TRANSIENT_DB_ERRORS = (
    OSError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
)

_db_retry = retry(
    retry=retry_if_exception_type(_TRANSIENT_DB_ERRORS),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)

SHARED_MASTER_SETTING = "shared_master_api_key"


class CredentialSource(ABC):
    """Collaborator interface for the upstream credential store."""

    @abstractmethod
    async def list_available_credentials(self) -> list[Credential]:
        """Currently unclaimed pool credentials."""

    @abstractmethod
    async def claim(self, credential_id: str, claimer_id: str, claimer_label: str) -> ClaimResult:
        """Atomically assign a pool credential to a claimer."""

    @abstractmethod
    async def get_shared_master(self) -> Optional[str]:
        """The shared master key, if one is configured."""

    @abstractmethod
    async def get_auth_token_set(self) -> AuthTokenSet:
        """Fresh video auth tokens, freshest first."""


class PostgresCredentialSource(CredentialSource):
    """
    Credential source backed by PostgreSQL.

    Usage:
        pool = await asyncpg.create_pool(config.database.url)
        source = PostgresCredentialSource(pool)

        keys = await source.list_available_credentials()
        result = await source.claim(keys[0].id, user.id, user.username)
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    @_db_retry
    async def list_available_credentials(self) -> list[Credential]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, api_key, created_at
                FROM api_key_pool
                WHERE claimed_by IS NULL AND is_active
                ORDER BY created_at ASC, id ASC
                """
            )

        return [
            Credential(
                id=str(row["id"]),
                secret=row["api_key"],
                origin=CredentialOrigin.CLAIMABLE_POOL,
                created_at=row["created_at"] or datetime.utcnow(),
            )
            for row in rows
        ]

    @_db_retry
    async def claim(self, credential_id: str, claimer_id: str, claimer_label: str) -> ClaimResult:
        """
        Claim a pool key with a single conditional UPDATE.

        Re-claiming a key already held by the same claimer succeeds again,
        so the call is safe to retry.
        """
        async with self.db_pool.acquire() as conn:
            claimed = await conn.fetchval(
                """
                UPDATE api_key_pool SET
                    claimed_by = $2,
                    claimed_by_label = $3,
                    claimed_at = CASE WHEN claimed_by IS NULL THEN NOW() ELSE claimed_at END
                WHERE id::text = $1
                  AND is_active
                  AND (claimed_by IS NULL OR claimed_by = $2)
                RETURNING id
                """,
                credential_id,
                claimer_id,
                claimer_label,
            )
            if claimed is not None:
                logger.info(f"Key {credential_id} claimed by {claimer_label}")
                return ClaimResult(success=True)

            owner = await conn.fetchrow(
                "SELECT claimed_by FROM api_key_pool WHERE id::text = $1 AND is_active",
                credential_id,
            )

        if owner is None:
            return ClaimResult(success=False, message="Key no longer exists.")
        return ClaimResult(success=False, message="Key has already been claimed by another user.")

    @_db_retry
    async def get_shared_master(self) -> Optional[str]:
        async with self.db_pool.acquire() as conn:
            value = await conn.fetchval(
                "SELECT value FROM app_settings WHERE key = $1",
                SHARED_MASTER_SETTING,
            )
        return value or None

    @_db_retry
    async def get_auth_token_set(self) -> AuthTokenSet:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT token, created_at
                FROM veo_auth_tokens
                WHERE is_active
                ORDER BY created_at DESC
                """
            )
        return AuthTokenSet.from_records([dict(row) for row in rows])
