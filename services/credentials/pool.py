"""
Credential Pool

Tracks candidate credentials and their claim state on behalf of one session:
- claimable pool keys (via the CredentialSource)
- the shared master key
- the session's active key and video auth tokens
"""

import logging
from typing import Optional

from .models import AuthTokenSet, ClaimResult, Credential, CredentialOrigin
from .session import SessionContext
from .source import CredentialSource

logger = logging.getLogger(__name__)


class CredentialPool:
    """
    Usage:
        pool = CredentialPool(PostgresCredentialSource(db_pool), session)

        for candidate in await pool.list_claimable():
            result = await pool.claim(candidate.id, user.id, user.username)
            if result.success:
                pool.set_active(candidate)
                break
    """

    def __init__(self, source: CredentialSource, session: SessionContext):
        self.source = source
        self.session = session

    async def list_claimable(self) -> list[Credential]:
        """Unclaimed shared-pool credentials, stable in order within one fetch."""
        credentials = await self.source.list_available_credentials()
        logger.debug(f"{len(credentials)} claimable key(s) available")
        return list(credentials)

    async def claim(self, credential_id: str, claimer_id: str, claimer_label: str) -> ClaimResult:
        """Either the claimer now owns the credential, or nothing changed."""
        result = await self.source.claim(credential_id, claimer_id, claimer_label)
        if result.success:
            logger.info(f"Claimed pool key {credential_id} for {claimer_label}")
        else:
            logger.warning(
                f"Claim of pool key {credential_id} failed: {result.message or 'Unknown error'}"
            )
        return result

    async def get_shared_master(self) -> Optional[Credential]:
        secret = await self.source.get_shared_master()
        if not secret:
            return None
        return Credential(secret=secret, origin=CredentialOrigin.SHARED_MASTER)

    def get_active(self) -> Optional[Credential]:
        return self.session.active_credential

    def set_active(self, credential: Optional[Credential]):
        self.session.set_active(credential)

    async def apply_trial_key(self) -> Optional[Credential]:
        """
        Install the shared master key as the temporary key of a trial user.

        Does nothing for non-trial users. A personal key still takes priority.
        """
        user = self.session.user
        if user is None or not user.is_trial:
            return None

        master = await self.get_shared_master()
        if master is None:
            logger.warning(f"No shared API key configured for trial user {user.username or user.id}")
            return None

        self.set_active(master)
        return master

    def get_auth_tokens(self) -> AuthTokenSet:
        return self.session.auth_tokens

    async def refresh_auth_tokens(self) -> AuthTokenSet:
        """
        Fetch a fresh token set and install it.

        An empty fetch clears the installed set so stale tokens are not reused.
        """
        tokens = await self.source.get_auth_token_set()
        self.session.set_auth_tokens(tokens)
        if tokens:
            logger.info(f"{len(tokens)} video auth token(s) loaded")
        else:
            logger.warning("Could not fetch any video auth tokens")
        return tokens
