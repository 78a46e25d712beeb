"""
Session Context - the single active-credential slot for one user session.

Passed explicitly to every component that needs the active credential;
there is no module-level key holder. Reads happen at call time and are not
locked: a call that races with a credential change simply sees the new
value on its next read.
"""

import logging
from typing import Optional

from .models import AuthTokenSet, Credential, CredentialOrigin, UserRecord

logger = logging.getLogger(__name__)


class SessionContext:
    """
    Holds the calling user, the active credential and the video auth tokens.

    A personal key always wins over a temporarily installed one.
    """

    def __init__(self, user: Optional[UserRecord] = None):
        self._user = user
        self._personal: Optional[Credential] = None
        self._temporary: Optional[Credential] = None
        self._auth_tokens = AuthTokenSet()
        if user is not None:
            self._personal = self._personal_from(user)

    @staticmethod
    def _personal_from(user: UserRecord) -> Optional[Credential]:
        if not user.api_key:
            return None
        return Credential(
            secret=user.api_key,
            origin=CredentialOrigin.PERSONAL,
            owner_id=user.id,
        )

    @property
    def user(self) -> Optional[UserRecord]:
        return self._user

    def set_user(self, user: Optional[UserRecord]):
        """
        Replace the user record (login, logout or a usage update).

        A refreshed record for the same user keeps the personal key already
        installed in this session.
        """
        same_user = user is not None and self._user is not None and user.id == self._user.id
        self._user = user
        if user is None:
            self._personal = None
            self._temporary = None
        elif not (same_user and self._personal is not None):
            self._personal = self._personal_from(user)

    @property
    def active_credential(self) -> Optional[Credential]:
        return self._personal or self._temporary

    def set_active(self, credential: Optional[Credential]):
        """Install a credential, replacing whatever was in its slot."""
        if credential is not None and credential.origin == CredentialOrigin.PERSONAL:
            self._personal = credential
        else:
            self._temporary = credential

        active = self.active_credential
        if active is not None:
            logger.info(f"Active API key ({active.masked}, {active.origin.value}) set for session")
        else:
            logger.info("No active API key for session")

    @property
    def auth_tokens(self) -> AuthTokenSet:
        return self._auth_tokens

    def set_auth_tokens(self, tokens: AuthTokenSet):
        self._auth_tokens = tokens
