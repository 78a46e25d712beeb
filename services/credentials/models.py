"""
Credential Models

Records exchanged with the credential source collaborator.
Secrets are excluded from repr so they never end up in logs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator, Optional

from pydantic import BaseModel, Field


class CredentialOrigin(str, Enum):
    """Where a credential came from; decides its eligibility rules."""
    PERSONAL = "personal"
    SHARED_MASTER = "shared-master"
    CLAIMABLE_POOL = "claimable-pool"
    AUTH_TOKEN = "auth-token"


def mask_secret(secret: Optional[str], visible: int = 4) -> str:
    """Render a secret as ...abcd for logs."""
    if not secret:
        return "<none>"
    return f"...{secret[-visible:]}"


class Credential(BaseModel):
    """An API key usable to authorize a generation call."""
    id: Optional[str] = None
    secret: str = Field(repr=False)
    origin: CredentialOrigin
    owner_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def masked(self) -> str:
        return mask_secret(self.secret)


class ClaimResult(BaseModel):
    """Outcome of a claim attempt against the pool."""
    success: bool
    message: Optional[str] = None


class UserRecord(BaseModel):
    """The calling user, as returned by the usage collaborators."""
    id: str
    username: str = ""
    status: str = "subscription"
    api_key: Optional[str] = Field(default=None, repr=False)
    total_image: int = 0
    total_video: int = 0

    @property
    def is_trial(self) -> bool:
        return self.status == "trial"


@dataclass(frozen=True)
class AuthToken:
    """A short-lived token for the video service."""
    token: str = field(repr=False)
    created_at: Optional[datetime] = None

    @property
    def masked(self) -> str:
        return mask_secret(self.token, visible=6)


@dataclass(frozen=True)
class AuthTokenSet:
    """
    Ordered video auth tokens.

    Order is kept exactly as received; tokens are tried front to back.
    """
    tokens: tuple[AuthToken, ...] = ()

    @classmethod
    def from_records(cls, records: list[dict]) -> "AuthTokenSet":
        """Build from [{"token": ..., "createdAt"/"created_at": ...}, ...]."""
        tokens = []
        for record in records:
            token = record.get("token")
            if not token:
                continue
            created_at = record.get("created_at") or record.get("createdAt")
            if isinstance(created_at, str):
                try:
                    created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
                except ValueError:
                    created_at = None
            tokens.append(AuthToken(token=token, created_at=created_at))
        return cls(tokens=tuple(tokens))

    @property
    def primary(self) -> Optional[AuthToken]:
        return self.tokens[0] if self.tokens else None

    def __len__(self) -> int:
        return len(self.tokens)

    def __iter__(self) -> Iterator[AuthToken]:
        return iter(self.tokens)

    def __getitem__(self, index: int) -> AuthToken:
        return self.tokens[index]
