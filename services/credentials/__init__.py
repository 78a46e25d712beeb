"""
Credential Service

Pool of interchangeable credentials with different eligibility rules:
- personal keys (owned by the user)
- the shared master key
- claimable pool keys
- video auth tokens
"""

from .models import (
    AuthToken,
    AuthTokenSet,
    ClaimResult,
    Credential,
    CredentialOrigin,
    UserRecord,
    mask_secret,
)
from .pool import CredentialPool
from .session import SessionContext
from .source import CredentialSource, PostgresCredentialSource

__all__ = [
    "AuthToken",
    "AuthTokenSet",
    "ClaimResult",
    "Credential",
    "CredentialOrigin",
    "UserRecord",
    "mask_secret",
    "CredentialPool",
    "SessionContext",
    "CredentialSource",
    "PostgresCredentialSource",
]
