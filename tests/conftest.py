"""
Shared fixtures: an in-memory credential source and fake GenAI clients.
"""

import os
import sys
from types import SimpleNamespace
from typing import Any, Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Config
from core.events import EventChannel
from services.credentials import (
    AuthTokenSet,
    ClaimResult,
    Credential,
    CredentialOrigin,
    CredentialPool,
    CredentialSource,
    SessionContext,
    UserRecord,
)


class InMemoryCredentialSource(CredentialSource):
    """Credential source backed by dicts, with call counters."""

    def __init__(
        self,
        credentials: Optional[list[Credential]] = None,
        shared_master: Optional[str] = None,
        token_records: Optional[list[dict]] = None,
    ):
        self.credentials = {c.id: c for c in credentials or []}
        self.owners: dict[str, str] = {}
        self.shared_master = shared_master
        self.token_records = token_records or []
        self.list_calls = 0
        self.claim_calls: list[tuple[str, str, str]] = []

    async def list_available_credentials(self) -> list[Credential]:
        self.list_calls += 1
        return [c for cid, c in self.credentials.items() if cid not in self.owners]

    async def claim(self, credential_id: str, claimer_id: str, claimer_label: str) -> ClaimResult:
        self.claim_calls.append((credential_id, claimer_id, claimer_label))
        if credential_id not in self.credentials:
            return ClaimResult(success=False, message="Key no longer exists.")
        owner = self.owners.get(credential_id)
        if owner is not None and owner != claimer_id:
            return ClaimResult(success=False, message="Key has already been claimed by another user.")
        self.owners[credential_id] = claimer_id
        return ClaimResult(success=True)

    async def get_shared_master(self) -> Optional[str]:
        return self.shared_master

    async def get_auth_token_set(self) -> AuthTokenSet:
        return AuthTokenSet.from_records(self.token_records)


def pool_key(index: int) -> Credential:
    return Credential(
        id=f"key-{index}",
        secret=f"AIza-pool-secret-{index:04d}",
        origin=CredentialOrigin.CLAIMABLE_POOL,
    )


# ============================================================
# Fake google-genai responses
# ============================================================

def make_response(
    text: Optional[str] = None,
    inline: Optional[list[bytes]] = None,
    blocked: Optional[list[str]] = None,
    total_tokens: int = 7,
) -> SimpleNamespace:
    parts = []
    if text is not None:
        parts.append(SimpleNamespace(text=text, inline_data=None))
    for data in inline or []:
        parts.append(SimpleNamespace(text=None, inline_data=SimpleNamespace(data=data, mime_type="image/png")))

    ratings = [
        SimpleNamespace(blocked=True, category=SimpleNamespace(value=category))
        for category in blocked or []
    ]
    candidate = SimpleNamespace(content=SimpleNamespace(parts=parts), safety_ratings=ratings)
    return SimpleNamespace(
        text=text,
        candidates=[candidate],
        usage_metadata=SimpleNamespace(total_token_count=total_tokens),
    )


class FakeChat:
    def __init__(self, chunks: list[str], error: Optional[Exception] = None):
        self.chunks = chunks
        self.error = error

    async def send_message_stream(self, message: str):
        if self.error:
            raise self.error
        return self._iterate()

    async def _iterate(self):
        for chunk in self.chunks:
            yield SimpleNamespace(text=chunk)


class FakeGenAI:
    """
    Stand-in for the GenAIClient constructor.

    Behaviour is looked up per API key: an Exception is raised, anything
    else is returned from generate_content / generate_videos.
    """

    def __init__(self, default: Any = None, video_default: Any = None):
        self.default = default if default is not None else make_response(text="ok")
        self.video_default = video_default if video_default is not None else SimpleNamespace(error=None)
        self.behaviors: dict[str, Any] = {}
        self.video_behaviors: dict[str, Any] = {}
        self.created_with: list[str] = []
        self.calls: list[dict] = []
        self.chat_chunks: list[str] = ["Hel", "lo"]

    def __call__(self, api_key: str) -> "FakeGenAIClient":
        self.created_with.append(api_key)
        return FakeGenAIClient(self, api_key)


class FakeGenAIClient:
    def __init__(self, fake: FakeGenAI, api_key: str):
        self.fake = fake
        self.api_key = api_key

    async def generate_content(self, model, contents, config=None, service="text"):
        self.fake.calls.append(
            {"api_key": self.api_key, "model": model, "contents": contents, "config": config, "service": service}
        )
        outcome = self.fake.behaviors.get(self.api_key, self.fake.default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def generate_videos(self, model, prompt):
        self.fake.calls.append({"api_key": self.api_key, "model": model, "prompt": prompt, "service": "video"})
        outcome = self.fake.video_behaviors.get(self.api_key, self.fake.video_default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def create_chat(self, model, system_instruction):
        from services.transport import ChatSession

        return ChatSession(FakeChat(self.fake.chat_chunks), model)


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def config() -> Config:
    cfg = Config()
    cfg.polling.interval_seconds = 0
    cfg.polling.max_poll_attempts = 10
    cfg.repair.status_display_seconds = 0.01
    cfg.api.webhook_url = ""
    return cfg


@pytest.fixture
def events() -> EventChannel:
    return EventChannel()


@pytest.fixture
def user() -> UserRecord:
    return UserRecord(id="user-1", username="alice", status="subscription", total_image=150)


@pytest.fixture
def session(user) -> SessionContext:
    return SessionContext(user)


@pytest.fixture
def source() -> InMemoryCredentialSource:
    return InMemoryCredentialSource(
        credentials=[pool_key(1), pool_key(2), pool_key(3)],
        token_records=[
            {"token": "ya29.token-alpha-000001", "createdAt": "2026-10-01T10:00:00Z"},
            {"token": "ya29.token-bravo-000002", "createdAt": "2026-09-30T10:00:00Z"},
        ],
    )


@pytest.fixture
def pool(source, session) -> CredentialPool:
    return CredentialPool(source, session)


@pytest.fixture
def genai() -> FakeGenAI:
    return FakeGenAI()
