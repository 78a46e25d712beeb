"""
Runtime wiring - builds one session's orchestrator stack.

    runtime = await create_runtime(user_id="...")
    try:
        await runtime.orchestrator.generate_text("Hello")
    finally:
        await runtime.close()
"""

import logging
from dataclasses import dataclass
from typing import Optional

import asyncpg

from core.config import Config, get_config
from core.events import EventChannel, EventTopic
from services.credentials import CredentialPool, PostgresCredentialSource, SessionContext
from services.generation import (
    GenerationOrchestrator,
    InMemoryHistoryStore,
    PostgresActivityLog,
    PostgresUsageTracker,
    WebhookNotifier,
)
from services.health import HealthProber
from services.repair import AutoRepairCoordinator
from services.transport import VeoClient

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorRuntime:
    config: Config
    db_pool: asyncpg.Pool
    events: EventChannel
    session: SessionContext
    pool: CredentialPool
    prober: HealthProber
    repair: AutoRepairCoordinator
    orchestrator: GenerationOrchestrator

    async def close(self):
        self.repair.detach()
        await self.events.drain()
        await self.orchestrator.close()
        await self.db_pool.close()


async def create_runtime(
    user_id: Optional[str] = None,
    config: Optional[Config] = None,
) -> OrchestratorRuntime:
    """Connect to the database, load the user and wire every component."""
    config = config or get_config()
    if not config.database.url:
        raise ValueError("DATABASE_URL is required to build the orchestrator runtime")

    db_pool = await asyncpg.create_pool(
        config.database.url,
        min_size=config.database.pool_min_size,
        max_size=config.database.pool_max_size,
    )

    usage = PostgresUsageTracker(db_pool)
    user = await usage.get_user(user_id) if user_id else None
    if user_id and user is None:
        logger.warning(f"User {user_id} not found; continuing without a user")

    events = EventChannel()
    session = SessionContext(user)
    events.subscribe(EventTopic.USER_USAGE_UPDATED, session.set_user)

    pool = CredentialPool(PostgresCredentialSource(db_pool), session)
    await pool.apply_trial_key()
    await pool.refresh_auth_tokens()

    veo_client = VeoClient(base_url=config.api.veo_proxy_base)
    prober = HealthProber(veo_client=veo_client, config=config)

    repair = AutoRepairCoordinator(pool, prober, events, config)
    repair.attach()

    orchestrator = GenerationOrchestrator(
        pool,
        events,
        activity_log=PostgresActivityLog(db_pool),
        webhook=WebhookNotifier(config.api.webhook_url),
        history=InMemoryHistoryStore(),
        usage=usage,
        veo_client=veo_client,
        config=config,
    )

    return OrchestratorRuntime(
        config=config,
        db_pool=db_pool,
        events=events,
        session=session,
        pool=pool,
        prober=prober,
        repair=repair,
        orchestrator=orchestrator,
    )
