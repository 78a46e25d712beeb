"""
Auto-Repair Coordinator - replaces failed credentials without user action.

Per repair kind (API key, video auth) a small state machine runs:

    Idle -> InProgress -> Success | Failed -> Idle (after the display window)

Triggers arriving while a kind is InProgress are dropped, so one failure
burst produces exactly one claim sequence. The two kinds are independent
and may run at the same time.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from core.config import Config, get_config
from core.events import EventChannel, EventTopic
from services.credentials import CredentialOrigin, CredentialPool
from services.health import HealthProber, ServiceClass

logger = logging.getLogger(__name__)


class RepairKind(str, Enum):
    API_KEY = "api_key"
    VEO_AUTH = "veo_auth"


class RepairState(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class RepairStatus:
    """Current state of one repair kind."""
    kind: RepairKind
    state: RepairState = RepairState.IDLE
    message: Optional[str] = None
    updated_at: datetime = field(default_factory=datetime.utcnow)


class AutoRepairCoordinator:
    """
    Event-driven controller that acquires a replacement credential.

    Usage:
        coordinator = AutoRepairCoordinator(pool, prober, events)
        coordinator.attach()

        # Somewhere else, after a credential failure
        events.publish(EventTopic.INITIATE_AUTO_API_KEY_CLAIM)

        # Or run a repair directly and wait for it
        status = await coordinator.run(RepairKind.API_KEY)
    """

    def __init__(
        self,
        pool: CredentialPool,
        prober: HealthProber,
        events: EventChannel,
        config: Optional[Config] = None,
    ):
        self.pool = pool
        self.prober = prober
        self.events = events
        self.config = config or get_config()

        self._status = {kind: RepairStatus(kind=kind) for kind in RepairKind}
        self._tasks: dict[RepairKind, asyncio.Task] = {}
        self._reset_handles: dict[RepairKind, asyncio.TimerHandle] = {}
        self._unsubscribers: list[Callable[[], None]] = []

    # ============================================================
    # Event wiring
    # ============================================================

    def attach(self):
        """Subscribe to the auto-repair trigger topics."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self.events.subscribe(
                EventTopic.INITIATE_AUTO_API_KEY_CLAIM,
                lambda _payload: self.request(RepairKind.API_KEY),
            ),
            self.events.subscribe(
                EventTopic.INITIATE_AUTO_VEO_KEY_CLAIM,
                lambda _payload: self.request(RepairKind.VEO_AUTH),
            ),
        ]

    def detach(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        for handle in self._reset_handles.values():
            handle.cancel()
        self._reset_handles.clear()

    # ============================================================
    # State
    # ============================================================

    def status(self, kind: RepairKind) -> RepairStatus:
        return replace(self._status[kind])

    def _set_state(self, kind: RepairKind, state: RepairState, message: Optional[str] = None):
        self._status[kind] = RepairStatus(kind=kind, state=state, message=message)
        logger.info(f"Auto-repair [{kind.value}] -> {state.value}" + (f": {message}" if message else ""))
        self.events.publish(EventTopic.REPAIR_STATUS_CHANGED, self.status(kind))

    def _schedule_reset(self, kind: RepairKind):
        loop = asyncio.get_running_loop()
        self._reset_handles[kind] = loop.call_later(
            self.config.repair.status_display_seconds, self._reset, kind
        )

    def _reset(self, kind: RepairKind):
        self._reset_handles.pop(kind, None)
        if self._status[kind].state in (RepairState.SUCCESS, RepairState.FAILED):
            self._set_state(kind, RepairState.IDLE)

    # ============================================================
    # Triggers
    # ============================================================

    def request(self, kind: RepairKind) -> Optional[asyncio.Task]:
        """
        Start a repair of the given kind unless one is already running.

        Must be called from within a running event loop. The state moves to
        InProgress before this returns, so a second trigger issued right
        after is dropped.
        """
        if self._status[kind].state == RepairState.IN_PROGRESS:
            logger.info(f"Auto-repair [{kind.value}] already in progress; trigger dropped")
            return None

        handle = self._reset_handles.pop(kind, None)
        if handle is not None:
            handle.cancel()

        self._set_state(kind, RepairState.IN_PROGRESS)
        task = asyncio.get_running_loop().create_task(self._run_repair(kind))
        self._tasks[kind] = task
        return task

    async def run(self, kind: RepairKind) -> RepairStatus:
        """Start (or join) a repair and wait for its outcome."""
        task = self.request(kind)
        if task is None:
            task = self._tasks[kind]
        return await task

    async def _run_repair(self, kind: RepairKind) -> RepairStatus:
        try:
            if kind == RepairKind.API_KEY:
                success, message = await self._claim_api_key()
            else:
                success, message = await self._refresh_veo_tokens()
        except asyncio.CancelledError:
            self._set_state(kind, RepairState.IDLE)
            raise
        except Exception as e:
            logger.error(f"Auto-repair [{kind.value}] process failed: {e}")
            success, message = False, f"Auto-repair failed: {e}"

        self._set_state(kind, RepairState.SUCCESS if success else RepairState.FAILED, message)
        self._schedule_reset(kind)
        return self.status(kind)

    # ============================================================
    # Repairs
    # ============================================================

    async def _claim_api_key(self) -> tuple[bool, str]:
        """Probe claimable keys in order; claim and install the first healthy one."""
        user = self.pool.session.user
        if user is None:
            return False, "No signed-in user to claim a key for."

        candidates = await self.pool.list_claimable()
        logger.info(f"Auto-select: probing {len(candidates)} candidate key(s)")

        for index, candidate in enumerate(candidates):
            if not await self.prober.probe(candidate, ServiceClass.IMAGE):
                logger.info(f"Candidate #{index + 1} ({candidate.masked}) failed the image probe")
                continue

            result = await self.pool.claim(candidate.id, user.id, user.username)
            if not result.success:
                continue

            claimed = candidate.model_copy(update={
                "origin": CredentialOrigin.CLAIMABLE_POOL,
                "owner_id": user.id,
                "claimed_at": datetime.utcnow(),
            })
            self.pool.set_active(claimed)
            self.events.publish(EventTopic.TEMP_KEY_CLAIMED, claimed.secret)
            return True, "A new, healthy API key has been applied automatically!"

        return False, "Auto-select failed. No healthy API keys found."

    async def _refresh_veo_tokens(self) -> tuple[bool, str]:
        tokens = await self.pool.refresh_auth_tokens()
        if not tokens:
            return False, "Could not fetch any video auth tokens."

        self.events.publish(EventTopic.VEO_TOKENS_REFRESHED, tokens)
        return True, f"{len(tokens)} video auth token(s) refreshed."
