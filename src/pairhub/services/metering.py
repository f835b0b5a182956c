"""Metering scheduler — charges connected sessions for elapsed time.

STARTUP USAGE:
    scheduler = AsyncIOScheduler()
    metering.attach(scheduler)
    scheduler.start()

Every tick charges whole elapsed minutes only; the sub-minute remainder
stays on ``last_charged_at`` and is billed by a later tick. Owners whose
balance hits zero get their connected sessions suspended; the logouts
that follow run as background tasks owned by the orchestrator.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pairhub.config import settings
from pairhub.database.repository import SessionRepository, UserRepository
from pairhub.database.store import RecordStore
from pairhub.models.base import utcnow
from pairhub.models.session import SessionStatus
from pairhub.services.orchestrator import PairingOrchestrator
from pairhub.services.registry import LiveHandle, SessionRegistry

logger = logging.getLogger(__name__)

MINUTE = timedelta(minutes=1)
JOB_ID = "metering-sweep"


@dataclass
class MeteringReport:
    charged_sessions: int = 0
    coins_charged: int = 0
    suspended: list[str] = field(default_factory=list)


class MeteringScheduler:
    def __init__(
        self,
        store: RecordStore,
        registry: SessionRegistry,
        orchestrator: PairingOrchestrator,
        coins_per_minute: int | None = None,
        interval_seconds: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._registry = registry
        self._orchestrator = orchestrator
        self._cost = settings.coins_per_minute if coins_per_minute is None else coins_per_minute
        self._interval = (
            settings.metering_interval_seconds if interval_seconds is None else interval_seconds
        )
        self._clock = clock

    def attach(self, scheduler) -> None:
        """Register the periodic sweep with an APScheduler instance."""
        scheduler.add_job(
            self.tick,
            "interval",
            seconds=self._interval,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Metering sweep scheduled every %ds", self._interval)

    async def tick(self, now: datetime | None = None) -> MeteringReport:
        """Run one sweep over a consistent snapshot of sessions and balances."""
        now = now or self._clock()
        report = MeteringReport()
        evicted: list[LiveHandle] = []

        async with self._store.transaction() as tx:
            sessions = await SessionRepository(tx.session).list_by_status(SessionStatus.CONNECTED)
            owners = await UserRepository(tx.session).find_many(s.owner_user_id for s in sessions)
            charged_owners: set[str] = set()

            for meta in sessions:
                owner = owners.get(meta.owner_user_id)
                if owner is None:
                    continue
                if meta.last_charged_at is None:
                    meta.last_charged_at = meta.connected_at or now
                elapsed = now - meta.last_charged_at
                if elapsed < MINUTE:
                    continue
                minutes = elapsed // MINUTE
                taken = owner.debit(minutes * self._cost)
                meta.last_charged_at += minutes * MINUTE
                charged_owners.add(owner.id)
                report.charged_sessions += 1
                report.coins_charged += taken
                logger.debug(
                    "Charged %d coin(s) for %d min on %s (owner %s balance %d)",
                    taken, minutes, meta.id, owner.id, owner.coins,
                )

            for meta in sessions:
                owner = owners.get(meta.owner_user_id)
                if owner is None or owner.id not in charged_owners or owner.coins > 0:
                    continue
                if meta.apply_transition(SessionStatus.SUSPENDED, now):
                    report.suspended.append(meta.id)
                    handle = self._registry.evict_in(tx, meta.id)
                    if handle is not None:
                        evicted.append(handle)

        for session_id in report.suspended:
            logger.info("Session %s suspended: owner out of coins", session_id)
        for handle in evicted:
            self._orchestrator.spawn_terminate(handle, reason="insufficient balance")

        if report.charged_sessions:
            logger.info(
                "Metering: %d session(s) charged, %d coin(s), %d suspended",
                report.charged_sessions, report.coins_charged, len(report.suspended),
            )
        return report
