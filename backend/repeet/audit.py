"""
Daily mastery audit.

At most once per calendar day a mastered problem may be drawn at random for
re-verification. The outcome of the first check of the day, audit or no
audit, is remembered in the user's settings so every later check that day
returns the same answer.
"""

import asyncio
import random
import weakref
from typing import Optional

from .clock import Clock
from .errors import NotFoundError
from .logging_config import get_logger
from .schemas import Problem
from .storage import BaseProblemStore

logger = get_logger("repeet.audit")

DEFAULT_AUDIT_PROBABILITY = 0.10

# one lock per owner and event loop; a lock lives only while some check holds or awaits it
_owner_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, weakref.WeakValueDictionary[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _owner_lock(owner_id: str) -> asyncio.Lock:
    locks = _owner_locks.get(asyncio.get_running_loop())
    if locks is None:
        locks = weakref.WeakValueDictionary()
        _owner_locks[asyncio.get_running_loop()] = locks
    lock = locks.get(owner_id)
    if lock is None:
        lock = asyncio.Lock()
        locks[owner_id] = lock
    return lock


class AuditSelector:
    def __init__(
        self,
        store: BaseProblemStore,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        probability: float = DEFAULT_AUDIT_PROBABILITY,
    ):
        self.store = store
        self.clock = clock or Clock()
        self.rng = rng or random.Random()
        self.probability = probability

    async def _cached_audit(self, audit_problem_id: Optional[str]) -> Optional[Problem]:
        if not audit_problem_id:
            return None
        try:
            return await self.store.get(audit_problem_id)
        except NotFoundError:
            logger.info("Cached audit problem no longer exists", problem_id=audit_problem_id)
            return None

    async def _draw(self) -> Optional[Problem]:
        mastered = await self.store.list_mastered()
        if not mastered:
            return None
        if self.rng.random() >= self.probability:
            return None
        return self.rng.choice(mastered)

    async def check_daily_audit(self) -> Optional[Problem]:
        """Return today's audit problem, drawing one on the first check of the day."""
        async with _owner_lock(self.store.owner_id):
            settings = await self.store.get_settings()
            today = self.clock.today()

            if settings.last_audit_date == today:
                return await self._cached_audit(settings.audit_problem_id)

            audit = await self._draw() if settings.enable_audits else None
            await self.store.save_settings(
                settings.model_copy(
                    update={
                        "last_audit_date": today,
                        "audit_problem_id": audit.id if audit else None,
                    }
                )
            )

        logger.info(
            "Daily audit checked",
            owner_id=self.store.owner_id,
            audit_date=str(today),
            audit_problem_id=audit.id if audit else None,
            enabled=settings.enable_audits,
        )
        return audit
