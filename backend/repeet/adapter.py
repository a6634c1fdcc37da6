"""
Storage adapter.

The single entry point the API layer talks to. Every call asks the session
provider whether someone is signed in and routes to that user's remote store,
or to the local store otherwise. Nothing is cached between calls, so signing
in or out takes effect on the very next operation. Local data is never
migrated to the remote store.
"""

from __future__ import annotations

import asyncio
import inspect
import random
from typing import Any, Callable, List, Optional, Sequence

from .audit import DEFAULT_AUDIT_PROBABILITY, AuditSelector
from .clock import Clock
from .importer import load_curated_list
from .logging_config import bind_storage_context, get_logger
from .schemas import Dashboard, Problem, Stats
from .stats import collect_stats
from .storage import BaseProblemStore, ProblemData

logger = get_logger("repeet.adapter")

SessionProvider = Callable[[], Any]
RemoteStoreFactory = Callable[[str], BaseProblemStore]


class StorageAdapter:
    def __init__(
        self,
        session_provider: SessionProvider,
        local_store: BaseProblemStore,
        remote_factory: RemoteStoreFactory,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        audit_probability: float = DEFAULT_AUDIT_PROBABILITY,
    ):
        self._session_provider = session_provider
        self._local_store = local_store
        self._remote_factory = remote_factory
        self.clock = clock or Clock()
        self.rng = rng or random.Random()
        self.audit_probability = audit_probability

    async def _current_session(self) -> Any:
        session = self._session_provider()
        if inspect.isawaitable(session):
            session = await session
        return session

    async def store(self) -> BaseProblemStore:
        """Resolve the backend for this call."""
        session = await self._current_session()
        if session is not None:
            store = self._remote_factory(session.sub)
            bind_storage_context("remote", store.owner_id)
            return store
        bind_storage_context("local", self._local_store.owner_id)
        return self._local_store

    async def list_queued(self) -> List[Problem]:
        return await (await self.store()).list_queued()

    async def list_active(self) -> List[Problem]:
        return await (await self.store()).list_active()

    async def list_mastered(self) -> List[Problem]:
        return await (await self.store()).list_mastered()

    async def list_all(self) -> List[Problem]:
        return await (await self.store()).list_all()

    async def get(self, problem_id: str) -> Problem:
        return await (await self.store()).get(problem_id)

    async def create(self, data: ProblemData) -> Problem:
        return await (await self.store()).create(data)

    async def create_bulk(self, items: Sequence[ProblemData]) -> List[Problem]:
        return await (await self.store()).create_bulk(items)

    async def rate(
        self,
        problem_id: str,
        rating: int,
        notes: Optional[str] = None,
        time_spent_minutes: Optional[int] = None,
    ) -> None:
        store = await self.store()
        await store.rate(problem_id, rating, notes=notes, time_spent_minutes=time_spent_minutes)

    async def delete(self, problem_id: str) -> None:
        await (await self.store()).delete(problem_id)

    async def get_stats(self) -> Stats:
        return await collect_stats(await self.store())

    def _audit_selector(self, store: BaseProblemStore) -> AuditSelector:
        return AuditSelector(store, clock=self.clock, rng=self.rng, probability=self.audit_probability)

    async def check_daily_audit(self) -> Optional[Problem]:
        return await self._audit_selector(await self.store()).check_daily_audit()

    async def load_dashboard(self) -> Dashboard:
        """Queue, review list, mastered list, stats and audit in one round trip."""
        store = await self.store()
        queue, review, mastered, stats, audit = await asyncio.gather(
            store.list_queued(),
            store.list_active(),
            store.list_mastered(),
            collect_stats(store),
            self._audit_selector(store).check_daily_audit(),
        )
        return Dashboard(queue=queue, review=review, mastered=mastered, stats=stats, audit=audit)

    async def import_curated(self, list_name: str) -> List[Problem]:
        items = load_curated_list(list_name)
        created = await (await self.store()).create_bulk(items)
        logger.info("Curated list imported", list_name=list_name, count=len(created))
        return created
