"""
Remote problem store for signed-in users.

Problems, attempts and settings live in Supabase PostgreSQL and are accessed
with plain SQL via asyncpg. Every statement is scoped to the authenticated
user's id.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import asyncpg

from .clock import Clock
from .database import get_db_pool
from .errors import NotFoundError, StorageUnavailableError, UnauthenticatedError
from .logging_config import get_logger
from .scheduling import (
    apply_rating,
    order_created,
    order_for_review,
    order_mastered,
    validate_rating,
    validate_time_spent,
)
from .schemas import Attempt, Problem, UserSettings
from .storage import BaseProblemStore, ProblemData, build_queued_problem, validate_problem_inputs

logger = get_logger("repeet.remote_storage")

PROBLEM_COLUMNS = """
    id, user_id, problem_name, problem_link, difficulty, status, queue_position,
    next_review_date, attempt_count, consecutive_fives, last_rating, created_at,
    mastered_at, source, topic
"""

SELECT_PROBLEMS_BY_STATUS = f"""
    SELECT {PROBLEM_COLUMNS}
    FROM problems
    WHERE user_id = $1 AND status = $2
    ORDER BY created_at ASC, id ASC
"""

SELECT_QUEUED_PROBLEMS = f"""
    SELECT {PROBLEM_COLUMNS}
    FROM problems
    WHERE user_id = $1 AND status = 'queued'
    ORDER BY queue_position ASC
"""

SELECT_ACTIVE_PROBLEMS = f"""
    SELECT {PROBLEM_COLUMNS}
    FROM problems
    WHERE user_id = $1 AND status = 'active'
    ORDER BY next_review_date ASC, created_at ASC, id ASC
"""

SELECT_ALL_PROBLEMS = f"""
    SELECT {PROBLEM_COLUMNS}
    FROM problems
    WHERE user_id = $1
    ORDER BY created_at ASC, queue_position ASC NULLS LAST, id ASC
"""

SELECT_PROBLEM = f"""
    SELECT {PROBLEM_COLUMNS}
    FROM problems
    WHERE id = $1 AND user_id = $2
"""

SELECT_PROBLEM_FOR_UPDATE = SELECT_PROBLEM + " FOR UPDATE"

SELECT_ATTEMPTS = """
    SELECT id, problem_id, rating, attempted_at, notes, time_spent_minutes
    FROM attempts
    WHERE problem_id = ANY($1::uuid[])
    ORDER BY attempted_at ASC
"""

LOCK_USER_QUEUE = "SELECT pg_advisory_xact_lock(hashtext($1))"

SELECT_MAX_QUEUE_POSITION = """
    SELECT COALESCE(MAX(queue_position), 0)
    FROM problems
    WHERE user_id = $1 AND status = 'queued'
"""

INSERT_PROBLEM = f"""
    INSERT INTO problems ({PROBLEM_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
"""

INSERT_ATTEMPT = """
    INSERT INTO attempts (id, problem_id, rating, attempted_at, notes, time_spent_minutes)
    VALUES ($1, $2, $3, $4, $5, $6)
"""

UPDATE_RATED_PROBLEM = """
    UPDATE problems
    SET status = $3,
        queue_position = $4,
        next_review_date = $5,
        attempt_count = $6,
        consecutive_fives = $7,
        last_rating = $8,
        mastered_at = $9
    WHERE id = $1 AND user_id = $2
"""

DELETE_PROBLEM = """
    DELETE FROM problems
    WHERE id = $1 AND user_id = $2
    RETURNING id
"""

SELECT_SETTINGS = """
    SELECT user_id, last_audit_date, audit_problem_id, daily_goal, enable_audits, theme
    FROM user_settings
    WHERE user_id = $1
"""

UPSERT_SETTINGS = """
    INSERT INTO user_settings
        (user_id, last_audit_date, audit_problem_id, daily_goal, enable_audits, theme, updated_at)
    VALUES ($1, $2, $3, $4, $5, $6, NOW())
    ON CONFLICT (user_id)
    DO UPDATE SET
        last_audit_date = EXCLUDED.last_audit_date,
        audit_problem_id = EXCLUDED.audit_problem_id,
        daily_goal = EXCLUDED.daily_goal,
        enable_audits = EXCLUDED.enable_audits,
        theme = EXCLUDED.theme,
        updated_at = NOW()
"""

MEDIUM_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _row_to_record(row: Any) -> Dict[str, Any]:
    return {
        key: str(value) if isinstance(value, uuid.UUID) else value
        for key, value in row.items()
    }


def _problem_id(problem_id: str) -> str:
    try:
        return str(uuid.UUID(str(problem_id)))
    except ValueError as exc:
        raise NotFoundError(f"Problem '{problem_id}' not found") from exc


def _problem_values(problem: Problem) -> tuple:
    record = problem.to_record(include_attempts=False)
    return (
        record.id,
        record.user_id,
        record.problem_name,
        record.problem_link,
        record.difficulty.value,
        record.status.value,
        record.queue_position,
        record.next_review_date,
        record.attempt_count,
        record.consecutive_fives,
        record.last_rating,
        record.created_at,
        record.mastered_at,
        record.source,
        record.topic,
    )


class RemoteProblemStore(BaseProblemStore):
    """PostgreSQL-backed store owned by one authenticated user."""

    def __init__(
        self,
        user_id: Optional[str],
        clock: Optional[Clock] = None,
        pool_getter: Callable[[], Awaitable[asyncpg.Pool]] = get_db_pool,
    ):
        self.user_id = user_id
        self.owner_id = user_id or ""
        self.clock = clock or Clock()
        self._pool_getter = pool_getter

    @asynccontextmanager
    async def _connection(self):
        if not self.user_id:
            raise UnauthenticatedError("The remote problem store requires a signed-in user")
        try:
            pool = await self._pool_getter()
            async with pool.acquire() as conn:
                yield conn
        except MEDIUM_ERRORS as exc:
            logger.error(
                "Remote problem store failure",
                user_id=self.user_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise StorageUnavailableError(f"Remote problem store unavailable: {exc}") from exc

    async def _with_attempts(self, conn, rows: Sequence[Any]) -> List[Problem]:
        if not rows:
            return []
        attempt_rows = await conn.fetch(SELECT_ATTEMPTS, [row["id"] for row in rows])
        attempts_by_problem: Dict[str, List[Attempt]] = defaultdict(list)
        for attempt_row in attempt_rows:
            attempt = Attempt.model_validate(_row_to_record(attempt_row))
            attempts_by_problem[attempt.problem_id].append(attempt)

        problems = []
        for row in rows:
            record = _row_to_record(row)
            problems.append(Problem.from_record(record, attempts_by_problem.get(record["id"], [])))
        return problems

    async def list_queued(self) -> List[Problem]:
        async with self._connection() as conn:
            rows = await conn.fetch(SELECT_QUEUED_PROBLEMS, self.user_id)
        return [Problem.from_record(_row_to_record(row), []) for row in rows]

    async def list_active(self) -> List[Problem]:
        async with self._connection() as conn:
            rows = await conn.fetch(SELECT_ACTIVE_PROBLEMS, self.user_id)
            problems = await self._with_attempts(conn, rows)
        return order_for_review(problems)

    async def list_mastered(self) -> List[Problem]:
        async with self._connection() as conn:
            rows = await conn.fetch(SELECT_PROBLEMS_BY_STATUS, self.user_id, "mastered")
            problems = await self._with_attempts(conn, rows)
        return order_mastered(problems)

    async def list_all(self) -> List[Problem]:
        async with self._connection() as conn:
            rows = await conn.fetch(SELECT_ALL_PROBLEMS, self.user_id)
            problems = await self._with_attempts(conn, rows)
        return order_created(problems)

    async def get(self, problem_id: str) -> Problem:
        problem_id = _problem_id(problem_id)
        async with self._connection() as conn:
            row = await conn.fetchrow(SELECT_PROBLEM, problem_id, self.user_id)
            if row is None:
                raise NotFoundError(f"Problem '{problem_id}' not found")
            problems = await self._with_attempts(conn, [row])
        return problems[0]

    async def create_bulk(self, items: Sequence[ProblemData]) -> List[Problem]:
        inputs = validate_problem_inputs(items)
        if not inputs:
            return []

        async with self._connection() as conn:
            async with conn.transaction():
                # Serializes position assignment against other creates for this user
                await conn.execute(LOCK_USER_QUEUE, self.user_id)
                start = await conn.fetchval(SELECT_MAX_QUEUE_POSITION, self.user_id) + 1
                now = self.clock.now()
                created = [
                    build_queued_problem(self.user_id, data, start + offset, now)
                    for offset, data in enumerate(inputs)
                ]
                await conn.executemany(INSERT_PROBLEM, [_problem_values(problem) for problem in created])

        logger.info(
            "Problems added to remote queue",
            user_id=self.user_id,
            count=len(created),
            first_position=start,
            last_position=start + len(created) - 1,
        )
        return created

    async def rate(
        self,
        problem_id: str,
        rating: int,
        notes: Optional[str] = None,
        time_spent_minutes: Optional[int] = None,
    ) -> None:
        validate_rating(rating)
        validate_time_spent(time_spent_minutes)
        problem_id = _problem_id(problem_id)

        async with self._connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(SELECT_PROBLEM_FOR_UPDATE, problem_id, self.user_id)
                if row is None:
                    raise NotFoundError(f"Problem '{problem_id}' not found")

                now = self.clock.now()
                updated, attempt = apply_rating(
                    Problem.from_record(_row_to_record(row)),
                    rating,
                    now=now,
                    today=now.date(),
                    attempt_id=str(uuid.uuid4()),
                    notes=notes,
                    time_spent_minutes=time_spent_minutes,
                )
                await conn.execute(
                    INSERT_ATTEMPT,
                    attempt.id,
                    attempt.problem_id,
                    attempt.rating,
                    attempt.attempted_at,
                    attempt.notes,
                    attempt.time_spent_minutes,
                )
                await conn.execute(
                    UPDATE_RATED_PROBLEM,
                    problem_id,
                    self.user_id,
                    updated.status.value,
                    updated.queue_position,
                    updated.next_review_date,
                    updated.attempt_count,
                    updated.consecutive_fives,
                    updated.last_rating,
                    updated.mastered_at,
                )

        logger.info(
            "Problem rated",
            backend="remote",
            user_id=self.user_id,
            problem_id=problem_id,
            rating=rating,
            status=updated.status.value,
            consecutive_fives=updated.consecutive_fives,
            next_review_date=str(updated.next_review_date) if updated.next_review_date else None,
        )

    async def delete(self, problem_id: str) -> None:
        problem_id = _problem_id(problem_id)
        async with self._connection() as conn:
            # attempts are removed by ON DELETE CASCADE
            deleted = await conn.fetchval(DELETE_PROBLEM, problem_id, self.user_id)
        if deleted is None:
            raise NotFoundError(f"Problem '{problem_id}' not found")

        logger.info("Problem deleted", backend="remote", user_id=self.user_id, problem_id=problem_id)

    async def get_settings(self) -> UserSettings:
        async with self._connection() as conn:
            row = await conn.fetchrow(SELECT_SETTINGS, self.user_id)
        if row is None:
            return UserSettings(user_id=self.user_id)
        return UserSettings.model_validate(_row_to_record(row))

    async def save_settings(self, settings: UserSettings) -> None:
        async with self._connection() as conn:
            await conn.execute(
                UPSERT_SETTINGS,
                self.user_id,
                settings.last_audit_date,
                settings.audit_problem_id,
                settings.daily_goal,
                settings.enable_audits,
                settings.theme,
            )
