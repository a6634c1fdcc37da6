from __future__ import annotations

import asyncio
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from .clock import Clock
from .errors import NotFoundError, StorageUnavailableError, ValidationError
from .logging_config import get_logger
from .scheduling import (
    apply_rating,
    order_created,
    order_for_review,
    order_mastered,
    order_queue,
    validate_rating,
    validate_time_spent,
)
from .schemas import (
    LOCAL_USER_ID,
    Problem,
    ProblemInput,
    ProblemRecord,
    ProblemStatus,
    Queued,
    UserSettings,
)

logger = get_logger("repeet.storage")

ProblemData = Union[ProblemInput, Mapping[str, Any]]


def validate_problem_inputs(items: Iterable[ProblemData]) -> List[ProblemInput]:
    """Validate every input up front so a bad entry never leaves a partial write."""
    validated: List[ProblemInput] = []
    for index, item in enumerate(items):
        if isinstance(item, ProblemInput):
            validated.append(item)
            continue
        try:
            validated.append(ProblemInput.model_validate(dict(item)))
        except PydanticValidationError as exc:
            error = exc.errors()[0]
            location = ".".join(str(part) for part in error["loc"]) or "input"
            raise ValidationError(f"Problem {index + 1}: {location}: {error['msg']}") from exc
    return validated


def build_queued_problem(owner_id: str, data: ProblemInput, position: int, now: datetime) -> Problem:
    return Problem(
        id=str(uuid.uuid4()),
        user_id=owner_id,
        problem_name=data.problem_name,
        problem_link=data.problem_link,
        difficulty=data.difficulty,
        topic=data.topic,
        source=data.source,
        state=Queued(queue_position=position),
        created_at=now,
    )


class BaseProblemStore:
    """Storage interface shared by the remote and local problem stores."""

    owner_id: str

    async def list_queued(self) -> List[Problem]:  # pragma: no cover - interface
        raise NotImplementedError

    async def list_active(self) -> List[Problem]:  # pragma: no cover - interface
        raise NotImplementedError

    async def list_mastered(self) -> List[Problem]:  # pragma: no cover - interface
        raise NotImplementedError

    async def list_all(self) -> List[Problem]:  # pragma: no cover - interface
        raise NotImplementedError

    async def get(self, problem_id: str) -> Problem:  # pragma: no cover - interface
        raise NotImplementedError

    async def create(self, data: ProblemData) -> Problem:
        created = await self.create_bulk([data])
        return created[0]

    async def create_bulk(self, items: Sequence[ProblemData]) -> List[Problem]:  # pragma: no cover - interface
        raise NotImplementedError

    async def rate(
        self,
        problem_id: str,
        rating: int,
        notes: Optional[str] = None,
        time_spent_minutes: Optional[int] = None,
    ) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, problem_id: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def get_settings(self) -> UserSettings:  # pragma: no cover - interface
        raise NotImplementedError

    async def save_settings(self, settings: UserSettings) -> None:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass
class _LocalBlob:
    problems: List[Problem] = field(default_factory=list)
    settings: Optional[UserSettings] = None


class LocalProblemStore(BaseProblemStore):
    """
    On-device store for signed-out use.

    Everything lives in one YAML document owned by the ``local`` pseudo-user.
    Mutations read the whole document, modify it and write it back while
    holding a single writer lock.
    """

    def __init__(self, path: Path, clock: Optional[Clock] = None):
        self.path = path
        self.clock = clock or Clock()
        self.owner_id = LOCAL_USER_ID
        self._write_lock = asyncio.Lock()

    def _read_blob(self) -> _LocalBlob:
        if not self.path.exists():
            return _LocalBlob()
        try:
            raw = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
            problems = [
                Problem.from_record(ProblemRecord.model_validate(entry))
                for entry in raw.get("problems") or []
            ]
            settings = raw.get("settings")
            return _LocalBlob(
                problems=problems,
                settings=UserSettings.model_validate(settings) if settings else None,
            )
        except (OSError, yaml.YAMLError, PydanticValidationError) as exc:
            logger.error("Failed to read local problem store", path=str(self.path), error=str(exc))
            raise StorageUnavailableError(f"Local problem store is unreadable: {exc}") from exc

    def _write_blob(self, blob: _LocalBlob) -> None:
        payload = {
            "problems": [problem.to_record().model_dump(mode="json") for problem in blob.problems],
            "settings": blob.settings.model_dump(mode="json") if blob.settings else None,
        }
        content = yaml.safe_dump(payload, allow_unicode=True, sort_keys=False)
        temp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(content, encoding="utf-8")
            os.replace(temp_path, self.path)
        except OSError as exc:
            logger.error("Failed to write local problem store", path=str(self.path), error=str(exc))
            raise StorageUnavailableError(f"Local problem store is not writable: {exc}") from exc

    async def _load(self) -> _LocalBlob:
        return await asyncio.to_thread(self._read_blob)

    async def _save(self, blob: _LocalBlob) -> None:
        await asyncio.to_thread(self._write_blob, blob)

    @staticmethod
    def _index_of(problems: List[Problem], problem_id: str) -> int:
        for index, problem in enumerate(problems):
            if problem.id == problem_id:
                return index
        raise NotFoundError(f"Problem '{problem_id}' not found")

    async def _with_status(self, status: ProblemStatus) -> List[Problem]:
        blob = await self._load()
        return [problem for problem in blob.problems if problem.status is status]

    async def list_queued(self) -> List[Problem]:
        return order_queue(await self._with_status(ProblemStatus.QUEUED))

    async def list_active(self) -> List[Problem]:
        return order_for_review(await self._with_status(ProblemStatus.ACTIVE))

    async def list_mastered(self) -> List[Problem]:
        return order_mastered(await self._with_status(ProblemStatus.MASTERED))

    async def list_all(self) -> List[Problem]:
        blob = await self._load()
        return order_created(blob.problems)

    async def get(self, problem_id: str) -> Problem:
        blob = await self._load()
        return blob.problems[self._index_of(blob.problems, problem_id)]

    async def create_bulk(self, items: Sequence[ProblemData]) -> List[Problem]:
        inputs = validate_problem_inputs(items)
        if not inputs:
            return []

        async with self._write_lock:
            blob = await self._load()
            positions = [p.queue_position for p in blob.problems if p.status is ProblemStatus.QUEUED]
            start = max(positions, default=0) + 1
            now = self.clock.now()
            created = [
                build_queued_problem(self.owner_id, data, start + offset, now)
                for offset, data in enumerate(inputs)
            ]
            blob.problems.extend(created)
            await self._save(blob)

        logger.info(
            "Problems added to local queue",
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

        async with self._write_lock:
            blob = await self._load()
            index = self._index_of(blob.problems, problem_id)
            now = self.clock.now()
            updated, attempt = apply_rating(
                blob.problems[index],
                rating,
                now=now,
                today=now.date(),
                attempt_id=str(uuid.uuid4()),
                notes=notes,
                time_spent_minutes=time_spent_minutes,
            )
            blob.problems[index] = updated
            await self._save(blob)

        logger.info(
            "Problem rated",
            backend="local",
            problem_id=problem_id,
            rating=rating,
            status=updated.status.value,
            consecutive_fives=updated.consecutive_fives,
            next_review_date=str(updated.next_review_date) if updated.next_review_date else None,
        )

    async def delete(self, problem_id: str) -> None:
        async with self._write_lock:
            blob = await self._load()
            removed = blob.problems.pop(self._index_of(blob.problems, problem_id))
            await self._save(blob)

        logger.info(
            "Problem deleted",
            backend="local",
            problem_id=problem_id,
            attempts_removed=len(removed.attempts),
        )

    async def get_settings(self) -> UserSettings:
        blob = await self._load()
        return blob.settings or UserSettings(user_id=self.owner_id)

    async def save_settings(self, settings: UserSettings) -> None:
        async with self._write_lock:
            blob = await self._load()
            blob.settings = settings.model_copy(update={"user_id": self.owner_id})
            await self._save(blob)
