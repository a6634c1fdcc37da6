"""
Pydantic models for problems, attempts and settings.

``Problem`` keeps its lifecycle in an explicit tagged variant: the queue
position only exists while queued, the review date only while active and the
mastery timestamp once mastered. ``ProblemRecord`` is the flat shape both
storage backends read and write and the HTTP API returns.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, Iterable, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOCAL_USER_ID = "local"
RATING_MIN = 1
RATING_MAX = 5


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class ProblemStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    MASTERED = "mastered"


class Queued(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["queued"] = "queued"
    queue_position: int = Field(ge=1)


class Active(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["active"] = "active"
    next_review_date: date


class Mastered(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["mastered"] = "mastered"
    mastered_at: datetime


LifecycleState = Annotated[Union[Queued, Active, Mastered], Field(discriminator="status")]


class Attempt(BaseModel):
    """One rating event. Never modified after it is written."""

    model_config = ConfigDict(frozen=True)

    id: str
    problem_id: str
    rating: int = Field(ge=RATING_MIN, le=RATING_MAX)
    attempted_at: datetime
    notes: Optional[str] = None
    time_spent_minutes: Optional[int] = Field(default=None, ge=0)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class ProblemInput(BaseModel):
    """Fields a caller supplies when adding a problem to the queue."""

    problem_name: str = Field(min_length=1)
    problem_link: Optional[str] = None
    difficulty: Difficulty
    source: Optional[str] = None
    topic: Optional[str] = None

    @field_validator("problem_name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("difficulty", mode="before")
    @classmethod
    def _normalize_difficulty(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().capitalize()
        return value

    @field_validator("problem_link", "source", "topic", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Any:
        return _blank_to_none(value)


class ProblemRecord(BaseModel):
    """Flat problem shape, identical across backends."""

    id: str
    user_id: str
    problem_name: str
    problem_link: Optional[str] = None
    difficulty: Difficulty
    status: ProblemStatus
    queue_position: Optional[int] = None
    next_review_date: Optional[date] = None
    attempt_count: int = 0
    consecutive_fives: int = 0
    last_rating: Optional[int] = None
    created_at: datetime
    mastered_at: Optional[datetime] = None
    source: Optional[str] = None
    topic: Optional[str] = None
    attempts: List[Attempt] = Field(default_factory=list)


class Problem(BaseModel):
    id: str
    user_id: str
    problem_name: str
    problem_link: Optional[str] = None
    difficulty: Difficulty
    topic: Optional[str] = None
    source: Optional[str] = None
    state: LifecycleState
    attempt_count: int = Field(default=0, ge=0)
    consecutive_fives: int = Field(default=0, ge=0)
    last_rating: Optional[int] = Field(default=None, ge=RATING_MIN, le=RATING_MAX)
    created_at: datetime
    attempts: List[Attempt] = Field(default_factory=list)

    @property
    def status(self) -> ProblemStatus:
        return ProblemStatus(self.state.status)

    @property
    def queue_position(self) -> Optional[int]:
        return self.state.queue_position if isinstance(self.state, Queued) else None

    @property
    def next_review_date(self) -> Optional[date]:
        return self.state.next_review_date if isinstance(self.state, Active) else None

    @property
    def mastered_at(self) -> Optional[datetime]:
        return self.state.mastered_at if isinstance(self.state, Mastered) else None

    @property
    def last_attempt(self) -> Optional[Attempt]:
        if not self.attempts:
            return None
        return max(self.attempts, key=lambda attempt: attempt.attempted_at)

    @classmethod
    def from_record(
        cls,
        record: Union[ProblemRecord, Mapping[str, Any]],
        attempts: Optional[Iterable[Attempt]] = None,
    ) -> "Problem":
        """Build the tagged lifecycle from a flat record (database row or local blob entry)."""
        if isinstance(record, ProblemRecord):
            data: Dict[str, Any] = record.model_dump()
        else:
            data = dict(record)

        status = data.pop("status")
        if isinstance(status, ProblemStatus):
            status = status.value
        queue_position = data.pop("queue_position", None)
        review_date = data.pop("next_review_date", None)
        mastered_at = data.pop("mastered_at", None)

        if status == ProblemStatus.QUEUED.value:
            data["state"] = {"status": status, "queue_position": queue_position}
        elif status == ProblemStatus.ACTIVE.value:
            data["state"] = {"status": status, "next_review_date": review_date}
        else:
            data["state"] = {"status": status, "mastered_at": mastered_at}

        if attempts is not None:
            data["attempts"] = list(attempts)
        data["attempts"] = sorted(
            data.get("attempts") or [],
            key=lambda attempt: attempt.attempted_at if isinstance(attempt, Attempt) else attempt["attempted_at"],
        )
        return cls.model_validate(data)

    def to_record(self, include_attempts: bool = True) -> ProblemRecord:
        return ProblemRecord(
            id=self.id,
            user_id=self.user_id,
            problem_name=self.problem_name,
            problem_link=self.problem_link,
            difficulty=self.difficulty,
            status=self.status,
            queue_position=self.queue_position,
            next_review_date=self.next_review_date,
            attempt_count=self.attempt_count,
            consecutive_fives=self.consecutive_fives,
            last_rating=self.last_rating,
            created_at=self.created_at,
            mastered_at=self.mastered_at,
            source=self.source,
            topic=self.topic,
            attempts=list(self.attempts) if include_attempts else [],
        )


class UserSettings(BaseModel):
    user_id: str
    last_audit_date: Optional[date] = None
    audit_problem_id: Optional[str] = None
    daily_goal: int = Field(default=3, ge=1)
    enable_audits: bool = True
    theme: str = "dark"


class Stats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int = 0
    queued: int = 0
    active: int = 0
    mastered: int = 0
    due_today: int = Field(default=0, alias="dueToday")
    mastery_rate: int = Field(default=0, alias="masteryRate")


class Dashboard(BaseModel):
    """Everything the main screen loads at once."""

    queue: List[Problem]
    review: List[Problem]
    mastered: List[Problem]
    stats: Stats
    audit: Optional[Problem] = None
