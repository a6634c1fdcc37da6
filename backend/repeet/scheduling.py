"""
Review scheduling and mastery transitions.

The spacing rule is fixed: a rating of N schedules the next review N calendar
days out. Two consecutive ratings of 5 master a problem, and mastery is
terminal.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple

from .clock import next_review_date
from .errors import ValidationError
from .schemas import RATING_MAX, RATING_MIN, Active, Attempt, Mastered, Problem

PERFECT_RATING = 5
MASTERY_STREAK = 2


def validate_rating(rating: int) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(f"Rating must be an integer between {RATING_MIN} and {RATING_MAX}")
    if not RATING_MIN <= rating <= RATING_MAX:
        raise ValidationError(f"Rating must be between {RATING_MIN} and {RATING_MAX}, got {rating}")
    return rating


def validate_time_spent(minutes: Optional[int]) -> Optional[int]:
    if minutes is None:
        return None
    if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 0:
        raise ValidationError("time_spent_minutes must be a non-negative integer")
    return minutes


def apply_rating(
    problem: Problem,
    rating: int,
    *,
    now: datetime,
    today: date,
    attempt_id: str,
    notes: Optional[str] = None,
    time_spent_minutes: Optional[int] = None,
) -> Tuple[Problem, Attempt]:
    """Return the problem after one rating event, plus the attempt to append."""
    validate_rating(rating)
    validate_time_spent(time_spent_minutes)

    attempt = Attempt(
        id=attempt_id,
        problem_id=problem.id,
        rating=rating,
        attempted_at=now,
        notes=notes or None,
        time_spent_minutes=time_spent_minutes,
    )

    consecutive_fives = problem.consecutive_fives + 1 if rating == PERFECT_RATING else 0

    if isinstance(problem.state, Mastered):
        state = problem.state
    elif consecutive_fives >= MASTERY_STREAK:
        state = Mastered(mastered_at=now)
    else:
        # A queued problem always becomes active on its first rating.
        state = Active(next_review_date=next_review_date(rating, today))

    updated = problem.model_copy(
        update={
            "state": state,
            "attempt_count": problem.attempt_count + 1,
            "consecutive_fives": consecutive_fives,
            "last_rating": rating,
            "attempts": [*problem.attempts, attempt],
        }
    )
    return updated, attempt


def _review_key(problem: Problem):
    last = problem.last_attempt
    if last is None:
        return (1,)
    return (0, last.attempted_at, last.rating)


def order_for_review(problems: Iterable[Problem]) -> List[Problem]:
    """Oldest last attempt first, then lowest last rating. Unattempted problems go last."""
    return sorted(problems, key=_review_key)


def order_mastered(problems: Iterable[Problem]) -> List[Problem]:
    """Most recently mastered first."""
    return sorted(problems, key=lambda problem: problem.mastered_at, reverse=True)


def order_queue(problems: Iterable[Problem]) -> List[Problem]:
    return sorted(problems, key=lambda problem: problem.queue_position)


def _created_key(problem: Problem):
    position = problem.queue_position
    return (problem.created_at, position is None, position or 0, problem.id)


def order_created(problems: Iterable[Problem]) -> List[Problem]:
    """Oldest first. Rows from one bulk create keep queue order, then fall back to id."""
    return sorted(problems, key=_created_key)
