from datetime import datetime, timezone

import pytest

from repeet.schemas import Active, Difficulty, Mastered, Problem, Queued
from repeet.stats import collect_stats, compute_stats, mastery_rate

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _problems(queued=0, active=0, mastered=0):
    states = (
        [Queued(queue_position=index + 1) for index in range(queued)]
        + [Active(next_review_date=NOW.date()) for _ in range(active)]
        + [Mastered(mastered_at=NOW) for _ in range(mastered)]
    )
    return [
        Problem(
            id=f"p-{index}",
            user_id="local",
            problem_name=f"Problem {index}",
            difficulty=Difficulty.MEDIUM,
            state=state,
            created_at=NOW,
        )
        for index, state in enumerate(states)
    ]


def test_counts_and_mastery_rate():
    problems = _problems(queued=3, active=2, mastered=5)
    review = [problem for problem in problems if isinstance(problem.state, Active)]

    stats = compute_stats(problems, review)

    assert stats.total == 10
    assert (stats.queued, stats.active, stats.mastered) == (3, 2, 5)
    assert stats.due_today == 2
    assert stats.mastery_rate == 71
    assert stats.model_dump(by_alias=True)["masteryRate"] == 71
    assert stats.model_dump(by_alias=True)["dueToday"] == 2


def test_mastery_rate_is_zero_without_started_problems():
    stats = compute_stats(_problems(queued=4), [])

    assert stats.total == 4
    assert stats.mastery_rate == 0


@pytest.mark.parametrize(
    "active, mastered, expected",
    [(1, 1, 50), (7, 1, 13), (1, 7, 88), (0, 3, 100), (3, 0, 0), (199, 1, 1), (2, 1, 33)],
)
def test_mastery_rate_rounds_half_up(active, mastered, expected):
    assert mastery_rate(active, mastered) == expected


@pytest.mark.asyncio
async def test_collect_stats_reads_from_store(local_store):
    first = await local_store.create({"problem_name": "Two Sum", "difficulty": "Easy"})
    second = await local_store.create({"problem_name": "Valid Anagram", "difficulty": "Easy"})
    await local_store.create({"problem_name": "Group Anagrams", "difficulty": "Medium"})
    await local_store.rate(first.id, 5)
    await local_store.rate(first.id, 5)
    await local_store.rate(second.id, 2)

    stats = await collect_stats(local_store)

    assert stats.total == 3
    assert (stats.queued, stats.active, stats.mastered) == (1, 1, 1)
    assert stats.due_today == 1
    assert stats.mastery_rate == 50
