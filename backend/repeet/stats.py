import asyncio
from typing import Iterable, Sequence

from .schemas import Problem, ProblemStatus, Stats
from .storage import BaseProblemStore


def mastery_rate(active: int, mastered: int) -> int:
    """Percentage of started problems that are mastered, rounded half up."""
    started = active + mastered
    if started == 0:
        return 0
    return (200 * mastered + started) // (2 * started)


def compute_stats(all_problems: Iterable[Problem], review_problems: Sequence[Problem]) -> Stats:
    counts = {status: 0 for status in ProblemStatus}
    total = 0
    for problem in all_problems:
        counts[problem.status] += 1
        total += 1

    return Stats(
        total=total,
        queued=counts[ProblemStatus.QUEUED],
        active=counts[ProblemStatus.ACTIVE],
        mastered=counts[ProblemStatus.MASTERED],
        due_today=len(review_problems),
        mastery_rate=mastery_rate(counts[ProblemStatus.ACTIVE], counts[ProblemStatus.MASTERED]),
    )


async def collect_stats(store: BaseProblemStore) -> Stats:
    all_problems, review_problems = await asyncio.gather(store.list_all(), store.list_active())
    return compute_stats(all_problems, review_problems)
