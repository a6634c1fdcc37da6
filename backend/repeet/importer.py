"""
Parsing for bulk problem imports.

Each line reads ``name,difficulty,topic,url``. Everything after the name is
optional; a missing difficulty becomes ``Medium`` and lines without a name are
skipped. An unrecognised difficulty is left for validation to reject.
"""

from pathlib import Path
from typing import Dict, List, Optional

from .errors import NotFoundError
from .logging_config import get_logger

logger = get_logger("repeet.importer")

DEFAULT_DIFFICULTY = "Medium"

DATA_DIR = Path(__file__).parent / "data"

CURATED_LISTS: Dict[str, str] = {
    "grind-75": "grind-75.txt",
    "neetcode-150": "neetcode-150.txt",
}


def parse_problem_lines(text: str, source: Optional[str] = None) -> List[Dict[str, Optional[str]]]:
    """Turn pasted CSV-ish text into problem inputs ready for bulk creation."""
    problems = []
    for line in text.splitlines():
        if not line.strip():
            continue
        parts = [part.strip() for part in line.split(",")]
        name = parts[0]
        if not name:
            continue
        problems.append(
            {
                "problem_name": name,
                "difficulty": parts[1] if len(parts) > 1 and parts[1] else DEFAULT_DIFFICULTY,
                "topic": parts[2] if len(parts) > 2 and parts[2] else None,
                # URLs never contain commas in the curated lists, rejoin just in case
                "problem_link": ",".join(parts[3:]) or None,
                "source": source,
            }
        )
    return problems


def available_lists() -> List[str]:
    return sorted(CURATED_LISTS)


def load_curated_list(list_name: str) -> List[Dict[str, Optional[str]]]:
    filename = CURATED_LISTS.get(list_name)
    if filename is None:
        raise NotFoundError(f"Import list '{list_name}' not found")

    text = (DATA_DIR / filename).read_text(encoding="utf-8")
    problems = parse_problem_lines(text, source=list_name)
    logger.debug("Loaded curated import list", list_name=list_name, count=len(problems))
    return problems
