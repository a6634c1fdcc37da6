"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "text")

from repeet.clock import Clock
from repeet.storage import LocalProblemStore


class FixedClock(Clock):
    """Clock that only moves when a test tells it to."""

    def __init__(self, start: datetime):
        super().__init__(timezone.utc)
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 10, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def store_path(tmp_path) -> Path:
    return tmp_path / "repeet-problems.yaml"


@pytest.fixture
def local_store(store_path, clock) -> LocalProblemStore:
    return LocalProblemStore(store_path, clock=clock)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)
