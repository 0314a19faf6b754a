"""Shared fixtures: manual clock, recording sleep, recording log sink."""

import pytest

from aiguard.services.logger import Logger, LoggerConfig, LogLevel, LogRecord


class ManualClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep stand-in that records requested durations (seconds)."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def records() -> list[LogRecord]:
    return []


@pytest.fixture
def logger(records) -> Logger:
    return Logger(
        LoggerConfig(min_level=LogLevel.DEBUG, service="test-ai", sink=records.append)
    )
