"""Shared pytest fixtures."""

from datetime import UTC, datetime

import pytest

from sequencer.core.db import MemorySequenceStore
from sequencer.core.modules.sequence.service import SequenceService


class FakeClock:
    """Clock returning a settable moment."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    """Clock fixed at 2025-01-15 10:00 UTC."""
    return FakeClock(datetime(2025, 1, 15, 10, 0, tzinfo=UTC))


@pytest.fixture
def store():
    return MemorySequenceStore()


@pytest.fixture
def service(store, clock):
    return SequenceService(store, clock=clock)
