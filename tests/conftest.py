from __future__ import annotations

import pytest

from oncall_sync.prompt import StaticPrompt
from tests.fixtures import FakeCalendarStore


@pytest.fixture
def store():
    return FakeCalendarStore()


@pytest.fixture
def accept():
    return StaticPrompt(True)


@pytest.fixture
def decline():
    return StaticPrompt(False)
