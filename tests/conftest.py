from __future__ import annotations

import pytest

from fakes import FakeClock, FakeGeolocation


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def geolocation() -> FakeGeolocation:
    return FakeGeolocation()
