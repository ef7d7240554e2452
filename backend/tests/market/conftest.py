"""Fixtures for market relay tests."""

import pytest
from fakes import FakeGateway, RecordingFeed


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def feed() -> RecordingFeed:
    return RecordingFeed()
