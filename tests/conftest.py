import pytest

from startup_tracker import StartupTracker

from tests.helpers import START, RecordingSink


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def tracker(sink) -> StartupTracker:
    return StartupTracker(start_time=START, sinks=[sink])
