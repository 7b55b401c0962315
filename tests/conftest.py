import pytest
from loguru import logger

from tests.helpers import FakeClock


@pytest.fixture
def log_messages():
    """Collect loguru messages emitted during a test."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    try:
        logger.remove(handler_id)
    except ValueError:
        # configure_logging() already removed it
        pass


@pytest.fixture
def clock():
    return FakeClock()
