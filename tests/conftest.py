"""
Shared fixtures for the invoice memory tests.

Run with: pytest tests/ -v
"""

import sys
from pathlib import Path

import pytest
from loguru import logger

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from invoice_memory.memory.store import InMemoryMemoryStore  # noqa: E402
from helpers import NOW, fixed_clock  # noqa: E402


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def empty_store():
    return InMemoryMemoryStore()


@pytest.fixture
def log_messages():
    """Capture loguru messages emitted during a test."""
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record['message']), level="DEBUG")
    yield messages
    logger.remove(handler_id)
