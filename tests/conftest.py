"""
Pytest configuration for pullstream tests.

Puts the project root on the Python path so the tests run against the
working tree without an install.
"""

import sys
from pathlib import Path

import pytest

root_dir = Path(__file__).parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

from pullstream.utils import InMemoryPageSource


@pytest.fixture
def cleanup_log():
    """Shared list that generator bodies append to from their finally blocks"""
    return []


@pytest.fixture
def counting_source(cleanup_log):
    """Factory of an endless generator that records every pull and its cleanup"""
    pulls = []

    def numbers():
        i = 0
        try:
            while True:
                pulls.append(i)
                yield i
                i += 1
        finally:
            cleanup_log.append("numbers")

    numbers.pulls = pulls
    return numbers


@pytest.fixture
def six_item_pages():
    """2 items per page across 3 pages"""
    return InMemoryPageSource(range(6), page_size=2)
