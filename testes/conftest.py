import os
import sys

# Ensure project root and this directory are on sys.path for imports
TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(TESTS_DIR, ".."))
for path in (PROJECT_ROOT, TESTS_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)

import pytest


@pytest.fixture
def no_sleep():
    """A ``sleep_fn`` that records delays instead of sleeping."""
    delays = []
    return delays.append, delays
