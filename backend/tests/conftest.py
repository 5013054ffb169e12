import os
import sys
from pathlib import Path

import pytest

# Keep settings hermetic before the first import of promosync.core.config
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SINK_MODE", "database")

# Add the backend directory so `promosync` imports resolve during tests
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))


@pytest.fixture
def anyio_backend():
    return "asyncio"
