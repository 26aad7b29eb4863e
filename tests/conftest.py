import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_store(tmp_path):
    from db import SQLiteStore

    store = SQLiteStore(str(tmp_path / "test.db"), max_connections=4)
    store.init()
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def corpus_path():
    return ROOT / "content_items.json"


@pytest.fixture
def recorded_sleeps():
    """Fake ``asyncio.sleep`` that records requested delays without waiting."""

    delays = []

    async def _sleep(seconds):
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
