from __future__ import annotations

from pathlib import Path

import pytest

from tests.fakes import (
    FAKE_FFMPEG_FAIL,
    FAKE_FFMPEG_OK,
    FakeMongoClient,
    write_script,
)
from voxrelay.store import HistoryStore


@pytest.fixture
def voices_dir(tmp_path: Path) -> Path:
    return tmp_path / "voices"


@pytest.fixture
def fake_ffmpeg(tmp_path: Path) -> str:
    return str(write_script(tmp_path / "ffmpeg-ok", FAKE_FFMPEG_OK))


@pytest.fixture
def failing_ffmpeg(tmp_path: Path) -> str:
    return str(write_script(tmp_path / "ffmpeg-fail", FAKE_FFMPEG_FAIL))


@pytest.fixture
def mongo_client() -> FakeMongoClient:
    return FakeMongoClient()


@pytest.fixture
async def history_store(mongo_client: FakeMongoClient):
    store = HistoryStore(
        "mongodb://localhost:27017", client_factory=mongo_client
    )
    await store.open()
    try:
        yield store
    finally:
        await store.close()
