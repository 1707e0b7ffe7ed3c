"""Shared fixtures: temporary database, record store, storage and fake media tools."""
import asyncio
from pathlib import Path

import numpy as np
import pytest
import pytest_asyncio

from lyricclip.db.database import close_db, create_engine, create_session_maker, init_db
from lyricclip.db.record_store import RecordStore
from lyricclip.services.storage_service import StorageService
from lyricclip.utils.ffmpeg import DecodeError, MediaInfo, ProbeError


class FakeMedia:
    """Stands in for ffprobe/ffmpeg decoding and counts calls."""

    def __init__(self, duration=2.0, probe_error=False, decode_error=False):
        self.duration = duration
        self.probe_error = probe_error
        self.decode_error = decode_error
        self.probe_calls = 0
        self.decode_calls = 0
        self.decoded_paths = []

    async def probe(self, path):
        self.probe_calls += 1
        if self.probe_error:
            raise ProbeError("unreadable header")
        return MediaInfo(
            duration=self.duration,
            sample_rate=44100,
            has_audio=True,
            has_video=False,
            bit_rate=128000,
            format_name="mp3",
        )

    async def decode(self, path, sample_rate):
        self.decode_calls += 1
        self.decoded_paths.append(Path(path))
        await asyncio.sleep(0)
        if self.decode_error:
            raise DecodeError("ffmpeg exited with code 1")
        # Loud half-second burst at the start of every second
        samples = np.zeros(int(sample_rate * self.duration), dtype=np.float32)
        for second in range(int(self.duration)):
            start = second * sample_rate
            samples[start:start + sample_rate // 2] = 0.8
        return samples


@pytest.fixture
def fake_media():
    return FakeMedia


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield create_session_maker(engine)
    await close_db(engine)


@pytest_asyncio.fixture
async def store(session_maker):
    return RecordStore(session_maker)


@pytest_asyncio.fixture
async def storage(store, tmp_path):
    return StorageService(store, tmp_path / "uploads")


@pytest.fixture
def media_files(tmp_path):
    """Small placeholder media files (contents are never decoded in tests)."""
    source = tmp_path / "source"
    source.mkdir()
    video = source / "clip.mp4"
    audio = source / "song.mp3"
    video.write_bytes(b"fake video bytes")
    audio.write_bytes(b"fake audio bytes")
    return video, audio
