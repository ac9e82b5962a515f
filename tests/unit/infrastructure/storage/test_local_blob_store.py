"""Tests for the filesystem blob store."""

import asyncio
from pathlib import Path

import pytest

from trackforge.domain.exceptions import StorageWriteFailed
from trackforge.infrastructure.storage import LocalBlobStore


@pytest.fixture
def store(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "media", public_base_url="/media/")


class TestLocalBlobStore:
    async def test_upload_writes_file(self, store: LocalBlobStore, tmp_path: Path) -> None:
        await store.upload("user-1/suno/job.mp3", b"abc", "audio/mpeg")

        assert (tmp_path / "media" / "user-1" / "suno" / "job.mp3").read_bytes() == b"abc"
        assert await store.exists("user-1/suno/job.mp3") is True

    async def test_existing_path_is_never_overwritten(self, store: LocalBlobStore) -> None:
        await store.upload("a/b.mp3", b"first", "audio/mpeg")

        with pytest.raises(StorageWriteFailed):
            await store.upload("a/b.mp3", b"second", "audio/mpeg")

    async def test_concurrent_writers_produce_one_object(
        self, store: LocalBlobStore, tmp_path: Path
    ) -> None:
        results = await asyncio.gather(
            *(store.upload("race.mp3", bytes([i]), "audio/mpeg") for i in range(5)),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, StorageWriteFailed)]
        assert len(failures) == 4
        assert len((tmp_path / "media" / "race.mp3").read_bytes()) == 1

    @pytest.mark.parametrize("path", ["../escape.mp3", "/abs/path.mp3", "a/../../b.mp3"])
    async def test_paths_outside_root_are_refused(
        self, store: LocalBlobStore, path: str
    ) -> None:
        with pytest.raises(StorageWriteFailed):
            await store.upload(path, b"x", "audio/mpeg")

    def test_public_url_joins_base(self, store: LocalBlobStore) -> None:
        assert store.public_url("user-1/x.mp3") == "/media/user-1/x.mp3"
