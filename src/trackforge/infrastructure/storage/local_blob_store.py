"""Filesystem blob store with no-overwrite uploads."""

import asyncio
import logging
from pathlib import Path, PurePosixPath

from trackforge.domain.exceptions import StorageWriteFailed
from trackforge.domain.ports import IBlobStore

logger = logging.getLogger(__name__)


class LocalBlobStore(IBlobStore):
    """Stores objects as files under a root directory.

    Hey future me - "xb" mode is O_CREAT|O_EXCL: the OS refuses to open a path that
    already exists, so two writers can never clobber each other's file. File IO runs
    in a worker thread to keep the event loop free.
    """

    def __init__(self, root_path: Path, public_base_url: str = "/media") -> None:
        self._root = Path(root_path)
        self._public_base_url = public_base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise StorageWriteFailed(path, "path escapes the storage root")
        return self._root.joinpath(*relative.parts)

    def _write_exclusive(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "xb") as handle:
            handle.write(data)

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)
        try:
            await asyncio.to_thread(self._write_exclusive, target, data)
        except FileExistsError as e:
            raise StorageWriteFailed(path, "object already exists") from e
        except OSError as e:
            raise StorageWriteFailed(path, str(e)) from e
        logger.debug("Stored %d bytes (%s) at %s", len(data), content_type, path)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).exists)

    def public_url(self, path: str) -> str:
        return f"{self._public_base_url}/{path}"
