"""Durable logo storage and the background queue that writes to it."""

import asyncio
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


def logo_key(domain: str, source: str) -> str:
    """Storage key for a domain's logo from one source."""
    digest = hashlib.md5(domain.encode("utf-8")).hexdigest()
    return f"{digest}-{source}"


class LogoStore(Protocol):
    async def write(self, key: str, data: bytes) -> None: ...

    async def read(self, key: str) -> bytes | None: ...


class DiskLogoStore:
    """Content stored as ``<key>.png`` files under one directory."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def path_for(self, key: str) -> Path:
        return self.base_dir / f"{key}.png"

    def _write_sync(self, key: str, data: bytes) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        target = self.path_for(key)
        # Readers only ever see complete files
        fd, tmp_name = tempfile.mkstemp(dir=self.base_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read_sync(self, key: str) -> bytes | None:
        path = self.path_for(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    async def write(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write_sync, key, data)

    async def read(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read_sync, key)


class PersistenceQueue:
    """Bounded fire-and-forget writer.

    ``submit`` never blocks and never raises; a full queue drops the write.
    Write failures are logged and otherwise ignored.
    """

    def __init__(self, store: LogoStore, maxsize: int = 100):
        self.store = store
        self._queue: asyncio.Queue[tuple[str, bytes]] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None
        self.written = 0
        self.dropped = 0
        self.failed = 0

    def submit(self, key: str, data: bytes) -> bool:
        try:
            self._queue.put_nowait((key, bytes(data)))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug(f"Persistence queue full, dropping {key}")
            return False
        self._ensure_worker()
        return True

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while True:
            key, data = await self._queue.get()
            try:
                await self.store.write(key, data)
                self.written += 1
            except Exception as e:
                self.failed += 1
                logger.warning(f"Failed to persist logo {key}: {e}")
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every submitted write has been attempted."""
        if self._worker is not None:
            await self._queue.join()

    async def close(self) -> None:
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
