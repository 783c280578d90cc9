"""Durable key-value storage used for the contact snapshot and sync state."""

import asyncio
from pathlib import Path
from typing import Protocol

from contactsync.exceptions import PersistenceError


class KeyValueStorage(Protocol):
    """What the store and the synchronizer need from durable storage."""

    async def load(self, key: str) -> bytes | None: ...

    async def save(self, key: str, data: bytes) -> None: ...


class MemoryStorage:
    """In-process storage, handy for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, bytes] | None = None):
        self.data: dict[str, bytes] = dict(initial or {})
        self.writes: list[str] = []

    async def load(self, key: str) -> bytes | None:
        return self.data.get(key)

    async def save(self, key: str, data: bytes) -> None:
        self.writes.append(key)
        self.data[key] = data


class FileStorage:
    """One JSON file per key under ``directory``.

    Writes go to a temporary file first and are renamed into place, so a crash
    mid-write leaves the previous snapshot intact.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe_key = key.replace("/", "_").replace("::", ".")
        return self.directory / f"{safe_key}.json"

    async def load(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise PersistenceError(key, e) from e

    async def save(self, key: str, data: bytes) -> None:
        try:
            await asyncio.to_thread(self._write, self._path(key), data)
        except OSError as e:
            raise PersistenceError(key, e) from e

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_bytes(data)
        tmp.replace(path)
