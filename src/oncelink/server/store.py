"""Object store adapter: keyed blobs with string metadata."""

from __future__ import annotations

import contextlib
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import aiofiles
import aiofiles.os

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Mapping

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_KEY_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]{0,254}$")


@dataclass
class StoredObject:
    """An object opened for reading. The body must be consumed or closed."""

    key: str
    size: int
    metadata: dict[str, str] = field(default_factory=dict)
    _handle: Any = field(default=None, repr=False)

    async def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await self._handle.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._handle is not None:
            handle, self._handle = self._handle, None
            await handle.close()


@runtime_checkable
class ObjectStore(Protocol):
    """Contract for the blob store backing transfers.

    Each single ``put``/``get``/``delete`` is expected to be atomic per
    key; nothing else is assumed.
    """

    async def put(
        self,
        key: str,
        body: bytes | AsyncIterable[bytes],
        metadata: Mapping[str, str] | None = None,
    ) -> int: ...

    async def get(self, key: str) -> StoredObject | None: ...

    async def head(self, key: str) -> dict[str, str] | None: ...

    async def delete(self, key: str) -> None: ...

    async def list_keys(self) -> list[str]: ...


class FilesystemObjectStore:
    """Object store on a local directory.

    Bodies live under ``data/`` and metadata as JSON under ``meta/``.
    Writes go to ``tmp/`` first and are renamed into place, so a failed or
    aborted ``put`` never leaves a readable object behind.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.data_dir = self.root / "data"
        self.meta_dir = self.root / "meta"
        self.tmp_dir = self.root / "tmp"
        for d in (self.data_dir, self.meta_dir, self.tmp_dir):
            d.mkdir(parents=True, exist_ok=True)

    def _data_path(self, key: str) -> Path:
        if not _KEY_RE.match(key) or ".." in key:
            raise ValueError(f"Invalid object key: {key!r}")
        return self.data_dir / key

    def _meta_path(self, key: str) -> Path:
        return self.meta_dir / f"{key}.json"

    async def put(
        self,
        key: str,
        body: bytes | AsyncIterable[bytes],
        metadata: Mapping[str, str] | None = None,
    ) -> int:
        """Write ``body`` under ``key``, replacing any previous object.

        Returns the number of bytes written. Exceptions raised while
        reading ``body`` propagate after the partial write is discarded.
        """
        data_path = self._data_path(key)
        suffix = uuid.uuid4().hex
        tmp_data = self.tmp_dir / f"{key}.{suffix}"
        tmp_meta = self.tmp_dir / f"{key}.{suffix}.json"
        written = 0
        try:
            async with aiofiles.open(tmp_data, "wb") as f:
                if isinstance(body, (bytes, bytearray)):
                    await f.write(body)
                    written = len(body)
                else:
                    async for chunk in body:
                        await f.write(chunk)
                        written += len(chunk)
            async with aiofiles.open(tmp_meta, "w") as f:
                await f.write(json.dumps(dict(metadata or {})))
            # Metadata first: readers only see an object once its body exists.
            await aiofiles.os.replace(tmp_meta, self._meta_path(key))
            await aiofiles.os.replace(tmp_data, data_path)
        except BaseException:
            for tmp in (tmp_data, tmp_meta):
                with contextlib.suppress(FileNotFoundError):
                    await aiofiles.os.remove(tmp)
            raise
        logger.debug("Stored %s (%d bytes)", key, written)
        return written

    async def _read_metadata(self, key: str) -> dict[str, str]:
        try:
            async with aiofiles.open(self._meta_path(key)) as f:
                return json.loads(await f.read())
        except FileNotFoundError:
            return {}
        except ValueError as exc:
            raise OSError(f"Unreadable metadata for {key}: {exc}") from exc

    async def get(self, key: str) -> StoredObject | None:
        data_path = self._data_path(key)
        try:
            handle = await aiofiles.open(data_path, "rb")
        except FileNotFoundError:
            return None
        try:
            stat = await aiofiles.os.stat(data_path)
            metadata = await self._read_metadata(key)
        except BaseException:
            await handle.close()
            raise
        return StoredObject(
            key=key, size=stat.st_size, metadata=metadata, _handle=handle,
        )

    async def head(self, key: str) -> dict[str, str] | None:
        if not await aiofiles.os.path.exists(self._data_path(key)):
            return None
        return await self._read_metadata(key)

    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is a no-op."""
        for path in (self._data_path(key), self._meta_path(key)):
            with contextlib.suppress(FileNotFoundError):
                await aiofiles.os.remove(path)

    async def list_keys(self) -> list[str]:
        return sorted(await aiofiles.os.listdir(self.data_dir))
