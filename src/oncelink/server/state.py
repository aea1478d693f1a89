from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from oncelink.errors import (
    PayloadTooLarge,
    StoreError,
    TransferConflict,
    TransferExpired,
    TransferNotFound,
)
from oncelink.server.ids import IdGenerator, TokenIdGenerator, is_valid_id
from oncelink.server.models import (
    DEFAULT_CONTENT_TYPE,
    META_CONTENT_TYPE,
    META_CREATED_AT,
    META_NAME,
    TransferRecord,
    TransferState,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Callable

    from oncelink.config import Settings
    from oncelink.server.store import ObjectStore, StoredObject

logger = logging.getLogger(__name__)

STUB_SUFFIX = ".stub"


def now_ms() -> int:
    return int(time.time() * 1000)


def stub_key(transfer_id: str) -> str:
    return transfer_id + STUB_SUFFIX


def _parse_created_at(metadata: dict[str, str] | None) -> int | None:
    if not metadata:
        return None
    try:
        return int(metadata.get(META_CREATED_AT, ""))
    except ValueError:
        return None


class TransferRegistry:
    """One-time transfers on top of an object store.

    All state lives in the store: a ``{id}.stub`` marker while pending and
    the ``{id}`` object once uploaded. Nothing is kept in memory, so any
    number of concurrent requests (or processes) can share one store.
    """

    def __init__(
        self,
        store: ObjectStore,
        settings: Settings,
        id_generator: IdGenerator | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.settings = settings
        self.id_generator = id_generator or TokenIdGenerator()
        self.clock = clock

    async def create(self) -> TransferRecord:
        """Issue a fresh id and write its pending marker."""
        transfer_id = self.id_generator()
        created_at = self.clock()
        try:
            await self.store.put(
                stub_key(transfer_id), b"1", {META_CREATED_AT: str(created_at)},
            )
        except OSError as exc:
            logger.error("Could not create transfer %s: %s", transfer_id, exc)
            raise StoreError() from exc
        logger.info("Created transfer %s", transfer_id)
        return TransferRecord(
            transfer_id=transfer_id,
            state=TransferState.PENDING,
            created_at=created_at,
        )

    async def lookup(self, transfer_id: str) -> TransferRecord:
        """Resolve ``transfer_id`` to its current state."""
        if not is_valid_id(transfer_id):
            return TransferRecord(
                transfer_id=transfer_id, state=TransferState.CONSUMED,
            )
        try:
            metadata = await self.store.head(transfer_id)
            if metadata is not None:
                return self._stored_record(transfer_id, metadata)
            stub = await self.store.head(stub_key(transfer_id))
        except OSError as exc:
            logger.error("Store lookup failed for %s: %s", transfer_id, exc)
            raise StoreError() from exc
        if stub is not None:
            return TransferRecord(
                transfer_id=transfer_id,
                state=TransferState.PENDING,
                created_at=_parse_created_at(stub),
            )
        return TransferRecord(transfer_id=transfer_id, state=TransferState.CONSUMED)

    def _stored_record(
        self, transfer_id: str, metadata: dict[str, str], size: int | None = None,
    ) -> TransferRecord:
        return TransferRecord(
            transfer_id=transfer_id,
            state=TransferState.STORED,
            created_at=_parse_created_at(metadata),
            filename=metadata.get(META_NAME, ""),
            content_type=metadata.get(META_CONTENT_TYPE) or DEFAULT_CONTENT_TYPE,
            size=size,
        )

    async def _metered(self, body: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        # The declared length is checked up front; this catches bodies that lie.
        received = 0
        async for chunk in body:
            received += len(chunk)
            if received > self.settings.max_bytes:
                raise PayloadTooLarge()
            yield chunk

    async def store_upload(
        self,
        transfer_id: str,
        body: AsyncIterable[bytes],
        *,
        content_length: int | None = None,
        content_type: str | None = None,
        filename: str = "",
    ) -> TransferRecord:
        """Persist an upload, moving the transfer from pending to stored.

        The creation time is carried over from the pending marker so the
        TTL keeps counting from ``create``. The marker itself is left for
        :meth:`discard_stub`.

        A consumed id has neither marker nor object and cannot be told apart
        from one whose marker was lost, so an upload to it is accepted and
        its TTL starts now. Only an id that currently holds an object is
        refused with :class:`TransferConflict`.
        """
        if content_length is not None and content_length > self.settings.max_bytes:
            raise PayloadTooLarge()
        if not is_valid_id(transfer_id):
            raise TransferNotFound()

        record = await self.lookup(transfer_id)
        if record.state == TransferState.STORED:
            raise TransferConflict()
        # Missing marker (raced or purged): start the clock now.
        created_at = record.created_at or self.clock()

        metadata = {
            META_CREATED_AT: str(created_at),
            META_NAME: filename,
            META_CONTENT_TYPE: content_type or DEFAULT_CONTENT_TYPE,
        }
        try:
            size = await self.store.put(transfer_id, self._metered(body), metadata)
        except OSError as exc:
            logger.error("Could not store upload %s: %s", transfer_id, exc)
            raise StoreError() from exc

        return self._stored_record(transfer_id, metadata, size=size)

    async def discard_stub(self, transfer_id: str) -> None:
        """Drop the pending marker. Best-effort, runs after the response."""
        try:
            await self.store.delete(stub_key(transfer_id))
        except OSError as exc:
            logger.warning("Could not remove marker for %s: %s", transfer_id, exc)

    async def open_download(
        self, transfer_id: str,
    ) -> tuple[TransferRecord, StoredObject]:
        """Open a stored transfer for its one download.

        Raises :class:`TransferNotFound` when nothing is stored (never
        uploaded and already consumed look the same) and
        :class:`TransferExpired` once the TTL has elapsed. The caller is
        responsible for calling :meth:`consume` afterwards.
        """
        if not is_valid_id(transfer_id):
            raise TransferNotFound()
        try:
            obj = await self.store.get(transfer_id)
        except OSError as exc:
            logger.error("Store lookup failed for %s: %s", transfer_id, exc)
            raise StoreError() from exc
        if obj is None:
            raise TransferNotFound()

        record = self._stored_record(transfer_id, obj.metadata, size=obj.size)
        if record.is_expired(self.clock(), self.settings.ttl_ms):
            await obj.aclose()
            raise TransferExpired()
        return record, obj

    async def consume(self, transfer_id: str) -> None:
        """Delete a stored transfer. Best-effort, runs after the response."""
        try:
            await self.store.delete(transfer_id)
        except OSError as exc:
            logger.warning("Could not delete %s: %s", transfer_id, exc)
            return
        logger.info("Consumed transfer %s", transfer_id)

    async def sweep_expired(self) -> int:
        """Remove expired objects and pending markers. Returns count removed."""
        now = self.clock()
        ttl_ms = self.settings.ttl_ms
        removed = 0
        for key in await self.store.list_keys():
            metadata = await self.store.head(key)
            if metadata is None:
                continue
            created_at = _parse_created_at(metadata)
            if created_at and now > created_at + ttl_ms:
                await self.store.delete(key)
                removed += 1
        if removed:
            logger.info("Swept %d expired object(s)", removed)
        return removed


@dataclass
class AppState:
    """Everything the routes need, attached to the FastAPI app."""

    settings: Settings
    transfers: TransferRegistry
