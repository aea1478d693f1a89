from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Metadata keys attached to objects in the store.
META_CREATED_AT = "createdAt"
META_NAME = "name"
META_CONTENT_TYPE = "contentType"


class TransferState(str, Enum):
    """Lifecycle of a transfer. Moves forward only."""
    PENDING = "pending"
    STORED = "stored"
    CONSUMED = "consumed"


class TransferRecord(BaseModel):
    """A transfer as resolved from the store.

    ``PENDING`` is backed by the ``{id}.stub`` marker, ``STORED`` by the
    ``{id}`` object. ``CONSUMED`` has nothing behind it; a never-created id
    resolves to the same state.
    """
    transfer_id: str
    state: TransferState
    created_at: int | None = None
    filename: str = ""
    content_type: str = DEFAULT_CONTENT_TYPE
    size: int | None = None

    model_config = ConfigDict(frozen=True)

    def expires_at(self, ttl_ms: int) -> int | None:
        if not self.created_at:
            return None
        return self.created_at + ttl_ms

    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        """Records without a creation time never expire."""
        expires_at = self.expires_at(ttl_ms)
        return expires_at is not None and now_ms > expires_at


class CreateTransferResponse(BaseModel):
    """Response model for ``POST /api/create``."""
    upload_url: str
    download_url: str
    expires_at: int

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
