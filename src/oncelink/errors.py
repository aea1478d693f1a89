"""Error taxonomy shared by the oncelink server and client."""

from __future__ import annotations


class OnceLinkError(Exception):
    """Base class for all oncelink errors.

    ``status_code`` and ``detail`` are what the server answers with when
    the error escapes a route.
    """

    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class PayloadTooLarge(OnceLinkError):
    """Declared or streamed upload size exceeds the configured maximum."""

    status_code = 413
    detail = "File too large"


class TransferNotFound(OnceLinkError):
    """Unknown or already-consumed transfer id."""

    status_code = 404
    detail = "Link expired or file not found."


class TransferExpired(OnceLinkError):
    """The transfer outlived its TTL."""

    status_code = 410
    detail = "Link expired."


class TransferConflict(OnceLinkError):
    """An upload targeted an id that already holds a stored object."""

    status_code = 409
    detail = "Transfer already uploaded."


class StoreError(OnceLinkError):
    """Unexpected failure of the backing object store."""

    status_code = 500
    detail = "Storage unavailable"


class BackendUnreachable(OnceLinkError):
    """Client side: the oncelink service could not be reached or refused."""

    status_code = 502
    detail = "Backend not reachable"
