from __future__ import annotations

import logging
import mimetypes
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote, urlsplit

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

import httpx

from oncelink.errors import (
    BackendUnreachable,
    PayloadTooLarge,
    TransferExpired,
    TransferNotFound,
)
from oncelink.server.models import DEFAULT_CONTENT_TYPE, CreateTransferResponse

logger = logging.getLogger(__name__)

_FILENAME_STAR = re.compile(r"filename\*\s*=\s*UTF-8''([^;]+)", re.IGNORECASE)
_FILENAME = re.compile(r'filename\s*=\s*"([^"]*)"', re.IGNORECASE)


@dataclass
class SentTransfer:
    """Outcome of a successful send: the link to hand to the receiver."""

    filename: str
    size: int
    download_url: str
    expires_at: datetime


def _file_chunk_generator(
    file_path: Path,
    chunk_size: int = 1_048_576,
    callback: Callable[[int], None] | None = None,
) -> Iterator[bytes]:
    """Read a file in chunks, calling callback with each chunk's size."""
    with open(file_path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            if callback:
                callback(len(chunk))
            yield chunk


def _notify(step: Callable[[str], None] | None, message: str) -> None:
    logger.debug(message)
    if step:
        step(message)


def create_transfer(client: httpx.Client, base_url: str) -> CreateTransferResponse:
    """Ask the server for an upload + one-time download pair."""
    try:
        resp = client.post(f"{base_url}/api/create")
    except httpx.HTTPError as exc:
        raise BackendUnreachable(f"Backend not reachable: {exc}") from exc
    if resp.status_code != 200:
        raise BackendUnreachable(
            f"Create failed {resp.status_code} {resp.reason_phrase} {resp.text}".rstrip()
        )
    return CreateTransferResponse.model_validate(resp.json())


def upload_file(
    client: httpx.Client,
    upload_url: str,
    file_path: Path,
    progress_callback: Callable[[int], None] | None = None,
    chunk_size: int = 1_048_576,
) -> None:
    """PUT a file to its upload URL, streaming from disk."""
    content_type = mimetypes.guess_type(file_path.name)[0] or DEFAULT_CONTENT_TYPE
    headers = {
        # An explicit length keeps httpx from switching to chunked encoding,
        # which would bypass the server's up-front size check.
        "Content-Length": str(file_path.stat().st_size),
        "Content-Type": content_type,
        "X-Filename": quote(file_path.name, safe=""),
    }
    try:
        resp = client.put(
            upload_url,
            headers=headers,
            content=_file_chunk_generator(
                file_path, chunk_size=chunk_size, callback=progress_callback,
            ),
        )
    except httpx.HTTPError as exc:
        raise BackendUnreachable(f"Upload failed: {exc}") from exc
    if resp.status_code == 413:
        raise PayloadTooLarge(resp.text or None)
    if resp.status_code != 200:
        raise BackendUnreachable(f"Upload failed {resp.status_code} {resp.text}")


def send_file(
    file_path: Path,
    base_url: str,
    step: Callable[[str], None] | None = None,
    progress_callback: Callable[[int], None] | None = None,
    timeout: float = 3600.0,
    chunk_size: int = 1_048_576,
) -> SentTransfer:
    """Create a transfer, upload ``file_path``, and return its one-time link.

    Each stage reports a human-readable line through ``step``. The first
    failure raises; there is no partial recovery, the whole send has to be
    restarted.
    """
    size = file_path.stat().st_size
    _notify(step, f"Selected: {file_path.name} ({size} bytes)")

    with httpx.Client(timeout=httpx.Timeout(timeout, connect=10.0)) as client:
        meta = create_transfer(client, base_url)
        _notify(step, "Got upload and one-time download URLs from server.")

        upload_file(
            client,
            meta.upload_url,
            file_path,
            progress_callback=progress_callback,
            chunk_size=chunk_size,
        )
        _notify(step, "Uploaded to storage.")

    _notify(step, "Open the link on your other device. Link works once, then expires.")
    return SentTransfer(
        filename=file_path.name,
        size=size,
        download_url=meta.download_url,
        expires_at=datetime.fromtimestamp(meta.expires_at / 1000, tz=timezone.utc),
    )


def parse_content_disposition(header: str | None) -> str | None:
    """Extract the filename, preferring the UTF-8 ``filename*`` form."""
    if not header:
        return None
    match = _FILENAME_STAR.search(header)
    if match:
        return unquote(match.group(1).strip())
    match = _FILENAME.search(header)
    if match:
        return match.group(1)
    return None


def _unique_path(directory: Path, name: str) -> Path:
    """Pick ``name`` in ``directory``, adding `` (n)`` if it is taken."""
    candidate = directory / name
    stem, suffix = candidate.stem, candidate.suffix
    n = 1
    while candidate.exists():
        candidate = directory / f"{stem} ({n}){suffix}"
        n += 1
    return candidate


def fetch_file(
    download_url: str,
    output_dir: Path,
    progress_callback: Callable[[int], None] | None = None,
    total_callback: Callable[[int | None], None] | None = None,
    timeout: float = 3600.0,
) -> Path:
    """Download a one-time link into ``output_dir``. Returns the saved path.

    The server deletes the file once served, so this can succeed only once
    per link.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    try:
        with httpx.Client(
            timeout=httpx.Timeout(timeout, connect=10.0),
        ) as client, client.stream("GET", download_url) as resp:
            if resp.status_code == 404:
                raise TransferNotFound()
            if resp.status_code == 410:
                raise TransferExpired()
            if resp.status_code != 200:
                raise BackendUnreachable(
                    f"Download failed {resp.status_code} {resp.reason_phrase}"
                )

            name = parse_content_disposition(resp.headers.get("content-disposition"))
            # Never trust a server-supplied path.
            name = Path(name).name if name else ""
            if not name:
                name = Path(urlsplit(download_url).path).name or "download"
            target = _unique_path(output_dir, name)

            if total_callback:
                length = resp.headers.get("content-length")
                total_callback(int(length) if length and length.isdigit() else None)

            with open(target, "wb") as f:
                for chunk in resp.iter_bytes():
                    f.write(chunk)
                    if progress_callback:
                        progress_callback(len(chunk))
    except httpx.HTTPError as exc:
        raise BackendUnreachable(f"Backend not reachable: {exc}") from exc

    logger.info("Saved %s", target)
    return target
