from __future__ import annotations

import html
import json
import logging
import re
from urllib.parse import quote, unquote

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask

from oncelink.errors import TransferExpired
from oncelink.server.models import DEFAULT_CONTENT_TYPE, CreateTransferResponse
from oncelink.server.state import AppState


def get_state(request: Request) -> AppState:
    return request.app.state


StateDep = Depends(get_state)

logger = logging.getLogger(__name__)

router = APIRouter()

_NON_ASCII_RUN = re.compile(r"[^\x20-\x7e]+")


def safe_ascii(name: str) -> str:
    """Replace each run of non-printable-ASCII characters with ``_``."""
    return _NON_ASCII_RUN.sub("_", name).replace('"', "_").replace("\\", "_")


def encode_rfc5987(name: str) -> str:
    """Percent-encode UTF-8 for the ``filename*`` parameter."""
    return quote(name, safe="!-._~")


def content_disposition(filename: str) -> str:
    """Build an attachment header that degrades gracefully for non-ASCII names.

    Old clients read the ASCII ``filename``; RFC 6266 clients prefer the
    UTF-8 ``filename*``.
    """
    if not filename:
        return "attachment"
    return (
        f'attachment; filename="{safe_ascii(filename)}"; '
        f"filename*=UTF-8''{encode_rfc5987(filename)}"
    )


def redirect_page(target: str, link_html: str) -> str:
    """Meta refresh plus script redirect; some mobile browsers need both."""
    attr = html.escape(target, quote=True)
    script_target = json.dumps(target).replace("</", "<\\/")
    return (
        "<!doctype html>\n"
        '<meta charset="utf-8">\n'
        "<title>Redirecting…</title>\n"
        f'<meta http-equiv="refresh" content="0; url={attr}">\n'
        f"<p>{link_html.format(href=attr)}</p>\n"
        f"<script>location.replace({script_target});</script>"
    )


def _declared_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


@router.get("/health", response_class=PlainTextResponse)
async def health() -> str:
    """Liveness check."""
    return "ok"


@router.get("/", response_class=HTMLResponse)
@router.get("/index.html", response_class=HTMLResponse)
async def index(state: AppState = StateDep) -> str:
    return redirect_page(
        state.settings.public_app_url,
        'If you are not redirected, <a href="{href}">tap here</a>.',
    )


@router.post("/api/create", response_model=CreateTransferResponse)
async def create_transfer(
    request: Request, state: AppState = StateDep
) -> CreateTransferResponse:
    """
    Create an upload + one-time download pair. Both URLs are built from the
    origin the request came in on.
    """
    registry = state.transfers
    record = await registry.create()
    return CreateTransferResponse(
        upload_url=str(request.url_for("put_file", transfer_id=record.transfer_id)),
        download_url=str(
            request.url_for("one_time_download", transfer_id=record.transfer_id)
        ),
        expires_at=record.expires_at(state.settings.ttl_ms),
    )


@router.put("/upload/{transfer_id}", response_class=PlainTextResponse)
async def put_file(
    transfer_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    state: AppState = StateDep,
) -> str:
    """
    Stream the request body into the store under ``transfer_id``.

    Recognised headers:

        - Content-Length: checked against the size limit before any write.
        - Content-Type: stored and replayed on download.
        - X-Filename: URL-encoded original filename.
    """
    registry = state.transfers
    record = await registry.store_upload(
        transfer_id,
        request.stream(),
        content_length=_declared_length(request),
        content_type=request.headers.get("content-type") or DEFAULT_CONTENT_TYPE,
        filename=unquote(request.headers.get("x-filename") or ""),
    )
    logger.info(
        "Stored %s (%d bytes, transfer_id=%s)",
        record.filename or "<unnamed>",
        record.size,
        transfer_id,
    )

    # The marker only carried createdAt; drop it after responding.
    background_tasks.add_task(registry.discard_stub, transfer_id)
    return "OK"


@router.get("/d/{transfer_id}")
async def one_time_download(transfer_id: str, state: AppState = StateDep):
    """
    Serve a stored transfer once, then delete it.

    Deletion runs as a background task after the body has been handed off,
    so two requests racing for the same id can both succeed.
    """
    registry = state.transfers
    try:
        record, obj = await registry.open_download(transfer_id)
    except TransferExpired as exc:
        logger.info("Transfer %s expired", transfer_id)
        return PlainTextResponse(
            exc.detail,
            status_code=exc.status_code,
            background=BackgroundTask(registry.consume, transfer_id),
        )

    logger.info(
        "Serving %s (%d bytes, transfer_id=%s)",
        record.filename or "<unnamed>",
        obj.size,
        transfer_id,
    )
    # Passed as a header so Starlette does not append a charset.
    headers = {
        "content-type": record.content_type,
        "content-disposition": content_disposition(record.filename),
        "content-length": str(obj.size),
    }
    return StreamingResponse(
        obj.iter_chunks(),
        headers=headers,
        background=BackgroundTask(registry.consume, transfer_id),
    )


@router.get("/{path:path}", response_class=HTMLResponse, include_in_schema=False)
async def fallback(path: str, state: AppState = StateDep) -> str:
    """Any other GET lands on the uploader."""
    return redirect_page(
        state.settings.public_app_url,
        '<a href="{href}">Continue to uploader</a>',
    )
