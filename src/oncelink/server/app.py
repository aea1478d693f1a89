from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from oncelink import __version__
from oncelink.config import Settings
from oncelink.errors import OnceLinkError
from oncelink.server.cors import CORSHeadersMiddleware
from oncelink.server.routes import router
from oncelink.server.state import AppState, TransferRegistry, now_ms
from oncelink.server.store import FilesystemObjectStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from oncelink.server.ids import IdGenerator
    from oncelink.server.store import ObjectStore

logger = logging.getLogger(__name__)


async def transfer_error_handler(
    request: Request, exc: OnceLinkError
) -> PlainTextResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "%s %s -> %d %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc,
    )
    return PlainTextResponse(exc.detail, status_code=exc.status_code)


async def http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> PlainTextResponse:
    # Wrong method on a known path is reported like an unknown path.
    if exc.status_code in (404, 405):
        return PlainTextResponse("Not found", status_code=404)
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code)


def create_app(
    settings: Settings | None = None,
    store: ObjectStore | None = None,
    id_generator: IdGenerator | None = None,
    clock: Callable[[], int] = now_ms,
) -> FastAPI:
    """Create a configured oncelink FastAPI application.

    Args:
        settings: Server settings; read from the environment when omitted.
        store: Object store for transfers; defaults to a filesystem store
               under ``settings.storage_dir``.
        id_generator: Source of transfer ids; defaults to
                      :class:`~oncelink.server.ids.TokenIdGenerator`.
        clock: Current time in milliseconds since the epoch.
    """
    if settings is None:
        settings = Settings.from_env()
    if store is None:
        store = FilesystemObjectStore(settings.storage_dir)

    app = FastAPI(
        title="oncelink",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state = AppState(
        settings=settings,
        transfers=TransferRegistry(
            store, settings, id_generator=id_generator, clock=clock,
        ),
    )
    app.add_middleware(CORSHeadersMiddleware, allowed_origin=settings.allowed_origin)
    app.add_exception_handler(OnceLinkError, transfer_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.include_router(router)
    return app
