from __future__ import annotations

import httpx
import pytest

from oncelink.config import Settings
from oncelink.server.app import create_app
from oncelink.server.state import TransferRegistry
from oncelink.server.store import FilesystemObjectStore

T0 = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def storage_dir(tmp_path):
    """Temporary storage directory for the server."""
    d = tmp_path / "storage"
    d.mkdir()
    return d


@pytest.fixture()
def settings(storage_dir) -> Settings:
    return Settings(
        public_app_url="https://files.example.org/upload.html",
        ttl_seconds=60,
        max_bytes=1024,
        storage_dir=storage_dir,
    )


@pytest.fixture()
def store(storage_dir) -> FilesystemObjectStore:
    return FilesystemObjectStore(storage_dir)


@pytest.fixture()
def registry(store, settings, clock) -> TransferRegistry:
    return TransferRegistry(store, settings, clock=clock)


@pytest.fixture()
def app(settings, store, clock):
    """FastAPI app on a tmp store with a controllable clock."""
    return create_app(settings=settings, store=store, clock=clock)


@pytest.fixture()
def client(app):
    """httpx AsyncClient wired to the app via ASGI transport."""
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.fixture()
def sample_file(tmp_path):
    f = tmp_path / "notes.txt"
    f.write_bytes(b"hello from the other device\n")
    return f
