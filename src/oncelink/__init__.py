"""oncelink: hand a file to another device through a one-time link."""

__version__ = "0.1.0"

from oncelink.config import Settings
from oncelink.server.app import create_app
from oncelink.server.store import FilesystemObjectStore, ObjectStore

__all__ = [
    "__version__",
    "FilesystemObjectStore",
    "ObjectStore",
    "Settings",
    "create_app",
]
