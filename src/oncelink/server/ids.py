from __future__ import annotations

import re
import secrets
from typing import Protocol, runtime_checkable

# Any id a generator may produce: URL-safe alphabet, bounded length.
ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


@runtime_checkable
class IdGenerator(Protocol):
    """Source of opaque, unguessable transfer ids."""

    def __call__(self) -> str: ...


class TokenIdGenerator:
    """Fixed-length hex tokens drawn from the OS CSPRNG."""

    def __init__(self, nbytes: int = 16) -> None:
        self.nbytes = nbytes

    def __call__(self) -> str:
        return secrets.token_hex(self.nbytes)


def is_valid_id(transfer_id: str) -> bool:
    return bool(ID_PATTERN.match(transfer_id))
