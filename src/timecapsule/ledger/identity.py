from __future__ import annotations

import re
from typing import Protocol

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class IdentityProvider(Protocol):
    async def current_identity(self) -> str:
        ...


class StaticIdentity:
    def __init__(self, identity: str):
        self._identity = identity

    async def current_identity(self) -> str:
        return self._identity


def is_address(identity: str) -> bool:
    return bool(_ADDRESS_RE.match(identity.strip()))


def normalize_identity(identity: str) -> str:
    """Addresses compare case-insensitively; other identities exactly."""
    identity = identity.strip()
    return identity.lower() if is_address(identity) else identity


def same_identity(a: str, b: str) -> bool:
    return normalize_identity(a) == normalize_identity(b)
