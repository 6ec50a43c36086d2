"""
Ed25519 signing for audit entries.

- Key IDs are SHA256 hashes of public keys (first 16 chars)
- Verification is offline-capable (no network required)
"""

from __future__ import annotations

import hashlib
from typing import Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


class Ed25519AuditSigner:
    """
    Ed25519 signer for audit entries.

    Usage:
        signer = Ed25519AuditSigner.from_private_hex(settings.audit.signing_key)
        signer = Ed25519AuditSigner.generate()  # tests only
    """

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self._public_key = private_key.public_key()
        self._key_id = hashlib.sha256(self.public_key_bytes).hexdigest()[:16]

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def public_key_bytes(self) -> bytes:
        return self._public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def sign(self, data: bytes) -> bytes:
        return self._private_key.sign(data)

    @classmethod
    def generate(cls) -> "Ed25519AuditSigner":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_bytes(cls, key_bytes: bytes) -> "Ed25519AuditSigner":
        return cls(Ed25519PrivateKey.from_private_bytes(key_bytes))

    @classmethod
    def from_private_hex(cls, key_hex: str) -> "Ed25519AuditSigner":
        return cls.from_private_bytes(bytes.fromhex(key_hex))


class Ed25519AuditVerifier:
    """
    Ed25519 verifier for audit entries. All public keys must be pre-loaded.
    """

    def __init__(self):
        self._public_keys: Dict[str, Ed25519PublicKey] = {}

    def add_public_key(self, key_id: str, public_key_bytes: bytes) -> None:
        self._public_keys[key_id] = Ed25519PublicKey.from_public_bytes(public_key_bytes)

    def add_from_signer(self, signer: Ed25519AuditSigner) -> None:
        self.add_public_key(signer.key_id, signer.public_key_bytes)

    def get_public_key(self, key_id: str) -> Optional[bytes]:
        if key_id not in self._public_keys:
            return None
        return self._public_keys[key_id].public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def verify(self, data: bytes, signature: bytes, key_id: str) -> bool:
        """True if valid, False if invalid or key not found."""
        public_key = self._public_keys.get(key_id)
        if public_key is None:
            return False
        try:
            public_key.verify(signature, data)
            return True
        except InvalidSignature:
            return False
