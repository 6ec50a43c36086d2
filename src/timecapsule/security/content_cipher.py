"""
AES-256-GCM payload encryption
------------------------------

Capsule payloads are sealed locally before they ever reach storage:

- fresh 256-bit content key per capsule
- 96-bit random nonce
- AAD binds the ciphertext to its capsule id

The content key is then handed to the time lock and never persisted in
the clear.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from timecapsule.protocol.errors import DecryptionFailed
from timecapsule.protocol.models import DecryptionMaterial

KEY_BYTES = 32
NONCE_BYTES = 12


@dataclass(frozen=True)
class SealedPayload:
    key: bytes
    nonce: bytes
    ciphertext: bytes

    def __repr__(self) -> str:
        return f"SealedPayload(key=<redacted>, ciphertext=<{len(self.ciphertext)} bytes>)"


def _aad(capsule_id: int) -> bytes:
    return f"timecapsule-content-v1:{capsule_id}".encode("utf-8")


class ContentCipher:
    # --- Key Helpers -------------------------------------------------

    @staticmethod
    def generate_key() -> bytes:
        return AESGCM.generate_key(bit_length=256)

    # --- Encrypt -----------------------------------------------------

    def seal(self, capsule_id: int, plaintext: bytes) -> SealedPayload:
        key = self.generate_key()
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, _aad(capsule_id))
        return SealedPayload(key=key, nonce=nonce, ciphertext=ciphertext)

    # --- Decrypt -----------------------------------------------------

    def open(self, capsule_id: int, material: DecryptionMaterial, ciphertext: bytes) -> bytes:
        if len(material.key) != KEY_BYTES:
            raise DecryptionFailed(
                f"Content key has {len(material.key)} bytes, expected {KEY_BYTES}",
                capsule_id,
            )
        try:
            return AESGCM(bytes(material.key)).decrypt(material.nonce, ciphertext, _aad(capsule_id))
        except InvalidTag as e:
            raise DecryptionFailed(
                f"Capsule {capsule_id} ciphertext failed authentication",
                capsule_id,
            ) from e
