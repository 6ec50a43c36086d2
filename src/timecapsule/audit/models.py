"""
Audit log data models.

All audit entries are versioned and include:
- Sequential ordering
- Hash chaining for integrity
- Timestamp (ISO 8601)
- Type classification

Signed mode:
- Ed25519 signature over entry_hash
- Key ID for signature verification
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from timecapsule.utils.json import canonical_json


# ===========================================================================
# Signing Protocol
# ===========================================================================

class AuditSigner(Protocol):
    """
    Protocol for audit entry signing.

    Implementations MUST:
    - Use Ed25519 or equivalent (256-bit security)
    - Provide key_id for verification lookup
    """

    @property
    def key_id(self) -> str:
        ...

    def sign(self, data: bytes) -> bytes:
        ...


class AuditVerifier(Protocol):
    def verify(self, data: bytes, signature: bytes, key_id: str) -> bool:
        ...


class AuditEntryType(str, Enum):
    """
    Audit entry types (stable schema versioning).
    """

    # Capsule lifecycle
    CAPSULE_CREATED = "capsule.created"
    CAPSULE_LOCKED = "capsule.locked"
    CAPSULE_UNLOCKABLE = "capsule.unlockable"
    CAPSULE_UNLOCKED = "capsule.unlocked"

    # Unlock attempts
    UNLOCK_VERIFIED = "unlock.verified"
    UNLOCK_FAILED = "unlock.failed"


class AuditSignatureError(RuntimeError):
    """Raised when an entry signature is missing or malformed."""


class AuditIntegrityError(RuntimeError):
    """Raised when the hash chain does not verify."""


@dataclass
class AuditEntry:
    """
    Single audit entry (append-only record).

    Entries are immutable once written; hash chaining ensures integrity.
    Never carries key material.
    """

    seq: int
    capsule_id: int
    timestamp_iso: str
    entry_type: AuditEntryType
    payload: Dict[str, Any]

    prev_hash: Optional[str] = None
    entry_hash: Optional[str] = None

    signature: Optional[str] = None  # Base64-encoded Ed25519 signature
    signer_key_id: Optional[str] = None

    version: str = "1.0"

    @property
    def is_signed(self) -> bool:
        return self.signature is not None and self.signer_key_id is not None

    def compute_hash(self) -> str:
        """
        Compute deterministic hash for this entry.
        Hash includes: seq, capsule_id, timestamp, entry_type, payload, prev_hash.
        """
        data = {
            "seq": self.seq,
            "capsule_id": self.capsule_id,
            "timestamp_iso": self.timestamp_iso,
            "entry_type": self.entry_type.value,
            "payload": self.payload,
            "prev_hash": self.prev_hash,
            "version": self.version,
        }
        return hashlib.sha256(canonical_json(data)).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "seq": self.seq,
            "capsule_id": self.capsule_id,
            "timestamp_iso": self.timestamp_iso,
            "entry_type": self.entry_type.value,
            "payload": self.payload,
            "prev_hash": self.prev_hash,
            "entry_hash": self.entry_hash,
            "version": self.version,
        }
        if self.signature is not None:
            result["signature"] = self.signature
        if self.signer_key_id is not None:
            result["signer_key_id"] = self.signer_key_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        return cls(
            seq=data["seq"],
            capsule_id=data["capsule_id"],
            timestamp_iso=data["timestamp_iso"],
            entry_type=AuditEntryType(data["entry_type"]),
            payload=data["payload"],
            prev_hash=data.get("prev_hash"),
            entry_hash=data.get("entry_hash"),
            signature=data.get("signature"),
            signer_key_id=data.get("signer_key_id"),
            version=data.get("version", "1.0"),
        )

    def sign(self, signer: AuditSigner) -> None:
        """
        Sign this entry. MUST be called after entry_hash is set.
        """
        if not self.entry_hash:
            raise ValueError("Cannot sign entry without entry_hash. Call compute_hash() first.")

        signature_bytes = signer.sign(self.entry_hash.encode("utf-8"))
        self.signature = base64.b64encode(signature_bytes).decode("ascii")
        self.signer_key_id = signer.key_id

    def verify_signature(self, verifier: AuditVerifier) -> bool:
        if not self.is_signed:
            raise AuditSignatureError(f"Entry seq={self.seq} is not signed.")
        if not self.entry_hash:
            raise AuditSignatureError(f"Entry seq={self.seq} has no entry_hash.")

        try:
            signature_bytes = base64.b64decode(self.signature)
        except ValueError as e:
            raise AuditSignatureError(f"Invalid signature encoding: {e}") from e

        return verifier.verify(
            self.entry_hash.encode("utf-8"),
            signature_bytes,
            self.signer_key_id,
        )
