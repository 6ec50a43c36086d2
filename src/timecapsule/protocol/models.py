# FILE: src/timecapsule/protocol/models.py
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from timecapsule.utils.timestamps import now_iso

from .enums import CapsuleState, ConditionKind, ConditionState
from .errors import ImmutableFieldError


# -------------------------
# UNLOCK CONDITIONS
# -------------------------

@dataclass(frozen=True)
class UnlockCondition:
    """
    Timestamp or block height after which a capsule may be opened.

    ``tolerance`` is in the condition's own unit (seconds or blocks) and
    absorbs clock/consensus drift: the condition counts as met once the
    authoritative reading reaches ``target - tolerance``.
    """

    kind: ConditionKind
    target: int
    tolerance: int = 0

    def __post_init__(self):
        if self.target < 0:
            raise ValueError("Unlock condition target must be non-negative")
        if self.tolerance < 0:
            raise ValueError("Unlock condition tolerance must be non-negative")

    @classmethod
    def at_timestamp(cls, timestamp: int, tolerance: int = 0) -> "UnlockCondition":
        return cls(ConditionKind.TIMESTAMP, int(timestamp), int(tolerance))

    @classmethod
    def at_height(cls, height: int, tolerance: int = 0) -> "UnlockCondition":
        return cls(ConditionKind.BLOCK_HEIGHT, int(height), int(tolerance))

    @property
    def unit(self) -> str:
        return "seconds" if self.kind is ConditionKind.TIMESTAMP else "blocks"

    def is_met(self, reading: int) -> bool:
        return reading >= self.target - self.tolerance

    def remaining(self, reading: int) -> int:
        return max(0, self.target - self.tolerance - reading)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "target": self.target, "tolerance": self.tolerance}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnlockCondition":
        return cls(
            kind=ConditionKind(data["kind"]),
            target=int(data["target"]),
            tolerance=int(data.get("tolerance", 0)),
        )


@dataclass(frozen=True)
class ConditionStatus:
    state: ConditionState
    remaining: int = 0
    unit: str = "seconds"
    estimated_seconds: Optional[int] = None

    @classmethod
    def pending(cls, remaining: int, unit: str = "seconds", estimated_seconds: Optional[int] = None) -> "ConditionStatus":
        if estimated_seconds is None and unit == "seconds":
            estimated_seconds = remaining
        return cls(ConditionState.PENDING, remaining, unit, estimated_seconds)

    @classmethod
    def satisfied(cls, unit: str = "seconds") -> "ConditionStatus":
        return cls(ConditionState.SATISFIED, 0, unit, 0)

    @classmethod
    def expired(cls, unit: str = "seconds") -> "ConditionStatus":
        return cls(ConditionState.EXPIRED, 0, unit, None)

    @property
    def is_satisfied(self) -> bool:
        return self.state is ConditionState.SATISFIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "remaining": self.remaining,
            "unit": self.unit,
            "estimatedSeconds": self.estimated_seconds,
        }


# -------------------------
# TIME LOCK
# -------------------------

@dataclass(frozen=True)
class LockHandle:
    """Reference to an escrowed wrapping key held by custodians."""

    lock_id: str
    condition: UnlockCondition
    threshold: int
    custodians: Tuple[str, ...]
    created_at: str = field(default_factory=now_iso)
    expires_at: Optional[int] = None  # unix seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lockId": self.lock_id,
            "condition": self.condition.to_dict(),
            "threshold": self.threshold,
            "custodians": list(self.custodians),
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockHandle":
        return cls(
            lock_id=data["lockId"],
            condition=UnlockCondition.from_dict(data["condition"]),
            threshold=int(data["threshold"]),
            custodians=tuple(data["custodians"]),
            created_at=data.get("createdAt", now_iso()),
            expires_at=data.get("expiresAt"),
        )


@dataclass(frozen=True)
class TimeLockCiphertext:
    """Secret sealed under a wrapping key that only the custodians can release."""

    lock_id: str
    nonce: bytes
    ciphertext: bytes
    scheme: str = "shamir-aesgcm-v1"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lockId": self.lock_id,
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
            "scheme": self.scheme,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeLockCiphertext":
        return cls(
            lock_id=data["lockId"],
            nonce=base64.b64decode(data["nonce"]),
            ciphertext=base64.b64decode(data["ciphertext"]),
            scheme=data.get("scheme", "shamir-aesgcm-v1"),
        )


# -------------------------
# VERIFICATION
# -------------------------

@dataclass
class VerificationResult:
    validator: str
    passed: bool
    reason: Optional[str] = None
    confidence: Optional[float] = None
    diff: Optional[float] = None
    evidence: Dict[str, Any] = field(default_factory=dict)
    checked_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validator": self.validator,
            "passed": self.passed,
            "reason": self.reason,
            "confidence": self.confidence,
            "diff": self.diff,
            "evidence": self.evidence,
            "checkedAt": self.checked_at,
        }


@dataclass
class UnlockDecision:
    approved: bool
    results: List[VerificationResult] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    @property
    def failed_validators(self) -> List[str]:
        return [r.validator for r in self.results if not r.passed]

    def result_for(self, validator: str) -> Optional[VerificationResult]:
        for r in self.results:
            if r.validator == validator:
                return r
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approved": self.approved,
            "results": [r.to_dict() for r in self.results],
            "reasons": list(self.reasons),
        }


# -------------------------
# DECRYPTION
# -------------------------

class DecryptionMaterial:
    """
    Content key and nonce recovered for one unlock attempt.

    The key lives in a ``bytearray`` so it can be zeroed in place.
    """

    __slots__ = ("_key", "nonce", "_wiped")

    def __init__(self, key: bytes, nonce: bytes):
        self._key = bytearray(key)
        self.nonce = nonce
        self._wiped = False

    @property
    def key(self) -> bytearray:
        if self._wiped:
            raise ValueError("Decryption material has been wiped")
        return self._key

    @property
    def wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        for i in range(len(self._key)):
            self._key[i] = 0
        self._wiped = True

    def __enter__(self) -> "DecryptionMaterial":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.wipe()

    def __repr__(self) -> str:
        return f"DecryptionMaterial(key=<{len(self._key)} bytes redacted>, wiped={self._wiped})"


# -------------------------
# CAPSULE
# -------------------------

@dataclass
class Capsule:
    capsule_id: int
    creator: str
    recipient: str
    title: str
    unlock_condition: UnlockCondition
    content_type: str = "application/octet-stream"
    file_size: int = 0
    state: CapsuleState = CapsuleState.CREATED
    content_id: Optional[str] = None
    encrypted_key: Optional[TimeLockCiphertext] = None
    lock_handle: Optional[LockHandle] = None
    content_nonce: Optional[bytes] = None
    content_digest: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    unlocked_at: Optional[str] = None

    def set_content_id(self, content_id: str) -> None:
        if self.content_id is not None and self.content_id != content_id:
            raise ImmutableFieldError(self.capsule_id, "content_id")
        self.content_id = content_id

    def set_encrypted_key(self, ciphertext: TimeLockCiphertext, handle: LockHandle) -> None:
        if self.encrypted_key is not None and self.encrypted_key != ciphertext:
            raise ImmutableFieldError(self.capsule_id, "encrypted_key")
        self.encrypted_key = ciphertext
        self.lock_handle = handle

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capsuleId": self.capsule_id,
            "creator": self.creator,
            "recipient": self.recipient,
            "title": self.title,
            "unlockCondition": self.unlock_condition.to_dict(),
            "contentType": self.content_type,
            "fileSize": self.file_size,
            "state": self.state.value,
            "contentId": self.content_id,
            "encryptedKey": self.encrypted_key.to_dict() if self.encrypted_key else None,
            "lockHandle": self.lock_handle.to_dict() if self.lock_handle else None,
            "contentNonce": (
                base64.b64encode(self.content_nonce).decode("ascii")
                if self.content_nonce else None
            ),
            "contentDigest": self.content_digest,
            "createdAt": self.created_at,
            "unlockedAt": self.unlocked_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Capsule":
        nonce = data.get("contentNonce")
        return cls(
            capsule_id=int(data["capsuleId"]),
            creator=data["creator"],
            recipient=data["recipient"],
            title=data["title"],
            unlock_condition=UnlockCondition.from_dict(data["unlockCondition"]),
            content_type=data.get("contentType", "application/octet-stream"),
            file_size=int(data.get("fileSize", 0)),
            state=CapsuleState(data.get("state", CapsuleState.CREATED.value)),
            content_id=data.get("contentId"),
            encrypted_key=(
                TimeLockCiphertext.from_dict(data["encryptedKey"])
                if data.get("encryptedKey") else None
            ),
            lock_handle=(
                LockHandle.from_dict(data["lockHandle"])
                if data.get("lockHandle") else None
            ),
            content_nonce=base64.b64decode(nonce) if nonce else None,
            content_digest=data.get("contentDigest"),
            created_at=data.get("createdAt", now_iso()),
            unlocked_at=data.get("unlockedAt"),
        )


@dataclass
class CapsuleStatus:
    capsule_id: int
    state: CapsuleState
    condition: UnlockCondition
    remaining: int = 0
    unit: str = "seconds"
    estimated_seconds: Optional[int] = None
    title: str = ""
    creator: str = ""
    recipient: str = ""
    content_type: str = "application/octet-stream"
    created_at: Optional[str] = None
    unlocked_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capsuleId": self.capsule_id,
            "state": self.state.value,
            "condition": self.condition.to_dict(),
            "remaining": self.remaining,
            "unit": self.unit,
            "estimatedSeconds": self.estimated_seconds,
            "title": self.title,
            "creator": self.creator,
            "recipient": self.recipient,
            "contentType": self.content_type,
            "createdAt": self.created_at,
            "unlockedAt": self.unlocked_at,
        }


@dataclass
class DecryptedContent:
    capsule_id: int
    data: bytes
    content_type: str
    title: str
    cached: bool = False
    decision: Optional[UnlockDecision] = None
