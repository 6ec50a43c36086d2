"""
Error taxonomy for the unlock pipeline.

Every error carries a stable ``code``, a ``retryable`` hint for callers and a
``details`` dict with enough structure (attempted gateways, failing
validators, remaining time) to decide whether to retry, wait or escalate.

Nothing here is retried automatically across calls: a caller has to invoke
``attempt_unlock`` again explicitly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .enums import ErrorCode

if TYPE_CHECKING:
    from .models import ConditionStatus, UnlockDecision


class CapsuleError(Exception):
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or ErrorCode.INTERNAL_ERROR
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class StorageUnavailable(CapsuleError):
    """Raised when the storage network cannot be reached within budget."""

    retryable = True

    def __init__(
        self,
        message: str,
        attempts: Optional[List[Dict[str, Any]]] = None,
        *,
        code: ErrorCode = ErrorCode.STORAGE_UNAVAILABLE,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.attempts = list(attempts or [])
        merged: Dict[str, Any] = {"attempts": self.attempts}
        merged.update(details or {})
        super().__init__(message, code, merged)


class ContentNotRetrievable(StorageUnavailable):
    """Raised when every gateway failed to serve a content identifier."""

    def __init__(self, content_id: str, attempts: List[Dict[str, Any]], reason: str = ""):
        self.content_id = content_id
        endpoints = [a.get("gateway") for a in attempts]
        message = f"Content {content_id} not retrievable from {len(endpoints)} gateway(s)"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            attempts,
            code=ErrorCode.CONTENT_NOT_RETRIEVABLE,
            details={"contentId": content_id, "endpoints": endpoints},
        )


class IntegrityViolation(CapsuleError):
    """Raised when bytes do not hash to the identifier they were served under."""

    def __init__(self, message: str, *, expected: str, actual: str, source: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            message,
            ErrorCode.INTEGRITY_VIOLATION,
            {"expected": expected, "actual": actual, "source": source},
        )


class InvalidContentId(CapsuleError):
    def __init__(self, value: str, reason: str):
        super().__init__(
            f"Invalid content identifier {value!r}: {reason}",
            ErrorCode.INVALID_INPUT,
            {"value": value},
        )


# ---------------------------------------------------------------------------
# Time lock
# ---------------------------------------------------------------------------

class LockBackendUnavailable(CapsuleError):
    """Raised when the time-lock backend cannot provide its guarantee."""

    retryable = True

    def __init__(self, message: str, failures: Optional[List[Dict[str, Any]]] = None):
        self.failures = list(failures or [])
        super().__init__(message, ErrorCode.LOCK_BACKEND_UNAVAILABLE, {"failures": self.failures})


class ConditionNotMet(CapsuleError):
    """Raised by release() while the unlock condition is not satisfied."""

    retryable = True

    def __init__(self, message: str, status: Optional["ConditionStatus"] = None):
        self.status = status
        super().__init__(
            message,
            ErrorCode.CONDITION_NOT_MET,
            {"status": status.to_dict() if status is not None else None},
        )


class SecretTooLarge(CapsuleError):
    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Secret of {size} bytes exceeds time-lock limit of {limit} bytes",
            ErrorCode.INVALID_INPUT,
            {"size": size, "limit": limit},
        )


# ---------------------------------------------------------------------------
# Unlock pipeline
# ---------------------------------------------------------------------------

class VerificationFailed(CapsuleError):
    """
    Raised when the verification pipeline rejects an unlock.

    ``failed_validators`` holds the names of the validators that failed
    (e.g. ``["authorization"]``). ``reasons`` holds one readable
    ``"name: reason"`` line per failure.
    """

    def __init__(self, reasons: List[str], decision: Optional["UnlockDecision"] = None):
        self.reasons = list(reasons)
        self.decision = decision
        if decision is not None:
            self.failed_validators = decision.failed_validators
        else:
            self.failed_validators = [r.split(":", 1)[0] for r in self.reasons]
        super().__init__(
            f"Unlock verification failed ({', '.join(self.failed_validators)}): " + "; ".join(self.reasons),
            ErrorCode.VERIFICATION_FAILED,
            {"failedValidators": self.failed_validators, "reasons": self.reasons},
        )


class DecryptionFailed(CapsuleError):
    """Bad key or corrupted ciphertext. Treated as a data-integrity incident."""

    def __init__(self, message: str, capsule_id: Optional[int] = None):
        super().__init__(message, ErrorCode.DECRYPTION_FAILED, {"capsuleId": capsule_id})


class NotYetUnlockable(CapsuleError):
    retryable = True

    def __init__(self, remaining: int, *, unit: str = "seconds", estimated_seconds: Optional[int] = None):
        self.remaining = remaining
        self.unit = unit
        self.estimated_seconds = estimated_seconds
        super().__init__(
            f"Capsule is not yet unlockable ({remaining} {unit} remaining)",
            ErrorCode.NOT_YET_UNLOCKABLE,
            {"remaining": remaining, "unit": unit, "estimatedSeconds": estimated_seconds},
        )


# ---------------------------------------------------------------------------
# Capsule records
# ---------------------------------------------------------------------------

class CapsuleNotFound(CapsuleError):
    def __init__(self, capsule_id: int):
        self.capsule_id = capsule_id
        super().__init__(
            f"Capsule {capsule_id} not found",
            ErrorCode.CAPSULE_NOT_FOUND,
            {"capsuleId": capsule_id},
        )


class InvalidStateTransition(CapsuleError):
    def __init__(self, capsule_id: int, from_state: str, to_state: str):
        super().__init__(
            f"Capsule {capsule_id}: illegal transition {from_state} -> {to_state}",
            ErrorCode.INVALID_TRANSITION,
            {"capsuleId": capsule_id, "from": from_state, "to": to_state},
        )


class ImmutableFieldError(CapsuleError):
    def __init__(self, capsule_id: int, field_name: str):
        super().__init__(
            f"Capsule {capsule_id}: field '{field_name}' is already set",
            ErrorCode.IMMUTABLE_FIELD,
            {"capsuleId": capsule_id, "field": field_name},
        )


class LedgerCommitError(CapsuleError):
    """Raised when a state transition could not be committed to the ledger."""

    retryable = True

    def __init__(self, message: str, operation: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.LEDGER_COMMIT_FAILED, {"operation": operation})


class LedgerUnavailable(CapsuleError):
    """Raised when the authoritative ledger clock cannot be read."""

    retryable = True

    def __init__(self, message: str, endpoint: Optional[str] = None):
        super().__init__(message, ErrorCode.LEDGER_UNAVAILABLE, {"endpoint": endpoint})
