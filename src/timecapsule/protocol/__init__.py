from .enums import CapsuleState, ConditionKind, ConditionState, ErrorCode
from .models import (
    Capsule,
    CapsuleStatus,
    ConditionStatus,
    DecryptedContent,
    DecryptionMaterial,
    LockHandle,
    TimeLockCiphertext,
    UnlockCondition,
    UnlockDecision,
    VerificationResult,
)
from .errors import (
    CapsuleError,
    CapsuleNotFound,
    ConditionNotMet,
    ContentNotRetrievable,
    DecryptionFailed,
    ImmutableFieldError,
    IntegrityViolation,
    InvalidContentId,
    InvalidStateTransition,
    LedgerCommitError,
    LedgerUnavailable,
    LockBackendUnavailable,
    NotYetUnlockable,
    SecretTooLarge,
    StorageUnavailable,
    VerificationFailed,
)

__all__ = [
    "CapsuleState",
    "ConditionKind",
    "ConditionState",
    "ErrorCode",
    "Capsule",
    "CapsuleStatus",
    "ConditionStatus",
    "DecryptedContent",
    "DecryptionMaterial",
    "LockHandle",
    "TimeLockCiphertext",
    "UnlockCondition",
    "UnlockDecision",
    "VerificationResult",
    "CapsuleError",
    "CapsuleNotFound",
    "ConditionNotMet",
    "ContentNotRetrievable",
    "DecryptionFailed",
    "ImmutableFieldError",
    "IntegrityViolation",
    "InvalidContentId",
    "InvalidStateTransition",
    "LedgerCommitError",
    "LedgerUnavailable",
    "LockBackendUnavailable",
    "NotYetUnlockable",
    "SecretTooLarge",
    "StorageUnavailable",
    "VerificationFailed",
]
