from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    STORAGE_UNAVAILABLE = "storage_unavailable"
    CONTENT_NOT_RETRIEVABLE = "content_not_retrievable"
    INTEGRITY_VIOLATION = "integrity_violation"
    LOCK_BACKEND_UNAVAILABLE = "lock_backend_unavailable"
    CONDITION_NOT_MET = "condition_not_met"
    VERIFICATION_FAILED = "verification_failed"
    DECRYPTION_FAILED = "decryption_failed"
    NOT_YET_UNLOCKABLE = "not_yet_unlockable"
    CAPSULE_NOT_FOUND = "capsule_not_found"
    INVALID_TRANSITION = "invalid_transition"
    IMMUTABLE_FIELD = "immutable_field"
    LEDGER_COMMIT_FAILED = "ledger_commit_failed"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    INVALID_INPUT = "invalid_input"
    INTERNAL_ERROR = "internal_error"


class ConditionKind(str, Enum):
    """What an unlock condition is measured against."""

    TIMESTAMP = "timestamp"
    BLOCK_HEIGHT = "block_height"


class ConditionState(str, Enum):
    PENDING = "pending"
    SATISFIED = "satisfied"
    EXPIRED = "expired"


class CapsuleState(str, Enum):
    """
    Capsule lifecycle states.

    Legal transitions:
    - CREATED → LOCKED
    - LOCKED → UNLOCKABLE
    - UNLOCKABLE → UNLOCKED | UNLOCK_FAILED
    - UNLOCK_FAILED → UNLOCKABLE

    Terminal states: UNLOCKED
    """

    CREATED = "created"
    LOCKED = "locked"
    UNLOCKABLE = "unlockable"
    UNLOCK_FAILED = "unlock_failed"
    UNLOCKED = "unlocked"

    @classmethod
    def is_terminal(cls, state: "CapsuleState") -> bool:
        return state is cls.UNLOCKED

    @classmethod
    def validate_transition(cls, from_state: "CapsuleState", to_state: "CapsuleState") -> bool:
        """
        Validate state transition.

        Returns True if transition is legal, False otherwise.
        """
        legal_transitions = {
            cls.CREATED: {cls.LOCKED},
            cls.LOCKED: {cls.UNLOCKABLE},
            cls.UNLOCKABLE: {cls.UNLOCKED, cls.UNLOCK_FAILED},
            cls.UNLOCK_FAILED: {cls.UNLOCKABLE},
            cls.UNLOCKED: set(),  # Terminal
        }

        return to_state in legal_transitions.get(from_state, set())
