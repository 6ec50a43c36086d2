"""
Capsule lifecycle state machine.

Every transition goes through the same path:

  1. legality check against CapsuleState.validate_transition
  2. commit through the TransactionSubmitter
  3. append to the audit log
  4. apply to the in-memory capsule

The ledger commit in 2 is the commit point. A failure there raises
LedgerCommitError and leaves the capsule exactly as it was. Once the ledger
has accepted a transition it is always applied; an audit write failure in 3
is logged and does not undo it.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from timecapsule.audit.writer import AuditLog
from timecapsule.ledger.submitter import NullSubmitter, TransactionSubmitter
from timecapsule.protocol.enums import CapsuleState
from timecapsule.protocol.errors import (
    CapsuleError,
    ImmutableFieldError,
    InvalidStateTransition,
    LedgerCommitError,
)
from timecapsule.protocol.models import Capsule, LockHandle, TimeLockCiphertext, UnlockCondition
from timecapsule.utils.timestamps import now_iso

from .registry import CapsuleRegistry

logger = logging.getLogger(__name__)


class CapsuleStateMachine:
    def __init__(
        self,
        registry: Optional[CapsuleRegistry] = None,
        *,
        submitter: Optional[TransactionSubmitter] = None,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self.registry = registry or CapsuleRegistry()
        self._submitter: TransactionSubmitter = submitter or NullSubmitter()
        self._audit = audit

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create(
        self,
        capsule_id: int,
        *,
        creator: str,
        recipient: str,
        title: str,
        condition: UnlockCondition,
        content_type: str,
        file_size: int,
    ) -> Capsule:
        capsule = Capsule(
            capsule_id=capsule_id,
            creator=creator,
            recipient=recipient,
            title=title,
            unlock_condition=condition,
            content_type=content_type,
            file_size=file_size,
        )
        operation = {
            "op": "create",
            "capsuleId": capsule_id,
            "creator": creator,
            "recipient": recipient,
            "condition": condition.to_dict(),
        }
        await self._commit(
            operation,
            lambda log: log.capsule_created(capsule_id, creator, recipient, condition.to_dict()),
        )
        self.registry.register(capsule)
        logger.info("Capsule %s created", capsule_id)
        return capsule

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def mark_locked(
        self,
        capsule: Capsule,
        *,
        content_id: str,
        encrypted_key: TimeLockCiphertext,
        handle: LockHandle,
        content_nonce: bytes,
    ) -> None:
        if capsule.content_id is not None and capsule.content_id != content_id:
            raise ImmutableFieldError(capsule.capsule_id, "content_id")
        if capsule.encrypted_key is not None and capsule.encrypted_key != encrypted_key:
            raise ImmutableFieldError(capsule.capsule_id, "encrypted_key")

        def apply() -> None:
            capsule.set_content_id(content_id)
            capsule.set_encrypted_key(encrypted_key, handle)
            capsule.content_nonce = content_nonce

        await self._transition(
            capsule,
            CapsuleState.LOCKED,
            {"contentId": content_id, "lockId": handle.lock_id},
            lambda log: log.capsule_locked(capsule.capsule_id, content_id, handle.lock_id),
            apply,
        )

    async def mark_unlockable(self, capsule: Capsule) -> None:
        await self._transition(
            capsule,
            CapsuleState.UNLOCKABLE,
            {},
            lambda log: log.capsule_unlockable(capsule.capsule_id),
        )

    async def mark_unlock_failed(self, capsule: Capsule, step: str, error: CapsuleError) -> None:
        """Record a failed attempt, then return the capsule to UNLOCKABLE."""
        await self._transition(
            capsule,
            CapsuleState.UNLOCK_FAILED,
            {"step": step, "error": error.code.value},
            lambda log: log.unlock_failed(capsule.capsule_id, step, error.to_dict()),
        )
        await self.mark_unlockable(capsule)

    async def mark_unlocked(self, capsule: Capsule, *, requester: str, content_digest: str) -> None:
        def apply() -> None:
            capsule.content_digest = content_digest
            capsule.unlocked_at = now_iso()

        await self._transition(
            capsule,
            CapsuleState.UNLOCKED,
            {"requester": requester, "contentDigest": content_digest},
            lambda log: log.capsule_unlocked(capsule.capsule_id, requester, content_digest),
            apply,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        capsule: Capsule,
        to_state: CapsuleState,
        extra: Dict[str, Any],
        audit_fn: Callable[[AuditLog], Any],
        apply: Optional[Callable[[], None]] = None,
    ) -> None:
        from_state = capsule.state
        if not CapsuleState.validate_transition(from_state, to_state):
            raise InvalidStateTransition(capsule.capsule_id, from_state.value, to_state.value)

        operation = {
            "op": "transition",
            "capsuleId": capsule.capsule_id,
            "from": from_state.value,
            "to": to_state.value,
        }
        operation.update(extra)
        await self._commit(operation, audit_fn)

        if apply is not None:
            apply()
        capsule.state = to_state
        logger.info("Capsule %s: %s -> %s", capsule.capsule_id, from_state.value, to_state.value)

    async def _commit(self, operation: Dict[str, Any], audit_fn: Callable[[AuditLog], Any]) -> None:
        try:
            receipt = await self._submitter.submit(operation)
        except LedgerCommitError:
            raise
        except Exception as e:
            raise LedgerCommitError(f"Commit of {operation['op']} failed: {e}", operation) from e
        if not receipt.success:
            raise LedgerCommitError(f"Ledger rejected {operation['op']} (tx {receipt.tx_hash})", operation)

        if self._audit is not None:
            try:
                audit_fn(self._audit)
            except OSError as e:
                logger.error(
                    "Audit write for committed %s (tx %s) failed: %s",
                    operation["op"], receipt.tx_hash, e,
                )
