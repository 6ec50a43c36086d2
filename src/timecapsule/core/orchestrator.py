"""
UnlockOrchestrator - composes storage, time lock, verification and the
capsule state machine.

create_capsule():
  seal payload (AES-256-GCM) -> time-lock the content key -> store the
  ciphertext -> record the capsule as LOCKED

attempt_unlock(), serialized per capsule:
  1. UNLOCKED: return the cached plaintext, nothing else runs
  2. not UNLOCKABLE: NotYetUnlockable (LOCKED advances lazily once the
     condition is observed satisfied)
  3. verification pipeline; rejection changes nothing
  4. release the content key from the time lock
  5. fetch + verify the ciphertext
  6. decrypt locally
  7. mark UNLOCKED, record the plaintext digest, wipe the key

A failure in 4-7 records UNLOCK_FAILED, returns the capsule to
UNLOCKABLE and re-raises the step's own error.

Plaintext of unlocked capsules is kept in a bounded LRU cache
(``content_cache_size`` entries, 0 disables it). An evicted capsule is
reopened on its next unlock and checked against the recorded digest.
"""

from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict
from typing import List, Optional

from timecapsule.audit.writer import AuditLog
from timecapsule.ledger.identity import IdentityProvider
from timecapsule.protocol.enums import CapsuleState, ConditionState
from timecapsule.protocol.errors import (
    CapsuleError,
    ConditionNotMet,
    DecryptionFailed,
    IntegrityViolation,
    InvalidStateTransition,
    LedgerCommitError,
    NotYetUnlockable,
    StorageUnavailable,
    VerificationFailed,
)
from timecapsule.protocol.models import (
    Capsule,
    CapsuleStatus,
    DecryptedContent,
    DecryptionMaterial,
    UnlockCondition,
    UnlockDecision,
)
from timecapsule.security.content_cipher import ContentCipher
from timecapsule.storage.cid import compute_content_id
from timecapsule.storage.content_store import ContentStore
from timecapsule.timelock.cipher import TimeLockCipher
from timecapsule.utils.locks import KeyedLock
from timecapsule.verification.base import VerificationContext
from timecapsule.verification.pipeline import VerificationPipeline

from .registry import CapsuleRegistry
from .state_machine import CapsuleStateMachine

logger = logging.getLogger(__name__)


def _step_for(error: CapsuleError) -> str:
    if isinstance(error, StorageUnavailable):
        return "fetch"
    if isinstance(error, IntegrityViolation):
        return "verify"
    if isinstance(error, DecryptionFailed):
        return "decrypt"
    if isinstance(error, LedgerCommitError):
        return "commit"
    return "release"


class UnlockOrchestrator:
    def __init__(
        self,
        *,
        store: ContentStore,
        cipher: TimeLockCipher,
        pipeline: VerificationPipeline,
        state_machine: Optional[CapsuleStateMachine] = None,
        content_cipher: Optional[ContentCipher] = None,
        audit: Optional[AuditLog] = None,
        content_cache_size: int = 128,
    ) -> None:
        if content_cache_size < 0:
            raise ValueError("content_cache_size must be >= 0")
        self.store = store
        self.cipher = cipher
        self.pipeline = pipeline
        self.state_machine = state_machine or CapsuleStateMachine(audit=audit)
        self._content_cipher = content_cipher or ContentCipher()
        self._audit = audit

        self._locks = KeyedLock()
        self._content: "OrderedDict[int, bytes]" = OrderedDict()
        self._content_cache_size = content_cache_size

    @property
    def registry(self) -> CapsuleRegistry:
        return self.state_machine.registry

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_capsule(
        self,
        creator: str,
        recipient: str,
        title: str,
        payload: bytes,
        condition: UnlockCondition,
        *,
        content_type: str = "application/octet-stream",
    ) -> int:
        if not creator or not recipient:
            raise ValueError("creator and recipient are required")

        capsule_id = self.registry.next_id()
        sealed = self._content_cipher.seal(capsule_id, payload)
        encrypted_key, handle = await self.cipher.lock(sealed.key, condition)
        content_id = await self.store.put(sealed.ciphertext, name=f"capsule-{capsule_id}.bin")

        capsule = await self.state_machine.create(
            capsule_id,
            creator=creator,
            recipient=recipient,
            title=title,
            condition=condition,
            content_type=content_type,
            file_size=len(sealed.ciphertext),
        )
        await self.state_machine.mark_locked(
            capsule,
            content_id=content_id,
            encrypted_key=encrypted_key,
            handle=handle,
            content_nonce=sealed.nonce,
        )
        return capsule_id

    # ------------------------------------------------------------------
    # Unlock
    # ------------------------------------------------------------------

    async def attempt_unlock(self, capsule_id: int, requester: str) -> DecryptedContent:
        capsule = self.registry.get(capsule_id)

        async with self._locks.acquire(capsule_id):
            if capsule.state is CapsuleState.UNLOCKED:
                return await self._cached(capsule)

            await self._ensure_unlockable(capsule)

            decision = await self.pipeline.verify(VerificationContext(capsule=capsule, requester=requester))
            if self._audit is not None:
                self._audit.unlock_verified(capsule_id, requester, decision.to_dict())
            if not decision.approved:
                raise VerificationFailed(decision.reasons, decision)

            try:
                plaintext = await self._open(capsule)
                await self.state_machine.mark_unlocked(
                    capsule,
                    requester=requester,
                    content_digest=hashlib.sha256(plaintext).hexdigest(),
                )
            except CapsuleError as e:
                await self._record_failure(capsule, e)
                raise

            self._remember(capsule_id, plaintext)
            self.cipher.forget(capsule.lock_handle.lock_id)
            return self._content_for(capsule, plaintext, decision=decision)

    async def attempt_unlock_as(self, capsule_id: int, identity: IdentityProvider) -> DecryptedContent:
        return await self.attempt_unlock(capsule_id, await identity.current_identity())

    async def _ensure_unlockable(self, capsule: Capsule) -> None:
        if capsule.state is CapsuleState.UNLOCK_FAILED:
            await self.state_machine.mark_unlockable(capsule)
            return
        if capsule.state is CapsuleState.UNLOCKABLE:
            return
        if capsule.state is CapsuleState.CREATED or capsule.lock_handle is None:
            raise InvalidStateTransition(capsule.capsule_id, capsule.state.value, CapsuleState.UNLOCKED.value)

        status = await self.cipher.check_condition(capsule.lock_handle)
        if status.is_satisfied:
            await self.state_machine.mark_unlockable(capsule)
            return
        if status.state is ConditionState.EXPIRED:
            raise ConditionNotMet(f"Capsule {capsule.capsule_id} time lock has expired", status)
        raise NotYetUnlockable(status.remaining, unit=status.unit, estimated_seconds=status.estimated_seconds)

    async def _open(self, capsule: Capsule) -> bytes:
        """Steps 4-6: release, fetch + verify, decrypt."""
        content_key = await self.cipher.release(capsule.lock_handle, capsule.encrypted_key)

        ciphertext = await self.store.get(capsule.content_id, capsule.file_size)
        if not self.store.verify(capsule.content_id, ciphertext):
            raise IntegrityViolation(
                f"Capsule {capsule.capsule_id} ciphertext does not match its content id",
                expected=capsule.content_id,
                actual=compute_content_id(ciphertext),
            )

        with DecryptionMaterial(content_key, capsule.content_nonce) as material:
            return self._content_cipher.open(capsule.capsule_id, material, ciphertext)

    async def _record_failure(self, capsule: Capsule, error: CapsuleError) -> None:
        step = _step_for(error)
        logger.warning("Capsule %s unlock failed at %s: %s", capsule.capsule_id, step, error.message)
        if capsule.state is not CapsuleState.UNLOCKABLE:
            return
        try:
            await self.state_machine.mark_unlock_failed(capsule, step, error)
        except LedgerCommitError as commit_error:
            logger.error(
                "Capsule %s: could not record failed attempt: %s",
                capsule.capsule_id,
                commit_error.message,
            )

    async def _cached(self, capsule: Capsule) -> DecryptedContent:
        plaintext = self._content.get(capsule.capsule_id)
        if plaintext is not None:
            self._content.move_to_end(capsule.capsule_id)
        else:
            # Evicted, or registry restored from a snapshot: reopen and
            # check against the recorded digest.
            plaintext = await self._open(capsule)
            if hashlib.sha256(plaintext).hexdigest() != capsule.content_digest:
                raise IntegrityViolation(
                    f"Capsule {capsule.capsule_id} reopened content does not match its recorded digest",
                    expected=capsule.content_digest or "",
                    actual=hashlib.sha256(plaintext).hexdigest(),
                )
            self._remember(capsule.capsule_id, plaintext)
            self.cipher.forget(capsule.lock_handle.lock_id)
        return self._content_for(capsule, plaintext, cached=True)

    def _remember(self, capsule_id: int, plaintext: bytes) -> None:
        if self._content_cache_size == 0:
            return
        self._content[capsule_id] = plaintext
        self._content.move_to_end(capsule_id)
        while len(self._content) > self._content_cache_size:
            evicted, _ = self._content.popitem(last=False)
            logger.debug("Evicted capsule %s plaintext from cache", evicted)

    @staticmethod
    def _content_for(
        capsule: Capsule,
        plaintext: bytes,
        *,
        cached: bool = False,
        decision: Optional[UnlockDecision] = None,
    ) -> DecryptedContent:
        return DecryptedContent(
            capsule_id=capsule.capsule_id,
            data=plaintext,
            content_type=capsule.content_type,
            title=capsule.title,
            cached=cached,
            decision=decision,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_capsule_status(self, capsule_id: int) -> CapsuleStatus:
        return await self._status_for(self.registry.get(capsule_id))

    async def list_capsules(self, identity: str, role: str = "recipient") -> List[CapsuleStatus]:
        """Statuses of every capsule ``identity`` receives (or created, with role="creator")."""
        if role == "recipient":
            capsules = self.registry.list_for_recipient(identity)
        elif role == "creator":
            capsules = self.registry.list_for_creator(identity)
        else:
            raise ValueError(f"role must be 'recipient' or 'creator', not {role!r}")
        return [await self._status_for(c) for c in capsules]

    async def _status_for(self, capsule: Capsule) -> CapsuleStatus:
        condition = capsule.unlock_condition
        status = CapsuleStatus(
            capsule_id=capsule.capsule_id,
            state=capsule.state,
            condition=condition,
            unit=condition.unit,
            estimated_seconds=0,
            title=capsule.title,
            creator=capsule.creator,
            recipient=capsule.recipient,
            content_type=capsule.content_type,
            created_at=capsule.created_at,
            unlocked_at=capsule.unlocked_at,
        )
        if capsule.state is CapsuleState.UNLOCKED or capsule.lock_handle is None:
            return status

        condition_status = await self.cipher.check_condition(capsule.lock_handle)
        status.remaining = condition_status.remaining
        status.estimated_seconds = condition_status.estimated_seconds
        return status
