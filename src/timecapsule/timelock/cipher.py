"""
Threshold time-lock cipher.

lock():
  - draw a fresh 256-bit wrapping key
  - AES-256-GCM seal the secret under it, AAD bound to lock id + condition
  - Shamir-split the wrapping key t-of-n and escrow one share per custodian

release():
  - require the condition to be satisfied on the authoritative clock
  - gather t shares from custodians (each checks the condition itself)
  - rebuild the wrapping key and open the sealed secret

The wrapping key is never stored. If escrow cannot complete, lock() fails
outright; there is no degraded mode that would hand out a key early.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from timecapsule.ledger.clock import LedgerClock
from timecapsule.protocol.enums import ConditionKind
from timecapsule.protocol.errors import (
    ConditionNotMet,
    DecryptionFailed,
    LockBackendUnavailable,
    SecretTooLarge,
)
from timecapsule.protocol.models import (
    ConditionStatus,
    LockHandle,
    TimeLockCiphertext,
    UnlockCondition,
)
from timecapsule.utils.locks import KeyedLock

from .custodians import Custodian, CustodianError, ShareWithheld
from .shamir import Share, combine_shares, split_secret

logger = logging.getLogger(__name__)

MAX_SECRET_BYTES = 32
WRAPPING_KEY_BYTES = 32


def _aad(lock_id: str, condition: UnlockCondition) -> bytes:
    return (
        f"timecapsule-timelock-v1:{lock_id}:"
        f"{condition.kind.value}:{condition.target}:{condition.tolerance}"
    ).encode("utf-8")


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "timed out"
    if isinstance(exc, CustodianError):
        return exc.message
    return f"{type(exc).__name__}: {exc}"


class TimeLockCipher:
    def __init__(
        self,
        clock: LedgerClock,
        custodians: Sequence[Custodian],
        *,
        threshold: int,
        block_time_seconds: float = 30.0,
        lock_expiry_seconds: Optional[int] = None,
        call_timeout: float = 10.0,
    ):
        if not custodians:
            raise ValueError("At least one custodian is required")
        if not 1 <= threshold <= len(custodians):
            raise ValueError(f"threshold must be between 1 and {len(custodians)}")
        ids = [c.custodian_id for c in custodians]
        if len(set(ids)) != len(ids):
            raise ValueError("Custodian ids must be unique")

        self._clock = clock
        self._custodians = list(custodians)
        self._by_id: Dict[str, Custodian] = {c.custodian_id: c for c in custodians}
        self._threshold = threshold
        self._block_time = block_time_seconds
        self._expiry = lock_expiry_seconds
        self._timeout = call_timeout

        self._released: Dict[str, bytes] = {}
        self._release_locks = KeyedLock()

    @classmethod
    def from_settings(cls, clock: LedgerClock, custodians: Sequence[Custodian], settings) -> "TimeLockCipher":
        """Build from a ``TimeLockSettings`` group."""
        return cls(
            clock,
            custodians,
            threshold=settings.threshold,
            block_time_seconds=settings.block_time_seconds,
            lock_expiry_seconds=settings.lock_expiry_seconds,
            call_timeout=settings.custodian_timeout,
        )

    @property
    def threshold(self) -> int:
        return self._threshold

    # ------------------------------------------------------------------
    # Lock
    # ------------------------------------------------------------------

    async def lock(self, secret: bytes, condition: UnlockCondition) -> Tuple[TimeLockCiphertext, LockHandle]:
        if len(secret) > MAX_SECRET_BYTES:
            raise SecretTooLarge(len(secret), MAX_SECRET_BYTES)

        lock_id = uuid.uuid4().hex
        handle = LockHandle(
            lock_id=lock_id,
            condition=condition,
            threshold=self._threshold,
            custodians=tuple(c.custodian_id for c in self._custodians),
            expires_at=await self._expiry_for(condition),
        )

        wrapping_key = bytearray(os.urandom(WRAPPING_KEY_BYTES))
        try:
            nonce = os.urandom(12)
            sealed = AESGCM(bytes(wrapping_key)).encrypt(nonce, secret, _aad(lock_id, condition))
            shares = split_secret(bytes(wrapping_key), self._threshold, len(self._custodians))
        finally:
            for i in range(len(wrapping_key)):
                wrapping_key[i] = 0

        outcomes = await asyncio.gather(
            *(self._escrow(c, handle, s) for c, s in zip(self._custodians, shares)),
            return_exceptions=True,
        )
        failures: List[Dict[str, Any]] = []
        for custodian, outcome in zip(self._custodians, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, (CustodianError, asyncio.TimeoutError)):
                    raise outcome
                failures.append({"custodian": custodian.custodian_id, "error": _describe(outcome)})

        if failures:
            logger.warning("Lock %s: escrow failed at %d of %d custodians", lock_id, len(failures), len(self._custodians))
            raise LockBackendUnavailable(
                f"Escrow failed at {len(failures)} of {len(self._custodians)} custodians",
                failures,
            )

        logger.info(
            "Lock %s escrowed %d-of-%d until %s %d",
            lock_id, self._threshold, len(self._custodians), condition.kind.value, condition.target,
        )
        return TimeLockCiphertext(lock_id=lock_id, nonce=nonce, ciphertext=sealed), handle

    async def _escrow(self, custodian: Custodian, handle: LockHandle, share: Share) -> None:
        await asyncio.wait_for(custodian.escrow(handle, share), timeout=self._timeout)

    async def _expiry_for(self, condition: UnlockCondition) -> Optional[int]:
        if self._expiry is None:
            return None
        if condition.kind is ConditionKind.TIMESTAMP:
            return condition.target + self._expiry
        now = await self._clock.current_timestamp()
        height = await self._clock.current_height()
        eta = int(condition.remaining(height) * self._block_time)
        return now + eta + self._expiry

    # ------------------------------------------------------------------
    # Condition
    # ------------------------------------------------------------------

    async def check_condition(self, handle: LockHandle) -> ConditionStatus:
        condition = handle.condition
        unit = condition.unit

        if condition.kind is ConditionKind.TIMESTAMP:
            now = await self._clock.current_timestamp()
            reading = now
        else:
            now = await self._clock.current_timestamp() if handle.expires_at is not None else None
            reading = await self._clock.current_height()

        if handle.expires_at is not None and now is not None and now > handle.expires_at:
            return ConditionStatus.expired(unit)
        if condition.is_met(reading):
            return ConditionStatus.satisfied(unit)

        remaining = condition.remaining(reading)
        if condition.kind is ConditionKind.TIMESTAMP:
            return ConditionStatus.pending(remaining, unit)
        return ConditionStatus.pending(remaining, unit, int(remaining * self._block_time))

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release(self, handle: LockHandle, ciphertext: TimeLockCiphertext) -> bytes:
        if ciphertext.lock_id != handle.lock_id:
            raise ValueError("Ciphertext does not belong to this lock handle")

        async with self._release_locks.acquire(handle.lock_id):
            cached = self._released.get(handle.lock_id)
            if cached is not None:
                return cached

            status = await self.check_condition(handle)
            if not status.is_satisfied:
                raise ConditionNotMet(
                    f"Lock {handle.lock_id} condition is {status.state.value}",
                    status,
                )

            shares, withheld, failures = await self._gather_shares(handle)
            if len(shares) < handle.threshold:
                logger.warning(
                    "Lock %s: %d of %d shares gathered (%d withheld, %d failed)",
                    handle.lock_id, len(shares), handle.threshold, len(withheld), len(failures),
                )
                if withheld:
                    raise ConditionNotMet(
                        f"Custodians withheld shares for lock {handle.lock_id}",
                        status,
                    )
                raise LockBackendUnavailable(
                    f"Only {len(shares)} of {handle.threshold} shares available for lock {handle.lock_id}",
                    failures,
                )

            secret = self._open(handle, ciphertext, shares)
            self._released[handle.lock_id] = secret
            logger.info("Lock %s released", handle.lock_id)
            return secret

    async def _gather_shares(
        self, handle: LockHandle
    ) -> Tuple[List[Share], List[Dict[str, Any]], List[Dict[str, Any]]]:
        targets = [(i + 1, cid) for i, cid in enumerate(handle.custodians)]
        shares: List[Share] = []
        withheld: List[Dict[str, Any]] = []
        failures: List[Dict[str, Any]] = []

        async def _reveal(index: int, custodian_id: str) -> Share:
            custodian = self._by_id.get(custodian_id)
            if custodian is None:
                raise CustodianError(custodian_id, "custodian not configured")
            return await asyncio.wait_for(custodian.reveal(handle, index), timeout=self._timeout)

        outcomes = await asyncio.gather(*(_reveal(i, cid) for i, cid in targets), return_exceptions=True)
        for (index, custodian_id), outcome in zip(targets, outcomes):
            if isinstance(outcome, Share):
                shares.append(outcome)
            elif isinstance(outcome, ShareWithheld):
                withheld.append({"custodian": custodian_id, "index": index, "error": outcome.message})
            elif isinstance(outcome, (CustodianError, asyncio.TimeoutError)):
                failures.append({"custodian": custodian_id, "index": index, "error": _describe(outcome)})
            else:
                raise outcome
        return shares[: handle.threshold], withheld, failures

    def _open(self, handle: LockHandle, ciphertext: TimeLockCiphertext, shares: List[Share]) -> bytes:
        try:
            key = bytearray(combine_shares(shares, WRAPPING_KEY_BYTES))
        except ValueError as e:
            raise DecryptionFailed(f"Shares for lock {handle.lock_id} are inconsistent") from e
        try:
            return AESGCM(bytes(key)).decrypt(
                ciphertext.nonce,
                ciphertext.ciphertext,
                _aad(handle.lock_id, handle.condition),
            )
        except InvalidTag as e:
            raise DecryptionFailed(f"Time-lock ciphertext for lock {handle.lock_id} failed authentication") from e
        finally:
            for i in range(len(key)):
                key[i] = 0

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def is_released(self, lock_id: str) -> bool:
        return lock_id in self._released

    def forget(self, lock_id: str) -> None:
        """Drop a released secret once its capsule no longer needs it."""
        self._released.pop(lock_id, None)
