"""
Audit log writer - append-only, hash-chained, crash-safe.

Rules:
- Every write is flushed (and fsynced unless ``sync=False``) before returning
- Hash chaining detects tampering and truncation in the middle of the log
- No overwrites (append-only JSONL)
- Thread-safe; resumes sequence and chain from an existing file
- Verification results are recorded in full; key material never is
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from timecapsule.utils.timestamps import now_iso

from .models import (
    AuditEntry,
    AuditEntryType,
    AuditIntegrityError,
    AuditSigner,
    AuditVerifier,
)

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Append-only audit log for capsule lifecycle and unlock attempts.
    """

    FILE_NAME = "capsules.audit"

    def __init__(
        self,
        audit_dir: str,
        *,
        sync: bool = True,
        signer: Optional[AuditSigner] = None,
    ) -> None:
        self._dir = Path(audit_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self.path = self._dir / self.FILE_NAME
        self._sync = sync
        self._signer = signer
        self._lock = threading.Lock()
        self._seq = 0
        self._last_hash: Optional[str] = None

        self._resume_from_existing()

    @property
    def is_signing_enabled(self) -> bool:
        return self._signer is not None

    def _resume_from_existing(self) -> None:
        """Resume seq counter and hash chain from an existing log file."""
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Audit log %s has a corrupted tail; resuming before it", self.path)
                    break
                self._seq = entry.get("seq", self._seq)
                self._last_hash = entry.get("entry_hash")

    def append(self, capsule_id: int, entry_type: AuditEntryType, payload: Dict[str, Any]) -> AuditEntry:
        """
        Append an entry. Returns the written entry (with computed hash).
        """
        with self._lock:
            entry = AuditEntry(
                seq=self._seq + 1,
                capsule_id=capsule_id,
                timestamp_iso=now_iso(),
                entry_type=entry_type,
                payload=payload,
                prev_hash=self._last_hash,
            )
            entry.entry_hash = entry.compute_hash()
            if self._signer is not None:
                entry.sign(self._signer)

            line = json.dumps(entry.to_dict(), ensure_ascii=False, sort_keys=True) + "\n"
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                if self._sync:
                    os.fsync(f.fileno())

            # Chain advances only after the write is durable
            self._seq = entry.seq
            self._last_hash = entry.entry_hash
            return entry

    def read_all(self) -> List[AuditEntry]:
        entries: List[AuditEntry] = []
        if not self.path.exists():
            return entries
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    entries.append(AuditEntry.from_dict(json.loads(line)))
        return entries

    def entries_for(self, capsule_id: int) -> List[AuditEntry]:
        return [e for e in self.read_all() if e.capsule_id == capsule_id]

    def verify_chain(self, verifier: Optional[AuditVerifier] = None) -> int:
        """
        Verify hashes, chain links and (optionally) signatures.

        Returns the number of verified entries; raises AuditIntegrityError.
        """
        prev_hash: Optional[str] = None
        count = 0
        for entry in self.read_all():
            if entry.prev_hash != prev_hash:
                raise AuditIntegrityError(f"Chain broken at seq={entry.seq}")
            if entry.compute_hash() != entry.entry_hash:
                raise AuditIntegrityError(f"Hash mismatch at seq={entry.seq}")
            if verifier is not None and not entry.verify_signature(verifier):
                raise AuditIntegrityError(f"Invalid signature at seq={entry.seq}")
            prev_hash = entry.entry_hash
            count += 1
        return count

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def capsule_created(self, capsule_id: int, creator: str, recipient: str, condition: Dict[str, Any]) -> AuditEntry:
        return self.append(
            capsule_id,
            AuditEntryType.CAPSULE_CREATED,
            {"creator": creator, "recipient": recipient, "condition": condition},
        )

    def capsule_locked(self, capsule_id: int, content_id: str, lock_id: str) -> AuditEntry:
        return self.append(
            capsule_id,
            AuditEntryType.CAPSULE_LOCKED,
            {"content_id": content_id, "lock_id": lock_id},
        )

    def capsule_unlockable(self, capsule_id: int) -> AuditEntry:
        return self.append(capsule_id, AuditEntryType.CAPSULE_UNLOCKABLE, {})

    def unlock_verified(self, capsule_id: int, requester: str, decision: Dict[str, Any]) -> AuditEntry:
        return self.append(
            capsule_id,
            AuditEntryType.UNLOCK_VERIFIED,
            {"requester": requester, "decision": decision},
        )

    def unlock_failed(self, capsule_id: int, step: str, error: Dict[str, Any]) -> AuditEntry:
        return self.append(
            capsule_id,
            AuditEntryType.UNLOCK_FAILED,
            {"step": step, "error": error},
        )

    def capsule_unlocked(self, capsule_id: int, requester: str, content_digest: str) -> AuditEntry:
        return self.append(
            capsule_id,
            AuditEntryType.CAPSULE_UNLOCKED,
            {"requester": requester, "content_digest": content_digest},
        )
