"""
Audit log for capsule lifecycle and unlock attempts.

The log is:
- Append-only (JSONL format)
- Integrity-verified (hash chaining)
- Optionally Ed25519-signed per entry
"""

from .models import (
    AuditEntry,
    AuditEntryType,
    AuditIntegrityError,
    AuditSignatureError,
    AuditSigner,
    AuditVerifier,
)
from .writer import AuditLog
from .signing import Ed25519AuditSigner, Ed25519AuditVerifier

__all__ = [
    "AuditEntry",
    "AuditEntryType",
    "AuditIntegrityError",
    "AuditSignatureError",
    "AuditSigner",
    "AuditVerifier",
    "AuditLog",
    "Ed25519AuditSigner",
    "Ed25519AuditVerifier",
]
