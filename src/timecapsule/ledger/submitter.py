from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from timecapsule.utils.json import canonical_json

logger = logging.getLogger(__name__)


@dataclass
class TxReceipt:
    tx_hash: str
    success: bool
    block_number: Optional[int] = None


class TransactionSubmitter(Protocol):
    """
    Commits capsule state to a ledger. The core only looks at ``success``.
    """

    async def submit(self, operation: Dict[str, Any]) -> TxReceipt:
        ...


class NullSubmitter:
    """Submitter for deployments without a ledger: every commit succeeds."""

    async def submit(self, operation: Dict[str, Any]) -> TxReceipt:
        tx_hash = "0x" + hashlib.sha256(canonical_json(operation)).hexdigest()
        logger.debug("Local commit %s: %s", tx_hash[:18], operation.get("op"))
        return TxReceipt(tx_hash=tx_hash, success=True)
