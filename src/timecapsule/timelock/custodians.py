"""
Share custodians.

A custodian holds one Shamir share of a lock's wrapping key and hands it
back only once its own reading of the ledger clock satisfies the lock's
condition. No single custodian can open a lock on its own.
"""

from __future__ import annotations

import logging
from typing import Dict, Protocol, Tuple

import httpx

from timecapsule.ledger.clock import LedgerClock
from timecapsule.protocol.enums import ConditionKind
from timecapsule.protocol.models import LockHandle

from .shamir import Share

logger = logging.getLogger(__name__)


class CustodianError(Exception):
    def __init__(self, custodian_id: str, message: str):
        super().__init__(f"{custodian_id}: {message}")
        self.custodian_id = custodian_id
        self.message = message


class ShareWithheld(CustodianError):
    """The custodian is reachable but the condition is not met in its view."""


class CustodianUnavailable(CustodianError):
    """The custodian could not be reached or does not know the lock."""


class Custodian(Protocol):
    custodian_id: str

    async def escrow(self, handle: LockHandle, share: Share) -> None:
        ...

    async def reveal(self, handle: LockHandle, index: int) -> Share:
        ...


# ---------------------------------------------------------------------------
# In-process custodian
# ---------------------------------------------------------------------------

class LocalCustodian:
    def __init__(self, custodian_id: str, clock: LedgerClock):
        self.custodian_id = custodian_id
        self._clock = clock
        self._shares: Dict[Tuple[str, int], Share] = {}

    async def escrow(self, handle: LockHandle, share: Share) -> None:
        self._shares[(handle.lock_id, share.index)] = share

    async def reveal(self, handle: LockHandle, index: int) -> Share:
        share = self._shares.get((handle.lock_id, index))
        if share is None:
            raise CustodianUnavailable(self.custodian_id, f"unknown lock {handle.lock_id}")

        condition = handle.condition
        if condition.kind is ConditionKind.TIMESTAMP:
            reading = await self._clock.current_timestamp()
        else:
            reading = await self._clock.current_height()

        if not condition.is_met(reading):
            raise ShareWithheld(
                self.custodian_id,
                f"condition not met ({condition.remaining(reading)} {condition.unit} remaining)",
            )
        return share

    def __len__(self) -> int:
        return len(self._shares)


# ---------------------------------------------------------------------------
# Remote custodian
# ---------------------------------------------------------------------------

class HTTPCustodian:
    """
    Share holder behind an HTTP endpoint.

    - POST {base}/shares                    escrow
    - GET  {base}/shares/{lock_id}/{index}  reveal (425 while not yet)
    """

    def __init__(
        self,
        custodian_id: str,
        client: httpx.AsyncClient,
        base_url: str,
        *,
        timeout: float = 10.0,
    ):
        self.custodian_id = custodian_id
        self._client = client
        self._base = base_url.rstrip("/")
        self._timeout = timeout

    async def escrow(self, handle: LockHandle, share: Share) -> None:
        body = {"lock": handle.to_dict(), "share": share.to_dict()}
        try:
            resp = await self._client.post(f"{self._base}/shares", json=body, timeout=self._timeout)
        except httpx.HTTPError as e:
            raise CustodianUnavailable(self.custodian_id, f"escrow failed: {type(e).__name__}") from e
        if not resp.is_success:
            raise CustodianUnavailable(self.custodian_id, f"escrow returned HTTP {resp.status_code}")

    async def reveal(self, handle: LockHandle, index: int) -> Share:
        url = f"{self._base}/shares/{handle.lock_id}/{index}"
        try:
            resp = await self._client.get(url, timeout=self._timeout)
        except httpx.HTTPError as e:
            raise CustodianUnavailable(self.custodian_id, f"reveal failed: {type(e).__name__}") from e

        if resp.status_code == 425:
            raise ShareWithheld(self.custodian_id, "condition not met")
        if resp.status_code == 404:
            raise CustodianUnavailable(self.custodian_id, f"unknown lock {handle.lock_id}")
        if not resp.is_success:
            raise CustodianUnavailable(self.custodian_id, f"reveal returned HTTP {resp.status_code}")

        try:
            share = Share.from_dict(resp.json()["share"])
        except (KeyError, TypeError, ValueError) as e:
            raise CustodianUnavailable(self.custodian_id, "malformed share response") from e
        if share.index != index:
            raise CustodianUnavailable(self.custodian_id, f"returned share {share.index}, expected {index}")
        return share
