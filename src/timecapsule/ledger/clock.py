"""
Authoritative ledger clock.

The ledger clock is the reference the time lock is bound to and the one
time source the consensus check always trusts. Two implementations:

- SystemClock: local wall clock, heights derived from a genesis time and
  an average block interval (single-node and test deployments)
- JsonRpcLedgerClock: reads the latest block of an EVM-style chain over
  JSON-RPC (``eth_getBlockByNumber``)
"""

from __future__ import annotations

import itertools
import logging
import time
from typing import Any, Dict, Protocol, Tuple

import httpx

from timecapsule.protocol.errors import LedgerUnavailable

logger = logging.getLogger(__name__)


class LedgerClock(Protocol):
    async def current_timestamp(self) -> int:
        ...

    async def current_height(self) -> int:
        ...


class SystemClock:
    def __init__(self, *, genesis_timestamp: int = 0, block_time_seconds: float = 30.0):
        if block_time_seconds <= 0:
            raise ValueError("block_time_seconds must be positive")
        self._genesis = genesis_timestamp
        self._block_time = block_time_seconds

    async def current_timestamp(self) -> int:
        return int(time.time())

    async def current_height(self) -> int:
        elapsed = max(0, int(time.time()) - self._genesis)
        return int(elapsed // self._block_time)


class JsonRpcLedgerClock:
    def __init__(self, client: httpx.AsyncClient, rpc_url: str, *, timeout: float = 10.0):
        self._client = client
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._ids = itertools.count(1)

    async def _latest_block(self) -> Dict[str, Any]:
        frame = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "eth_getBlockByNumber",
            "params": ["latest", False],
        }
        try:
            resp = await self._client.post(self._rpc_url, json=frame, timeout=self._timeout)
            resp.raise_for_status()
            decoded = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Ledger RPC %s unavailable: %s", self._rpc_url, e)
            raise LedgerUnavailable(f"Ledger RPC failed: {e}", self._rpc_url) from e

        if decoded.get("error"):
            raise LedgerUnavailable(f"Ledger RPC error: {decoded['error']}", self._rpc_url)
        block = decoded.get("result")
        if not isinstance(block, dict):
            raise LedgerUnavailable("Ledger RPC returned no block", self._rpc_url)
        return block

    async def latest(self) -> Tuple[int, int]:
        """(timestamp, height) of the latest block in one round trip."""
        block = await self._latest_block()
        try:
            return int(block["timestamp"], 16), int(block["number"], 16)
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerUnavailable(f"Malformed block: {e}", self._rpc_url) from e

    async def current_timestamp(self) -> int:
        return (await self.latest())[0]

    async def current_height(self) -> int:
        return (await self.latest())[1]
