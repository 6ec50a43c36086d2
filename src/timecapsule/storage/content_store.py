"""
Content-addressed storage client.

- put(): uploads bytes to an IPFS ``api/v0/add`` compatible endpoint with a
  bounded retry budget and checks the returned identifier
- get(): walks a ranked gateway list with per-gateway timeouts inside one
  overall deadline; first success with the expected size wins
- verify(): recomputes the identifier over fetched bytes

Gateways are untrusted. ``get()`` only proves availability, ``verify()``
proves integrity, and callers must do both.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

import httpx

from timecapsule.protocol.errors import (
    ContentNotRetrievable,
    IntegrityViolation,
    StorageUnavailable,
)
from timecapsule.utils.timestamps import monotonic_ms

from .cid import compute_content_id, matches, parse_content_id
from .gateways import GatewayList

logger = logging.getLogger(__name__)


class ContentStore:
    def __init__(
        self,
        client: httpx.AsyncClient,
        gateways: Union[GatewayList, Iterable[str]],
        *,
        upload_url: str,
        api_key: str = "",
        gateway_path: str = "/content/{cid}",
        gateway_timeout: float = 10.0,
        upload_timeout: float = 60.0,
        upload_retries: int = 3,
        retry_backoff: float = 0.5,
        fetch_deadline: float = 30.0,
    ):
        if upload_retries < 1:
            raise ValueError("upload_retries must be at least 1")
        self._client = client
        self.gateways = gateways if isinstance(gateways, GatewayList) else GatewayList(gateways)
        self._upload_url = upload_url
        self._api_key = api_key
        self._gateway_path = gateway_path
        self._gateway_timeout = gateway_timeout
        self._upload_timeout = upload_timeout
        self._upload_retries = upload_retries
        self._retry_backoff = retry_backoff
        self._fetch_deadline = fetch_deadline

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings) -> "ContentStore":
        """Build from a ``StorageSettings`` group."""
        return cls(
            client,
            settings.gateways,
            upload_url=settings.upload_url,
            api_key=settings.api_key,
            gateway_path=settings.gateway_path,
            gateway_timeout=settings.gateway_timeout,
            upload_timeout=settings.upload_timeout,
            upload_retries=settings.upload_retries,
            retry_backoff=settings.retry_backoff,
            fetch_deadline=settings.fetch_deadline,
        )

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def put(self, data: bytes, *, name: str = "capsule.bin") -> str:
        content_id = compute_content_id(data)
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        attempts: List[Dict[str, Any]] = []

        for attempt in range(1, self._upload_retries + 1):
            try:
                resp = await self._client.post(
                    self._upload_url,
                    params={"cid-version": "1", "raw-leaves": "true"},
                    files={"file": (name, data, "application/octet-stream")},
                    headers=headers,
                    timeout=self._upload_timeout,
                )
            except httpx.HTTPError as e:
                attempts.append({"endpoint": self._upload_url, "attempt": attempt, "error": _describe(e)})
                logger.warning("Upload attempt %d/%d failed: %s", attempt, self._upload_retries, _describe(e))
            else:
                if resp.is_success:
                    returned = _returned_id(resp)
                    if returned is not None and returned != content_id:
                        raise IntegrityViolation(
                            "Upload endpoint returned an identifier that does not match the content",
                            expected=content_id,
                            actual=returned,
                            source=self._upload_url,
                        )
                    logger.info("Stored %d bytes as %s", len(data), content_id)
                    return content_id

                attempts.append({
                    "endpoint": self._upload_url,
                    "attempt": attempt,
                    "status": resp.status_code,
                    "error": f"HTTP {resp.status_code}",
                })
                if resp.is_client_error:
                    # Auth/validation problems do not improve with retries
                    break
                logger.warning("Upload attempt %d/%d returned HTTP %d", attempt, self._upload_retries, resp.status_code)

            if attempt < self._upload_retries:
                await asyncio.sleep(self._retry_backoff * (2 ** (attempt - 1)))

        raise StorageUnavailable(
            f"Upload to {self._upload_url} failed after {len(attempts)} attempt(s)",
            attempts,
        )

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def get(self, content_id: str, expected_size: Optional[int] = None) -> bytes:
        content_id = parse_content_id(content_id)
        attempts: List[Dict[str, Any]] = []
        current: Dict[str, Optional[str]] = {"gateway": None}

        async def _walk() -> Optional[bytes]:
            for base in self.gateways.ranked():
                current["gateway"] = base
                body = await self._try_gateway(base, content_id, expected_size, attempts)
                if body is not None:
                    return body
            current["gateway"] = None
            return None

        try:
            data = await asyncio.wait_for(_walk(), timeout=self._fetch_deadline)
        except asyncio.TimeoutError:
            if current["gateway"] is not None:
                self.gateways.record_failure(current["gateway"])
                attempts.append({"gateway": current["gateway"], "error": "overall deadline exceeded"})
            raise ContentNotRetrievable(
                content_id,
                attempts,
                reason=f"deadline of {self._fetch_deadline}s exceeded",
            )

        if data is None:
            raise ContentNotRetrievable(content_id, attempts)
        return data

    async def _try_gateway(
        self,
        base: str,
        content_id: str,
        expected_size: Optional[int],
        attempts: List[Dict[str, Any]],
    ) -> Optional[bytes]:
        url = base + self._gateway_path.format(cid=content_id)
        started = monotonic_ms()
        try:
            resp = await self._client.get(url, timeout=self._gateway_timeout)
        except httpx.HTTPError as e:
            self.gateways.record_failure(base)
            attempts.append({"gateway": base, "error": _describe(e), "latencyMs": monotonic_ms() - started})
            logger.warning("Gateway %s failed for %s: %s", base, content_id, _describe(e))
            return None

        latency = monotonic_ms() - started
        if not resp.is_success:
            self.gateways.record_failure(base)
            attempts.append({
                "gateway": base,
                "status": resp.status_code,
                "error": f"HTTP {resp.status_code}",
                "latencyMs": latency,
            })
            logger.warning("Gateway %s returned HTTP %d for %s", base, resp.status_code, content_id)
            return None

        body = resp.content
        if expected_size is not None and len(body) != expected_size:
            self.gateways.record_failure(base)
            attempts.append({
                "gateway": base,
                "status": resp.status_code,
                "error": f"size mismatch: expected {expected_size}, got {len(body)}",
                "latencyMs": latency,
            })
            logger.warning("Gateway %s served %d bytes for %s (expected %d)", base, len(body), content_id, expected_size)
            return None

        self.gateways.record_success(base)
        logger.debug("Fetched %s from %s in %dms", content_id, base, latency)
        return body

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify(self, content_id: str, data: bytes) -> bool:
        return matches(content_id, data)

    async def fetch_verified(self, content_id: str, expected_size: Optional[int] = None) -> bytes:
        """get() + verify(); a mismatch raises IntegrityViolation."""
        data = await self.get(content_id, expected_size)
        if not self.verify(content_id, data):
            raise IntegrityViolation(
                f"Content served for {content_id} does not match its identifier",
                expected=content_id,
                actual=compute_content_id(data),
            )
        return data


def _describe(exc: Exception) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


def _returned_id(resp: httpx.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    return body.get("Hash") or body.get("cid")
