"""
Tests for content-addressed storage.

Test coverage:
1. Content identifiers (derivation, parsing, verification)
2. Gateway list ranking and updates
3. ContentStore upload (retries, identifier check)
4. ContentStore fetch (fallback, size check, deadline, diagnostics)
"""

import asyncio
import os

import httpx
import pytest

from conftest import GATEWAYS, UPLOAD_URL
from timecapsule.protocol.errors import (
    ContentNotRetrievable,
    IntegrityViolation,
    InvalidContentId,
    StorageUnavailable,
)
from timecapsule.storage.cid import compute_content_id, content_digest, matches, parse_content_id
from timecapsule.storage.content_store import ContentStore
from timecapsule.storage.gateways import GatewayList


# ===========================================================================
# 1. Content identifiers
# ===========================================================================


class TestContentId:
    def test_empty_payload_matches_ipfs_raw_cid(self):
        assert compute_content_id(b"") == "bafkreihdwdcefgh4dqkjv67uzcmw7ojee6xedzdetojuzjevtenxquvyku"

    def test_identifier_is_deterministic(self):
        data = os.urandom(256)
        assert compute_content_id(data) == compute_content_id(bytes(data))

    def test_digest_is_sha256(self):
        import hashlib

        data = b"capsule ciphertext"
        assert content_digest(compute_content_id(data)) == hashlib.sha256(data).digest()

    def test_matches_detects_modified_bytes(self):
        cid = compute_content_id(b"original")
        assert matches(cid, b"original")
        assert not matches(cid, b"originaL")

    @pytest.mark.parametrize("value", ["", "Qm123", "bnot-base32!", "b" + "a" * 10])
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(InvalidContentId):
            parse_content_id(value)


# ===========================================================================
# 2. Gateway list
# ===========================================================================


class TestGatewayList:
    def test_healthy_list_keeps_configured_order(self):
        gateways = GatewayList(["http://a/", "http://b", "http://a"])
        assert gateways.ranked() == ["http://a", "http://b"]

    def test_failing_gateway_moves_back(self):
        gateways = GatewayList(["http://a", "http://b", "http://c"])
        gateways.record_failure("http://a")
        assert gateways.ranked() == ["http://b", "http://c", "http://a"]

    def test_success_resets_consecutive_failures(self):
        gateways = GatewayList(["http://a", "http://b"])
        gateways.record_failure("http://a")
        gateways.record_success("http://a")
        assert gateways.ranked() == ["http://a", "http://b"]
        assert gateways.stats("http://a").failures == 1

    def test_dynamic_updates(self):
        gateways = GatewayList(["http://a"])
        gateways.add("http://b/")
        gateways.remove("http://a")
        assert list(gateways) == ["http://b"]
        gateways.replace(["http://c", "http://b"])
        assert gateways.ranked() == ["http://c", "http://b"]


# ===========================================================================
# 3. Upload
# ===========================================================================


class TestContentStorePut:
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        for payload in (b"", b"x", os.urandom(4096)):
            cid = await store.put(payload)
            assert await store.get(cid) == payload
            assert store.verify(cid, payload)

    @pytest.mark.asyncio
    async def test_retries_transient_upload_failures(self, store, network):
        network.upload_failures = 2
        cid = await store.put(b"eventually stored")
        assert cid in network.objects

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_storage_unavailable(self, store, network):
        network.upload_failures = 5
        with pytest.raises(StorageUnavailable) as exc_info:
            await store.put(b"never stored")
        assert len(exc_info.value.attempts) == 3
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            store = ContentStore(client, GATEWAYS, upload_url=UPLOAD_URL, retry_backoff=0.0)
            with pytest.raises(StorageUnavailable):
                await store.put(b"data")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_mismatched_returned_hash_is_integrity_violation(self):
        def handler(request):
            return httpx.Response(200, json={"Hash": compute_content_id(b"something else")})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            store = ContentStore(client, GATEWAYS, upload_url=UPLOAD_URL)
            with pytest.raises(IntegrityViolation):
                await store.put(b"data")

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, http_client, network):
        store = ContentStore(http_client, network.gateways, upload_url=UPLOAD_URL, api_key="secret-token")
        await store.put(b"data")
        upload = [r for r in network.requests if str(r.url).startswith(UPLOAD_URL)][-1]
        assert upload.headers["authorization"] == "Bearer secret-token"
        assert upload.url.params["cid-version"] == "1"


# ===========================================================================
# 4. Fetch
# ===========================================================================


class TestContentStoreGet:
    @pytest.mark.asyncio
    async def test_falls_back_past_failing_gateways(self, store, network):
        cid = await store.put(b"replicated")
        network.take_down(GATEWAYS[0], GATEWAYS[1])

        assert await store.get(cid) == b"replicated"
        assert store.gateways.stats(GATEWAYS[0]).consecutive_failures == 1
        assert store.gateways.ranked()[0] == GATEWAYS[2]

    @pytest.mark.asyncio
    async def test_all_gateways_failing_lists_every_endpoint(self, store, network):
        cid = await store.put(b"unreachable")
        network.take_down()

        with pytest.raises(ContentNotRetrievable) as exc_info:
            await store.get(cid)

        err = exc_info.value
        assert isinstance(err, StorageUnavailable)
        assert err.details["endpoints"] == GATEWAYS
        assert all(a["status"] == 503 for a in err.attempts)

    @pytest.mark.asyncio
    async def test_size_mismatch_falls_through(self, store, network):
        cid = await store.put(b"exact size")
        network.tampered[cid] = b"short"

        with pytest.raises(ContentNotRetrievable) as exc_info:
            await store.get(cid, expected_size=len(b"exact size"))
        assert "size mismatch" in exc_info.value.attempts[0]["error"]

    @pytest.mark.asyncio
    async def test_fetch_verified_rejects_tampered_bytes(self, store, network):
        cid = await store.put(b"genuine")
        network.tampered[cid] = b"forged!"

        with pytest.raises(IntegrityViolation) as exc_info:
            await store.fetch_verified(cid, expected_size=7)
        assert exc_info.value.expected == cid

    @pytest.mark.asyncio
    async def test_overall_deadline_bounds_slow_gateways(self):
        async def handler(request):
            await asyncio.sleep(0.5)
            return httpx.Response(200, content=b"late")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            store = ContentStore(
                client,
                ["http://slow-1", "http://slow-2", "http://slow-3"],
                upload_url=UPLOAD_URL,
                gateway_timeout=5.0,
                fetch_deadline=0.2,
            )
            with pytest.raises(ContentNotRetrievable) as exc_info:
                await store.get(compute_content_id(b"late"))
        assert "deadline" in exc_info.value.message
        assert exc_info.value.attempts[-1]["gateway"] == "http://slow-1"

    @pytest.mark.asyncio
    async def test_gateway_path_template(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, content=b"ipfs")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            store = ContentStore(client, ["https://ipfs.io"], upload_url=UPLOAD_URL, gateway_path="/ipfs/{cid}")
            cid = compute_content_id(b"ipfs")
            assert await store.get(cid) == b"ipfs"
        assert seen == [f"/ipfs/{cid}"]
