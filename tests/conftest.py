"""
Shared fixtures.

HTTP is faked with httpx.MockTransport: one FakeStorageNetwork plays the
upload endpoint and every gateway. The ledger clock is a FakeClock the tests
move forward by hand.
"""

import json
from typing import Dict, List, Optional, Set

import httpx
import pytest
import pytest_asyncio

from timecapsule.audit.writer import AuditLog
from timecapsule.core.orchestrator import UnlockOrchestrator
from timecapsule.core.state_machine import CapsuleStateMachine
from timecapsule.ledger.submitter import TxReceipt
from timecapsule.storage.cid import compute_content_id
from timecapsule.storage.content_store import ContentStore
from timecapsule.timelock.cipher import TimeLockCipher
from timecapsule.timelock.custodians import LocalCustodian
from timecapsule.verification.pipeline import VerificationPipeline
from timecapsule.verification.validators import (
    AuthorizationValidator,
    ConditionValidator,
    TimeConsensusValidator,
)

GENESIS = 1_700_000_000
CREATOR = "0x" + "a1" * 20
RECIPIENT = "0x" + "B2c3" * 10
STRANGER = "0x" + "d4" * 20

UPLOAD_URL = "http://upload.test/api/v0/add"
GATEWAYS = ["http://gw-a.test", "http://gw-b.test", "http://gw-c.test"]


# ===========================================================================
# Fakes
# ===========================================================================


class FakeClock:
    def __init__(self, timestamp: int = GENESIS, height: int = 1000):
        self.timestamp = timestamp
        self.height = height
        self.calls = 0

    async def current_timestamp(self) -> int:
        self.calls += 1
        return self.timestamp

    async def current_height(self) -> int:
        self.calls += 1
        return self.height

    def advance(self, seconds: int = 0, blocks: int = 0) -> None:
        self.timestamp += seconds
        self.height += blocks


class CountingCustodian(LocalCustodian):
    def __init__(self, custodian_id, clock):
        super().__init__(custodian_id, clock)
        self.escrow_calls = 0
        self.reveal_calls = 0

    async def escrow(self, handle, share):
        self.escrow_calls += 1
        await super().escrow(handle, share)

    async def reveal(self, handle, index):
        self.reveal_calls += 1
        return await super().reveal(handle, index)


class RecordingSubmitter:
    def __init__(self):
        self.operations: List[dict] = []
        self.fail = False

    async def submit(self, operation):
        if self.fail:
            return TxReceipt(tx_hash="0xrejected", success=False)
        self.operations.append(dict(operation))
        return TxReceipt(tx_hash=f"0x{len(self.operations):064x}", success=True)

    def transitions_to(self, state: str) -> List[dict]:
        return [op for op in self.operations if op.get("to") == state]


def _multipart_file(request: httpx.Request) -> bytes:
    content_type = request.headers["content-type"]
    boundary = content_type.split("boundary=", 1)[1].encode("ascii")
    body = request.content
    part = body.split(b"--" + boundary)[1]
    _, _, data = part.partition(b"\r\n\r\n")
    return data[:-2]


class FakeStorageNetwork:
    """Upload endpoint plus gateways serving ``GET {base}/content/{cid}``."""

    def __init__(self, gateways: Optional[List[str]] = None):
        self.gateways = list(gateways or GATEWAYS)
        self.objects: Dict[str, bytes] = {}
        self.down: Set[str] = set()
        self.tampered: Dict[str, bytes] = {}
        self.upload_failures = 0
        self.requests: List[httpx.Request] = []

    def take_down(self, *bases: str) -> None:
        self.down.update(bases or self.gateways)

    def restore(self) -> None:
        self.down.clear()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url.startswith(UPLOAD_URL):
            if self.upload_failures > 0:
                self.upload_failures -= 1
                return httpx.Response(503)
            data = _multipart_file(request)
            cid = compute_content_id(data)
            self.objects[cid] = data
            return httpx.Response(200, json={"Name": "capsule.bin", "Hash": cid, "Size": str(len(data))})

        base = f"{request.url.scheme}://{request.url.host}"
        if base in self.down:
            return httpx.Response(503, text="gateway down")
        if not request.url.path.startswith("/content/"):
            return httpx.Response(404)
        cid = request.url.path[len("/content/"):]
        if cid in self.tampered:
            return httpx.Response(200, content=self.tampered[cid])
        if cid not in self.objects:
            return httpx.Response(404)
        return httpx.Response(200, content=self.objects[cid])


# ===========================================================================
# Fixtures
# ===========================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def network():
    return FakeStorageNetwork()


@pytest_asyncio.fixture
async def http_client(network):
    async with httpx.AsyncClient(transport=httpx.MockTransport(network.handler)) as client:
        yield client


@pytest.fixture
def store(http_client, network):
    return ContentStore(
        http_client,
        network.gateways,
        upload_url=UPLOAD_URL,
        gateway_timeout=1.0,
        upload_retries=3,
        retry_backoff=0.0,
        fetch_deadline=5.0,
    )


@pytest.fixture
def custodians(clock):
    return [CountingCustodian(f"local-{i}", clock) for i in range(1, 4)]


@pytest.fixture
def cipher(clock, custodians):
    return TimeLockCipher(clock, custodians, threshold=2, call_timeout=1.0)


@pytest.fixture
def audit(tmp_path):
    return AuditLog(str(tmp_path / "audit"), sync=False)


@pytest.fixture
def submitter():
    return RecordingSubmitter()


@pytest.fixture
def pipeline(clock, cipher):
    return VerificationPipeline([
        AuthorizationValidator(),
        TimeConsensusValidator(clock, wall_clock=lambda: clock.timestamp),
        ConditionValidator(cipher),
    ])


@pytest.fixture
def orchestrator(store, cipher, pipeline, submitter, audit):
    return UnlockOrchestrator(
        store=store,
        cipher=cipher,
        pipeline=pipeline,
        state_machine=CapsuleStateMachine(submitter=submitter, audit=audit),
        audit=audit,
    )


def total_reveals(custodians) -> int:
    return sum(c.reveal_calls for c in custodians)


def json_body(request: httpx.Request) -> dict:
    return json.loads(request.content)
