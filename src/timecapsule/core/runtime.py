from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from timecapsule.audit.signing import Ed25519AuditSigner
from timecapsule.audit.writer import AuditLog
from timecapsule.ledger.clock import JsonRpcLedgerClock, LedgerClock, SystemClock
from timecapsule.ledger.submitter import TransactionSubmitter
from timecapsule.security.content_cipher import ContentCipher
from timecapsule.storage.content_store import ContentStore
from timecapsule.timelock.cipher import TimeLockCipher
from timecapsule.timelock.custodians import Custodian, HTTPCustodian, LocalCustodian
from timecapsule.verification.pipeline import VerificationPipeline
from timecapsule.verification.time_sources import sources_from_config
from timecapsule.verification.validators import (
    AuthorizationValidator,
    ConditionValidator,
    TimeConsensusValidator,
)

from .orchestrator import UnlockOrchestrator
from .settings import TimeCapsuleSettings, get_settings
from .state_machine import CapsuleStateMachine

logger = logging.getLogger(__name__)


class CapsuleRuntime:
    """
    Wires every component from one TimeCapsuleSettings:

    - LedgerClock:      JSON-RPC chain if configured, else the system clock
    - Custodians:       remote share holders if configured, else in-process
    - TimeLockCipher:   threshold lock over the custodians
    - ContentStore:     upload endpoint + ranked gateways
    - Pipeline:         authorization, time consensus, condition
    - AuditLog:         optional, signed when a key is configured

    The runtime owns the shared httpx.AsyncClient unless one is passed in.
    """

    def __init__(
        self,
        settings: Optional[TimeCapsuleSettings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[LedgerClock] = None,
        submitter: Optional[TransactionSubmitter] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient()

        self.clock: LedgerClock = clock or self._build_clock()
        self.audit: Optional[AuditLog] = self._build_audit()
        self.custodians: List[Custodian] = self._build_custodians()

        self.cipher = TimeLockCipher.from_settings(self.clock, self.custodians, self.settings.timelock)
        self.store = ContentStore.from_settings(self.client, self.settings.storage)

        verification = self.settings.verification
        sources = sources_from_config(
            verification.time_sources,
            self.client,
            timeout=verification.source_timeout,
        )
        self.pipeline = VerificationPipeline([
            AuthorizationValidator(),
            TimeConsensusValidator.from_settings(self.clock, sources, verification),
            ConditionValidator(self.cipher),
        ])

        self.orchestrator = UnlockOrchestrator(
            store=self.store,
            cipher=self.cipher,
            pipeline=self.pipeline,
            state_machine=CapsuleStateMachine(submitter=submitter, audit=self.audit),
            content_cipher=ContentCipher(),
            audit=self.audit,
            content_cache_size=self.settings.runtime.content_cache_size,
        )

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def _build_clock(self) -> LedgerClock:
        ledger = self.settings.ledger
        if ledger.rpc_url:
            logger.info("Ledger clock: JSON-RPC %s", ledger.rpc_url)
            return JsonRpcLedgerClock(self.client, ledger.rpc_url, timeout=ledger.timeout)
        logger.info("Ledger clock: system clock")
        return SystemClock(
            genesis_timestamp=ledger.genesis_timestamp,
            block_time_seconds=self.settings.timelock.block_time_seconds,
        )

    def _build_custodians(self) -> List[Custodian]:
        timelock = self.settings.timelock
        if timelock.custodian_urls:
            return [
                HTTPCustodian(f"custodian-{i}", self.client, url, timeout=timelock.custodian_timeout)
                for i, url in enumerate(timelock.custodian_urls, start=1)
            ]
        logger.warning(
            "No custodian URLs configured; holding %d shares in-process",
            timelock.custodian_count,
        )
        return [
            LocalCustodian(f"local-{i}", self.clock)
            for i in range(1, timelock.custodian_count + 1)
        ]

    def _build_audit(self) -> Optional[AuditLog]:
        audit = self.settings.audit
        if not audit.enabled:
            return None
        signer = Ed25519AuditSigner.from_private_hex(audit.signing_key) if audit.signing_key else None
        return AuditLog(audit.dir, sync=audit.sync, signer=signer)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "CapsuleRuntime":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
