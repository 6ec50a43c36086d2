from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from timecapsule.ledger.clock import LedgerClock
from timecapsule.ledger.identity import normalize_identity
from timecapsule.protocol.enums import ConditionState
from timecapsule.protocol.errors import LedgerUnavailable
from timecapsule.protocol.models import VerificationResult
from timecapsule.timelock.cipher import TimeLockCipher
from timecapsule.utils.json import canonical_json
from timecapsule.utils.timestamps import monotonic_ms, utc_now

from .base import Validator, VerificationContext
from .time_sources import TimeSource, TimeSourceError

logger = logging.getLogger(__name__)


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _local_time() -> float:
    return utc_now().timestamp()


# ===========================================================================
# Authorization
# ===========================================================================

class AuthorizationValidator(Validator):
    name = "authorization"
    cheap = True

    async def validate(self, context: VerificationContext) -> VerificationResult:
        requester = normalize_identity(context.requester)
        recipient = normalize_identity(context.capsule.recipient)
        evidence = {
            "requesterDigest": _digest(requester),
            "recipientDigest": _digest(recipient),
        }
        if requester != recipient:
            return self.fail("requester is not the capsule recipient", confidence=1.0, evidence=evidence)
        return self.ok(confidence=1.0, evidence=evidence)


# ===========================================================================
# Time consensus
# ===========================================================================

class TimeConsensusValidator(Validator):
    """
    Checks the ledger clock against independent reference clocks.

    The ledger clock is the authoritative source. It must sit within
    ``authoritative_tolerance`` seconds of the local wall clock, otherwise the
    check fails outright. An external source is valid when its skew from the
    ledger clock is within ``external_tolerance`` seconds and it answered
    within ``max_latency_ms``.

    Policy:
      - ledger clock within ``authoritative_tolerance`` of local time
      - at least ``min_valid_sources`` valid sources (ledger included)
      - if ``require_external_corroboration``, at least one valid external
    """

    name = "time_consensus"
    cheap = False

    def __init__(
        self,
        clock: LedgerClock,
        sources: Sequence[TimeSource] = (),
        *,
        authoritative_tolerance: int = 300,
        external_tolerance: int = 1800,
        max_latency_ms: int = 15000,
        source_timeout: float = 10.0,
        min_valid_sources: int = 1,
        require_external_corroboration: bool = False,
        wall_clock: Optional[Callable[[], float]] = None,
    ):
        if min_valid_sources < 1:
            raise ValueError("min_valid_sources must be at least 1")
        self._clock = clock
        self._wall_clock = wall_clock or _local_time
        self._sources = list(sources)
        self._authoritative_tolerance = authoritative_tolerance
        self._external_tolerance = external_tolerance
        self._max_latency_ms = max_latency_ms
        self._source_timeout = source_timeout
        self._min_valid = min_valid_sources
        self._require_external = require_external_corroboration

    @classmethod
    def from_settings(cls, clock: LedgerClock, sources: Sequence[TimeSource], settings) -> "TimeConsensusValidator":
        """Build from a ``VerificationSettings`` group."""
        return cls(
            clock,
            sources,
            authoritative_tolerance=settings.authoritative_tolerance,
            external_tolerance=settings.external_tolerance,
            max_latency_ms=settings.max_latency_ms,
            source_timeout=settings.source_timeout,
            min_valid_sources=settings.min_valid_sources,
            require_external_corroboration=settings.require_external_corroboration,
        )

    async def validate(self, context: VerificationContext) -> VerificationResult:
        started = monotonic_ms()
        try:
            reference = await self._clock.current_timestamp()
        except LedgerUnavailable as e:
            return self.fail(f"ledger clock unavailable: {e.message}", confidence=0.0)

        local = int(self._wall_clock())
        ledger_skew = reference - local
        ledger_valid = abs(ledger_skew) <= self._authoritative_tolerance
        readings: List[Dict[str, Any]] = [{
            "source": "ledger",
            "authoritative": True,
            "timestamp": reference,
            "skew": ledger_skew,
            "latencyMs": monotonic_ms() - started,
            "tolerance": self._authoritative_tolerance,
            "valid": ledger_valid,
            "error": None if ledger_valid else (
                f"skew {ledger_skew}s from local clock exceeds {self._authoritative_tolerance}s"
            ),
        }]
        if not ledger_valid:
            logger.warning("Ledger clock is %ds off the local clock", ledger_skew)
        readings.extend(await asyncio.gather(*(self._query(s, reference) for s in self._sources)))

        valid = [r for r in readings if r["valid"]]
        external_valid = [r for r in valid if not r["authoritative"]]
        skews = [abs(r["skew"]) for r in external_valid]

        evidence = {
            "referenceTimestamp": reference,
            "localTimestamp": local,
            "sources": readings,
            "validSources": len(valid),
            "minValidSources": self._min_valid,
            "requireExternalCorroboration": self._require_external,
            "digest": hashlib.sha256(canonical_json(readings)).hexdigest(),
        }
        confidence = len(valid) / len(readings)
        diff = float(max(skews)) if skews else 0.0

        if not ledger_valid:
            return self.fail(
                f"ledger clock is {ledger_skew}s off the local clock "
                f"(tolerance {self._authoritative_tolerance}s)",
                confidence=confidence, diff=float(abs(ledger_skew)), evidence=evidence,
            )
        if len(valid) < self._min_valid:
            return self.fail(
                f"{len(valid)} valid time source(s), {self._min_valid} required",
                confidence=confidence, diff=diff, evidence=evidence,
            )
        if self._require_external and not external_valid:
            return self.fail(
                "no external time source corroborates the ledger clock",
                confidence=confidence, diff=diff, evidence=evidence,
            )
        return self.ok(confidence=confidence, diff=diff, evidence=evidence)

    async def _query(self, source: TimeSource, reference: int) -> Dict[str, Any]:
        reading: Dict[str, Any] = {
            "source": source.name,
            "authoritative": False,
            "timestamp": None,
            "skew": None,
            "latencyMs": None,
            "tolerance": self._external_tolerance,
            "valid": False,
            "error": None,
        }
        started = monotonic_ms()
        try:
            timestamp = await asyncio.wait_for(source.read(), timeout=self._source_timeout)
        except asyncio.TimeoutError:
            reading["error"] = f"timed out after {self._source_timeout}s"
        except TimeSourceError as e:
            reading["error"] = str(e)
        else:
            reading["timestamp"] = timestamp
            reading["skew"] = timestamp - reference
        reading["latencyMs"] = monotonic_ms() - started

        if reading["error"] is not None:
            logger.warning("Time source %s failed: %s", source.name, reading["error"])
            return reading

        if abs(reading["skew"]) > self._external_tolerance:
            reading["error"] = f"skew {reading['skew']}s exceeds {self._external_tolerance}s"
        elif reading["latencyMs"] > self._max_latency_ms:
            reading["error"] = f"latency {reading['latencyMs']}ms exceeds {self._max_latency_ms}ms"
        else:
            reading["valid"] = True

        if not reading["valid"]:
            logger.warning("Time source %s rejected: %s", source.name, reading["error"])
        return reading


# ===========================================================================
# Unlock condition
# ===========================================================================

class ConditionValidator(Validator):
    name = "condition"
    cheap = False

    def __init__(self, cipher: TimeLockCipher):
        self._cipher = cipher

    async def validate(self, context: VerificationContext) -> VerificationResult:
        handle = context.capsule.lock_handle
        if handle is None:
            return self.fail("capsule has no time lock")

        status = await self._cipher.check_condition(handle)
        evidence = {"lockId": handle.lock_id, "status": status.to_dict()}
        if status.is_satisfied:
            return self.ok(diff=0.0, evidence=evidence)

        if status.state is ConditionState.EXPIRED:
            reason = "time lock has expired"
        else:
            reason = f"condition pending ({status.remaining} {status.unit} remaining)"
        return self.fail(reason, diff=float(status.remaining), evidence=evidence)
