"""
Tests for the unlock verification pipeline.

Test coverage:
1. AuthorizationValidator identity comparison
2. TimeConsensusValidator policy and evidence
3. HTTP time sources
4. ConditionValidator
5. Pipeline reduction (short-circuit, expensive checks always run)
"""

import asyncio

import httpx
import pytest

from conftest import RECIPIENT, STRANGER, FakeClock
from timecapsule.protocol.errors import LedgerUnavailable
from timecapsule.protocol.models import Capsule, UnlockCondition, VerificationResult
from timecapsule.verification.base import Validator, VerificationContext
from timecapsule.verification.pipeline import VerificationPipeline
from timecapsule.verification.time_sources import (
    HTTPTimeSource,
    TimeSourceError,
    parse_timestamp,
    sources_from_config,
)
from timecapsule.verification.validators import (
    AuthorizationValidator,
    ConditionValidator,
    TimeConsensusValidator,
)


def _capsule(recipient=RECIPIENT):
    return Capsule(
        capsule_id=1,
        creator="0x" + "00" * 20,
        recipient=recipient,
        title="t",
        unlock_condition=UnlockCondition.at_timestamp(0),
    )


def _context(requester=RECIPIENT, capsule=None):
    return VerificationContext(capsule=capsule or _capsule(), requester=requester)


def _consensus(clock, sources=(), local_offset=0, **kwargs):
    """Validator whose local wall clock reads ``clock.timestamp + local_offset``."""
    return TimeConsensusValidator(
        clock,
        sources,
        wall_clock=lambda: clock.timestamp + local_offset,
        **kwargs,
    )


class FixedSource:
    def __init__(self, name, timestamp=None, delay=0.0, error=None):
        self.name = name
        self.timestamp = timestamp
        self.delay = delay
        self.error = error
        self.calls = 0

    async def read(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise TimeSourceError(self.error)
        return self.timestamp


class RecordingValidator(Validator):
    def __init__(self, name, passed=True, cheap=False, raises=None):
        self.name = name
        self.cheap = cheap
        self.passed = passed
        self.raises = raises
        self.calls = 0

    async def validate(self, context):
        self.calls += 1
        if self.raises:
            raise self.raises
        return self.ok() if self.passed else self.fail(f"{self.name} said no")


# ===========================================================================
# 1. Authorization
# ===========================================================================


class TestAuthorizationValidator:
    @pytest.mark.asyncio
    async def test_address_comparison_ignores_case(self):
        result = await AuthorizationValidator().validate(_context(RECIPIENT.lower()))
        assert result.passed
        assert result.evidence["requesterDigest"] == result.evidence["recipientDigest"]

    @pytest.mark.asyncio
    async def test_non_recipient_fails(self):
        result = await AuthorizationValidator().validate(_context(STRANGER))
        assert not result.passed
        assert "recipient" in result.reason

    @pytest.mark.asyncio
    async def test_non_address_identities_compare_exactly(self):
        capsule = _capsule(recipient="alice@example.org")
        assert (await AuthorizationValidator().validate(_context("alice@example.org", capsule))).passed
        assert not (await AuthorizationValidator().validate(_context("Alice@example.org", capsule))).passed


# ===========================================================================
# 2. Time consensus
# ===========================================================================


class TestTimeConsensusValidator:
    @pytest.mark.asyncio
    async def test_ledger_alone_passes_default_policy(self):
        result = await _consensus(FakeClock()).validate(_context())
        assert result.passed
        assert result.evidence["validSources"] == 1
        assert result.evidence["sources"][0]["authoritative"]

    @pytest.mark.asyncio
    async def test_external_source_within_tolerance_is_valid(self):
        clock = FakeClock(timestamp=10_000)
        sources = [FixedSource("near", 10_000 + 1700), FixedSource("far", 10_000 - 1801)]
        validator = _consensus(clock, sources, require_external_corroboration=True)

        result = await validator.validate(_context())
        by_name = {r["source"]: r for r in result.evidence["sources"]}
        assert result.passed
        assert by_name["near"]["valid"] and by_name["near"]["skew"] == 1700
        assert not by_name["far"]["valid"]
        assert result.diff == 1700.0
        assert len(result.evidence["digest"]) == 64

    @pytest.mark.asyncio
    async def test_required_corroboration_without_valid_external_fails(self):
        sources = [FixedSource("broken", error="HTTP 500")]
        validator = _consensus(FakeClock(), sources, require_external_corroboration=True)

        result = await validator.validate(_context())
        assert not result.passed
        assert "corroborates" in result.reason
        assert result.evidence["sources"][1]["error"] == "HTTP 500"

    @pytest.mark.asyncio
    async def test_min_valid_sources(self):
        clock = FakeClock(timestamp=5000)
        sources = [FixedSource("a", 5000), FixedSource("b", 99_999)]
        assert (await _consensus(clock, sources, min_valid_sources=2).validate(_context())).passed
        result = await _consensus(clock, sources, min_valid_sources=3).validate(_context())
        assert not result.passed
        assert "2 valid" in result.reason

    @pytest.mark.asyncio
    async def test_slow_source_times_out_without_raising(self):
        sources = [FixedSource("slow", 0, delay=1.0)]
        validator = _consensus(FakeClock(), sources, source_timeout=0.05)

        result = await validator.validate(_context())
        assert result.passed
        assert "timed out" in result.evidence["sources"][1]["error"]

    @pytest.mark.asyncio
    async def test_high_latency_source_is_invalid(self):
        clock = FakeClock(timestamp=0)
        sources = [FixedSource("laggy", 0, delay=0.05)]
        validator = _consensus(clock, sources, max_latency_ms=1, min_valid_sources=2)

        result = await validator.validate(_context())
        assert not result.passed
        assert "latency" in result.evidence["sources"][1]["error"]

    @pytest.mark.asyncio
    async def test_skewed_ledger_clock_fails(self):
        clock = FakeClock(timestamp=50_000)
        validator = _consensus(clock, local_offset=-3600, authoritative_tolerance=300)

        result = await validator.validate(_context())
        ledger = result.evidence["sources"][0]
        assert not result.passed
        assert "off the local clock" in result.reason
        assert ledger["skew"] == 3600 and not ledger["valid"]
        assert result.evidence["localTimestamp"] == 50_000 - 3600
        assert result.diff == 3600.0

    @pytest.mark.asyncio
    async def test_ledger_skew_within_tolerance_passes(self):
        validator = _consensus(FakeClock(), local_offset=299, authoritative_tolerance=300)
        result = await validator.validate(_context())
        assert result.passed
        assert result.evidence["sources"][0]["skew"] == -299

    @pytest.mark.asyncio
    async def test_skewed_ledger_fails_even_with_agreeing_external_sources(self):
        clock = FakeClock(timestamp=90_000)
        sources = [FixedSource("agrees", 90_000)]
        validator = _consensus(clock, sources, local_offset=1000)

        result = await validator.validate(_context())
        assert not result.passed
        assert result.evidence["sources"][1]["valid"]

    @pytest.mark.asyncio
    async def test_ledger_outage_fails_the_check(self):
        class DownClock(FakeClock):
            async def current_timestamp(self):
                raise LedgerUnavailable("rpc down", "http://rpc")

        result = await _consensus(DownClock()).validate(_context())
        assert not result.passed
        assert "ledger clock unavailable" in result.reason


# ===========================================================================
# 3. HTTP time sources
# ===========================================================================


class TestTimeSources:
    def test_parse_timestamp_formats(self):
        assert parse_timestamp("1970-01-01T00:01:00+00:00") == 60
        assert parse_timestamp("1970-01-01T00:01:00") == 60
        assert parse_timestamp("1970-01-01T02:01:00.1234567+02:00") == 60

    def test_parse_timestamp_rejects_garbage(self):
        with pytest.raises(TimeSourceError):
            parse_timestamp("not a time")

    @pytest.mark.asyncio
    async def test_presets_read_their_field(self):
        def handler(request):
            if request.url.host == "worldtimeapi.org":
                return httpx.Response(200, json={"datetime": "2024-01-01T00:00:00+00:00"})
            return httpx.Response(200, json={"dateTime": "2024-01-01T00:00:30.5"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sources = sources_from_config(["worldtimeapi", "timeapi"], client)
            readings = [await s.read() for s in sources]
        assert [s.name for s in sources] == ["WorldTimeAPI", "TimeAPI"]
        assert readings == [1704067200, 1704067230]

    @pytest.mark.asyncio
    async def test_custom_source_and_errors(self):
        def handler(request):
            if request.url.path == "/bad":
                return httpx.Response(502)
            return httpx.Response(200, json={"now": "2024-01-01T00:00:00Z"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            good, bad = sources_from_config(
                ["mine=http://clock.test/now|now", "other=http://clock.test/bad"],
                client,
            )
            assert await good.read() == 1704067200
            with pytest.raises(TimeSourceError):
                await bad.read()

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            HTTPTimeSource.preset("sundial", client=None)


# ===========================================================================
# 4. Condition
# ===========================================================================


class TestConditionValidator:
    @pytest.mark.asyncio
    async def test_pending_and_satisfied(self, cipher, clock):
        _, handle = await cipher.lock(b"k", UnlockCondition.at_timestamp(clock.timestamp + 10))
        capsule = _capsule()
        capsule.lock_handle = handle
        validator = ConditionValidator(cipher)

        pending = await validator.validate(_context(capsule=capsule))
        assert not pending.passed
        assert pending.diff == 10.0

        clock.advance(seconds=10)
        assert (await validator.validate(_context(capsule=capsule))).passed

    @pytest.mark.asyncio
    async def test_capsule_without_lock(self, cipher):
        result = await ConditionValidator(cipher).validate(_context())
        assert not result.passed


# ===========================================================================
# 5. Pipeline
# ===========================================================================


class TestVerificationPipeline:
    @pytest.mark.asyncio
    async def test_all_pass_approves(self):
        pipeline = VerificationPipeline([RecordingValidator("a", cheap=True), RecordingValidator("b")])
        decision = await pipeline.verify(_context())
        assert decision.approved
        assert decision.reasons == []

    @pytest.mark.asyncio
    async def test_cheap_failure_skips_cheap_but_runs_expensive(self):
        first = RecordingValidator("first", passed=False, cheap=True)
        second = RecordingValidator("second", cheap=True)
        network = RecordingValidator("network")
        decision = await VerificationPipeline([first, second, network]).verify(_context())

        assert not decision.approved
        assert second.calls == 0
        assert network.calls == 1
        assert decision.failed_validators == ["first", "second"]
        assert decision.result_for("second").evidence == {"skipped": True}
        assert decision.result_for("network").passed

    @pytest.mark.asyncio
    async def test_reasons_cover_every_failure(self):
        validators = [
            RecordingValidator("auth", passed=False, cheap=True),
            RecordingValidator("clock", passed=False),
            RecordingValidator("condition", passed=False),
        ]
        decision = await VerificationPipeline(validators).verify(_context())
        assert decision.reasons == ["auth: auth said no", "clock: clock said no", "condition: condition said no"]

    @pytest.mark.asyncio
    async def test_validator_exception_becomes_failed_result(self):
        boom = RecordingValidator("boom", raises=RuntimeError("kaput"))
        decision = await VerificationPipeline([boom, RecordingValidator("ok")]).verify(_context())
        assert not decision.approved
        result = decision.result_for("boom")
        assert isinstance(result, VerificationResult)
        assert "kaput" in result.reason

    def test_rejects_duplicate_names(self):
        with pytest.raises(ValueError):
            VerificationPipeline([RecordingValidator("x"), RecordingValidator("x")])
