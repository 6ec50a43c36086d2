"""
Unlock verification pipeline.

Reduction is unanimous AND. Cheap validators run first, in registration
order; after the first cheap failure the remaining cheap validators are
recorded as skipped. Expensive validators always run, concurrently, so the
audit trail carries their evidence even for a rejected attempt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Sequence

from timecapsule.protocol.models import UnlockDecision, VerificationResult

from .base import Validator, VerificationContext

logger = logging.getLogger(__name__)


class VerificationPipeline:
    def __init__(self, validators: Sequence[Validator]):
        if not validators:
            raise ValueError("VerificationPipeline needs at least one validator")
        names = [v.name for v in validators]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate validator names: {names}")
        self._validators = list(validators)

    @property
    def validators(self) -> List[Validator]:
        return list(self._validators)

    async def verify(self, context: VerificationContext) -> UnlockDecision:
        cheap = [v for v in self._validators if v.cheap]
        expensive = [v for v in self._validators if not v.cheap]

        results: List[VerificationResult] = []
        failed_early = None
        for validator in cheap:
            if failed_early is not None:
                results.append(VerificationResult(
                    validator=validator.name,
                    passed=False,
                    reason=f"skipped after {failed_early} failed",
                    evidence={"skipped": True},
                ))
                continue
            result = await self._run(validator, context)
            results.append(result)
            if not result.passed:
                failed_early = validator.name

        results.extend(await asyncio.gather(*(self._run(v, context) for v in expensive)))

        reasons = [f"{r.validator}: {r.reason or 'failed'}" for r in results if not r.passed]
        decision = UnlockDecision(approved=not reasons, results=results, reasons=reasons)
        if decision.approved:
            logger.info("Capsule %s: verification approved", context.capsule.capsule_id)
        else:
            logger.info(
                "Capsule %s: verification rejected (%s)",
                context.capsule.capsule_id,
                ", ".join(decision.failed_validators),
            )
        return decision

    async def _run(self, validator: Validator, context: VerificationContext) -> VerificationResult:
        try:
            result = await validator.validate(context)
        except Exception as e:
            logger.warning("Validator %s raised %s: %s", validator.name, type(e).__name__, e)
            return VerificationResult(
                validator=validator.name,
                passed=False,
                reason=f"validator error: {type(e).__name__}: {e}",
                evidence={"exception": type(e).__name__},
            )
        logger.debug("Validator %s passed=%s", validator.name, result.passed)
        return result
