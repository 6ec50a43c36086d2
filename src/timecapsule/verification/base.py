from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from timecapsule.protocol.models import Capsule, VerificationResult
from timecapsule.utils.timestamps import now_iso


@dataclass
class VerificationContext:
    """Everything a validator may look at for one unlock attempt."""

    capsule: Capsule
    requester: str
    requested_at: str = field(default_factory=now_iso)


class Validator(ABC):
    """
    One named check in the unlock pipeline.

    ``cheap`` validators do no I/O and run first; the pipeline may skip
    later cheap checks once one fails. Expensive validators always run.
    """

    name: str = "validator"
    cheap: bool = False

    @abstractmethod
    async def validate(self, context: VerificationContext) -> VerificationResult:
        ...

    def fail(self, reason: str, **kwargs) -> VerificationResult:
        return VerificationResult(validator=self.name, passed=False, reason=reason, **kwargs)

    def ok(self, **kwargs) -> VerificationResult:
        return VerificationResult(validator=self.name, passed=True, **kwargs)
