"""
timecapsule - time-locked content capsules.

Unlock pipeline: time-lock key escrow, multi-source verification and
content-addressed storage with gateway fallback.
"""

from timecapsule.protocol.enums import CapsuleState, ConditionKind, ConditionState
from timecapsule.protocol.models import Capsule, CapsuleStatus, DecryptedContent, UnlockCondition
from timecapsule.core.orchestrator import UnlockOrchestrator
from timecapsule.core.runtime import CapsuleRuntime

__version__ = "0.1.0"

__all__ = [
    "CapsuleState",
    "ConditionKind",
    "ConditionState",
    "Capsule",
    "CapsuleStatus",
    "DecryptedContent",
    "UnlockCondition",
    "UnlockOrchestrator",
    "CapsuleRuntime",
]
