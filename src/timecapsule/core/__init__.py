from .registry import CapsuleRegistry
from .state_machine import CapsuleStateMachine
from .orchestrator import UnlockOrchestrator
from .runtime import CapsuleRuntime
from .settings import TimeCapsuleSettings, get_settings

__all__ = [
    "CapsuleRegistry",
    "CapsuleStateMachine",
    "UnlockOrchestrator",
    "CapsuleRuntime",
    "TimeCapsuleSettings",
    "get_settings",
]
