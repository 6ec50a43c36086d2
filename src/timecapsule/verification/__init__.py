from .base import Validator, VerificationContext
from .pipeline import VerificationPipeline
from .time_sources import (
    PRESETS,
    HTTPTimeSource,
    TimeSource,
    TimeSourceError,
    parse_timestamp,
    sources_from_config,
)
from .validators import AuthorizationValidator, ConditionValidator, TimeConsensusValidator

__all__ = [
    "Validator",
    "VerificationContext",
    "VerificationPipeline",
    "PRESETS",
    "HTTPTimeSource",
    "TimeSource",
    "TimeSourceError",
    "parse_timestamp",
    "sources_from_config",
    "AuthorizationValidator",
    "ConditionValidator",
    "TimeConsensusValidator",
]
