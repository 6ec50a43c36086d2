from .json import canonical_json
from .timestamps import now_iso, utc_now, monotonic_ms
from .logging import configure_logging
from .locks import KeyedLock

__all__ = [
    "canonical_json",
    "now_iso",
    "utc_now",
    "monotonic_ms",
    "configure_logging",
    "KeyedLock",
]
