from .shamir import PRIME, Share, split_secret, combine_shares
from .custodians import (
    Custodian,
    CustodianError,
    CustodianUnavailable,
    ShareWithheld,
    LocalCustodian,
    HTTPCustodian,
)
from .cipher import TimeLockCipher, MAX_SECRET_BYTES

__all__ = [
    "PRIME",
    "Share",
    "split_secret",
    "combine_shares",
    "Custodian",
    "CustodianError",
    "CustodianUnavailable",
    "ShareWithheld",
    "LocalCustodian",
    "HTTPCustodian",
    "TimeLockCipher",
    "MAX_SECRET_BYTES",
]
