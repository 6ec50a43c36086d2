from .clock import JsonRpcLedgerClock, LedgerClock, SystemClock
from .identity import IdentityProvider, StaticIdentity, is_address, normalize_identity, same_identity
from .submitter import NullSubmitter, TransactionSubmitter, TxReceipt

__all__ = [
    "JsonRpcLedgerClock",
    "LedgerClock",
    "SystemClock",
    "IdentityProvider",
    "StaticIdentity",
    "is_address",
    "normalize_identity",
    "same_identity",
    "NullSubmitter",
    "TransactionSubmitter",
    "TxReceipt",
]
