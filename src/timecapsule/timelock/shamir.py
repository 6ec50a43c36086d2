"""
Shamir secret sharing over GF(2^521 - 1).

A secret of up to 64 bytes is the constant term of a random polynomial of
degree ``threshold - 1``; share *i* is the polynomial evaluated at x = i.
Any ``threshold`` shares recover the secret by Lagrange interpolation at 0,
fewer reveal nothing about it.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

# 2^521 - 1 is a Mersenne prime
PRIME = 2 ** 521 - 1
MAX_SECRET_BYTES = 64


@dataclass(frozen=True)
class Share:
    index: int
    value: int

    def __post_init__(self):
        if self.index < 1:
            raise ValueError("Share index must be >= 1")
        if not 0 <= self.value < PRIME:
            raise ValueError("Share value out of field range")

    def to_hex(self) -> str:
        return f"{self.index:02x}-{self.value:x}"

    @classmethod
    def from_hex(cls, text: str) -> "Share":
        try:
            index, value = text.split("-", 1)
            return cls(int(index, 16), int(value, 16))
        except ValueError as e:
            raise ValueError(f"Malformed share {text!r}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "value": f"{self.value:x}"}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Share":
        return cls(int(data["index"]), int(data["value"], 16))

    def __repr__(self) -> str:
        return f"Share(index={self.index}, value=<redacted>)"


def _eval_poly(coefficients: List[int], x: int) -> int:
    acc = 0
    for coeff in reversed(coefficients):
        acc = (acc * x + coeff) % PRIME
    return acc


def split_secret(secret: bytes, threshold: int, count: int) -> List[Share]:
    if len(secret) > MAX_SECRET_BYTES:
        raise ValueError(f"Secret longer than {MAX_SECRET_BYTES} bytes")
    if not 1 <= threshold <= count:
        raise ValueError(f"Need 1 <= threshold <= count, got {threshold} of {count}")

    coefficients = [int.from_bytes(secret, "big")]
    coefficients.extend(secrets.randbelow(PRIME) for _ in range(threshold - 1))
    return [Share(x, _eval_poly(coefficients, x)) for x in range(1, count + 1)]


def combine_shares(shares: Iterable[Share], length: int) -> bytes:
    """
    Recover a ``length``-byte secret from shares.

    Duplicate indices are collapsed. The caller is responsible for passing at
    least ``threshold`` shares; with fewer the result is unrelated noise and
    usually fails to fit in ``length`` bytes.
    """
    unique: Dict[int, int] = {}
    for share in shares:
        unique.setdefault(share.index, share.value)
    if not unique:
        raise ValueError("No shares to combine")

    points = list(unique.items())
    secret = 0
    for j, (xj, yj) in enumerate(points):
        num, den = 1, 1
        for m, (xm, _) in enumerate(points):
            if m == j:
                continue
            num = (num * xm) % PRIME
            den = (den * (xm - xj)) % PRIME
        secret = (secret + yj * num * pow(den, -1, PRIME)) % PRIME

    try:
        return secret.to_bytes(length, "big")
    except OverflowError as e:
        raise ValueError("Shares do not reconstruct a secret of the expected length") from e
