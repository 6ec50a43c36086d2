"""
Content identifiers.

Capsule ciphertext is addressed by a CIDv1 with the ``raw`` codec and a
sha2-256 multihash, rendered in lowercase base32 multibase (``b...``). The
identifier is recomputable from the bytes alone, which is what lets a client
verify that an untrusted gateway served unmodified content.
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from timecapsule.protocol.errors import InvalidContentId

CID_VERSION = 0x01
RAW_CODEC = 0x55
SHA2_256 = 0x12
DIGEST_SIZE = 32

_PREFIX = bytes([CID_VERSION, RAW_CODEC, SHA2_256, DIGEST_SIZE])


def compute_content_id(data: bytes) -> str:
    digest = hashlib.sha256(data).digest()
    encoded = base64.b32encode(_PREFIX + digest).decode("ascii").lower().rstrip("=")
    return "b" + encoded


def content_digest(content_id: str) -> bytes:
    """Return the sha256 digest a content identifier commits to."""
    if not content_id or content_id[0] != "b":
        raise InvalidContentId(content_id, "expected base32 multibase prefix 'b'")

    body = content_id[1:].upper()
    body += "=" * (-len(body) % 8)
    try:
        raw = base64.b32decode(body)
    except (binascii.Error, ValueError) as e:
        raise InvalidContentId(content_id, "not valid base32") from e

    if len(raw) != len(_PREFIX) + DIGEST_SIZE or raw[: len(_PREFIX)] != _PREFIX:
        raise InvalidContentId(content_id, "expected CIDv1 raw sha2-256")
    return raw[len(_PREFIX):]


def parse_content_id(content_id: str) -> str:
    content_digest(content_id)
    return content_id


def matches(content_id: str, data: bytes) -> bool:
    return content_digest(content_id) == hashlib.sha256(data).digest()
