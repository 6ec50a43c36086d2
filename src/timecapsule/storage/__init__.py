from .cid import compute_content_id, content_digest, parse_content_id
from .gateways import GatewayList, GatewayStats
from .content_store import ContentStore

__all__ = [
    "compute_content_id",
    "content_digest",
    "parse_content_id",
    "GatewayList",
    "GatewayStats",
    "ContentStore",
]
