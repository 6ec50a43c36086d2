"""
External reference clocks used to corroborate the ledger clock.

Two public JSON services are preset:

- worldtimeapi: https://worldtimeapi.org/api/timezone/UTC  (field ``datetime``)
- timeapi:      https://timeapi.io/api/Time/current/zone?timeZone=UTC  (field ``dateTime``)

Any other service returning an ISO-8601 timestamp in a JSON field can be
added as ``name=url`` (field ``datetime``) or ``name=url|field``.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Protocol, Tuple

import httpx
from dateutil import parser as date_parser
from dateutil import tz

logger = logging.getLogger(__name__)

PRESETS: Dict[str, Tuple[str, str, str]] = {
    "worldtimeapi": ("WorldTimeAPI", "https://worldtimeapi.org/api/timezone/UTC", "datetime"),
    "timeapi": ("TimeAPI", "https://timeapi.io/api/Time/current/zone?timeZone=UTC", "dateTime"),
}


class TimeSourceError(Exception):
    pass


class TimeSource(Protocol):
    name: str

    async def read(self) -> int:
        """Current unix time in seconds according to this source."""
        ...


def parse_timestamp(raw: str) -> int:
    """ISO-8601 (any fractional precision) to unix seconds; naive means UTC."""
    try:
        parsed = date_parser.parse(raw)
    except (ValueError, OverflowError) as e:
        raise TimeSourceError(f"Unparseable timestamp {raw!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz.UTC)
    return int(parsed.timestamp())


class HTTPTimeSource:
    def __init__(
        self,
        name: str,
        client: httpx.AsyncClient,
        url: str,
        field: str = "datetime",
        *,
        timeout: float = 10.0,
    ):
        self.name = name
        self.url = url
        self.field = field
        self._client = client
        self._timeout = timeout

    @classmethod
    def preset(cls, key: str, client: httpx.AsyncClient, *, timeout: float = 10.0) -> "HTTPTimeSource":
        try:
            name, url, field = PRESETS[key.lower()]
        except KeyError:
            raise ValueError(f"Unknown time source preset: {key}") from None
        return cls(name, client, url, field, timeout=timeout)

    async def read(self) -> int:
        try:
            resp = await self._client.get(self.url, timeout=self._timeout)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            raise TimeSourceError(f"{self.name}: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise TimeSourceError(f"{self.name}: response is not JSON") from e

        raw = body.get(self.field) if isinstance(body, dict) else None
        if not isinstance(raw, str):
            raise TimeSourceError(f"{self.name}: missing '{self.field}' in response")
        return parse_timestamp(raw)

    def __repr__(self) -> str:
        return f"HTTPTimeSource({self.name!r}, {self.url!r})"


def sources_from_config(
    entries: Iterable[str],
    client: httpx.AsyncClient,
    *,
    timeout: float = 10.0,
) -> List[HTTPTimeSource]:
    sources: List[HTTPTimeSource] = []
    for entry in entries:
        entry = entry.strip()
        if not entry:
            continue
        if "=" not in entry:
            sources.append(HTTPTimeSource.preset(entry, client, timeout=timeout))
            continue
        name, target = entry.split("=", 1)
        url, _, field = target.partition("|")
        sources.append(HTTPTimeSource(name.strip(), client, url.strip(), field.strip() or "datetime", timeout=timeout))
    return sources
