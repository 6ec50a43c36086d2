from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List


@dataclass
class GatewayStats:
    successes: int = 0
    failures: int = 0
    consecutive_failures: int = 0


class GatewayList:
    """
    Ordered, updatable list of storage gateway base URLs.

    ``ranked()`` orders gateways by consecutive failures; ties keep the
    configured order, so a healthy list is walked exactly as configured.
    """

    def __init__(self, urls: Iterable[str]):
        self._lock = threading.Lock()
        self._urls: List[str] = []
        self._stats: Dict[str, GatewayStats] = {}
        self.replace(urls)

    @staticmethod
    def _normalize(url: str) -> str:
        return url.rstrip("/")

    def replace(self, urls: Iterable[str]) -> None:
        with self._lock:
            normalized: List[str] = []
            for url in urls:
                url = self._normalize(url)
                if url and url not in normalized:
                    normalized.append(url)
            self._urls = normalized
            self._stats = {u: self._stats.get(u, GatewayStats()) for u in normalized}

    def add(self, url: str) -> None:
        url = self._normalize(url)
        with self._lock:
            if url not in self._urls:
                self._urls.append(url)
                self._stats[url] = GatewayStats()

    def remove(self, url: str) -> None:
        url = self._normalize(url)
        with self._lock:
            if url in self._urls:
                self._urls.remove(url)
                self._stats.pop(url, None)

    def ranked(self) -> List[str]:
        with self._lock:
            order = {u: i for i, u in enumerate(self._urls)}
            return sorted(
                self._urls,
                key=lambda u: (self._stats[u].consecutive_failures, order[u]),
            )

    def record_success(self, url: str) -> None:
        with self._lock:
            stats = self._stats.get(url)
            if stats is not None:
                stats.successes += 1
                stats.consecutive_failures = 0

    def record_failure(self, url: str) -> None:
        with self._lock:
            stats = self._stats.get(url)
            if stats is not None:
                stats.failures += 1
                stats.consecutive_failures += 1

    def stats(self, url: str) -> GatewayStats:
        with self._lock:
            return self._stats[self._normalize(url)]

    def __len__(self) -> int:
        return len(self._urls)

    def __iter__(self):
        return iter(list(self._urls))
