from __future__ import annotations

import itertools
import threading
from typing import Dict, List

from timecapsule.ledger.identity import same_identity
from timecapsule.protocol.errors import CapsuleNotFound
from timecapsule.protocol.models import Capsule


class CapsuleRegistry:
    """
    Append-only in-memory capsule store with monotonic ids.

    Capsules are never removed; ids are never reused, even when a creation
    is abandoned after its id was reserved.
    """

    def __init__(self) -> None:
        self._capsules: Dict[int, Capsule] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            return next(self._ids)

    def register(self, capsule: Capsule) -> None:
        with self._lock:
            if capsule.capsule_id in self._capsules:
                raise ValueError(f"Capsule {capsule.capsule_id} is already registered")
            self._capsules[capsule.capsule_id] = capsule

    def get(self, capsule_id: int) -> Capsule:
        capsule = self._capsules.get(capsule_id)
        if capsule is None:
            raise CapsuleNotFound(capsule_id)
        return capsule

    def list(self) -> List[Capsule]:
        return [self._capsules[k] for k in sorted(self._capsules)]

    def list_for_recipient(self, identity: str) -> List[Capsule]:
        return [c for c in self.list() if same_identity(c.recipient, identity)]

    def list_for_creator(self, identity: str) -> List[Capsule]:
        return [c for c in self.list() if same_identity(c.creator, identity)]

    def __contains__(self, capsule_id: int) -> bool:
        return capsule_id in self._capsules

    def __len__(self) -> int:
        return len(self._capsules)
