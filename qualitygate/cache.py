from __future__ import annotations

import hashlib
import json
import threading
import time
from typing import Any, Callable, Iterable

from qualitygate.schemas import ValidationOutcome


def fingerprint(entity_type: str, names: Iterable[str] | None, payload: Any) -> str:
    """Deterministic cache key for (entity type, rule selection, payload).

    The payload is canonicalized with sorted keys, so two dicts with the same
    content hash alike regardless of insertion order.
    """
    selection: list[str] | str = sorted(names) if names is not None else "all"
    canonical = json.dumps(
        {"entity_type": entity_type, "rules": selection, "payload": payload},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResultCache:
    """Thread-safe in-process outcome cache with read-time TTL expiry.

    There is no eviction thread and no size bound; a stale entry reads as a
    miss and is replaced by the next ``put``.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, ValidationOutcome]] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str) -> ValidationOutcome | None:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        computed_at, outcome = entry
        if self._clock() - computed_at > self._ttl:
            return None
        return outcome

    def put(self, key: str, outcome: ValidationOutcome) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), outcome)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, float]:
        with self._lock:
            return {"size": len(self._entries), "ttl": self._ttl}
