"""
In-process TTL cache for computed midpoint results.

Keys are fingerprints of the normalized request inputs, so the same group of
participants maps to the same entry no matter how the caller ordered them.
Entries expire lazily on read; an optional daemon thread sweeps expired
entries so memory stays bounded when keys are never read again.
"""

import copy
import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)

# Default TTLs (seconds) per namespace
NAMESPACE_MIDPOINT = 'midpoint'
NAMESPACE_TIME_MIDPOINT = 'midpoint_by_time'
NAMESPACE_ROUTES = 'routes'
DEFAULT_TTLS = {
    NAMESPACE_MIDPOINT: 5 * 60,
    NAMESPACE_TIME_MIDPOINT: 10 * 60,
    NAMESPACE_ROUTES: 5 * 60,
}


def normalize_locations(participants: Iterable[Any]) -> list:
    """Canonical, order-independent list of ``{lat, lng, travelMode}`` entries.

    Accepts ``Participant`` objects or plain dicts. Sorted by lat, then lng,
    then travel mode.
    """
    rows = []
    for p in participants:
        if isinstance(p, dict):
            lat, lng = p.get('lat'), p.get('lng')
            mode = p.get('travelMode', p.get('travel_mode')) or 'driving'
        else:
            lat, lng = p.lat, p.lng
            mode = getattr(p, 'travel_mode', None) or 'driving'
        rows.append({'lat': lat, 'lng': lng, 'travelMode': mode})
    rows.sort(key=lambda r: (r['lat'], r['lng'], r['travelMode']))
    return rows


def fingerprint(namespace: str, payload: Dict[str, Any]) -> str:
    """Deterministic cache key for ``payload`` within ``namespace``."""
    body = json.dumps(payload, sort_keys=True, separators=(',', ':'), default=str)
    digest = hashlib.sha256(body.encode('utf-8')).hexdigest()
    return f"{namespace}:{digest}"


class ResultCache:
    """Thread-safe TTL key/value store.

    Values are deep-copied on the way in and out. Lookup problems are logged
    and reported as a miss; the cache never raises to its callers.
    """

    def __init__(
        self,
        default_ttl: float = 300,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.hits = 0
        self.misses = 0

    # Static so callers can build keys without holding a cache reference
    fingerprint = staticmethod(fingerprint)

    def get(self, key: str) -> Optional[Any]:
        try:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    self.misses += 1
                    return None
                expires_at, value = entry
                if self._clock() >= expires_at:
                    del self._entries[key]
                    self.misses += 1
                    return None
                self.hits += 1
            return copy.deepcopy(value)
        except Exception as e:
            logger.warning(f"Cache lookup failed for {key}, treating as miss: {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        try:
            stored = copy.deepcopy(value)
            with self._lock:
                self._entries[key] = (self._clock() + ttl, stored)
                if self.max_entries and len(self._entries) > self.max_entries:
                    self._evict_locked()
        except Exception as e:
            logger.warning(f"Cache store failed for {key}: {e}")

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            return self._sweep_locked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            by_namespace: Dict[str, int] = {}
            for key in self._entries:
                ns = key.split(':', 1)[0]
                by_namespace[ns] = by_namespace.get(ns, 0) + 1
            return {
                'entries': len(self._entries),
                'namespaces': by_namespace,
                'hits': self.hits,
                'misses': self.misses,
            }

    # --- Background sweeper ---
    def start_sweeper(self, interval: float = 60.0) -> None:
        if interval <= 0 or (self._sweeper and self._sweeper.is_alive()):
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, args=(interval,), name='result-cache-sweeper', daemon=True
        )
        self._sweeper.start()
        logger.info(f"Cache sweeper started (interval={interval}s)")

    def stop_sweeper(self) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                removed = self.sweep()
                if removed:
                    logger.debug(f"Cache sweep removed {removed} expired entries")
            except Exception as e:
                logger.warning(f"Cache sweep failed: {e}")

    # --- Internals (caller holds the lock) ---
    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def _evict_locked(self) -> None:
        self._sweep_locked()
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        soonest = sorted(self._entries.items(), key=lambda item: item[1][0])[:overflow]
        for k, _ in soonest:
            del self._entries[k]
