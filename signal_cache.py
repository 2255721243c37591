"""
Short-lived result cache for assembled signal sets.

Entries are keyed by (instrument, ticker, window) and expire after `ttl`
seconds. The clock is injectable so expiry can be tested without sleeping.
"""

import os
import threading
import time

CACHE_TTL = int(os.environ.get("SIGNAL_CACHE_TTL", 60))


def cache_key(instrument, ticker, window):
    return (instrument, ticker, window)


class SignalCache:
    def __init__(self, ttl=CACHE_TTL, clock=time.time):
        self.ttl = ttl
        self._clock = clock
        self._entries = {}  # key -> {"data": ..., "ts": ...}
        self._lock = threading.Lock()
        self._key_locks = {}

    def get(self, key):
        """Cached value for key, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry["ts"] >= self.ttl:
                del self._entries[key]
                return None
            return entry["data"]

    def set(self, key, data):
        with self._lock:
            self._entries[key] = {"data": data, "ts": self._clock()}

    def get_or_compute(self, key, compute):
        """Return the cached value, or compute, store and return it.

        Concurrent misses on the same key wait on a per-key lock, so only
        one caller runs `compute`. None results are not cached so a failed
        fetch is retried next call.
        """
        data = self.get(key)
        if data is not None:
            return data
        with self._key_lock(key):
            data = self.get(key)
            if data is not None:
                return data
            data = compute()
            if data is not None:
                self.set(key, data)
            return data

    def _key_lock(self, key):
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)
