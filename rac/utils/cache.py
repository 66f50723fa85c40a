"""In-memory response cache with per-entry time-to-live."""

import hashlib
import json
import threading
import time

DEFAULT_TTL_SECONDS = 15 * 60


def make_cache_key(prompt: str, model: str, temperature: float, max_tokens: int) -> str:
    """Derive a deterministic key from the prompt and the options that change output."""
    material = json.dumps(
        {
            "prompt": prompt,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        },
        sort_keys=True,
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class ResponseCache:
    """Thread-safe TTL cache; safe to share across batch_call workers."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._items: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= self._clock():
                del self._items[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self.cleanup()
        with self._lock:
            self._items[key] = (value, self._clock() + ttl)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def cleanup(self) -> None:
        """Drop every expired entry."""
        now = self._clock()
        with self._lock:
            for key in [k for k, (_, exp) in self._items.items() if exp <= now]:
                del self._items[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
