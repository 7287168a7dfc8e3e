"""TTL memo for expensive per-user lookups (collaborative neighbour lists)."""
from __future__ import annotations

import hashlib
import json
import threading
import time
from typing import Any

_cache: dict[str, dict[str, Any]] = {}
_lock = threading.Lock()
_hits: int = 0
_misses: int = 0
_DEFAULT_TTL = 300  # 5 minutes
_MAX_ENTRIES = 1024


def _make_key(key_parts: dict) -> str:
    normalized = json.dumps(key_parts, sort_keys=True, default=str)
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


def cache_get(key_parts: dict, ttl: float = _DEFAULT_TTL, version: Any = None) -> Any | None:
    """Return the cached value, or None when missing, expired or of another version."""
    global _hits, _misses
    key = _make_key(key_parts)
    with _lock:
        entry = _cache.get(key)
        if (
            entry
            and entry["version"] == version
            and time.time() - entry["created_at"] < ttl
        ):
            _hits += 1
            return entry["value"]
        if entry:
            del _cache[key]
        _misses += 1
    return None


def cache_set(key_parts: dict, value: Any, version: Any = None) -> None:
    key = _make_key(key_parts)
    with _lock:
        # Re-inserting moves the key to the end so eviction stays oldest-first.
        _cache.pop(key, None)
        while len(_cache) >= _MAX_ENTRIES:
            del _cache[next(iter(_cache))]
        _cache[key] = {"value": value, "version": version, "created_at": time.time()}


def get_cache_stats() -> dict:
    with _lock:
        total = _hits + _misses
        return {
            "size": len(_cache),
            "hits": _hits,
            "misses": _misses,
            "hitRate": round(_hits / total * 100, 1) if total > 0 else 0.0,
        }


def clear_cache() -> None:
    global _hits, _misses
    with _lock:
        _cache.clear()
        _hits = 0
        _misses = 0
