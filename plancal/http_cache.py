"""Revalidation cache for idempotent GET requests.

Two tiers: an in-process dict and a folder of small JSON files.  Lookups hit
memory first; a disk hit is copied into memory.  Entries expire once
``now - created_at > ttl`` and are never refreshed by reads.

The cache is advisory.  Anything that cannot be read back cleanly is deleted
and reported as a miss, and callers always fall back to the network.
"""

from __future__ import annotations

import base64
import contextlib
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import NamedTuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

log = logging.getLogger(__name__)

DEFAULT_TTL = 60.0
DEFAULT_MAX_MEMORY_BYTES = 2 * 1024 * 1024

# Only these request headers change the cache key
VARY_HEADERS = ("Accept-Language",)


def cache_key(method: str, url: str, headers: Mapping[str, str] | None = None) -> str:
    """Return a fixed-length, filename-safe fingerprint of a request.

    Query parameters are sorted by (name, value) so parameter order does not
    matter.  The digest is SHA-256 encoded as unpadded base64url.
    """
    parts = urlsplit(url)
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    normalized = urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))

    key_string = f"{method.upper()} {normalized}"
    vary = sorted((k, v) for k, v in (headers or {}).items() if k in VARY_HEADERS)
    if vary:
        key_string += " HEADERS:" + ";".join(f"{k}={v}" for k, v in vary)

    digest = hashlib.sha256(key_string.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class CachedEntry(NamedTuple):
    data: bytes
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl

    def to_dict(self) -> dict:
        return {
            "data": base64.b64encode(self.data).decode("ascii"),
            "created_at": self.created_at,
            "ttl": self.ttl,
        }

    @classmethod
    def from_dict(cls, data: dict) -> CachedEntry:
        return cls(
            data=base64.b64decode(data["data"], validate=True),
            created_at=float(data["created_at"]),
            ttl=float(data["ttl"]),
        )


class RevalidationCache:
    def __init__(
        self,
        folder: str | os.PathLike | None = None,
        max_memory_bytes: int = DEFAULT_MAX_MEMORY_BYTES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.folder = Path(folder) if folder is not None else None
        self.max_memory_bytes = max_memory_bytes
        self._clock = clock
        self._memory: dict[str, CachedEntry] = {}
        self._lock = threading.Lock()

    # ---- public API ----------------------------------------------------------

    def get(self, key: str) -> bytes | None:
        now = self._clock()
        with self._lock:
            entry = self._memory.get(key)
            if entry is not None:
                if not entry.is_expired(now):
                    return entry.data
                del self._memory[key]

        entry = self._read_disk(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            self._delete_disk(key)
            return None
        with self._lock:
            self._memory[key] = entry
        return entry.data

    def put(self, key: str, data: bytes, ttl: float = DEFAULT_TTL) -> bool:
        """Store *data* in both tiers.  Oversized or zero-ttl payloads are skipped."""
        if ttl <= 0 or len(data) > self.max_memory_bytes:
            return False
        entry = CachedEntry(data=data, created_at=self._clock(), ttl=ttl)
        with self._lock:
            self._memory[key] = entry
        self._write_disk(key, entry)
        return True

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._memory.pop(key, None)
        self._delete_disk(key)

    def invalidate_all(self) -> None:
        with self._lock:
            self._memory.clear()
        if self.folder is None or not self.folder.exists():
            return
        for path in self.folder.glob("*.json"):
            with contextlib.suppress(OSError):
                path.unlink()

    # ---- disk tier -----------------------------------------------------------

    def _path(self, key: str) -> Path | None:
        return self.folder / f"{key}.json" if self.folder is not None else None

    def _read_disk(self, key: str) -> CachedEntry | None:
        path = self._path(key)
        if path is None or not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return CachedEntry.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.info("Dropping undecodable cache entry %s: %s", key, e)
            self._delete_disk(key)
            return None

    def _write_disk(self, key: str, entry: CachedEntry) -> None:
        path = self._path(key)
        if path is None:
            return
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(suffix=".tmp", dir=path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(entry.to_dict(), f)
            os.replace(tmp_name, path)
        except OSError as e:
            log.warning("Could not write cache entry %s: %s", key, e)
            if tmp_name:
                with contextlib.suppress(OSError):
                    os.remove(tmp_name)

    def _delete_disk(self, key: str) -> None:
        path = self._path(key)
        if path is not None:
            with contextlib.suppress(OSError):
                path.unlink()
