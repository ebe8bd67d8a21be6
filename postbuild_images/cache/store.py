"""
Cache Store — Flat, disk-backed artifact cache shared across builds.

Every output the pipeline produces (derivatives and recompressed originals)
is stored under a cache key. On the next build the stored bytes are copied
back instead of re-transcoding, so a rebuild over unchanged inputs is
reduced to file copies.

Entries are never invalidated or evicted. A changed source under an
unchanged key keeps serving the old bytes until the cache is cleared
(`postbuild-images cache clear`).

## Usage

    store = CacheStore(default_cache_dir("postbuild-images"))
    result = store.get_or_compute("none@img%2Fphoto.webp", target, encode)
    if result.restore is CacheCopyOutcome.SKIPPED:
        ...
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from threading import Lock
from typing import Callable, Dict, List, Mapping, Optional
from urllib.parse import quote

from ..observability.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

CACHE_DIR_ENV = "POSTBUILD_IMAGES_CACHE_DIR"

# Keeps ".{key}.{uuid}.tmp" under the usual 255-byte file name limit
MAX_KEY_BYTES = 200


class CacheCopyOutcome(str, Enum):
    """Result of a best-effort copy into or out of the cache."""

    COPIED = "copied"
    SKIPPED = "skipped"


@dataclass
class CacheResult:
    """What get_or_compute did for one key."""

    key: str
    hit: bool
    computed: bool
    restore: Optional[CacheCopyOutcome] = None
    populate: Optional[CacheCopyOutcome] = None


def default_cache_dir(name: str, env: Optional[Mapping[str, str]] = None) -> Path:
    """
    Discover the cache directory.

    POSTBUILD_IMAGES_CACHE_DIR wins, then $XDG_CACHE_HOME/<name>,
    then ~/.cache/<name>.
    """
    env = os.environ if env is None else env
    explicit = env.get(CACHE_DIR_ENV)
    if explicit:
        return Path(explicit).expanduser()
    xdg = env.get("XDG_CACHE_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".cache"
    return base / name


def cache_key_for(relative_path: str, namespace: str, strategy: str = "path") -> str:
    """
    Cache key for an output file.

    Args:
        relative_path: Output path relative to the site root
        namespace: Resize policy label for derivatives, "original" for originals
        strategy: "path" keys by namespace + full relative path;
                  "basename" keys by file name only (collides across directories)

    Keys longer than MAX_KEY_BYTES are cut and suffixed with a SHA-256
    digest of the full key, so they stay unique and fit in one file name.
    """
    normalized = relative_path.replace("\\", "/").lstrip("/")
    if strategy == "basename":
        key = PurePosixPath(normalized).name
    else:
        key = f"{namespace}@{quote(normalized, safe='')}"
    return _bounded(key)


def _bounded(key: str) -> str:
    raw = key.encode("utf-8")
    if len(raw) <= MAX_KEY_BYTES:
        return key
    digest = hashlib.sha256(raw).hexdigest()
    head = raw[:MAX_KEY_BYTES - len(digest) - 1].decode("utf-8", "ignore")
    return f"{head}~{digest}"


class CacheStore:
    """Get-or-compute over a flat directory of cached outputs."""

    def __init__(self, cache_dir: Path, metrics: Optional[MetricsRegistry] = None):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.metrics = metrics
        self._locks: Dict[str, Lock] = {}
        self._locks_guard = Lock()

    def entry_path(self, cache_key: str) -> Path:
        if not cache_key or "/" in cache_key or "\\" in cache_key or cache_key.startswith("."):
            raise ValueError(f"Invalid cache key: {cache_key!r}")
        return self.cache_dir / cache_key

    def has(self, cache_key: str) -> bool:
        return self._stored(self.entry_path(cache_key), cache_key)

    def get_or_compute(
        self,
        cache_key: str,
        target: Path,
        compute: Callable[[Path], None],
    ) -> CacheResult:
        """
        Materialize `target` from the cache, or by calling `compute(target)`.

        A hit copies the stored entry to the target. A miss runs compute,
        then stores a copy of the target under the key. Copy failures in
        either direction are reported as SKIPPED and never raised; a failed
        restore falls back to computing the target. Errors raised by compute
        propagate unchanged and leave the cache untouched.
        """
        target = Path(target)
        entry = self.entry_path(cache_key)

        with self._lock_for(cache_key):
            if self._stored(entry, cache_key):
                restore = self._restore(entry, target, cache_key)
                if restore is CacheCopyOutcome.COPIED:
                    self._count("cache_hits_total")
                    logger.debug(f"Cache hit: {cache_key}", extra={"cache_key": cache_key})
                    return CacheResult(cache_key, hit=True, computed=False, restore=restore)

                logger.warning(
                    f"Cache entry {cache_key} could not be restored — recomputing",
                    extra={"cache_key": cache_key},
                )
                compute(target)
                populate = self._populate(target, entry, cache_key)
                return CacheResult(cache_key, hit=True, computed=True, restore=restore, populate=populate)

            self._count("cache_misses_total")
            logger.debug(f"Cache miss: {cache_key}", extra={"cache_key": cache_key})
            compute(target)
            populate = self._populate(target, entry, cache_key)
            return CacheResult(cache_key, hit=False, computed=True, populate=populate)

    # ── Copies ───────────────────────────────────────────────

    def _restore(self, entry: Path, target: Path, cache_key: str) -> CacheCopyOutcome:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(entry, target)
            return CacheCopyOutcome.COPIED
        except OSError as e:
            logger.warning(f"Cache restore failed for {cache_key}: {e}", extra={"cache_key": cache_key})
            self._count("cache_copy_skipped_total", {"direction": "restore"})
            return CacheCopyOutcome.SKIPPED

    def _populate(self, target: Path, entry: Path, cache_key: str) -> CacheCopyOutcome:
        # Temp file + rename so a reader never sees a partial entry
        temp_path = self.cache_dir / f".{cache_key}.{uuid.uuid4().hex}.tmp"
        try:
            shutil.copyfile(target, temp_path)
            os.replace(temp_path, entry)
            return CacheCopyOutcome.COPIED
        except OSError as e:
            self._discard(temp_path)
            logger.warning(f"Cache populate failed for {cache_key}: {e}", extra={"cache_key": cache_key})
            self._count("cache_copy_skipped_total", {"direction": "populate"})
            return CacheCopyOutcome.SKIPPED

    # ── Maintenance ──────────────────────────────────────────

    def entries(self) -> List[Path]:
        """All stored entries, sorted by name."""
        if not self.cache_dir.exists():
            return []
        return sorted(
            p for p in self.cache_dir.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )

    def size_bytes(self) -> int:
        return sum(p.stat().st_size for p in self.entries())

    def clear(self) -> int:
        """Delete every entry (and stray temp files). Returns entries removed."""
        removed = 0
        for p in list(self.cache_dir.iterdir()) if self.cache_dir.exists() else []:
            if not p.is_file():
                continue
            p.unlink(missing_ok=True)
            if not p.name.startswith("."):
                removed += 1
        logger.info(f"Cleared {removed} cache entries from {self.cache_dir}")
        return removed

    # ── Internals ────────────────────────────────────────────

    def _stored(self, entry: Path, cache_key: str) -> bool:
        """Lookup; an entry the filesystem can't stat counts as a miss."""
        try:
            return entry.is_file()
        except OSError as e:
            logger.warning(f"Cache lookup failed for {cache_key}: {e}", extra={"cache_key": cache_key})
            return False

    def _discard(self, temp_path: Path) -> None:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Could not remove {temp_path.name}: {e}")

    def _lock_for(self, cache_key: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(cache_key)
            if lock is None:
                lock = self._locks[cache_key] = Lock()
            return lock

    def _count(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        if self.metrics is not None:
            self.metrics.increment(name, labels=labels)
