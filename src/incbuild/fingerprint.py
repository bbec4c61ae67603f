"""
Fingerprints for input units.

Uses diskcache for a SQLite-backed cache of content hashes, keyed by file
metadata, so unchanged files are not re-hashed on every run.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Optional

from diskcache import Cache

from .exceptions import FileAccessError
from .filesystem import FileStat, FileSystem, resolve_within
from .logging_config import get_logger

logger = get_logger(__name__)


def hash_bytes(data: bytes) -> str:
    """SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def compute_options_hash(options: dict) -> str:
    """
    Compute hash of project options for snapshot invalidation.

    Args:
        options: Options dictionary (JSON-serializable)

    Returns:
        Short SHA-256 hash of the options
    """
    options_str = json.dumps(options, sort_keys=True, default=str)
    return hashlib.sha256(options_str.encode()).hexdigest()[:16]


class FingerprintCache:
    """
    Disk cache mapping file metadata to content hashes.

    Features:
    - Cache key generated from path, mtime and size
    - Thread-safe operations
    - Degrades to a miss on any cache failure
    """

    def __init__(self, cache_dir: str | Path, enabled: bool = True):
        """
        Initialize cache.

        Args:
            cache_dir: Directory for cache storage
            enabled: Whether caching is enabled
        """
        self.enabled = enabled

        if self.enabled:
            self.cache: Optional[Cache] = Cache(str(cache_dir))
            logger.debug("Fingerprint cache initialized at %s", cache_dir)
        else:
            self.cache = None
            logger.debug("Fingerprint cache disabled")

    @staticmethod
    def make_key(path: Path, stat: FileStat) -> str:
        key_data = f"{path}:{stat.mtime_ns}:{stat.size}"
        return hashlib.sha256(key_data.encode()).hexdigest()

    def get(self, key: str) -> Optional[str]:
        if not self.enabled or self.cache is None:
            return None

        try:
            return self.cache.get(key)
        except Exception as e:
            logger.warning("Fingerprint cache get failed: %s", e)
            return None

    def set(self, key: str, value: str) -> None:
        if not self.enabled or self.cache is None:
            return

        try:
            self.cache.set(key, value)
        except Exception as e:
            logger.warning("Fingerprint cache set failed: %s", e)

    def clear(self) -> None:
        """Clear all cache entries."""
        if not self.enabled or self.cache is None:
            return

        try:
            self.cache.clear()
            logger.info("Fingerprint cache cleared")
        except Exception as e:
            logger.warning("Fingerprint cache clear failed: %s", e)

    def stats(self) -> dict[str, Any]:
        if not self.enabled or self.cache is None:
            return {"enabled": False}

        try:
            return {
                "enabled": True,
                "size": len(self.cache),
                "directory": self.cache.directory,
                "volume": self.cache.volume(),
            }
        except Exception as e:
            logger.warning("Fingerprint cache stats failed: %s", e)
            return {"enabled": True, "error": str(e)}

    def close(self) -> None:
        if self.cache is not None:
            self.cache.close()

    def __enter__(self) -> FingerprintCache:
        return self

    def __exit__(self, *args) -> None:
        self.close()


class Fingerprinter:
    """Computes fingerprints for logical unit paths under a project root.

    ``content`` mode hashes the file bytes; ``mtime`` mode uses modification
    time and size, which is cheaper but treats a touched file as modified.
    """

    def __init__(
        self,
        fs: FileSystem,
        root_dir: Path,
        mode: str = "content",
        cache: Optional[FingerprintCache] = None,
    ) -> None:
        self.fs = fs
        self.root_dir = root_dir
        self.mode = mode
        self.cache = cache

    def fingerprint(self, logical: str) -> Optional[str]:
        """Fingerprint of ``logical``, or None if the file is missing or unreadable.

        Unreadable units are left to the engine, which reports them.
        """
        try:
            path = resolve_within(self.root_dir, logical)
            stat = self.fs.stat(path)
        except FileNotFoundError:
            return None
        except (FileAccessError, OSError) as e:
            logger.warning("Cannot fingerprint %s: %s", logical, e)
            return None

        if self.mode == "mtime":
            return f"mtime:{stat.mtime_ns}:{stat.size}"

        key = None
        if self.cache is not None:
            key = FingerprintCache.make_key(path, stat)
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        try:
            digest = "sha256:" + hash_bytes(self.fs.read_file(path))
        except FileNotFoundError:
            return None
        except (FileAccessError, OSError) as e:
            logger.warning("Cannot fingerprint %s: %s", logical, e)
            return None

        if key is not None:
            self.cache.set(key, digest)
        return digest
