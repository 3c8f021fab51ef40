"""
Job identity deduplication stores.

Both stores answer "was this job id accepted within the last ttl seconds?"
for one queue namespace:

- MemoryDedupStore: process-local dict (tests, single-process runs)
- JsonDedupStore: one JSON file per key on local disk, survives restarts

Storage layout (JSON):
    storage_path/<queue>/<sha256(key)>.json -> {"key": "...", "timestamp": 1234567890.0}
"""

import hashlib
import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class DedupStore(Protocol):
    async def check_duplicate(
        self,
        namespace: str,
        key: str,
        ttl_seconds: float,
    ) -> tuple[bool, dict[str, Any] | None]:
        """
        Returns:
            (is_duplicate, metadata) where metadata is the stored data if found
        """
        ...

    async def mark_processed(self, namespace: str, key: str, metadata: dict[str, Any]) -> None: ...

    async def cleanup_expired(self, namespace: str, ttl_seconds: float) -> int: ...


class MemoryDedupStore:
    """In-memory dedup store with an injectable wall clock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, dict[str, dict[str, Any]]] = {}

    async def check_duplicate(
        self, namespace: str, key: str, ttl_seconds: float
    ) -> tuple[bool, dict[str, Any] | None]:
        entry = self._entries.get(namespace, {}).get(key)
        if entry is None:
            return False, None
        if self._clock() - entry["timestamp"] < ttl_seconds:
            return True, entry
        del self._entries[namespace][key]
        return False, None

    async def mark_processed(self, namespace: str, key: str, metadata: dict[str, Any]) -> None:
        stored = dict(metadata)
        stored.setdefault("timestamp", self._clock())
        self._entries.setdefault(namespace, {})[key] = stored

    async def cleanup_expired(self, namespace: str, ttl_seconds: float) -> int:
        entries = self._entries.get(namespace, {})
        now = self._clock()
        expired = [k for k, v in entries.items() if now - v["timestamp"] >= ttl_seconds]
        for key in expired:
            del entries[key]
        return len(expired)


class JsonDedupStore:
    """Local filesystem JSON implementation of the dedup store."""

    def __init__(self, storage_path: str | Path, clock: Callable[[], float] = time.time):
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        logger.info("Initialized JSON dedup store", extra={"path": str(self.storage_path)})

    def _path(self, namespace: str, key: str) -> Path:
        # Job ids contain ':', '/' and '@'; hash them into safe file names
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.storage_path / namespace / f"{digest}.json"

    async def check_duplicate(
        self, namespace: str, key: str, ttl_seconds: float
    ) -> tuple[bool, dict[str, Any] | None]:
        file_path = self._path(namespace, key)
        if not file_path.exists():
            return False, None

        try:
            with open(file_path) as f:
                metadata = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(
                "Error reading dedup entry, treating as new",
                extra={"queue": namespace, "job_id": key, "error": str(e)},
            )
            return False, None

        age_seconds = self._clock() - metadata.get("timestamp", 0)
        if age_seconds < ttl_seconds:
            logger.debug(
                "Found duplicate in JSON store",
                extra={"queue": namespace, "job_id": key, "age_seconds": age_seconds},
            )
            return True, metadata

        file_path.unlink(missing_ok=True)
        return False, None

    async def mark_processed(self, namespace: str, key: str, metadata: dict[str, Any]) -> None:
        file_path = self._path(namespace, key)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        stored = {"key": key, **metadata}
        stored.setdefault("timestamp", self._clock())
        with open(file_path, "w") as f:
            json.dump(stored, f)

    async def cleanup_expired(self, namespace: str, ttl_seconds: float) -> int:
        namespace_dir = self.storage_path / namespace
        if not namespace_dir.exists():
            return 0

        now = self._clock()
        removed = 0
        for file_path in namespace_dir.glob("*.json"):
            try:
                with open(file_path) as f:
                    metadata = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(
                    "Error cleaning up dedup file",
                    extra={"queue": namespace, "file": file_path.name, "error": str(e)},
                )
                continue
            if now - metadata.get("timestamp", 0) >= ttl_seconds:
                file_path.unlink(missing_ok=True)
                removed += 1

        if removed:
            logger.info(
                "Cleaned up expired dedup entries",
                extra={"queue": namespace, "removed_count": removed},
            )
        return removed


__all__ = ["DedupStore", "JsonDedupStore", "MemoryDedupStore"]
