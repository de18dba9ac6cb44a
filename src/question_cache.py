"""
Persistent question cache.

A best-effort, durable key -> question-list store. Keys come from
quiz_models.make_cache_key; values are JSON arrays of question records.
The whole cache lives in one JSON file, loaded into memory on open and
rewritten atomically on every put.

Quota handling mirrors a browser storage quota: if a write would exceed
max_bytes (or the disk reports it is full) the cache is cleared and the
write retried once with only the new entry. If that also fails the write
is dropped. No cache failure ever reaches the caller.
"""
import asyncio
import errno
import logging
from pathlib import Path
from typing import Optional

import config
from json_store import encode_json, read_json, write_json_locked
from question_decoder import decode_question_list
from quiz_models import QuestionRecord

logger = logging.getLogger(__name__)

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class CacheQuotaExceeded(Exception):
    """The cache write does not fit in the available storage."""


class QuestionCache:
    """Async key -> list[QuestionRecord] store backed by a JSON file.

    Lifecycle: open() -> get()/put()/clear() -> close(). get and put open
    the cache on first use if open() was not called.
    """

    def __init__(self, path: Path = config.CACHE_PATH, max_bytes: int = config.CACHE_MAX_BYTES):
        self.path = Path(path)
        self.max_bytes = max_bytes
        self._entries: Optional[dict[str, list]] = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._entries is not None

    async def open(self) -> None:
        """Load the cache file into memory (missing or corrupt file -> empty)."""
        if self.is_open:
            return
        data = await asyncio.to_thread(read_json, self.path)
        if not isinstance(data, dict):
            if data is not None:
                logger.warning("Cache file %s is not an object, starting empty", self.path)
            data = {}
        self._entries = data
        logger.debug("Opened cache %s with %d entries", self.path, len(data))

    async def close(self) -> None:
        """Drop the in-memory copy. Everything is already on disk."""
        self._entries = None

    async def get(self, key: str) -> Optional[list[QuestionRecord]]:
        """Look up a question set.

        Args:
            key: Cache key

        Returns:
            Validated records, or None on a miss or a malformed entry
        """
        await self.open()
        raw = self._entries.get(key)
        if raw is None:
            return None

        result = decode_question_list(raw)
        if not result.ok or not result.questions:
            logger.warning("Ignoring malformed cache entry %s: %s", key, result.error or "empty")
            return None
        return result.questions

    async def put(self, key: str, records: list[QuestionRecord]) -> None:
        """Store a question set, replacing any existing entry for the key."""
        await self.open()
        data = [r.to_dict() for r in records]

        async with self._lock:
            entries = dict(self._entries)
            entries[key] = data
            try:
                await asyncio.to_thread(self._write, entries)
            except CacheQuotaExceeded:
                logger.warning("Cache quota exceeded writing %s, clearing cache and retrying", key)
                entries = {key: data}
                try:
                    await asyncio.to_thread(self._remove)
                    await asyncio.to_thread(self._write, entries)
                except CacheQuotaExceeded:
                    logger.warning("Cache still over quota, dropping write for %s", key)
                    self._entries = {}
                    return
                except OSError:
                    logger.error("Cache write failed for %s", key, exc_info=True)
                    self._entries = {}
                    return
            except OSError:
                # Disk copy is stale; keep serving from memory for this process.
                logger.error("Cache write failed for %s", key, exc_info=True)
            self._entries = entries

    async def clear(self) -> None:
        """Remove every entry, in memory and on disk."""
        async with self._lock:
            self._entries = {}
            try:
                await asyncio.to_thread(self._remove)
            except OSError:
                logger.error("Could not remove cache file %s", self.path, exc_info=True)
        logger.info("Cache cleared")

    def _write(self, entries: dict) -> None:
        """Write entries to disk, raising CacheQuotaExceeded when they do not fit."""
        size = len(encode_json(entries).encode("utf-8"))
        if size > self.max_bytes:
            raise CacheQuotaExceeded(f"{size} bytes exceeds quota of {self.max_bytes}")
        try:
            write_json_locked(self.path, entries)
        except OSError as e:
            if e.errno in _QUOTA_ERRNOS:
                raise CacheQuotaExceeded(str(e)) from e
            raise

    def _remove(self) -> None:
        if self.path.exists():
            self.path.unlink()
