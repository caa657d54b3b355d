"""Session persistence: durable store, expiring cache and the repository over both."""
import asyncio
import json
import os
import re
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional

import aiofiles
import aiofiles.os
import structlog

from .models import SessionData

logger = structlog.get_logger()

SESSION_CACHE_TTL_SECONDS = 1800
_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def cache_key(session_id: str) -> str:
    return f"session:{session_id}"


class SessionStore(ABC):
    """Durable session persistence keyed by session id (no expiry)."""

    @abstractmethod
    async def save(self, session: SessionData) -> None:
        """Upsert ``session`` by id."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[SessionData]:
        """Return the stored session or None."""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove the session; unknown ids are ignored."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the store is reachable."""


class SessionCache(ABC):
    """Fast, expiring session cache."""

    @abstractmethod
    async def set(self, session_id: str, session: SessionData) -> None: ...

    @abstractmethod
    async def get(self, session_id: str) -> Optional[SessionData]: ...

    @abstractmethod
    async def delete(self, session_id: str) -> None: ...

    @abstractmethod
    async def ping(self) -> bool: ...


class JsonFileSessionStore(SessionStore):
    """One JSON document per session under ``directory``.

    Writes go to a temporary file first and are swapped in with a rename, so
    readers never observe a half-written record.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, session_id: str) -> Optional[Path]:
        # Ids never reach the filesystem unless they are plain tokens
        if not isinstance(session_id, str) or not _SAFE_ID.match(session_id):
            return None
        return self.directory / f"{session_id}.json"

    async def save(self, session: SessionData) -> None:
        path = self._path_for(session.id)
        if path is None:
            raise ValueError(f"Invalid session id: {session.id!r}")

        tmp_path = path.with_name(f".{path.stem}.{uuid.uuid4().hex[:8]}.tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(session.to_dict()))
        await aiofiles.os.replace(tmp_path, path)
        logger.debug("session_stored", session_id=session.id)

    async def get(self, session_id: str) -> Optional[SessionData]:
        path = self._path_for(session_id)
        if path is None or not await aiofiles.os.path.exists(path):
            return None

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
        try:
            return SessionData.from_dict(json.loads(content))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning("session_record_corrupt", session_id=session_id, error=str(e))
            return None

    async def delete(self, session_id: str) -> None:
        path = self._path_for(session_id)
        if path is None:
            return
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return
        logger.debug("session_deleted", session_id=session_id)

    async def ping(self) -> bool:
        if not await aiofiles.os.path.isdir(self.directory):
            return False
        return os.access(self.directory, os.W_OK)


class InMemorySessionCache(SessionCache):
    """Process-local cache with a fixed time-to-live per entry.

    Entries are stored as serialized records so callers never share mutable
    state with the cache, matching the behaviour of an external key-value store.
    """

    def __init__(
        self,
        ttl_seconds: int = SESSION_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def set(self, session_id: str, session: SessionData) -> None:
        async with self._lock:
            now = self._clock()
            self._drop_expired(now)
            self._entries[cache_key(session_id)] = (now + self.ttl_seconds, session.to_dict())

    async def get(self, session_id: str) -> Optional[SessionData]:
        key = cache_key(session_id)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, record = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
        return SessionData.from_dict(record)

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._entries.pop(cache_key(session_id), None)

    async def purge_expired(self) -> int:
        """Drop expired entries. Returns the number removed."""
        async with self._lock:
            return self._drop_expired(self._clock())

    def _drop_expired(self, now: float) -> int:
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._entries)


class SessionRepository:
    """Read-through / write-through access to sessions.

    Lookup order is cache, then durable store (warming the cache on a hit).
    Writes go to the durable store first; the cache write is best-effort.
    """

    def __init__(self, store: SessionStore, cache: SessionCache) -> None:
        self.store = store
        self.cache = cache

    async def load(self, session_id: str) -> Optional[SessionData]:
        try:
            cached = await self.cache.get(session_id)
        except Exception as e:
            logger.warning("session_cache_read_failed", session_id=session_id, error=str(e))
            cached = None
        if cached is not None:
            return cached

        session = await self.store.get(session_id)
        if session is None:
            return None

        logger.debug("session_cache_miss", session_id=session_id)
        await self._cache_best_effort(session)
        return session

    async def save(self, session: SessionData) -> None:
        await self.store.save(session)
        await self._cache_best_effort(session)

    async def evict(self, session_id: str) -> None:
        await self.cache.delete(session_id)

    async def delete(self, session_id: str) -> None:
        await self.store.delete(session_id)

    async def health(self) -> dict[str, bool]:
        """Reachability of each collaborator."""
        return {
            "store": await self._ping(self.store, "store"),
            "cache": await self._ping(self.cache, "cache"),
        }

    async def _ping(self, target, name: str) -> bool:
        try:
            return bool(await target.ping())
        except Exception as e:
            logger.warning("health_check_failed", service=name, error=str(e))
            return False

    async def _cache_best_effort(self, session: SessionData) -> None:
        try:
            await self.cache.set(session.id, session)
        except Exception as e:
            logger.warning("session_cache_write_failed", session_id=session.id, error=str(e))
