"""Key-value stores backing the run guard."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Protocol

import redis.asyncio as aioredis
import structlog

log = structlog.get_logger("tagmirror.engine")

LAST_RUN_KEY = "lastRun"


class GuardStore(Protocol):
    """Minimal async key-value interface the sync job relies on."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


class MemoryGuardStore:
    """Process-local store. Good for tests and the long-running scheduler."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def close(self) -> None:
        pass


class JsonFileGuardStore:
    """Store persisted as a flat JSON object on disk.

    Lets a cron-driven ``tagmirror run`` remember the last pass between
    invocations without any extra service.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def get(self, key: str) -> str | None:
        data = await asyncio.to_thread(self._load)
        value = data.get(key)
        return None if value is None else str(value)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._update, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._update, key, None)

    async def close(self) -> None:
        pass

    def _load(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            log.warning("guard.corrupt_state", path=str(self.path))
            return {}
        return data if isinstance(data, dict) else {}

    def _update(self, key: str, value: str | None) -> None:
        data = self._load()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)


class RedisGuardStore:
    """Redis-backed store, shared by every host running the same sync."""

    def __init__(self, url: str, namespace: str = "tagmirror") -> None:
        self._redis: aioredis.Redis = aioredis.from_url(url, decode_responses=True)
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> str | None:
        return await self._redis.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self._redis.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def close(self) -> None:
        await self._redis.aclose()


def open_guard_store(location: str, namespace: str = "tagmirror") -> GuardStore:
    """Pick a store from a location string.

    ``memory:`` keeps state in-process. ``redis://`` and ``rediss://`` URLs,
    and ``unix://`` URLs naming a Redis socket (e.g.
    ``unix:///run/redis.sock?db=0``), use Redis. Anything else is treated as
    a JSON file path.
    """
    if location == "memory:":
        return MemoryGuardStore()
    if location.startswith(("redis://", "rediss://", "unix://")):
        return RedisGuardStore(location, namespace=namespace)
    return JsonFileGuardStore(location)
