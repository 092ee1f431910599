"""Durable key-value storage shared by the sync job and its readers.

Two access modes are offered on every backend:

- ephemeral: ``get``/``put`` with an optional ``ttl_seconds``; an entry past
  its expiry is reported absent even if it was never physically evicted.
- persistent: ``get_persistent``/``put_persistent``; entries never expire.

Every ``put`` is written through to the backing medium before returning.
Several processes (web app, scheduler runner) may open the same store;
``put_if_absent`` is the one atomic check-and-set they can rely on.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
import json
import os
from pathlib import Path
import tempfile
import time
from typing import Any, Callable, Iterator

from sqlalchemy import Column, Float, MetaData, String, Table, Text, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from app.core.logger import get_logger

log = get_logger("data.store")

Clock = Callable[[], float]


def _expiry(ttl_seconds: int | float | None, clock: Clock) -> float | None:
    if ttl_seconds is None:
        return None
    return clock() + max(float(ttl_seconds), 0.0)


def _copy(value: Any) -> Any:
    # Callers never share mutable state with the in-memory document.
    return json.loads(json.dumps(value, ensure_ascii=False))


def _is_expired(expires_at: float | None, now: float) -> bool:
    return expires_at is not None and float(expires_at) <= now


class KeyValueStore(ABC):
    def __init__(self, *, clock: Clock = time.time):
        self._clock = clock

    @abstractmethod
    async def _read(self, key: str) -> tuple[Any, float | None] | None:
        """Return ``(value, expires_at)`` or None when the key is absent."""

    @abstractmethod
    async def _write(self, key: str, value: Any, expires_at: float | None) -> None:
        ...

    @abstractmethod
    async def _write_if_absent(self, key: str, value: Any, expires_at: float | None, now: float) -> bool:
        """Write only when the key is missing or expired at ``now``; report whether it was written."""

    @abstractmethod
    async def _evict_expired(self, key: str, now: float) -> None:
        """Delete the key only if it is still expired at ``now``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        return None

    async def get(self, key: str) -> Any:
        row = await self._read(key)
        if row is None:
            return None
        value, expires_at = row
        now = self._clock()
        if _is_expired(expires_at, now):
            # Another process may have replaced the entry since the read.
            await self._evict_expired(key, now)
            return None
        return value

    async def put(self, key: str, value: Any, ttl_seconds: int | float | None = None) -> None:
        await self._write(key, value, _expiry(ttl_seconds, self._clock))

    async def put_if_absent(self, key: str, value: Any, ttl_seconds: int | float | None = None) -> bool:
        """Store ``value`` unless a live entry already holds ``key``."""
        now = self._clock()
        expires_at = None if ttl_seconds is None else now + max(float(ttl_seconds), 0.0)
        return await self._write_if_absent(key, value, expires_at, now)

    async def get_persistent(self, key: str) -> Any:
        row = await self._read(key)
        return row[0] if row is not None else None

    async def put_persistent(self, key: str, value: Any) -> None:
        await self._write(key, value, None)


_UNLOADED = object()


class JsonFileStore(KeyValueStore):
    """Whole store kept as one JSON document; ``path=None`` keeps it in memory.

    The document is re-read whenever another process has replaced the file,
    and every read-modify-write runs under an ``flock`` on a sidecar
    ``<path>.lock`` file, so concurrent handles on one path never overwrite
    each other's keys.
    """

    def __init__(self, path: str | os.PathLike | None = None, *, clock: Clock = time.time):
        super().__init__(clock=clock)
        self.path = Path(path) if path else None
        self._data: dict[str, dict] = {}
        self._stamp: Any = _UNLOADED
        if self.path is not None:
            with self._locked(exclusive=False):
                self._refresh()

    @staticmethod
    def _load(path: Path) -> dict[str, dict]:
        if not path.exists():
            return {}
        try:
            raw = json.loads(path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError):
            log.exception("store_load_failed path=%s; starting empty", path)
            return {}
        if not isinstance(raw, dict):
            log.error("store_load_failed path=%s; root is not an object", path)
            return {}
        return {k: v for k, v in raw.items() if isinstance(v, dict) and "value" in v}

    def _file_stamp(self) -> tuple[int, int, int] | None:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _refresh(self) -> None:
        if self.path is None:
            return
        stamp = self._file_stamp()
        if stamp != self._stamp:
            self._data = self._load(self.path) if stamp is not None else {}
            self._stamp = stamp

    @contextmanager
    def _locked(self, *, exclusive: bool) -> Iterator[None]:
        if self.path is None or os.name != "posix":
            yield
            return
        import fcntl

        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = self.path.with_name(f"{self.path.name}.lock")
        with open(lock_path, "a+") as fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self._data, ensure_ascii=False, indent=2)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        self._stamp = self._file_stamp()

    async def _read(self, key: str) -> tuple[Any, float | None] | None:
        with self._locked(exclusive=False):
            self._refresh()
            entry = self._data.get(key)
        if entry is None:
            return None
        return _copy(entry.get("value")), entry.get("expires_at")

    async def _write(self, key: str, value: Any, expires_at: float | None) -> None:
        with self._locked(exclusive=True):
            self._refresh()
            self._data[key] = {"value": _copy(value), "expires_at": expires_at}
            self._flush()

    async def _write_if_absent(self, key: str, value: Any, expires_at: float | None, now: float) -> bool:
        with self._locked(exclusive=True):
            self._refresh()
            entry = self._data.get(key)
            if entry is not None and not _is_expired(entry.get("expires_at"), now):
                return False
            self._data[key] = {"value": _copy(value), "expires_at": expires_at}
            self._flush()
            return True

    async def _evict_expired(self, key: str, now: float) -> None:
        with self._locked(exclusive=True):
            self._refresh()
            entry = self._data.get(key)
            if entry is not None and _is_expired(entry.get("expires_at"), now):
                del self._data[key]
                self._flush()

    async def delete(self, key: str) -> None:
        with self._locked(exclusive=True):
            self._refresh()
            if self._data.pop(key, None) is not None:
                self._flush()


_metadata = MetaData()
kv_store_table = Table(
    "kv_store",
    _metadata,
    Column("cache_key", String(255), primary_key=True),
    Column("payload", Text, nullable=True),
    Column("expires_at", Float, nullable=True),
)


class SqlKeyValueStore(KeyValueStore):
    """Store backed by a ``kv_store`` table (PostgreSQL in production, SQLite in tests)."""

    def __init__(self, engine: AsyncEngine, *, clock: Clock = time.time):
        super().__init__(clock=clock)
        self.engine = engine

    @classmethod
    async def open(cls, database_url: str, *, clock: Clock = time.time) -> "SqlKeyValueStore":
        if not (database_url or "").strip():
            raise RuntimeError("DATABASE_URL is not configured for STORE_BACKEND=sql")
        engine = create_async_engine(database_url, echo=False, pool_pre_ping=True)
        async with engine.begin() as conn:
            await conn.run_sync(_metadata.create_all)
        return cls(engine, clock=clock)

    async def _read(self, key: str) -> tuple[Any, float | None] | None:
        async with self.engine.connect() as conn:
            res = await conn.execute(
                text("SELECT payload, expires_at FROM kv_store WHERE cache_key=:k"),
                {"k": key},
            )
            row = res.first()
        if row is None:
            return None
        payload = json.loads(row[0]) if row[0] is not None else None
        return payload, row[1]

    async def _write(self, key: str, value: Any, expires_at: float | None) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    INSERT INTO kv_store(cache_key, payload, expires_at)
                    VALUES(:k, :p, :e)
                    ON CONFLICT (cache_key)
                    DO UPDATE SET payload=excluded.payload, expires_at=excluded.expires_at
                    """
                ),
                {"k": key, "p": json.dumps(value, ensure_ascii=False), "e": expires_at},
            )

    async def _write_if_absent(self, key: str, value: Any, expires_at: float | None, now: float) -> bool:
        # A live row makes the conflicting update a no-op, so the row count tells who won.
        async with self.engine.begin() as conn:
            res = await conn.execute(
                text(
                    """
                    INSERT INTO kv_store(cache_key, payload, expires_at)
                    VALUES(:k, :p, :e)
                    ON CONFLICT (cache_key)
                    DO UPDATE SET payload=excluded.payload, expires_at=excluded.expires_at
                    WHERE kv_store.expires_at IS NOT NULL AND kv_store.expires_at <= :now
                    """
                ),
                {"k": key, "p": json.dumps(value, ensure_ascii=False), "e": expires_at, "now": now},
            )
        return (res.rowcount or 0) > 0

    async def _evict_expired(self, key: str, now: float) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(
                text(
                    "DELETE FROM kv_store WHERE cache_key=:k "
                    "AND expires_at IS NOT NULL AND expires_at <= :now"
                ),
                {"k": key, "now": now},
            )

    async def delete(self, key: str) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(text("DELETE FROM kv_store WHERE cache_key=:k"), {"k": key})

    async def close(self) -> None:
        await self.engine.dispose()


async def open_store(cfg=None) -> KeyValueStore:
    if cfg is None:
        from app.core.config import settings as cfg
    if cfg.is_sql_store:
        store = await SqlKeyValueStore.open(cfg.database_url)
        log.info("store_opened backend=sql")
        return store
    store = JsonFileStore(cfg.store_file)
    log.info("store_opened backend=json path=%s", cfg.store_file or "<memory>")
    return store
