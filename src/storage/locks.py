"""Per-account advisory locks with bounded wait and guaranteed release.

A lock key is derived from the normalized account number. Holding the
lock turns the duplicate check and the write of a submission into one
critical section for that account; different accounts never contend.

Two backends share the ``hold`` contract:

- ``InProcessLockManager``: an asyncio key-to-lock table, correct for a
  single server process.
- ``DatabaseLockManager``: the store's own named locks (MySQL
  ``GET_LOCK``/``RELEASE_LOCK``, PostgreSQL session advisory locks), for
  several processes sharing one database.
"""

from __future__ import annotations

import asyncio
import hashlib
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from src.extraction.normalizer import normalize_account_number
from src.submission.errors import AccountLockTimeout
from src.utils.config import LockConfig
from src.utils.logger import get_logger

logger = get_logger(__name__)

_PG_POLL_INTERVAL = 0.1


class AccountLockManager(ABC):
    """Contract: ``async with manager.hold(account):`` or raise ``AccountLockTimeout``.

    Args:
        timeout: Default bound on the wait, in seconds.
        key_prefix: Prefix for lock names.
    """

    def __init__(self, timeout: float = 5.0, key_prefix: str = "ocr-account:") -> None:
        self.timeout = timeout
        self.key_prefix = key_prefix

    def lock_key(self, account_number: str) -> str:
        return f"{self.key_prefix}{normalize_account_number(account_number)}"

    @asynccontextmanager
    async def hold(
        self, account_number: str, timeout: float | None = None
    ) -> AsyncIterator[str]:
        """Hold the lock for an account for the duration of the block.

        Args:
            account_number: Account the submission targets.
            timeout: Override of the default wait bound.

        Yields:
            The lock key.

        Raises:
            AccountLockTimeout: If the lock was not acquired in time.
        """
        key = self.lock_key(account_number)
        wait = self.timeout if timeout is None else timeout
        async with self._hold(key, wait):
            logger.debug("Lock acquired: %s", key)
            try:
                yield key
            finally:
                logger.debug("Lock released: %s", key)

    @abstractmethod
    def _hold(self, key: str, timeout: float) -> AbstractAsyncContextManager[None]:
        """Acquire ``key`` within ``timeout`` seconds and release it on exit."""


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class InProcessLockManager(AccountLockManager):
    """Key-scoped asyncio mutex table.

    Entries are dropped once nobody holds or waits for them, so the table
    does not grow with the number of accounts ever seen.
    """

    def __init__(self, timeout: float = 5.0, key_prefix: str = "ocr-account:") -> None:
        super().__init__(timeout, key_prefix)
        self._entries: dict[str, _LockEntry] = {}

    def is_locked(self, account_number: str) -> bool:
        entry = self._entries.get(self.lock_key(account_number))
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def _hold(self, key: str, timeout: float) -> AsyncIterator[None]:
        entry = self._entries.setdefault(key, _LockEntry())
        entry.users += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout)
            except asyncio.TimeoutError as exc:
                logger.warning("Lock wait timed out after %.1fs: %s", timeout, key)
                raise AccountLockTimeout() from exc
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)


class DatabaseLockManager(AccountLockManager):
    """Named locks provided by the database server.

    The lock lives on a dedicated connection that stays checked out for
    the whole critical section; releasing on that same connection is
    required by both MySQL and PostgreSQL.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        timeout: float = 5.0,
        key_prefix: str = "ocr-account:",
    ) -> None:
        super().__init__(timeout, key_prefix)
        self.engine = engine
        self.dialect = engine.dialect.name
        if self.dialect not in ("mysql", "mariadb", "postgresql"):
            raise ValueError(f"Database locks are not supported on {self.dialect}")

    @asynccontextmanager
    async def _hold(self, key: str, timeout: float) -> AsyncIterator[None]:
        async with self.engine.connect() as conn:
            acquired = await self._acquire(conn, key, timeout)
            if not acquired:
                logger.warning("Lock wait timed out after %.1fs: %s", timeout, key)
                raise AccountLockTimeout()
            try:
                yield
            finally:
                try:
                    await self._release(conn, key)
                except Exception as exc:
                    # the server drops session locks when the connection closes
                    logger.warning("Failed to release account lock %s: %s", key, exc)

    async def _acquire(self, conn: AsyncConnection, key: str, timeout: float) -> bool:
        if self.dialect == "postgresql":
            deadline = asyncio.get_running_loop().time() + timeout
            while True:
                res = await conn.execute(
                    text("SELECT pg_try_advisory_lock(:k)"), {"k": _pg_key(key)}
                )
                if res.scalar_one():
                    return True
                if asyncio.get_running_loop().time() >= deadline:
                    return False
                await asyncio.sleep(_PG_POLL_INTERVAL)

        res = await conn.execute(
            text("SELECT GET_LOCK(:k, :t)"), {"k": key, "t": max(int(round(timeout)), 0)}
        )
        return res.scalar_one() == 1

    async def _release(self, conn: AsyncConnection, key: str) -> None:
        if self.dialect == "postgresql":
            await conn.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": _pg_key(key)})
        else:
            await conn.execute(text("SELECT RELEASE_LOCK(:k)"), {"k": key})
        await conn.commit()


def _pg_key(key: str) -> int:
    """Map a lock name onto PostgreSQL's signed 64-bit advisory key space."""
    digest = hashlib.blake2b(key.encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def build_lock_manager(config: LockConfig, engine: AsyncEngine) -> AccountLockManager:
    """Pick the lock backend for the configured database.

    ``auto`` uses database locks when the dialect provides them and the
    in-process table otherwise.
    """
    backend = config.backend
    if backend == "auto":
        backend = (
            "database"
            if engine.dialect.name in ("mysql", "mariadb", "postgresql")
            else "memory"
        )

    if backend == "database":
        manager: AccountLockManager = DatabaseLockManager(
            engine, config.timeout_seconds, config.key_prefix
        )
    elif backend == "memory":
        manager = InProcessLockManager(config.timeout_seconds, config.key_prefix)
    else:
        raise ValueError(f"Unknown lock backend: {config.backend}")

    logger.info("Account locks use the %s backend", backend)
    return manager
