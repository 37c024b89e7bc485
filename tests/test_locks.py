"""Tests for per-account advisory locks."""

import asyncio
from unittest.mock import MagicMock

import pytest

from src.storage.locks import (
    AccountLockManager,
    DatabaseLockManager,
    InProcessLockManager,
    _pg_key,
    build_lock_manager,
)
from src.submission.errors import AccountLockTimeout, ErrorCode
from src.utils.config import LockConfig


def _engine(dialect: str) -> MagicMock:
    engine = MagicMock()
    engine.dialect.name = dialect
    return engine


class TestLockKey:
    """Tests for lock key derivation."""

    def test_key_uses_normalized_account(self) -> None:
        manager = InProcessLockManager()
        assert manager.lock_key(" b123 456 ") == "ocr-account:B123456"

    def test_custom_prefix(self) -> None:
        manager = InProcessLockManager(key_prefix="acct/")
        assert manager.lock_key("B1") == "acct/B1"

    def test_pg_key_is_stable_signed_64bit(self) -> None:
        key = _pg_key("ocr-account:B123")
        assert key == _pg_key("ocr-account:B123")
        assert -(2**63) <= key < 2**63


class TestInProcessLockManager:
    """Tests for the asyncio lock table."""

    @pytest.mark.asyncio
    async def test_hold_yields_key_and_releases(self) -> None:
        manager = InProcessLockManager()
        async with manager.hold("B123456") as key:
            assert key == "ocr-account:B123456"
            assert manager.is_locked("b123 456")
        assert not manager.is_locked("B123456")
        assert manager._entries == {}

    @pytest.mark.asyncio
    async def test_released_on_exception(self) -> None:
        manager = InProcessLockManager()
        with pytest.raises(RuntimeError):
            async with manager.hold("B123456"):
                raise RuntimeError("boom")
        assert not manager.is_locked("B123456")

    @pytest.mark.asyncio
    async def test_timeout_when_held(self) -> None:
        manager = InProcessLockManager(timeout=0.05)
        async with manager.hold("B123456"):
            with pytest.raises(AccountLockTimeout) as exc_info:
                async with manager.hold("B123 456"):
                    pass
        assert exc_info.value.code == ErrorCode.ACCOUNT_LOCK_TIMEOUT
        assert exc_info.value.status_code == 429
        assert manager._entries == {}

    @pytest.mark.asyncio
    async def test_same_account_serialized(self) -> None:
        manager = InProcessLockManager(timeout=2.0)
        events: list[str] = []

        async def critical(name: str) -> None:
            async with manager.hold("B123456"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.02)
                events.append(f"{name}-out")

        await asyncio.gather(critical("a"), critical("b"))
        assert events in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    @pytest.mark.asyncio
    async def test_distinct_accounts_do_not_contend(self) -> None:
        manager = InProcessLockManager(timeout=0.05)
        async with manager.hold("B111111"):
            async with manager.hold("B222222") as key:
                assert key == "ocr-account:B222222"

    @pytest.mark.asyncio
    async def test_waiter_acquires_after_release(self) -> None:
        manager = InProcessLockManager(timeout=1.0)
        acquired = asyncio.Event()

        async def waiter() -> None:
            async with manager.hold("B123456"):
                acquired.set()

        async with manager.hold("B123456"):
            task = asyncio.create_task(waiter())
            await asyncio.sleep(0.01)
            assert not acquired.is_set()
        await task
        assert acquired.is_set()


class TestBuildLockManager:
    """Tests for backend selection."""

    def test_auto_sqlite_is_memory(self) -> None:
        manager = build_lock_manager(LockConfig(), _engine("sqlite"))
        assert isinstance(manager, InProcessLockManager)

    @pytest.mark.parametrize("dialect", ["mysql", "mariadb", "postgresql"])
    def test_auto_server_databases_use_database_locks(self, dialect: str) -> None:
        manager = build_lock_manager(LockConfig(timeout_seconds=3), _engine(dialect))
        assert isinstance(manager, DatabaseLockManager)
        assert manager.timeout == 3

    def test_explicit_memory(self) -> None:
        manager = build_lock_manager(LockConfig(backend="memory"), _engine("mysql"))
        assert isinstance(manager, InProcessLockManager)

    def test_database_backend_rejects_sqlite(self) -> None:
        with pytest.raises(ValueError):
            build_lock_manager(LockConfig(backend="database"), _engine("sqlite"))

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            build_lock_manager(LockConfig(backend="redis"), _engine("sqlite"))


class TestLockManagerContract:
    """Tests for the abstract lock manager base."""

    def test_base_cannot_be_built(self) -> None:
        with pytest.raises(TypeError):
            AccountLockManager()

    def test_subclass_without_hold_fails_on_construction(self) -> None:
        class Incomplete(AccountLockManager):
            pass

        with pytest.raises(TypeError):
            Incomplete(timeout=1.0)
