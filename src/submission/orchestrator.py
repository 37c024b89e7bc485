"""Submission orchestration for receipt records.

Create path, in order, with early exit on the first failing step:

1. reject a missing or malformed signature payload;
2. validate the candidate record (full error list, no side effects);
3. acquire the per-account lock (bounded wait);
4. reject an existing account number;
5. reject an existing transaction reference;
6. save the signature file;
7. insert the record referencing the saved filename;
8. release the lock on every exit path.

The signature is saved before the insert so a storage failure can never
leave a record with a dangling reference. Update mirrors steps 2-5 with
duplicate checks that exclude the record itself and never touches the
signature.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.extraction.normalizer import normalize_account_number, normalize_transaction_ref
from src.storage.locks import AccountLockManager
from src.storage.models import OcrRecordModel
from src.storage.record_store import DEFAULT_LIST_LIMIT, RecordStore
from src.storage.signature_store import CleanupStats, SignatureStore, is_safe_name
from src.utils.logger import get_logger
from src.validation.record_validator import ReceiptRecord, RecordValidator

from .errors import (
    DuplicateAccountNumber,
    DuplicateTransactionReference,
    RecordNotFound,
    SignatureNotFound,
    SubmissionError,
    ValidationFailed,
)

logger = get_logger(__name__)

RECORD_FIELDS: tuple[str, ...] = (
    "transaction_ref",
    "account_number",
    "customer_name",
    "scanner_name",
    "company",
    "date",
    "electricity_bill",
    "amount_due",
    "total_sales",
)


@dataclass
class SubmissionResult:
    """Outcome of a successful create."""

    id: int
    signature_name: str
    signature_path: str
    signature_save_ms: int


@dataclass
class DeleteResult:
    """Outcome of a delete, including signature cleanup."""

    affected_rows: int
    signature_name: str | None
    signature_deleted: bool = False
    signature_delete_error: str | None = None


class SubmissionService:
    """Validated, locked and signed persistence of receipt records.

    Args:
        session_factory: Factory for request-scoped database sessions.
        lock_manager: Per-account advisory lock provider.
        signature_store: Shared signature file storage.
        validator: Record validator.
        lock_timeout: Override of the lock manager's default wait.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_manager: AccountLockManager,
        signature_store: SignatureStore,
        validator: RecordValidator | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.lock_manager = lock_manager
        self.signature_store = signature_store
        self.validator = validator or RecordValidator()
        self.lock_timeout = lock_timeout

    def _validate(self, payload: Mapping[str, Any]) -> ReceiptRecord:
        report = self.validator.validate(payload)
        if not report.all_valid or report.record is None:
            logger.warning("Validation failed: %s", "; ".join(report.errors))
            raise ValidationFailed(details=report.errors)
        return report.record

    async def _check_duplicates(
        self, store: RecordStore, record: ReceiptRecord, exclude_id: int | None = None
    ) -> None:
        if await store.count_account_number(record.account_number, exclude_id) > 0:
            logger.warning("Duplicate account number: %s", record.account_number)
            raise DuplicateAccountNumber()
        if await store.count_transaction_ref(record.transaction_ref, exclude_id) > 0:
            logger.warning("Duplicate transaction reference: %s", record.transaction_ref)
            raise DuplicateTransactionReference()

    @staticmethod
    def _conflict_from(exc: IntegrityError) -> SubmissionError:
        if "transaction_ref" in str(exc.orig).lower():
            return DuplicateTransactionReference()
        return DuplicateAccountNumber()

    async def create(
        self, payload: Mapping[str, Any], signature: str | None
    ) -> SubmissionResult:
        """Validate, lock, sign and insert a new record.

        Args:
            payload: Candidate record fields (snake_case keys).
            signature: PNG data URL of the operator's signature.

        Returns:
            The new record id and its signature reference.

        Raises:
            SubmissionError: One specific subclass per failing step.
        """
        logger.info(
            "Save requested: account=%s ref=%s has_signature=%s",
            payload.get("account_number"),
            payload.get("transaction_ref"),
            bool(signature),
        )
        self.signature_store.decode(signature)
        record = self._validate(payload)

        async with self.lock_manager.hold(record.account_number, self.lock_timeout):
            async with self.session_factory() as session:
                store = RecordStore(session)
                await self._check_duplicates(store, record)

                saved = await self.signature_store.save(signature)
                try:
                    row = await store.insert(record, saved.name)
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    await self._discard_signature(saved.name)
                    raise self._conflict_from(exc) from exc
                except Exception:
                    await session.rollback()
                    await self._discard_signature(saved.name)
                    raise

        logger.info("Record saved, id=%s signature=%s", row.id, saved.name)
        return SubmissionResult(
            id=row.id,
            signature_name=saved.name,
            signature_path=str(saved.path),
            signature_save_ms=saved.duration_ms,
        )

    async def _discard_signature(self, name: str) -> None:
        try:
            await self.signature_store.delete(name)
        except OSError as exc:
            logger.warning("Could not remove unused signature %s: %s", name, exc)

    async def update(self, record_id: int, payload: Mapping[str, Any]) -> int:
        """Re-validate and update a record; the signature is left untouched.

        Fields that are absent (``None``) in the payload keep their stored
        value.

        Returns:
            Number of affected rows.

        Raises:
            RecordNotFound: If no record has this id.
            SubmissionError: On validation, lock or duplicate failures.
        """
        async with self.session_factory() as session:
            existing = await RecordStore(session).get(record_id)
            if existing is None:
                raise RecordNotFound()
            merged = {
                name: payload.get(name)
                if payload.get(name) is not None
                else getattr(existing, name)
                for name in RECORD_FIELDS
            }

        record = self._validate(merged)

        async with self.lock_manager.hold(record.account_number, self.lock_timeout):
            async with self.session_factory() as session:
                store = RecordStore(session)
                await self._check_duplicates(store, record, exclude_id=record_id)
                try:
                    affected = await store.update(record_id, record)
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    raise self._conflict_from(exc) from exc

        if affected == 0:
            raise RecordNotFound()
        logger.info("Record %s updated", record_id)
        return affected

    async def delete(self, record_id: int) -> DeleteResult:
        """Delete a record and its signature file when nothing else references it.

        Raises:
            RecordNotFound: If no record has this id.
        """
        async with self.session_factory() as session:
            store = RecordStore(session)
            row = await store.get(record_id)
            if row is None:
                raise RecordNotFound()
            signature_name = row.signature_name
            affected = await store.delete(record_id)
            await session.commit()
            remaining = (
                await store.count_signature_refs(signature_name) if signature_name else 0
            )

        result = DeleteResult(affected_rows=affected, signature_name=signature_name)
        if affected and signature_name and remaining == 0 and is_safe_name(signature_name):
            try:
                result.signature_deleted = await self.signature_store.delete(signature_name)
            except OSError as exc:
                result.signature_delete_error = str(exc)
                logger.error("Error deleting signature file %s: %s", signature_name, exc)

        logger.info(
            "Record %s deleted (signature %s removed=%s)",
            record_id,
            signature_name,
            result.signature_deleted,
        )
        return result

    async def list_records(
        self, limit: int = DEFAULT_LIST_LIMIT, search: str | None = None
    ) -> list[OcrRecordModel]:
        if limit <= 0:
            limit = DEFAULT_LIST_LIMIT
        async with self.session_factory() as session:
            return await RecordStore(session).list_records(limit, search)

    async def account_exists(self, account_number: str) -> tuple[str, int]:
        """Advisory pre-check; returns the normalized key and its match count."""
        normalized = normalize_account_number(account_number)
        async with self.session_factory() as session:
            count = await RecordStore(session).count_account_number(normalized)
        logger.info("check-account %s: count=%d", normalized, count)
        return normalized, count

    async def transaction_exists(self, transaction_ref: str) -> tuple[str, int]:
        """Advisory pre-check; returns the normalized key and its match count."""
        normalized = normalize_transaction_ref(transaction_ref)
        async with self.session_factory() as session:
            count = await RecordStore(session).count_transaction_ref(normalized)
        logger.info("check-transaction %s: count=%d", normalized, count)
        return normalized, count

    async def signature_path(self, name: str) -> Path:
        """Resolve a stored signature for reading.

        Raises:
            InvalidSignatureName: On traversal-shaped names.
            SignatureNotFound: If the file does not exist.
        """
        path = self.signature_store.path_for(name)
        if not await self.signature_store.exists(name):
            raise SignatureNotFound()
        return path

    async def cleanup_orphans(self) -> CleanupStats:
        """Delete signature files no current record references."""
        async with self.session_factory() as session:
            referenced = await RecordStore(session).referenced_signatures()
        stats = await self.signature_store.sweep(referenced)
        logger.info(
            "Orphan signature cleanup complete: scanned=%d deleted=%d skipped=%d errors=%d",
            stats.scanned,
            stats.deleted,
            stats.skipped,
            stats.errors,
        )
        return stats

    async def run_periodic_cleanup(self, interval: float, initial_delay: float = 0.0) -> None:
        """Sweep orphans after ``initial_delay`` and then every ``interval`` seconds.

        Runs until cancelled. A failed sweep is logged and retried on the
        next tick.
        """
        await asyncio.sleep(initial_delay)
        while True:
            try:
                await self.cleanup_orphans()
            except Exception:
                logger.exception("Orphan signature cleanup failed")
            await asyncio.sleep(interval)
