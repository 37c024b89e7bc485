"""Record persistence and duplicate lookups for receipt records."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from sqlalchemy import Select, String, cast, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.extraction.normalizer import normalize_account_number, normalize_transaction_ref
from src.validation.record_validator import ReceiptRecord

from .models import OcrRecordModel

DEFAULT_LIST_LIMIT = 100

# Columns an update may change; signature_name is set once at insert.
_UPDATABLE_COLUMNS = (
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


def _normalized_account_column():
    return func.upper(func.replace(OcrRecordModel.account_number, " ", ""))


class RecordStore:
    """CRUD and duplicate queries over the ``ocr_data`` table.

    The store never commits; the caller owns the transaction so the
    duplicate check and the write can share one critical section.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # Duplicate checks
    async def count_account_number(
        self, account_number: str, exclude_id: Optional[int] = None
    ) -> int:
        stmt = select(func.count()).select_from(OcrRecordModel).where(
            _normalized_account_column() == normalize_account_number(account_number)
        )
        if exclude_id is not None:
            stmt = stmt.where(OcrRecordModel.id != exclude_id)
        return int((await self._session.execute(stmt)).scalar_one())

    async def count_transaction_ref(
        self, transaction_ref: str, exclude_id: Optional[int] = None
    ) -> int:
        stmt = select(func.count()).select_from(OcrRecordModel).where(
            OcrRecordModel.transaction_ref == normalize_transaction_ref(transaction_ref)
        )
        if exclude_id is not None:
            stmt = stmt.where(OcrRecordModel.id != exclude_id)
        return int((await self._session.execute(stmt)).scalar_one())

    async def count_signature_refs(self, signature_name: str) -> int:
        stmt = select(func.count()).select_from(OcrRecordModel).where(
            OcrRecordModel.signature_name == signature_name
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def referenced_signatures(self) -> set[str]:
        """Every non-empty signature filename currently referenced by a record."""
        stmt = select(OcrRecordModel.signature_name).where(
            OcrRecordModel.signature_name.is_not(None),
            OcrRecordModel.signature_name != "",
        )
        res = await self._session.execute(stmt)
        return set(res.scalars().all())

    # CRUD
    async def insert(self, record: ReceiptRecord, signature_name: str) -> OcrRecordModel:
        row = OcrRecordModel(**record.to_dict(), signature_name=signature_name)
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def get(self, record_id: int) -> Optional[OcrRecordModel]:
        return await self._session.get(OcrRecordModel, record_id)

    async def list_records(
        self, limit: int = DEFAULT_LIST_LIMIT, search: Optional[str] = None
    ) -> list[OcrRecordModel]:
        stmt: Select[tuple[OcrRecordModel]] = select(OcrRecordModel)
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(OcrRecordModel.account_number).like(pattern),
                    func.lower(OcrRecordModel.customer_name).like(pattern),
                    func.lower(OcrRecordModel.transaction_ref).like(pattern),
                    cast(OcrRecordModel.electricity_bill, String).like(pattern),
                )
            )
        stmt = stmt.order_by(OcrRecordModel.id.asc()).limit(limit)
        res = await self._session.execute(stmt)
        return list(res.scalars().all())

    async def update(self, record_id: int, record: ReceiptRecord) -> int:
        values: Mapping[str, Any] = {
            k: v for k, v in record.to_dict().items() if k in _UPDATABLE_COLUMNS
        }
        stmt = update(OcrRecordModel).where(OcrRecordModel.id == record_id).values(**values)
        res = await self._session.execute(stmt)
        return res.rowcount or 0

    async def delete(self, record_id: int) -> int:
        stmt = delete(OcrRecordModel).where(OcrRecordModel.id == record_id)
        res = await self._session.execute(stmt)
        return res.rowcount or 0
