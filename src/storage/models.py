"""SQLAlchemy model for persisted receipt records."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import TIMESTAMP, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class OcrRecordModel(Base):
    __tablename__ = "ocr_data"
    __table_args__ = (
        UniqueConstraint("transaction_ref", name="uq_ocr_data_transaction_ref"),
        UniqueConstraint("account_number", name="uq_ocr_data_account_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    account_number: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scanner_name: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    date: Mapped[str] = mapped_column(String(50), nullable=False)
    electricity_bill: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    amount_due: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    total_sales: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    signature_name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, server_default=func.now(), nullable=False
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "transaction_ref": self.transaction_ref,
            "account_number": self.account_number,
            "customer_name": self.customer_name,
            "scanner_name": self.scanner_name,
            "company": self.company,
            "date": self.date,
            "electricity_bill": self.electricity_bill,
            "amount_due": self.amount_due,
            "total_sales": self.total_sales,
            "signature_name": self.signature_name,
            "created_at": self.created_at,
        }
