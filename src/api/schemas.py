"""Pydantic request/response schemas for the FastAPI endpoints.

Wire names are camelCase (``transactionRef``, ``accountNumber``...), the
Python side is snake_case; both spellings are accepted on input.
"""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel


def _as_text(value: Any) -> str | None:
    """Coerce JSON scalars to text; the validator does the real checking."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


LooseStr = Annotated[str | None, BeforeValidator(_as_text)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthStatus(StrEnum):
    """Overall service health."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"


class ReceiptPayload(CamelModel):
    """Candidate record submitted by the operator (create or update)."""

    transaction_ref: LooseStr = None
    account_number: LooseStr = None
    customer_name: LooseStr = None
    scanner_name: LooseStr = None
    company: LooseStr = None
    date: LooseStr = None
    electricity_bill: LooseStr = None
    amount_due: LooseStr = None
    total_sales: LooseStr = None
    signature: LooseStr = None

    def record_fields(self) -> dict[str, str | None]:
        return self.model_dump(exclude={"signature"})


class ReceiptFields(CamelModel):
    """Partial record extracted from OCR text."""

    transaction_ref: str | None = None
    account_number: str | None = None
    customer_name: str | None = None
    date: str | None = None
    electricity_bill: str | None = None
    amount_due: str | None = None
    total_sales: str | None = None
    company: str | None = None


class OcrResponse(CamelModel):
    text: str
    fields: ReceiptFields
    warnings: list[str] = []
    confidence: float = 0.0


class SubmissionResponse(CamelModel):
    ok: bool = True
    id: int
    signature: str
    signature_path: str
    signature_save_ms: int
    message: str = "Data and signature saved successfully"


class RecordResponse(CamelModel):
    """A stored record as shown on the dashboard."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_ref: str
    account_number: str
    customer_name: str
    scanner_name: str
    company: str | None = None
    date: str
    electricity_bill: Decimal
    amount_due: Decimal | None = None
    total_sales: Decimal | None = None
    signature_name: str
    created_at: datetime


class RecordListResponse(CamelModel):
    ok: bool = True
    data: list[RecordResponse]


class UpdateResponse(CamelModel):
    ok: bool = True
    affected_rows: int


class DeleteResponse(CamelModel):
    ok: bool = True
    affected_rows: int
    signature_name: str | None = None
    signature_deleted: bool = False
    signature_delete_error: str | None = None


class ExistsResponse(CamelModel):
    ok: bool = True
    exists: bool
    count: int
    account_number: str | None = None
    transaction_ref: str | None = None


class LoginRequest(CamelModel):
    code: LooseStr = None


class SessionResponse(CamelModel):
    ok: bool = True
    session_id: str


class CleanupResponse(CamelModel):
    ok: bool = True
    scanned: int
    deleted: int
    skipped: int
    errors: int


class WriteProbeResponse(CamelModel):
    ok: bool = True
    message: str = "Signature directory is writable"
    test_file: str


class HealthResponse(CamelModel):
    """Response schema for the health check endpoint."""

    status: HealthStatus
    version: str
    database: bool
    ocr_ready: bool
    signature_dir: str
