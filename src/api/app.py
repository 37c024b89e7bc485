"""FastAPI application for the receipt scanning service.

Provides REST endpoints for OCR, record submission with signatures,
the dashboard (list, update, delete, export), signature storage
maintenance, login and health checks.
"""

import asyncio
import io
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from src import __version__
from src.extraction.rule_extractor import ReceiptExtractor
from src.ocr.service import OcrService
from src.storage.database import Database
from src.storage.export import write_records_csv
from src.storage.locks import build_lock_manager
from src.storage.signature_store import SignatureStore
from src.submission.errors import SignatureSaveFailed, SubmissionError
from src.submission.orchestrator import SubmissionService
from src.utils.config import AppConfig, load_config
from src.utils.logger import get_logger, setup_logging
from src.validation.record_validator import RecordValidator

from .auth import SessionAuth, require_session
from .schemas import (
    CleanupResponse,
    DeleteResponse,
    ExistsResponse,
    HealthResponse,
    HealthStatus,
    LoginRequest,
    OcrResponse,
    ReceiptFields,
    ReceiptPayload,
    RecordListResponse,
    RecordResponse,
    SessionResponse,
    SubmissionResponse,
    UpdateResponse,
    WriteProbeResponse,
)

logger = get_logger(__name__)

router = APIRouter()
SessionGuard = Annotated[None, Depends(require_session)]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build shared components on startup and release them on shutdown.

    A misconfigured signature directory raises ``StorageConfigError`` and
    aborts startup.
    """
    config: AppConfig = app.state.config

    signature_store = SignatureStore.from_config(config.signatures)
    logger.info("Signature directory: %s", signature_store.location)

    database = Database(config.database)
    await database.init()

    validator = RecordValidator(config.validation)
    service = SubmissionService(
        database.session_factory,
        build_lock_manager(config.locks, database.engine),
        signature_store,
        validator,
    )
    ocr = OcrService(config.ocr)
    await asyncio.to_thread(ocr.start)

    app.state.database = database
    app.state.service = service
    app.state.validator = validator
    app.state.extractor = ReceiptExtractor(config.extraction)
    app.state.ocr = ocr

    cleanup_task = None
    if config.signatures.cleanup_interval_seconds > 0:
        cleanup_task = asyncio.create_task(
            service.run_periodic_cleanup(
                config.signatures.cleanup_interval_seconds,
                config.signatures.cleanup_initial_delay_seconds,
            )
        )

    try:
        yield
    finally:
        if cleanup_task is not None:
            cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await cleanup_task
        ocr.shutdown()
        await database.close()
        logger.info("Shutdown complete")


async def submission_error_handler(request: Request, exc: SubmissionError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build the application.

    Args:
        config: Application configuration. Loaded from the default
            location when omitted.
    """
    config = config or load_config()
    setup_logging(config.log_level)

    app = FastAPI(
        title="Receipt OCR Service",
        description="Scan electricity-bill receipts, validate and store them with signatures",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.auth = SessionAuth(config.auth)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SubmissionError, submission_error_handler)
    app.include_router(router)
    return app


def _service(request: Request) -> SubmissionService:
    return request.app.state.service


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Return system health status."""
    state = request.app.state
    database_ok = await state.database.ping()
    return HealthResponse(
        status=HealthStatus.HEALTHY if database_ok else HealthStatus.DEGRADED,
        version=__version__,
        database=database_ok,
        ocr_ready=state.ocr.ready,
        signature_dir=state.service.signature_store.location,
    )


@router.post("/ocr", response_model=OcrResponse)
async def recognize_receipt(
    request: Request,
    image: Annotated[UploadFile, File(...)],
) -> OcrResponse:
    """Recognize an uploaded receipt photo and pre-fill its fields.

    Warnings are advisory: a bill below the minimum and a transaction
    reference that is already stored.
    """
    state = request.app.state
    content = await image.read()
    logger.info("OCR requested: %s (%d bytes)", image.filename, len(content))

    result = await state.ocr.recognize(content)
    fields = state.extractor.extract_record(result.text)

    warnings: list[str] = []
    bill = fields.get("electricity_bill")
    if bill and state.validator.is_below_minimum(bill):
        warnings.append(
            f"Bill amount {bill} is below the minimum of {state.validator.min_bill_label}"
        )
    ref = fields.get("transaction_ref")
    if ref:
        _, count = await state.service.transaction_exists(ref)
        if count:
            warnings.append(f"Transaction reference {ref} already exists")

    return OcrResponse(
        text=result.text,
        fields=ReceiptFields(**fields),
        warnings=warnings,
        confidence=result.confidence,
    )


@router.get("/api/check-account/{account_number}", response_model=ExistsResponse)
async def check_account(account_number: str, request: Request) -> ExistsResponse:
    normalized, count = await _service(request).account_exists(account_number)
    return ExistsResponse(exists=count > 0, count=count, account_number=normalized)


@router.get("/api/check-transaction/{transaction_ref}", response_model=ExistsResponse)
async def check_transaction(transaction_ref: str, request: Request) -> ExistsResponse:
    normalized, count = await _service(request).transaction_exists(transaction_ref)
    return ExistsResponse(exists=count > 0, count=count, transaction_ref=normalized)


@router.post("/api/ocr-data", response_model=SubmissionResponse)
async def create_record(payload: ReceiptPayload, request: Request) -> SubmissionResponse:
    """Validate and store a record together with its signature."""
    result = await _service(request).create(payload.record_fields(), payload.signature)
    return SubmissionResponse(
        id=result.id,
        signature=result.signature_name,
        signature_path=result.signature_path,
        signature_save_ms=result.signature_save_ms,
    )


@router.get("/api/ocr-data", response_model=RecordListResponse)
async def list_records(
    request: Request,
    _: SessionGuard,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    search: Annotated[str | None, Query()] = None,
) -> RecordListResponse:
    rows = await _service(request).list_records(limit, search)
    return RecordListResponse(data=[RecordResponse.model_validate(r) for r in rows])


@router.get("/api/ocr-data/export.csv")
async def export_records(
    request: Request,
    _: SessionGuard,
    search: Annotated[str | None, Query()] = None,
) -> StreamingResponse:
    """Download the stored records as CSV."""
    rows = await _service(request).list_records(limit=1_000_000, search=search)
    buffer = io.StringIO()
    write_records_csv([r.to_dict() for r in rows], buffer)
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="ocr-data.csv"'},
    )


@router.put("/api/ocr-data/{record_id}", response_model=UpdateResponse)
async def update_record(
    record_id: int, payload: ReceiptPayload, request: Request, _: SessionGuard
) -> UpdateResponse:
    affected = await _service(request).update(record_id, payload.record_fields())
    return UpdateResponse(affected_rows=affected)


@router.delete("/api/ocr-data/{record_id}", response_model=DeleteResponse)
async def delete_record(record_id: int, request: Request, _: SessionGuard) -> DeleteResponse:
    result = await _service(request).delete(record_id)
    return DeleteResponse(
        affected_rows=result.affected_rows,
        signature_name=result.signature_name,
        signature_deleted=result.signature_deleted,
        signature_delete_error=result.signature_delete_error,
    )


@router.get("/api/signature/{filename}")
async def get_signature(filename: str, request: Request) -> FileResponse:
    path = await _service(request).signature_path(filename)
    return FileResponse(path, media_type="image/png")


@router.post("/api/test-signature-write", response_model=WriteProbeResponse)
async def test_signature_write(request: Request) -> WriteProbeResponse:
    """Confirm the signature share is writable from this server."""
    try:
        test_file = await _service(request).signature_store.probe_write()
    except OSError as exc:
        logger.error("Signature write probe failed: %s", exc)
        raise SignatureSaveFailed(
            "Signature directory is not writable", details=[str(exc)]
        ) from exc
    return WriteProbeResponse(test_file=test_file)


@router.post("/api/cleanup-signature-storage", response_model=CleanupResponse)
async def cleanup_signature_storage(request: Request, _: SessionGuard) -> CleanupResponse:
    stats = await _service(request).cleanup_orphans()
    return CleanupResponse(
        scanned=stats.scanned,
        deleted=stats.deleted,
        skipped=stats.skipped,
        errors=stats.errors,
    )


@router.post("/api/login", response_model=SessionResponse)
async def login(body: LoginRequest, request: Request) -> SessionResponse:
    session_id = request.app.state.auth.login(body.code)
    return SessionResponse(session_id=session_id)


@router.get("/api/session-status", response_model=SessionResponse)
async def session_status(request: Request) -> SessionResponse:
    return SessionResponse(session_id=request.app.state.auth.session_id)
