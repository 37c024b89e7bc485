"""Shared test fixtures for the receipt OCR test suite."""

import base64
import io
from collections.abc import AsyncIterator
from pathlib import Path

import numpy as np
import pytest
import pytest_asyncio
from PIL import Image

from src.storage.database import Database
from src.storage.locks import InProcessLockManager
from src.storage.signature_store import SignatureStore
from src.submission.orchestrator import SubmissionService
from src.utils.config import (
    AppConfig,
    AuthConfig,
    DatabaseConfig,
    SignatureConfig,
)
from src.validation.record_validator import RecordValidator


def make_png_bytes(width: int = 40, height: int = 20) -> bytes:
    """Create a small PNG image, like a drawn signature."""
    image = np.full((height, width), 255, dtype=np.uint8)
    image[height // 2, 5 : width - 5] = 0
    buf = io.BytesIO()
    Image.fromarray(image).save(buf, format="PNG")
    return buf.getvalue()


def make_data_url(data: bytes | None = None) -> str:
    payload = base64.b64encode(data if data is not None else make_png_bytes()).decode()
    return f"data:image/png;base64,{payload}"


def make_payload(**overrides: object) -> dict[str, object]:
    """A valid candidate record with snake_case keys."""
    payload: dict[str, object] = {
        "transaction_ref": "202403051234567",
        "account_number": "B123456789012",
        "customer_name": "JUAN DELA CRUZ",
        "scanner_name": "Maria",
        "date": "March 5, 2024",
        "electricity_bill": "1,234.50",
        "amount_due": "1234.50",
        "total_sales": None,
        "company": "AGUSAN DEL NORTE ELECTRIC COOPERATIVE, INC.",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def png_data_url() -> str:
    return make_data_url()


@pytest.fixture
def signature_dir(tmp_path: Path) -> Path:
    return tmp_path / "signatures"


@pytest.fixture
def app_config(tmp_path: Path, signature_dir: Path) -> AppConfig:
    """Configuration pointing every resource at the test's tmp_path."""
    return AppConfig(
        database=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'receipts.db'}"),
        signatures=SignatureConfig(
            directory=str(signature_dir),
            io_timeout_seconds=5,
            cleanup_interval_seconds=0,
        ),
        auth=AuthConfig(admin_code="letmein"),
    )


@pytest_asyncio.fixture
async def database(app_config: AppConfig) -> AsyncIterator[Database]:
    db = Database(app_config.database)
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def signature_store(signature_dir: Path) -> SignatureStore:
    return SignatureStore(signature_dir, io_timeout=5)


@pytest.fixture
def service(database: Database, signature_store: SignatureStore) -> SubmissionService:
    return SubmissionService(
        database.session_factory,
        InProcessLockManager(timeout=2.0),
        signature_store,
        RecordValidator(),
    )
