"""Configuration management for the receipt scanning service.

Loads and validates YAML configuration with sensible defaults
for the database, signature storage, locking, validation, extraction,
OCR, authentication and server settings. A handful of environment variables
override the file so secrets can stay out of it.
"""

import logging
import os
from datetime import date
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("configs/config.yaml")


class DatabaseConfig(BaseModel):
    """Configuration for the relational record store."""

    url: str = "sqlite+aiosqlite:///./data/receipts.db"
    echo: bool = False


class SignatureConfig(BaseModel):
    """Configuration for the shared signature file area."""

    directory: str = "./data/signatures"
    allowed_directories: list[str] = Field(default_factory=list)
    io_timeout_seconds: float = 10.0
    write_attempts: int = 2
    cleanup_interval_seconds: float = 3600.0
    cleanup_initial_delay_seconds: float = 1.5


class LockConfig(BaseModel):
    """Configuration for the per-account advisory lock."""

    backend: str = "auto"
    timeout_seconds: float = 5.0
    key_prefix: str = "ocr-account:"


class ValidationConfig(BaseModel):
    """Configuration for the record validator."""

    min_electricity_bill: float = 50.0
    min_transaction_digits: int = 15
    min_account_digits: int = 6
    date_window_start: date | None = None
    date_window_end: date | None = None


class ExtractionConfig(BaseModel):
    """Configuration for OCR field extraction."""

    company_name: str = "AGUSAN DEL NORTE ELECTRIC COOPERATIVE, INC."
    min_transaction_digits: int = 15
    truncate_threshold: int = 20
    truncate_length: int = 15


class OCRConfig(BaseModel):
    """Configuration for Tesseract OCR engine."""

    tesseract_cmd: str | None = None
    default_lang: str = "eng"
    psm: int = 3
    max_width: int = 2000


class AuthConfig(BaseModel):
    """Configuration for the dashboard access code."""

    admin_code: str = ""
    require_session: bool = True


class ServerConfig(BaseModel):
    """Configuration for the HTTP server."""

    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class AppConfig(BaseModel):
    """Top-level application configuration."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    signatures: SignatureConfig = Field(default_factory=SignatureConfig)
    locks: LockConfig = Field(default_factory=LockConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    log_level: str = "INFO"


# env var -> (section, key); a section of None targets the top level
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "DATABASE_URL": ("database", "url"),
    "SIGNATURE_DIR": ("signatures", "directory"),
    "ADMIN_CODE": ("auth", "admin_code"),
    "LOG_LEVEL": (None, "log_level"),
    "HOST": ("server", "host"),
    "PORT": ("server", "port"),
}


def _apply_env_overrides(raw: dict) -> dict:
    """Merge supported environment variables into the raw config mapping."""
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        if section is None:
            raw[key] = value
        else:
            raw.setdefault(section, {})[key] = value
        logger.debug("Config override from %s", env_name)

    timeout_ms = os.environ.get("SIGNATURE_IO_TIMEOUT_MS")
    if timeout_ms:
        raw.setdefault("signatures", {})["io_timeout_seconds"] = float(timeout_ms) / 1000
    return raw


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file. Defaults to
            ``$OCR_CONFIG_PATH`` or configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path(os.environ.get("OCR_CONFIG_PATH", DEFAULT_CONFIG_PATH))

    raw: dict = {}
    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.info("No config file found at %s, using defaults", path)

    return AppConfig(**_apply_env_overrides(raw))
