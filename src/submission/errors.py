"""Structured errors raised by the submission core.

Each error carries a stable machine-readable code, a human-readable
message, a list of detail strings and the HTTP status the API maps it to.
"""

from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error codes returned to clients."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    DUPLICATE_ACCOUNT_NUMBER = "DUPLICATE_ACCOUNT_NUMBER"
    DUPLICATE_TRANSACTION_REFERENCE = "DUPLICATE_TRANSACTION_REFERENCE"
    ACCOUNT_LOCK_TIMEOUT = "ACCOUNT_LOCK_TIMEOUT"
    SIGNATURE_REQUIRED = "SIGNATURE_REQUIRED"
    INVALID_SIGNATURE_FORMAT = "INVALID_SIGNATURE_FORMAT"
    SIGNATURE_SAVE_FAILED = "SIGNATURE_SAVE_FAILED"
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    INVALID_FILENAME = "INVALID_FILENAME"
    SIGNATURE_NOT_FOUND = "SIGNATURE_NOT_FOUND"
    OCR_NOT_READY = "OCR_NOT_READY"
    OCR_FAILED = "OCR_FAILED"
    UNAUTHORIZED = "UNAUTHORIZED"


class SubmissionError(Exception):
    """Base class for every client-visible failure of the core."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    status_code: int = 400
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None, details: list[str] | None = None) -> None:
        self.message = message or self.default_message
        self.details = list(details or [])
        super().__init__(self.message)

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": False,
            "error": self.message,
            "code": str(self.code),
            "details": self.details,
        }


class SignatureRequired(SubmissionError):
    code = ErrorCode.SIGNATURE_REQUIRED
    default_message = "Signature is required"


class InvalidSignatureFormat(SubmissionError):
    code = ErrorCode.INVALID_SIGNATURE_FORMAT
    default_message = "Invalid signature format"


class ValidationFailed(SubmissionError):
    code = ErrorCode.VALIDATION_ERROR
    default_message = "Validation failed"


class DuplicateAccountNumber(SubmissionError):
    code = ErrorCode.DUPLICATE_ACCOUNT_NUMBER
    status_code = 409
    default_message = "Account number already exists in database"


class DuplicateTransactionReference(SubmissionError):
    code = ErrorCode.DUPLICATE_TRANSACTION_REFERENCE
    status_code = 409
    default_message = "Transaction reference already exists in database"


class AccountLockTimeout(SubmissionError):
    code = ErrorCode.ACCOUNT_LOCK_TIMEOUT
    status_code = 429
    default_message = (
        "A save is already in progress for this account number. Please try again."
    )


class SignatureSaveFailed(SubmissionError):
    code = ErrorCode.SIGNATURE_SAVE_FAILED
    status_code = 503
    default_message = "Failed to save signature image to network shared folder"


class RecordNotFound(SubmissionError):
    code = ErrorCode.RECORD_NOT_FOUND
    status_code = 404
    default_message = "Record not found"


class InvalidSignatureName(SubmissionError):
    code = ErrorCode.INVALID_FILENAME
    default_message = "Invalid filename"


class SignatureNotFound(SubmissionError):
    code = ErrorCode.SIGNATURE_NOT_FOUND
    status_code = 404
    default_message = "Signature not found"


class OcrUnavailable(SubmissionError):
    code = ErrorCode.OCR_NOT_READY
    status_code = 503
    default_message = "OCR worker not ready"


class OcrFailed(SubmissionError):
    code = ErrorCode.OCR_FAILED
    status_code = 500
    default_message = "Processing failed"


class Unauthorized(SubmissionError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 401
    default_message = "Invalid code"


class StorageConfigError(RuntimeError):
    """Raised at startup when the signature directory is misconfigured."""
