"""Business-rule validation for receipt records.

Every field rule is evaluated independently and all violations are
collected, so the operator can fix everything in one round trip. A
record is only produced when no rule failed.
"""

import re
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from src.extraction.normalizer import (
    canonical_date,
    count_digits,
    normalize_account_number,
    normalize_text,
    normalize_transaction_ref,
    parse_amount,
    parse_receipt_date,
)
from src.utils.config import ValidationConfig
from src.utils.logger import get_logger

logger = get_logger(__name__)

CUSTOMER_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z\s,\-./']*$")

DatePolicy = Callable[[date], bool]


@dataclass
class ValidationResult:
    """Result of a single field validation check."""

    field_name: str
    is_valid: bool
    message: str
    rule_name: str


@dataclass
class ReceiptRecord:
    """A normalized receipt record ready to be persisted."""

    transaction_ref: str
    account_number: str
    customer_name: str
    scanner_name: str
    date: str
    electricity_bill: Decimal
    company: str | None = None
    amount_due: Decimal | None = None
    total_sales: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationReport:
    """Aggregated validation outcome for one candidate record."""

    all_valid: bool
    results: list[ValidationResult]
    record: ReceiptRecord | None = None

    @property
    def errors(self) -> list[str]:
        """Messages of every failed check, in evaluation order."""
        return [r.message for r in self.results if not r.is_valid]


@dataclass
class DateWindow:
    """Inclusive date range a receipt date must fall into.

    Either bound may be open. Used as the configurable date policy.
    """

    start: date | None = None
    end: date | None = None

    def __call__(self, value: date) -> bool:
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True

    def describe(self) -> str:
        start = self.start.isoformat() if self.start else "any"
        end = self.end.isoformat() if self.end else "any"
        return f"{start} to {end}"


@dataclass
class _Checks:
    results: list[ValidationResult] = field(default_factory=list)

    def fail(self, field_name: str, message: str, rule_name: str) -> None:
        self.results.append(ValidationResult(field_name, False, message, rule_name))

    def ok(self, field_name: str, rule_name: str) -> None:
        self.results.append(ValidationResult(field_name, True, "OK", rule_name))


class RecordValidator:
    """Validates and normalizes candidate receipt records.

    Args:
        config: Thresholds and the optional date window.
        date_policy: Extra predicate a parsed receipt date must satisfy.
            Defaults to the window from ``config`` when one is set.
    """

    def __init__(
        self,
        config: ValidationConfig | None = None,
        date_policy: DatePolicy | None = None,
    ) -> None:
        self.config = config or ValidationConfig()
        self.min_bill = Decimal(str(self.config.min_electricity_bill))
        self.min_bill_label = f"{self.min_bill.normalize():f}"
        if date_policy is None and (
            self.config.date_window_start or self.config.date_window_end
        ):
            date_policy = DateWindow(
                self.config.date_window_start, self.config.date_window_end
            )
        self.date_policy = date_policy

    def validate(self, payload: Mapping[str, Any]) -> ValidationReport:
        """Validate a candidate record.

        Args:
            payload: Field name to raw value mapping (snake_case keys).

        Returns:
            Report with every check result and, when valid, the
            normalized record.
        """
        checks = _Checks()

        transaction_ref = self._check_transaction_ref(checks, payload)
        date_text = self._check_date(checks, payload)
        customer_name = self._check_customer_name(checks, payload)
        account_number = self._check_account_number(checks, payload)
        scanner_name = self._check_required_text(
            checks, payload, "scanner_name", "Scanner Name"
        )
        electricity_bill = self._check_bill(checks, payload)
        amount_due = self._check_optional_amount(
            checks, payload, "amount_due", "Amount Due"
        )
        total_sales = self._check_optional_amount(
            checks, payload, "total_sales", "Total Sales"
        )
        company = normalize_text(payload.get("company")) or None

        all_valid = all(r.is_valid for r in checks.results)
        logger.info(
            "Record validation %s (%d checks)",
            "PASSED" if all_valid else "FAILED",
            len(checks.results),
        )

        record = None
        if all_valid:
            record = ReceiptRecord(
                transaction_ref=transaction_ref,
                account_number=account_number,
                customer_name=customer_name,
                scanner_name=scanner_name,
                date=date_text,
                electricity_bill=electricity_bill,
                company=company,
                amount_due=amount_due,
                total_sales=total_sales,
            )
        return ValidationReport(all_valid=all_valid, results=checks.results, record=record)

    def _check_transaction_ref(self, checks: _Checks, payload: Mapping[str, Any]) -> str:
        value = normalize_transaction_ref(payload.get("transaction_ref"))
        if not value:
            checks.fail("transaction_ref", "Transaction Reference is required", "required")
        elif count_digits(value) < self.config.min_transaction_digits:
            checks.fail(
                "transaction_ref",
                "Transaction reference must have at least "
                f"{self.config.min_transaction_digits} digits",
                "min_digits",
            )
        else:
            checks.ok("transaction_ref", "min_digits")
        return value

    def _check_date(self, checks: _Checks, payload: Mapping[str, Any]) -> str:
        raw = normalize_text(payload.get("date"))
        if not raw:
            checks.fail("date", "Date is required", "required")
            return raw

        parsed = parse_receipt_date(raw)
        if parsed is None:
            checks.fail(
                "date",
                f"Date is not in a recognized format: {raw}",
                "date_format",
            )
            return raw

        if self.date_policy is not None and not self.date_policy(parsed):
            window = getattr(self.date_policy, "describe", None)
            suffix = f" ({window()})" if window else ""
            checks.fail(
                "date", f"Date is outside the accepted range{suffix}", "date_window"
            )
            return raw

        checks.ok("date", "date_format")
        return canonical_date(raw) or raw

    def _check_customer_name(self, checks: _Checks, payload: Mapping[str, Any]) -> str:
        value = normalize_text(payload.get("customer_name"))
        if not value:
            checks.fail("customer_name", "Customer Name is required", "required")
        elif not CUSTOMER_NAME_PATTERN.match(value):
            checks.fail(
                "customer_name", "Customer Name must contain valid text only", "regex"
            )
        else:
            checks.ok("customer_name", "regex")
        return value

    def _check_account_number(self, checks: _Checks, payload: Mapping[str, Any]) -> str:
        value = normalize_account_number(payload.get("account_number"))
        if not value:
            checks.fail("account_number", "Account Number is required", "required")
            return value

        digits = value[1:] if value.startswith("B") else value
        minimum = self.config.min_account_digits
        if not re.fullmatch(rf"\d{{{minimum},}}", digits):
            checks.fail(
                "account_number",
                f"Account number must contain at least {minimum} digits",
                "min_digits",
            )
        else:
            checks.ok("account_number", "min_digits")
        return value

    def _check_required_text(
        self,
        checks: _Checks,
        payload: Mapping[str, Any],
        field_name: str,
        label: str,
    ) -> str:
        value = normalize_text(payload.get(field_name))
        if not value:
            checks.fail(field_name, f"{label} is required", "required")
        else:
            checks.ok(field_name, "required")
        return value

    def _check_bill(self, checks: _Checks, payload: Mapping[str, Any]) -> Decimal | None:
        try:
            amount = parse_amount(payload.get("electricity_bill"))
        except ValueError:
            checks.fail(
                "electricity_bill",
                f"Bill amount must be at least {self.min_bill_label}",
                "min_amount",
            )
            return None

        if amount is None:
            checks.fail("electricity_bill", "Amount (Bill) is required", "required")
        elif amount < self.min_bill:
            checks.fail(
                "electricity_bill",
                f"Bill amount must be at least {self.min_bill_label}",
                "min_amount",
            )
        else:
            checks.ok("electricity_bill", "min_amount")
        return amount

    def _check_optional_amount(
        self,
        checks: _Checks,
        payload: Mapping[str, Any],
        field_name: str,
        label: str,
    ) -> Decimal | None:
        try:
            amount = parse_amount(payload.get(field_name))
        except ValueError:
            checks.fail(field_name, f"{label} must be a valid number", "number")
            return None
        checks.ok(field_name, "number")
        return amount

    def is_below_minimum(self, value: object) -> bool:
        """Whether an extracted bill amount should be flagged to the operator."""
        try:
            amount = parse_amount(value)
        except ValueError:
            return False
        return amount is not None and amount < self.min_bill
