"""Rule-based field extraction for utility-bill receipts.

Each receipt field has an ordered list of independent regex rules. Rules
are tried in priority order and the first one that yields a value wins;
there is no backtracking across fields. Extraction is deterministic and
performs no I/O.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass

from src.utils.config import ExtractionConfig
from src.utils.logger import get_logger

from .normalizer import (
    DIGITISH,
    collapse_whitespace,
    correct_digits,
    format_long_date,
    strip_amount,
    truncate_noisy_digits,
)

logger = get_logger(__name__)

FIELD_ORDER: tuple[str, ...] = (
    "transaction_ref",
    "account_number",
    "customer_name",
    "date",
    "electricity_bill",
    "amount_due",
    "total_sales",
    "company",
)

_MONTH = (
    r"(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?"
    r"|Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)
_LONG_DATE = rf"\b{_MONTH}\.?\s+(\d{{1,2}}),?\s+(\d{{4}})\b"
_SHORT_DATE = r"\b(\d{1,2}/\d{1,2}/\d{4})\b"
_DATE_LABEL = r"Date\s*[:\-]?\s*"
_AMOUNT = r"\s*[:\-]?\s*(?:PHP|Php|P|₱|\$)?\s*(\d[\d,]*(?:\.\d+)?)"
_CUSTOMER_NAME = r"([A-Z][A-Z ,.'\-]*?)"

Builder = Callable[[re.Match], dict[str, str] | None]


@dataclass
class ExtractedField:
    """A field value extracted by a regex rule."""

    field_name: str
    value: str
    start_pos: int
    end_pos: int
    rule_name: str


@dataclass(frozen=True)
class FieldRule:
    """One extraction attempt: a compiled pattern plus a value builder.

    The builder turns a match into field values, or returns ``None`` to
    let the next rule in the list try.
    """

    name: str
    pattern: re.Pattern
    build: Builder

    def apply(self, text: str) -> tuple[dict[str, str], re.Match] | None:
        match = self.pattern.search(text)
        if match is None:
            return None
        values = self.build(match)
        if not values:
            return None
        return values, match


def _transaction_builder(config: ExtractionConfig) -> Builder:
    def build(match: re.Match) -> dict[str, str] | None:
        digits = correct_digits(match.group(1)).replace(".", "")
        digits = truncate_noisy_digits(
            digits, config.truncate_threshold, config.truncate_length
        )
        if len(digits) < config.min_transaction_digits:
            return None
        return {"transaction_ref": digits}

    return build


def _account_with_name(match: re.Match) -> dict[str, str] | None:
    digits = correct_digits(match.group(1)).replace(".", "")
    name = collapse_whitespace(match.group(2)).strip(" ,-")
    values = {"account_number": f"B{digits}"}
    if name:
        values["customer_name"] = name
    return values


def _account_only(match: re.Match) -> dict[str, str] | None:
    digits = correct_digits(match.group(1)).replace(".", "")
    return {"account_number": f"B{digits}"}


def _long_date(match: re.Match) -> dict[str, str] | None:
    return {"date": format_long_date(*match.group(1, 2, 3))}


def _short_date(match: re.Match) -> dict[str, str] | None:
    return {"date": match.group(1)}


def _amount_builder(field_name: str) -> Builder:
    def build(match: re.Match) -> dict[str, str] | None:
        amount = strip_amount(match.group(1))
        return {field_name: amount} if amount else None

    return build


def _company_pattern(company_name: str) -> re.Pattern:
    words = re.findall(r"[A-Za-z0-9&]+", company_name)
    body = r"[\s,.]*".join(re.escape(w) for w in words)
    return re.compile(rf"\b{body}\b\.?", re.IGNORECASE)


def build_rules(config: ExtractionConfig) -> dict[str, list[FieldRule]]:
    """Build the ordered rule table for every field group.

    Args:
        config: Extraction settings (company name, reference thresholds).

    Returns:
        Mapping of rule group name to its rules in priority order.
    """
    run = f"({DIGITISH}{{{config.min_transaction_digits},}})"
    transaction = _transaction_builder(config)
    canonical_company = collapse_whitespace(config.company_name)

    return {
        "transaction_ref": [
            FieldRule(
                "trans_ref_label",
                re.compile(
                    r"(?i:Trans\w*\.?)\s*(?i:Ref\w*\.?)\s*(?i:No\.?|#)?\s*[:\-#]?\s*"
                    + run
                ),
                transaction,
            ),
            FieldRule(
                "reference_number_label",
                re.compile(
                    r"(?i:Ref(?:erence)?\.?\s*(?:No\.?|Number|#))\s*[:\-]?\s*" + run
                ),
                transaction,
            ),
        ],
        "account": [
            FieldRule(
                "account_with_name",
                re.compile(
                    rf"\b[Bb](\d{DIGITISH}*)[ \t]*/[ \t]*{_CUSTOMER_NAME}[ \t]*(?=\r?\n|$)"
                ),
                _account_with_name,
            ),
            FieldRule(
                "account_only",
                re.compile(rf"\b[Bb](\d{DIGITISH}{{11,}})\b"),
                _account_only,
            ),
        ],
        "date": [
            FieldRule(
                "date_long_labeled",
                re.compile(_DATE_LABEL + _LONG_DATE, re.IGNORECASE),
                _long_date,
            ),
            FieldRule("date_long", re.compile(_LONG_DATE, re.IGNORECASE), _long_date),
            FieldRule(
                "date_short_labeled",
                re.compile(_DATE_LABEL + _SHORT_DATE, re.IGNORECASE),
                _short_date,
            ),
            FieldRule("date_short", re.compile(_SHORT_DATE), _short_date),
        ],
        "electricity_bill": [
            FieldRule(
                "electricity_bill_label",
                re.compile(r"(?i:Electricity\s*Bill)" + _AMOUNT),
                _amount_builder("electricity_bill"),
            ),
            FieldRule(
                "bill_amount_label",
                re.compile(r"(?i:Bill\s*Amount)" + _AMOUNT),
                _amount_builder("electricity_bill"),
            ),
        ],
        "amount_due": [
            FieldRule(
                "amount_due_label",
                re.compile(r"(?i:Amount\s*Due)" + _AMOUNT),
                _amount_builder("amount_due"),
            ),
        ],
        "total_sales": [
            FieldRule(
                "total_sales_label",
                re.compile(r"(?i:Total\s*Sales)" + _AMOUNT),
                _amount_builder("total_sales"),
            ),
        ],
        "company": [
            FieldRule(
                "known_cooperative",
                _company_pattern(config.company_name),
                lambda m: {"company": canonical_company},
            ),
            FieldRule(
                "generic_electric_coop",
                re.compile(
                    r"\b([A-Z][A-Z &]*?\bELECTRIC\b[A-Z ,&]*?\bINC)\b\.?",
                    re.IGNORECASE,
                ),
                lambda m: {"company": collapse_whitespace(m.group(0))},
            ),
        ],
    }


class ReceiptExtractor:
    """Regex-based field extractor for utility-bill receipt text.

    Args:
        config: Extraction settings. Defaults are used when ``None``.
    """

    def __init__(self, config: ExtractionConfig | None = None) -> None:
        self.config = config or ExtractionConfig()
        self.rules = build_rules(self.config)

    def extract(self, text: str) -> list[ExtractedField]:
        """Run every rule group against the text.

        Args:
            text: Raw OCR text.

        Returns:
            Extracted fields in a stable order, one entry per field found.
        """
        found: dict[str, ExtractedField] = {}

        for group, rules in self.rules.items():
            for rule in rules:
                outcome = rule.apply(text)
                if outcome is None:
                    continue
                values, match = outcome
                for field_name, value in values.items():
                    found[field_name] = ExtractedField(
                        field_name=field_name,
                        value=value,
                        start_pos=match.start(),
                        end_pos=match.end(),
                        rule_name=rule.name,
                    )
                logger.debug("Rule %s matched for %s", rule.name, group)
                break

        if "electricity_bill" not in found and "amount_due" in found:
            due = found["amount_due"]
            found["electricity_bill"] = ExtractedField(
                field_name="electricity_bill",
                value=due.value,
                start_pos=due.start_pos,
                end_pos=due.end_pos,
                rule_name="amount_due_backfill",
            )

        results = [found[name] for name in FIELD_ORDER if name in found]
        logger.info("Rule extraction found %d fields", len(results))
        return results

    def extract_record(self, text: str) -> dict[str, str]:
        """Extract a partial receipt record as a field-name to value mapping."""
        return {f.field_name: f.value for f in self.extract(text)}
