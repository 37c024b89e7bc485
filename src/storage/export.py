"""CSV export of stored receipt records."""

import csv
from collections.abc import Iterable, Mapping
from typing import IO

EXPORT_COLUMNS = [
    "id",
    "transaction_ref",
    "account_number",
    "customer_name",
    "scanner_name",
    "company",
    "date",
    "electricity_bill",
    "amount_due",
    "total_sales",
    "signature_name",
    "created_at",
]


def write_records_csv(records: Iterable[Mapping[str, object]], stream: IO[str]) -> int:
    """Write records to an open text stream as CSV.

    Args:
        records: Record dictionaries keyed by column name.
        stream: Destination opened with ``newline=""``.

    Returns:
        Number of data rows written.
    """
    writer = csv.DictWriter(stream, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    count = 0
    for record in records:
        writer.writerow({k: "" if record.get(k) is None else record.get(k) for k in EXPORT_COLUMNS})
        count += 1
    return count
