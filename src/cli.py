"""Command-line interface for receipt extraction and record maintenance.

Provides subcommands to extract fields from a single receipt, export the
stored records to CSV and sweep orphaned signature files.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from src.extraction.rule_extractor import ReceiptExtractor
from src.ocr.tesseract_engine import TesseractEngine
from src.storage.database import Database
from src.storage.export import write_records_csv
from src.storage.locks import build_lock_manager
from src.storage.record_store import RecordStore
from src.storage.signature_store import SignatureStore
from src.submission.errors import StorageConfigError
from src.submission.orchestrator import SubmissionService
from src.utils.config import AppConfig, load_config
from src.utils.logger import get_logger, setup_logging
from src.validation.record_validator import RecordValidator

logger = get_logger(__name__)

_TEXT_EXTENSIONS = (".txt",)


def extract_single(file_path: Path, config: AppConfig | None = None) -> dict[str, object]:
    """Extract receipt fields from an image or an OCR text dump.

    Args:
        file_path: Receipt photo, or a ``.txt`` file of recognized text.
        config: Application configuration.

    Returns:
        Dictionary with filename, fields, warnings and raw_text.
    """
    config = config or load_config()

    if file_path.suffix.lower() in _TEXT_EXTENSIONS:
        text = file_path.read_text(encoding="utf-8")
    else:
        engine = TesseractEngine(
            tesseract_cmd=config.ocr.tesseract_cmd,
            default_lang=config.ocr.default_lang,
            psm=config.ocr.psm,
            max_width=config.ocr.max_width,
        )
        text = engine.recognize(file_path.read_bytes()).text

    fields = ReceiptExtractor(config.extraction).extract_record(text)
    validator = RecordValidator(config.validation)

    warnings: list[str] = []
    bill = fields.get("electricity_bill")
    if bill and validator.is_below_minimum(bill):
        warnings.append(f"Bill amount {bill} is below the minimum of {validator.min_bill_label}")

    return {
        "filename": file_path.name,
        "fields": fields,
        "warnings": warnings,
        "raw_text": text,
    }


def _build_service(config: AppConfig, database: Database) -> SubmissionService:
    return SubmissionService(
        database.session_factory,
        build_lock_manager(config.locks, database.engine),
        SignatureStore.from_config(config.signatures),
        RecordValidator(config.validation),
    )


async def export_records(
    output_csv: Path,
    config: AppConfig | None = None,
    search: str | None = None,
    limit: int = 1_000_000,
) -> int:
    """Write stored records to a CSV file.

    Returns:
        Number of records exported.
    """
    config = config or load_config()
    database = Database(config.database)
    try:
        await database.init()
        async with database.session_factory() as session:
            rows = await RecordStore(session).list_records(limit, search)
    finally:
        await database.close()

    output_csv.parent.mkdir(parents=True, exist_ok=True)
    with open(output_csv, "w", newline="") as f:
        count = write_records_csv([r.to_dict() for r in rows], f)
    logger.info("Exported %d records to %s", count, output_csv)
    return count


async def cleanup_signatures(config: AppConfig | None = None) -> dict[str, int]:
    """Run one orphan-signature sweep and return its counters."""
    config = config or load_config()
    database = Database(config.database)
    try:
        await database.init()
        stats = await _build_service(config, database).cleanup_orphans()
    finally:
        await database.close()
    return {
        "scanned": stats.scanned,
        "deleted": stats.deleted,
        "skipped": stats.skipped,
        "errors": stats.errors,
    }


def _print_summary(title: str, summary: dict[str, int]) -> None:
    print(f"\n{'=' * 50}")
    print(title)
    print(f"{'=' * 50}")
    for key, value in summary.items():
        print(f"{key.capitalize() + ':':<12}{value}")


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Receipt OCR tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-c", "--config", type=Path, help="Configuration YAML file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    single_parser = subparsers.add_parser("extract", help="Extract fields from one receipt")
    single_parser.add_argument("file", type=Path, help="Receipt image or OCR text file")
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    export_parser = subparsers.add_parser("export", help="Export stored records to CSV")
    export_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("records.csv"),
        help="Output CSV file (default: records.csv)",
    )
    export_parser.add_argument("-s", "--search", help="Only records matching this text")

    subparsers.add_parser("cleanup", help="Delete unreferenced signature files")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    config = load_config(args.config)
    setup_logging(config.log_level, stream=sys.stderr)

    try:
        if args.command == "extract":
            if not args.file.exists():
                print(f"Error: {args.file} does not exist", file=sys.stderr)
                sys.exit(1)
            result = extract_single(args.file, config)
            output_str = json.dumps(result, indent=2)
            if args.output:
                args.output.parent.mkdir(parents=True, exist_ok=True)
                args.output.write_text(output_str)
                print(f"Output written to {args.output}")
            else:
                print(output_str)
        elif args.command == "export":
            count = asyncio.run(export_records(args.output, config, args.search))
            _print_summary("Export Complete", {"records": count})
            print(f"Output:     {args.output}")
        elif args.command == "cleanup":
            _print_summary("Signature Cleanup Complete", asyncio.run(cleanup_signatures(config)))
    except StorageConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
