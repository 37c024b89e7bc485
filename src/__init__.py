"""Receipt OCR System.

Scans electricity-bill payment receipts with Tesseract OCR, extracts
and validates their fields, and stores each record with the operator's
signature under per-account locking and duplicate protection.
"""

__version__ = "1.0.0"
