"""Signature image storage on the shared file area.

Signatures arrive as PNG data URLs and are written under generated
filenames. All mutations are filename-scoped and idempotent-safe: the
directory is created if missing and deleting a file that is already gone
counts as success. Every filesystem call runs in a worker thread with an
explicit timeout so a stalled network share cannot hang a request.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import os
import re
import secrets
import string
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.submission.errors import (
    InvalidSignatureFormat,
    InvalidSignatureName,
    SignatureRequired,
    SignatureSaveFailed,
    StorageConfigError,
)
from src.utils.config import SignatureConfig
from src.utils.logger import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "signature_"
SIGNATURE_SUFFIX = ".png"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"

_DATA_URL = re.compile(r"^data:image/png;base64,([A-Za-z0-9+/]+={0,2})$")
_IPV4 = r"\d{1,3}(?:\.\d{1,3}){3}"
_LOCAL_IP_PATH = re.compile(rf"^[A-Za-z]:\\{_IPV4}(?:\\|$)")
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class SavedSignature:
    """Outcome of a successful signature write."""

    name: str
    path: Path
    duration_ms: int


@dataclass
class CleanupStats:
    """Counters reported by an orphan sweep."""

    scanned: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: int = 0


def _looks_windows(value: str) -> bool:
    return (
        "\\" in value
        or re.match(r"^[A-Za-z]:", value) is not None
        or re.match(rf"^/{{1,2}}{_IPV4}(?:/|$)", value) is not None
    )


def resolve_signature_dir(raw: str | None) -> str:
    """Normalize a configured signature directory.

    Surrounding quotes are removed. Windows-style values get forward
    slashes converted, a single leading backslash before an IP promoted
    to a UNC prefix, and duplicate separators collapsed. POSIX paths are
    returned unchanged.

    Raises:
        StorageConfigError: If the value is empty.
    """
    value = str(raw or "").strip()
    value = re.sub(r"^['\"]|['\"]$", "", value).strip()
    if not value:
        raise StorageConfigError("Signature directory is not configured")
    if not _looks_windows(value):
        return value

    value = value.replace("/", "\\")
    if re.match(rf"^\\{_IPV4}(?:\\|$)", value):
        value = "\\" + value
    prefix = "\\\\" if value.startswith("\\\\") else ""
    return prefix + re.sub(r"\\{2,}", r"\\", value[len(prefix):])


def is_local_ip_path(value: str) -> bool:
    """Whether a path is a local drive mapping of a raw IP, e.g. ``C:\\192.168.0.101``."""
    return _LOCAL_IP_PATH.match(value) is not None


def validate_signature_dir(value: str, allowed: Iterable[str] = ()) -> None:
    """Refuse directories that point at the wrong place.

    Args:
        value: Resolved signature directory.
        allowed: Optional allow-list; when non-empty, ``value`` must match
            one entry (case-insensitive, trailing separators ignored).

    Raises:
        StorageConfigError: On a local-IP path or a directory outside the
            allow-list.
    """
    if is_local_ip_path(value):
        raise StorageConfigError(
            f"Invalid signature directory resolved to local path: {value}. "
            "Use a UNC share (\\\\host\\share) or a mapped drive."
        )

    def canon(v: str) -> str:
        return v.rstrip("\\/").upper() or v.upper()

    allowed_set = {canon(resolve_signature_dir(a)) for a in allowed}
    if allowed_set and canon(value) not in allowed_set:
        raise StorageConfigError(
            f"Signature directory {value} is not one of the allowed locations: "
            + ", ".join(sorted(allowed_set))
        )


def is_safe_name(name: str | None) -> bool:
    """Reject empty and path-traversal-shaped filenames."""
    value = str(name or "")
    if not value:
        return False
    return ".." not in value and "/" not in value and "\\" not in value


def is_sweepable(name: str) -> bool:
    """Whether a file in the shared folder was generated by this service."""
    return (
        is_safe_name(name)
        and name.startswith(SIGNATURE_PREFIX)
        and name.lower().endswith(SIGNATURE_SUFFIX)
    )


class SignatureStore:
    """Reads and writes signature PNGs in the shared directory.

    Args:
        directory: Configured shared directory (UNC, mapped drive or mount).
        io_timeout: Bound on each filesystem call, in seconds.
        write_attempts: Total write attempts before giving up.
        allowed_directories: Optional allow-list for ``directory``.

    Raises:
        StorageConfigError: If the directory is misconfigured.
    """

    def __init__(
        self,
        directory: str | Path,
        io_timeout: float = 10.0,
        write_attempts: int = 2,
        allowed_directories: Iterable[str] = (),
    ) -> None:
        resolved = resolve_signature_dir(str(directory))
        validate_signature_dir(resolved, allowed_directories)
        self.location = resolved
        self.directory = Path(resolved)
        self.io_timeout = io_timeout
        self.write_attempts = max(1, write_attempts)

    @classmethod
    def from_config(cls, config: SignatureConfig) -> SignatureStore:
        return cls(
            config.directory,
            io_timeout=config.io_timeout_seconds,
            write_attempts=config.write_attempts,
            allowed_directories=config.allowed_directories,
        )

    @staticmethod
    def decode(data_url: str | None) -> bytes:
        """Decode a PNG data URL into raw image bytes.

        Raises:
            SignatureRequired: If no payload was given.
            InvalidSignatureFormat: If the payload is not a base64 PNG data URL.
        """
        if not data_url:
            raise SignatureRequired(
                details=["No signature payload was received by the server."]
            )
        match = _DATA_URL.match(str(data_url))
        if match is None:
            raise InvalidSignatureFormat(
                details=["Signature must be a PNG data URL (data:image/png;base64,...)"]
            )
        try:
            data = base64.b64decode(match.group(1), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidSignatureFormat(details=["Signature is not valid base64"]) from exc
        if not data.startswith(PNG_MAGIC):
            raise InvalidSignatureFormat(details=["Signature payload is not a PNG image"])
        return data

    @staticmethod
    def generate_name() -> str:
        suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
        return f"{SIGNATURE_PREFIX}{int(time.time() * 1000)}_{suffix}{SIGNATURE_SUFFIX}"

    def path_for(self, name: str) -> Path:
        if not is_safe_name(name):
            raise InvalidSignatureName()
        return self.directory / name

    async def _run_io(self, func: Callable[..., Any], *args: Any, label: str) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), self.io_timeout)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(
                f"{label} timed out after {int(self.io_timeout * 1000)}ms"
            ) from exc

    def _ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def _write_file(self, path: Path, data: bytes) -> None:
        path.write_bytes(data)

    def _remove_file(self, path: Path) -> None:
        path.unlink()

    def _list_dir(self) -> list[str]:
        return os.listdir(self.directory)

    async def save(self, data_url: str | None) -> SavedSignature:
        """Persist a signature and return its generated filename.

        The write is retried once; when every attempt fails the last
        I/O error is surfaced in the exception details.

        Raises:
            SignatureRequired: If no payload was given.
            InvalidSignatureFormat: If the payload is malformed.
            SignatureSaveFailed: If the directory or file could not be written.
        """
        started = time.monotonic()
        data = self.decode(data_url)

        try:
            await self._run_io(self._ensure_dir, label="Signature directory check")
        except OSError as exc:
            logger.warning("Signature directory unavailable: %s", exc)
            raise SignatureSaveFailed(details=[str(exc)]) from exc

        name = self.generate_name()
        path = self.directory / name
        last_error: OSError | None = None

        for attempt in range(1, self.write_attempts + 1):
            try:
                await self._run_io(
                    self._write_file, path, data, label=f"Signature write attempt {attempt}"
                )
            except OSError as exc:
                last_error = exc
                logger.warning("Signature write attempt %d failed: %s", attempt, exc)
                continue
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.info("Signature saved to %s (in %dms)", path, duration_ms)
            return SavedSignature(name=name, path=path, duration_ms=duration_ms)

        raise SignatureSaveFailed(details=[str(last_error or "Unknown signature write error")])

    async def exists(self, name: str) -> bool:
        return await self._run_io(self.path_for(name).is_file, label="Signature lookup")

    async def delete(self, name: str) -> bool:
        """Delete a signature file.

        Returns:
            ``True`` if a file was removed, ``False`` if it was already gone.
        """
        path = self.path_for(name)
        try:
            await self._run_io(self._remove_file, path, label="Signature delete")
        except FileNotFoundError:
            return False
        logger.info("Deleted signature file %s", name)
        return True

    async def probe_write(self) -> str:
        """Write and remove a probe file to confirm the share is writable."""
        await self._run_io(self._ensure_dir, label="Signature directory check")
        path = self.directory / f"{SIGNATURE_PREFIX}test_{int(time.time() * 1000)}.txt"
        await self._run_io(path.write_text, "test", label="Signature probe write")
        await self._run_io(self._remove_file, path, label="Signature probe delete")
        return str(path)

    async def sweep(self, referenced: set[str]) -> CleanupStats:
        """Delete generated signature files that no record references.

        Args:
            referenced: Filenames referenced by records, read just before
                the sweep.

        Returns:
            Counters for scanned, deleted, skipped and failed files. An
            unreadable directory is reported as one error.
        """
        stats = CleanupStats()
        try:
            names = await self._run_io(self._list_dir, label="Signature directory listing")
        except OSError as exc:
            logger.warning("Cannot read signature directory: %s", exc)
            stats.errors += 1
            return stats

        for name in sorted(names):
            if not is_sweepable(name):
                stats.skipped += 1
                continue
            stats.scanned += 1
            if name in referenced:
                continue
            try:
                if await self.delete(name):
                    stats.deleted += 1
            except OSError as exc:
                stats.errors += 1
                logger.error("Failed to delete orphan signature %s: %s", name, exc)

        return stats
