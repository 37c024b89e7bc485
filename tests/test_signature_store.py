"""Tests for signature file storage and the orphan sweep."""

import base64
import time
from pathlib import Path

import pytest

from conftest import make_data_url, make_png_bytes
from src.storage.signature_store import (
    PNG_MAGIC,
    SignatureStore,
    is_local_ip_path,
    is_safe_name,
    is_sweepable,
    resolve_signature_dir,
    validate_signature_dir,
)
from src.submission.errors import (
    ErrorCode,
    InvalidSignatureFormat,
    InvalidSignatureName,
    SignatureRequired,
    SignatureSaveFailed,
    StorageConfigError,
)


class TestDirectoryPolicy:
    """Tests for signature directory normalization and rejection."""

    def test_posix_path_unchanged(self) -> None:
        assert resolve_signature_dir("/mnt/share/signatures") == "/mnt/share/signatures"

    def test_quotes_stripped(self) -> None:
        assert resolve_signature_dir('"/srv/sigs"') == "/srv/sigs"

    def test_unc_forward_slashes(self) -> None:
        assert (
            resolve_signature_dir("//192.168.0.101/share/signatures")
            == r"\\192.168.0.101\share\signatures"
        )

    def test_single_backslash_promoted_to_unc(self) -> None:
        assert resolve_signature_dir(r"\192.168.0.101\share") == r"\\192.168.0.101\share"

    def test_duplicate_separators_collapsed(self) -> None:
        assert resolve_signature_dir(r"D:\\shared\\\sigs") == r"D:\shared\sigs"

    def test_empty_rejected(self) -> None:
        with pytest.raises(StorageConfigError):
            resolve_signature_dir("  ")

    def test_local_ip_path_detected(self) -> None:
        assert is_local_ip_path(r"C:\192.168.0.101\signatures")
        assert not is_local_ip_path(r"\\192.168.0.101\signatures")
        assert not is_local_ip_path(r"Z:\signatures")

    def test_local_ip_path_is_fatal(self) -> None:
        with pytest.raises(StorageConfigError, match="local path"):
            SignatureStore(r"C:\192.168.0.101\signatures")

    def test_allow_list(self) -> None:
        validate_signature_dir(r"\\HOST\Share", [r"\\host\share\\"])
        with pytest.raises(StorageConfigError, match="allowed"):
            validate_signature_dir(r"\\other\share", [r"\\host\share"])


class TestNames:
    """Tests for filename safety rules."""

    @pytest.mark.parametrize("name", ["", None, "../x.png", "a/b.png", r"a\b.png", ".."])
    def test_unsafe(self, name: object) -> None:
        assert not is_safe_name(name)

    def test_sweepable_only_generated_pngs(self) -> None:
        assert is_sweepable("signature_1700000000000_ab12cd.png")
        assert not is_sweepable("notes.png")
        assert not is_sweepable("signature_test_1.txt")

    def test_generated_name_shape(self) -> None:
        name = SignatureStore.generate_name()
        assert name.startswith("signature_")
        assert name.endswith(".png")
        _, millis, suffix = name[: -len(".png")].split("_")
        assert abs(int(millis) - int(time.time() * 1000)) < 60_000
        assert len(suffix) == 6 and suffix.isalnum()

    def test_path_for_rejects_traversal(self, signature_dir: Path) -> None:
        store = SignatureStore(signature_dir)
        with pytest.raises(InvalidSignatureName) as exc_info:
            store.path_for("../etc/passwd")
        assert exc_info.value.code == ErrorCode.INVALID_FILENAME


class TestDecode:
    """Tests for data URL decoding."""

    def test_valid_png(self) -> None:
        assert SignatureStore.decode(make_data_url()).startswith(PNG_MAGIC)

    @pytest.mark.parametrize("value", [None, ""])
    def test_missing(self, value: object) -> None:
        with pytest.raises(SignatureRequired):
            SignatureStore.decode(value)

    @pytest.mark.parametrize(
        "value",
        [
            "not a data url",
            "data:image/jpeg;base64,AAAA",
            "data:image/png;base64,!!!!",
            "data:image/png;base64," + base64.b64encode(b"plain text").decode(),
        ],
    )
    def test_malformed(self, value: str) -> None:
        with pytest.raises(InvalidSignatureFormat):
            SignatureStore.decode(value)


class TestSignatureStore:
    """Tests for saving, deleting and sweeping signature files."""

    @pytest.mark.asyncio
    async def test_save_creates_directory_and_file(self, signature_dir: Path) -> None:
        store = SignatureStore(signature_dir)
        saved = await store.save(make_data_url())
        assert saved.path.parent == signature_dir
        assert saved.path.read_bytes() == make_png_bytes()
        assert saved.duration_ms >= 0
        assert await store.exists(saved.name)

    @pytest.mark.asyncio
    async def test_save_retries_once(self, signature_dir: Path) -> None:
        store = SignatureStore(signature_dir, write_attempts=2)
        calls: list[Path] = []
        original = store._write_file

        def flaky(path: Path, data: bytes) -> None:
            calls.append(path)
            if len(calls) == 1:
                raise OSError("share hiccup")
            original(path, data)

        store._write_file = flaky
        saved = await store.save(make_data_url())
        assert len(calls) == 2
        assert saved.path.exists()

    @pytest.mark.asyncio
    async def test_save_failure_reports_last_error(self, signature_dir: Path) -> None:
        store = SignatureStore(signature_dir, write_attempts=2)

        def broken(path: Path, data: bytes) -> None:
            raise PermissionError("access denied")

        store._write_file = broken
        with pytest.raises(SignatureSaveFailed) as exc_info:
            await store.save(make_data_url())
        assert exc_info.value.status_code == 503
        assert exc_info.value.details == ["access denied"]
        assert list(signature_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_save_times_out(self, signature_dir: Path) -> None:
        store = SignatureStore(signature_dir, io_timeout=0.05, write_attempts=1)

        def stalled(path: Path, data: bytes) -> None:
            time.sleep(0.3)

        store._write_file = stalled
        with pytest.raises(SignatureSaveFailed) as exc_info:
            await store.save(make_data_url())
        assert "timed out" in exc_info.value.details[0]

    @pytest.mark.asyncio
    async def test_save_rejects_bad_payload_before_io(self, signature_dir: Path) -> None:
        store = SignatureStore(signature_dir)
        with pytest.raises(InvalidSignatureFormat):
            await store.save("data:image/png;base64,xyz")
        assert not signature_dir.exists()

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, signature_dir: Path) -> None:
        store = SignatureStore(signature_dir)
        saved = await store.save(make_data_url())
        assert await store.delete(saved.name) is True
        assert await store.delete(saved.name) is False
        assert not await store.exists(saved.name)

    @pytest.mark.asyncio
    async def test_probe_write_leaves_nothing(self, signature_dir: Path) -> None:
        store = SignatureStore(signature_dir)
        test_file = await store.probe_write()
        assert test_file.startswith(str(signature_dir))
        assert list(signature_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_sweep_deletes_only_unreferenced(self, signature_dir: Path) -> None:
        store = SignatureStore(signature_dir)
        kept = await store.save(make_data_url())
        orphan = await store.save(make_data_url())
        (signature_dir / "readme.txt").write_text("operator notes")

        stats = await store.sweep({kept.name})
        assert (stats.scanned, stats.deleted, stats.skipped, stats.errors) == (2, 1, 1, 0)
        assert kept.path.exists()
        assert not orphan.path.exists()
        assert (signature_dir / "readme.txt").exists()

        again = await store.sweep({kept.name})
        assert (again.scanned, again.deleted) == (1, 0)

    @pytest.mark.asyncio
    async def test_sweep_missing_directory(self, tmp_path: Path) -> None:
        store = SignatureStore(tmp_path / "absent")
        stats = await store.sweep(set())
        assert stats.errors == 1
        assert stats.scanned == 0
