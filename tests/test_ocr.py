"""Tests for the OCR engine wrapper and the OCR service."""

import io
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import pytesseract
from PIL import Image, UnidentifiedImageError

from src.ocr.service import OcrService
from src.ocr.tesseract_engine import OCRResult, TesseractEngine
from src.submission.errors import OcrFailed, OcrUnavailable
from src.utils.config import OCRConfig


def _image_bytes(width: int, height: int, mode: str = "RGB") -> bytes:
    img = Image.new(mode, (width, height), color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _mock_tesseract_data() -> dict:
    """Create mock pytesseract output data."""
    return {
        "text": ["", "Trans", "Ref", "", "Total"],
        "conf": [-1, 95, 85, -1, 72],
    }


class TestTesseractEngine:
    """Tests for the TesseractEngine class (mocked)."""

    def test_prepare_image_grayscale(self) -> None:
        engine = TesseractEngine()
        array = engine.prepare_image(_image_bytes(300, 100))
        assert array.shape == (100, 300)
        assert array.dtype == np.uint8

    def test_prepare_image_downscales_wide_images(self) -> None:
        engine = TesseractEngine(max_width=2000)
        array = engine.prepare_image(_image_bytes(3000, 1500, mode="L"))
        assert array.shape == (1000, 2000)

    def test_prepare_image_keeps_small_images(self) -> None:
        engine = TesseractEngine(max_width=2000)
        assert engine.prepare_image(_image_bytes(800, 600)).shape == (600, 800)

    def test_prepare_image_rejects_garbage(self) -> None:
        with pytest.raises(UnidentifiedImageError):
            TesseractEngine().prepare_image(b"not an image")

    @patch("src.ocr.tesseract_engine.pytesseract")
    def test_extract_text(self, mock_pytesseract: MagicMock) -> None:
        mock_pytesseract.image_to_string.return_value = "Trans Ref\nTotal"
        mock_pytesseract.image_to_data.return_value = _mock_tesseract_data()
        mock_pytesseract.Output.DICT = "dict"

        engine = TesseractEngine(default_lang="eng", psm=6)
        result = engine.extract_text(np.zeros((100, 200), dtype=np.uint8))

        assert isinstance(result, OCRResult)
        assert result.text == "Trans Ref\nTotal"
        assert result.language == "eng"
        assert result.confidence == pytest.approx(0.84)
        assert (result.width, result.height) == (200, 100)
        _, kwargs = mock_pytesseract.image_to_string.call_args
        assert kwargs["config"] == "--psm 6"

    @patch("src.ocr.tesseract_engine.pytesseract")
    def test_extract_text_no_words(self, mock_pytesseract: MagicMock) -> None:
        mock_pytesseract.image_to_string.return_value = ""
        mock_pytesseract.image_to_data.return_value = {"text": [""], "conf": [-1]}

        result = TesseractEngine().extract_text(np.zeros((10, 10), dtype=np.uint8))
        assert result.confidence == 0.0

    @patch("src.ocr.tesseract_engine.pytesseract")
    def test_recognize_reports_progress(self, mock_pytesseract: MagicMock) -> None:
        mock_pytesseract.image_to_string.return_value = "hello"
        mock_pytesseract.image_to_data.return_value = {"text": ["hello"], "conf": [90]}

        seen: list[float] = []
        result = TesseractEngine().recognize(_image_bytes(50, 20), progress=seen.append)
        assert result.text == "hello"
        assert seen == [0.0, 0.3, 1.0]

    @patch("src.ocr.tesseract_engine.pytesseract")
    def test_custom_tesseract_cmd(self, mock_pytesseract: MagicMock) -> None:
        TesseractEngine(tesseract_cmd="/opt/tesseract/bin/tesseract")
        assert mock_pytesseract.pytesseract.tesseract_cmd == "/opt/tesseract/bin/tesseract"


class TestOcrService:
    """Tests for the OCR service lifecycle."""

    def test_start_without_tesseract(self) -> None:
        service = OcrService(OCRConfig())
        with patch.object(
            TesseractEngine,
            "version",
            side_effect=pytesseract.TesseractNotFoundError(),
        ):
            assert service.start() is False
        assert service.ready is False

    def test_start_and_shutdown(self) -> None:
        service = OcrService(OCRConfig())
        with patch.object(TesseractEngine, "version", return_value="5.3.0"):
            assert service.start() is True
        assert service.ready is True
        service.shutdown()
        assert service.ready is False

    @pytest.mark.asyncio
    async def test_recognize_requires_start(self) -> None:
        with pytest.raises(OcrUnavailable) as exc_info:
            await OcrService().recognize(b"...")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_recognize_runs_engine(self) -> None:
        service = OcrService()
        expected = OCRResult(text="Trans Ref: 1", language="eng", confidence=0.5)
        with patch.object(TesseractEngine, "version", return_value="5.3.0"):
            service.start()
        with patch.object(TesseractEngine, "recognize", return_value=expected) as mock:
            result = await service.recognize(b"image")
        assert result is expected
        mock.assert_called_once_with(b"image", None)

    @pytest.mark.asyncio
    async def test_recognize_wraps_decode_errors(self) -> None:
        service = OcrService()
        with patch.object(TesseractEngine, "version", return_value="5.3.0"):
            service.start()
        with pytest.raises(OcrFailed) as exc_info:
            await service.recognize(b"definitely not an image")
        assert exc_info.value.status_code == 500
