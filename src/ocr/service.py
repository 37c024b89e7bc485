"""Process-wide OCR service.

One engine instance is started with the application and shared by all
requests. Recognition runs in a worker thread, one image at a time.
"""

import asyncio

import pytesseract
from PIL import UnidentifiedImageError

from src.submission.errors import OcrFailed, OcrUnavailable
from src.utils.config import OCRConfig
from src.utils.logger import get_logger

from .tesseract_engine import OCRResult, ProgressCallback, TesseractEngine

logger = get_logger(__name__)


class OcrService:
    """Lifecycle and concurrency wrapper around :class:`TesseractEngine`.

    Args:
        config: OCR engine settings.
    """

    def __init__(self, config: OCRConfig | None = None) -> None:
        self.config = config or OCRConfig()
        self._engine: TesseractEngine | None = None
        self._lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self._engine is not None

    def start(self) -> bool:
        """Initialize the engine; returns whether it is usable.

        A missing Tesseract binary leaves the service not ready instead of
        failing startup, so record management keeps working.
        """
        engine = TesseractEngine(
            tesseract_cmd=self.config.tesseract_cmd,
            default_lang=self.config.default_lang,
            psm=self.config.psm,
            max_width=self.config.max_width,
        )
        try:
            version = engine.version()
        except (pytesseract.TesseractNotFoundError, OSError) as exc:
            logger.error("Failed to initialize OCR engine: %s", exc)
            self._engine = None
            return False

        self._engine = engine
        logger.info("OCR engine ready (tesseract %s)", version)
        return True

    def shutdown(self) -> None:
        if self._engine is not None:
            logger.info("OCR engine stopped")
        self._engine = None

    async def recognize(
        self, image_bytes: bytes, progress: ProgressCallback | None = None
    ) -> OCRResult:
        """Recognize the text of an uploaded image.

        Raises:
            OcrUnavailable: If the engine is not started.
            OcrFailed: If the image cannot be decoded or recognition fails.
        """
        engine = self._engine
        if engine is None:
            raise OcrUnavailable()

        async with self._lock:
            try:
                return await asyncio.to_thread(engine.recognize, image_bytes, progress)
            except (UnidentifiedImageError, pytesseract.TesseractError, OSError) as exc:
                logger.error("OCR processing error: %s", exc)
                raise OcrFailed(details=[str(exc)]) from exc
