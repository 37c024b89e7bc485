"""Tesseract OCR engine wrapper for receipt photos.

Prepares uploaded images (EXIF orientation, grayscale, bounded width)
and runs recognition, returning the raw text with an average word
confidence.
"""

import io
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
import pytesseract
from PIL import Image, ImageOps

from src.utils.logger import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[float], None]


@dataclass
class OCRResult:
    """Recognition output for one receipt image."""

    text: str
    language: str
    confidence: float
    width: int = 0
    height: int = 0


class TesseractEngine:
    """Wrapper around Tesseract OCR for receipt text recognition.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        default_lang: Default OCR language code.
        psm: Tesseract page segmentation mode.
        max_width: Images wider than this are downscaled before OCR.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        default_lang: str = "eng",
        psm: int = 3,
        max_width: int = 2000,
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.default_lang = default_lang
        self.psm = psm
        self.max_width = max_width

    def version(self) -> str:
        """Return the installed Tesseract version; raises if it is missing."""
        return str(pytesseract.get_tesseract_version())

    def prepare_image(self, image_bytes: bytes) -> np.ndarray:
        """Decode and normalize an uploaded image.

        Args:
            image_bytes: Raw bytes of a JPEG/PNG upload.

        Returns:
            Grayscale image as a numpy array, at most ``max_width`` wide.
        """
        with Image.open(io.BytesIO(image_bytes)) as img:
            img = ImageOps.exif_transpose(img)
            gray = img.convert("L")

        if gray.width > self.max_width:
            height = max(1, round(gray.height * self.max_width / gray.width))
            gray = gray.resize((self.max_width, height), Image.LANCZOS)
            logger.debug("Image downscaled to %dx%d", gray.width, gray.height)

        return np.array(gray)

    def extract_text(
        self,
        image: np.ndarray,
        lang: str | None = None,
        psm: int | None = None,
    ) -> OCRResult:
        """Extract text from a prepared image.

        Args:
            image: Input image as a numpy array.
            lang: OCR language code. Defaults to the engine default.
            psm: Page segmentation mode. Defaults to the engine setting.

        Returns:
            OCRResult with the full text and average word confidence.
        """
        lang = lang or self.default_lang
        config = f"--psm {psm if psm is not None else self.psm}"

        pil_image = Image.fromarray(image)
        text = pytesseract.image_to_string(pil_image, lang=lang, config=config)
        data = pytesseract.image_to_data(
            pil_image,
            lang=lang,
            config=config,
            output_type=pytesseract.Output.DICT,
        )

        confs = [
            float(conf)
            for conf, word in zip(data["conf"], data["text"])
            if float(conf) > 0 and str(word).strip()
        ]
        avg_conf = (sum(confs) / len(confs) / 100.0) if confs else 0.0

        logger.info(
            "OCR extracted %d words with average confidence %.2f",
            len(confs),
            avg_conf,
        )
        return OCRResult(
            text=text,
            language=lang,
            confidence=avg_conf,
            width=int(image.shape[1]),
            height=int(image.shape[0]),
        )

    def recognize(
        self, image_bytes: bytes, progress: ProgressCallback | None = None
    ) -> OCRResult:
        """Prepare an uploaded image and recognize its text."""

        def report(fraction: float) -> None:
            logger.debug("OCR progress: %.0f%%", fraction * 100)
            if progress is not None:
                progress(fraction)

        report(0.0)
        image = self.prepare_image(image_bytes)
        report(0.3)
        result = self.extract_text(image)
        report(1.0)
        return result
