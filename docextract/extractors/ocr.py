"""
OCR Text Extractor

Extracts text from PDFs and images:
- PDFs with an embedded text layer are read with pdfminer
- Scanned PDFs (low text density) are rasterised with pdf2image and OCR'd
- Images are OCR'd directly with Tesseract

Requirements for OCR:
- pytesseract, pdf2image, Pillow
- Tesseract installed on the system
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pdfminer.high_level import extract_text as pdfminer_extract_text
from pdfminer.pdfpage import PDFPage

from docextract.exceptions import TextExtractionError
from docextract.extractors.base import TextExtractionResult, TextExtractor

logger = logging.getLogger(__name__)

# Optional dependencies
try:
    from pdf2image import convert_from_path
    HAS_PDF2IMAGE = True
except ImportError:
    HAS_PDF2IMAGE = False

try:
    import pytesseract
    HAS_TESSERACT = True
except ImportError:
    HAS_TESSERACT = False

try:
    from PIL import Image
    HAS_PIL = True
except ImportError:
    HAS_PIL = False

IMAGE_FORMATS = ['.png', '.jpg', '.jpeg', '.tiff', '.tif', '.bmp', '.gif']


class TesseractTextExtractor(TextExtractor):
    """
    Text extractor backed by pdfminer and Tesseract.

    Config options:
    - text_threshold: Min non-whitespace chars per page to skip OCR (default: 50)
    - dpi: DPI for PDF to image conversion (default: 300)
    - lang: Tesseract language (default: 'eng')
    - force_ocr: Always OCR PDFs even if a text layer exists (default: False)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.text_threshold = config.get('text_threshold', 50)
        self.dpi = config.get('dpi', 300)
        self.lang = config.get('lang', 'eng')
        self.force_ocr = config.get('force_ocr', False)

        self._check_dependencies()

    @property
    def ocr_available(self) -> bool:
        return HAS_TESSERACT and HAS_PIL

    def _check_dependencies(self) -> None:
        missing = []
        if not HAS_PDF2IMAGE:
            missing.append('pdf2image')
        if not HAS_TESSERACT:
            missing.append('pytesseract')
        if not HAS_PIL:
            missing.append('Pillow')

        if missing:
            logger.warning(
                f"OCR dependencies not installed: {', '.join(missing)}. "
                f"Install with: pip install {' '.join(missing)}"
            )

    def supported_formats(self) -> List[str]:
        formats = ['.pdf']
        if self.ocr_available:
            formats.extend(IMAGE_FORMATS)
        return formats

    async def extract(self, file_path: str) -> TextExtractionResult:
        try:
            if file_path.lower().endswith('.pdf'):
                return await self.run_blocking(self._extract_pdf, file_path)
            return await self.run_blocking(self._extract_image, file_path)
        except TextExtractionError:
            raise
        except Exception as e:
            logger.exception(f"Text extraction failed for {file_path}: {e}")
            raise TextExtractionError(f"Text extraction failed for {file_path}: {e}") from e

    def _extract_pdf(self, file_path: str) -> TextExtractionResult:
        existing_text, needs_ocr = self._assess_pdf_text(file_path)

        if not needs_ocr and not self.force_ocr:
            return TextExtractionResult(
                text=existing_text,
                is_scanned=False,
                confidence=1.0,
                metadata={'source': 'embedded_text', 'char_count': len(existing_text)},
            )

        if not (HAS_PDF2IMAGE and self.ocr_available):
            if existing_text.strip():
                return TextExtractionResult(
                    text=existing_text, is_scanned=True, confidence=0.3,
                    metadata={'source': 'embedded_text', 'ocr_unavailable': True},
                )
            raise TextExtractionError("Scanned PDF requires OCR dependencies: pdf2image pytesseract Pillow")

        images = convert_from_path(file_path, dpi=self.dpi)
        pages = []
        for i, image in enumerate(images):
            pages.append(f"--- Page {i + 1} ---\n{pytesseract.image_to_string(image, lang=self.lang)}")
        text = "\n\n".join(pages)

        return TextExtractionResult(
            text=text,
            is_scanned=True,
            confidence=self._assess_ocr_quality(text),
            metadata={'source': 'tesseract_ocr', 'page_count': len(pages), 'dpi': self.dpi},
        )

    def _extract_image(self, file_path: str) -> TextExtractionResult:
        if not self.ocr_available:
            raise TextExtractionError("Image OCR requires pytesseract and Pillow")

        with Image.open(file_path) as image:
            text = pytesseract.image_to_string(image, lang=self.lang)

        return TextExtractionResult(
            text=text,
            is_scanned=True,
            confidence=self._assess_ocr_quality(text),
            metadata={'source': 'tesseract_ocr', 'lang': self.lang},
        )

    def _assess_pdf_text(self, file_path: str) -> Tuple[str, bool]:
        """
        Assess if PDF has embedded text or needs OCR.

        Returns:
            Tuple of (existing_text, needs_ocr)
        """
        existing_text = pdfminer_extract_text(file_path) or ""
        if not existing_text:
            return existing_text, True

        text_chars = len(re.sub(r'\s+', '', existing_text))
        with open(file_path, 'rb') as f:
            page_count = sum(1 for _ in PDFPage.get_pages(f))

        chars_per_page = text_chars / max(page_count, 1)
        return existing_text, chars_per_page < self.text_threshold

    @staticmethod
    def _assess_ocr_quality(text: str) -> float:
        """Heuristic quality score in [0, 1] for OCR output"""
        if not text or not text.strip():
            return 0.0

        score = 1.0
        garbage_patterns = [
            r'[^\x00-\x7F]{5,}',
            r'(.)\1{4,}',
        ]
        for pattern in garbage_patterns:
            if re.search(pattern, text):
                score -= 0.2

        words = text.split()
        if words:
            alpha_words = sum(1 for w in words if re.search(r'[A-Za-z]{2,}', w))
            score -= 0.4 * (1 - alpha_words / len(words))

        return max(0.0, min(1.0, score))
