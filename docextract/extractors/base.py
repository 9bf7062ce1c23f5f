"""
Text extraction port.

The engine depends only on this contract; OCR internals live in the
concrete adapters.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from docextract.exceptions import UnsupportedFormatError

logger = logging.getLogger(__name__)


@dataclass
class TextExtractionResult:
    """Raw text plus a best-effort scanned/confidence hint"""
    text: str
    is_scanned: bool = False
    confidence: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class TextExtractor(ABC):
    """Base class for text extraction adapters"""

    @abstractmethod
    def supported_formats(self) -> List[str]:
        """Lower-case file extensions including the dot, e.g. ``.pdf``"""

    @abstractmethod
    async def extract(self, file_path: str) -> TextExtractionResult:
        """Extract text from a file

        Raises:
            TextExtractionError: the file cannot be read or decoded
        """

    async def extract_text(self, file_path: str) -> str:
        result = await self.extract(file_path)
        return result.text

    def is_format_supported(self, file_name: str) -> bool:
        return Path(file_name).suffix.lower() in self.supported_formats()

    @staticmethod
    async def run_blocking(func, *args):
        """Run a blocking extraction call off the event loop"""
        return await asyncio.to_thread(func, *args)


class CompositeTextExtractor(TextExtractor):
    """Routes each file to the first adapter that supports its extension"""

    def __init__(self, extractors: List[TextExtractor]):
        self.extractors = list(extractors)

    def supported_formats(self) -> List[str]:
        formats: List[str] = []
        for extractor in self.extractors:
            for ext in extractor.supported_formats():
                if ext not in formats:
                    formats.append(ext)
        return formats

    def _select(self, file_path: str) -> TextExtractor:
        for extractor in self.extractors:
            if extractor.is_format_supported(file_path):
                return extractor
        raise UnsupportedFormatError(f"Unsupported file format: {Path(file_path).suffix or file_path}")

    async def extract(self, file_path: str) -> TextExtractionResult:
        extractor = self._select(file_path)
        logger.debug(f"Extracting text from {file_path} with {type(extractor).__name__}")
        return await extractor.extract(file_path)
