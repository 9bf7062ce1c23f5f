import logging
from pathlib import Path
from typing import List

from docextract.exceptions import TextExtractionError
from docextract.extractors.base import TextExtractionResult, TextExtractor

logger = logging.getLogger(__name__)


class PlainTextExtractor(TextExtractor):
    """Reads already-digitised text files"""

    def __init__(self, encodings: List[str] = None):
        self.encodings = encodings or ['utf-8', 'latin-1']

    def supported_formats(self) -> List[str]:
        return ['.txt']

    def _read(self, file_path: str) -> str:
        raw = Path(file_path).read_bytes()
        for encoding in self.encodings:
            try:
                return raw.decode(encoding)
            except UnicodeDecodeError:
                continue
        raise TextExtractionError(f"Could not decode {file_path} with {', '.join(self.encodings)}")

    async def extract(self, file_path: str) -> TextExtractionResult:
        try:
            text = await self.run_blocking(self._read, file_path)
        except OSError as e:
            raise TextExtractionError(f"Failed to read {file_path}: {e}") from e
        return TextExtractionResult(text=text, is_scanned=False, confidence=1.0,
                                    metadata={'source': 'plain_text'})
