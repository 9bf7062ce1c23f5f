from docextract.extractors.base import CompositeTextExtractor, TextExtractionResult, TextExtractor
from docextract.extractors.ocr import TesseractTextExtractor
from docextract.extractors.plain_text import PlainTextExtractor


def default_text_extractor() -> CompositeTextExtractor:
    """Plain text files first, then PDF/image OCR"""
    return CompositeTextExtractor([PlainTextExtractor(), TesseractTextExtractor()])


__all__ = [
    'CompositeTextExtractor', 'PlainTextExtractor', 'TesseractTextExtractor',
    'TextExtractionResult', 'TextExtractor', 'default_text_extractor',
]
