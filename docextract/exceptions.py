"""
Exception hierarchy for DocExtract.
"""


class DocExtractError(Exception):
    """Base class for all DocExtract errors"""


class TextExtractionError(DocExtractError):
    """Raised when a text extractor cannot read a file"""


class UnsupportedFormatError(TextExtractionError):
    """Raised when no text extractor supports the file extension"""


class DocumentStateError(DocExtractError):
    """Raised on an illegal document status transition"""


class PatternLearningError(DocExtractError):
    """Raised when a pattern cannot be stored or looked up"""


class PatternImportError(PatternLearningError):
    """Raised when a pattern export payload cannot be parsed"""


class RuleEngineError(DocExtractError):
    """Raised for invalid rule definitions or unknown rule ids"""
