"""
DocExtract - Adaptive Document Field Extraction

Turns OCR text from business documents (utility bills, invoices, receipts,
statements) into confidence-scored fields, learns supplier-specific patterns
from user corrections, and maps the fields onto template locations with
condition-gated rules.

Basic usage:
    import asyncio
    from docextract import Database, DocumentProcessingPipeline

    db = Database()
    db.create_tables()
    pipeline = DocumentProcessingPipeline.from_database(db)

    document = asyncio.run(pipeline.process_document('path/to/bill.pdf'))
    for field in document.fields:
        print(field.field_name, field.value, field.confidence)

    # Teach the system the right value
    pipeline.apply_user_correction(document, 'AccountNumber', '1234567890123')
"""

from docextract.config.docextract_config import DocExtractConfig
from docextract.db.connection import Database
from docextract.events import Event, EventBus, EventType
from docextract.learning import PatternLearner, PatternStore
from docextract.processors.classifier import DocumentClassifier
from docextract.processors.field_extractor import FieldExtractionEngine
from docextract.processors.pipeline import BatchProgress, DocumentProcessingPipeline
from docextract.processors.validator import ValidationEngine
from docextract.rules import RuleEngine

__all__ = [
    'DocExtractConfig', 'Database', 'Event', 'EventBus', 'EventType',
    'PatternLearner', 'PatternStore', 'DocumentClassifier', 'FieldExtractionEngine',
    'BatchProgress', 'DocumentProcessingPipeline', 'ValidationEngine', 'RuleEngine',
]

__version__ = '0.1.0'
