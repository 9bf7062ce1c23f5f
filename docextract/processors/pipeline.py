"""
Document Processing Pipeline

End-to-end processing of a single document:
validate file -> OCR -> classify -> extract -> validate fields -> map rules -> persist

Hard failures (missing file, unsupported format, empty OCR text, any
unhandled error) move the document to Failed with an error message and no
fields. Everything else completes, with review reasons attached when the
result looks doubtful.
"""

import inspect
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from docextract.config.docextract_config import DocExtractConfig
from docextract.db.connection import Database
from docextract.db.repository import (
    DocumentRepository,
    PatternRepository,
    PatternSampleRepository,
    RuleRepository,
    TemplateRepository,
)
from docextract.events import EventBus, EventType
from docextract.exceptions import DocExtractError, TextExtractionError, UnsupportedFormatError
from docextract.extractors import TextExtractor, default_text_extractor
from docextract.learning.learner import PatternLearner
from docextract.learning.pattern_store import PatternStore
from docextract.models.document import (
    DocumentType,
    ExtractedDocument,
    ExtractedField,
    ExtractionSource,
    ProcessingStatus,
    classify_field_type,
)
from docextract.models.patterns import PatternLearningResult
from docextract.models.rules import TemplateFieldMapping
from docextract.models.validation import DocumentValidationResult, FieldValidationResult
from docextract.processors.classifier import DocumentClassifier
from docextract.processors.field_extractor import FieldExtractionEngine, FieldFallback
from docextract.processors.validator import ValidationEngine
from docextract.rules.rule_engine import RuleEngine

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Pipeline processing stages"""
    VALIDATE_FILE = "validate_file"
    OCR = "ocr"
    CLASSIFY = "classify"
    EXTRACT = "extract"
    VALIDATE_FIELDS = "validate_fields"
    MAP_RULES = "map_rules"
    FINALIZE = "finalize"
    COMPLETE = "complete"


# Progress reported once a stage finishes
STAGE_PROGRESS = {
    PipelineStage.VALIDATE_FILE: 0.1,
    PipelineStage.OCR: 0.3,
    PipelineStage.CLASSIFY: 0.5,
    PipelineStage.EXTRACT: 0.7,
    PipelineStage.FINALIZE: 0.9,
    PipelineStage.COMPLETE: 1.0,
}


@dataclass
class PipelineContext:
    """Context passed through pipeline stages"""
    document: ExtractedDocument
    template_id: Optional[str] = None
    template_category: Optional[str] = None

    validation: Optional[FieldValidationResult] = None
    mappings: List[TemplateFieldMapping] = field(default_factory=list)

    current_stage: PipelineStage = PipelineStage.VALIDATE_FILE
    stage_times: Dict[str, int] = field(default_factory=dict)
    error_stage: Optional[PipelineStage] = None


@dataclass
class BatchProgress:
    """Progress snapshot handed to batch callbacks after each document"""
    total: int
    completed: int = 0
    succeeded: int = 0
    failed: int = 0
    current_file: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0

    @property
    def estimated_remaining_seconds(self) -> Optional[float]:
        if not self.completed:
            return None
        return self.elapsed_seconds / self.completed * (self.total - self.completed)


BatchProgressCallback = Callable[[BatchProgress], Any]


class DocumentProcessingPipeline:
    """
    Orchestrates classification, extraction, validation and rule mapping.

    Usage:
        pipeline = DocumentProcessingPipeline.from_database(db)
        document = await pipeline.process_document("bill.pdf", template_id=template.id)
        if document.needs_review:
            ...
    """

    def __init__(
        self,
        text_extractor: Optional[TextExtractor] = None,
        classifier: Optional[DocumentClassifier] = None,
        extraction_engine: Optional[FieldExtractionEngine] = None,
        validator: Optional[ValidationEngine] = None,
        rule_engine: Optional[RuleEngine] = None,
        learner: Optional[PatternLearner] = None,
        documents: Optional[DocumentRepository] = None,
        event_bus: Optional[EventBus] = None,
        config: Optional[DocExtractConfig] = None,
        fallback: Optional[FieldFallback] = None,
    ):
        self.config = config or DocExtractConfig.get_instance()
        self.text_extractor = text_extractor or default_text_extractor()
        self.classifier = classifier or DocumentClassifier(self.config)
        self.extraction_engine = extraction_engine or FieldExtractionEngine()
        self.validator = validator or ValidationEngine(self.config)
        self.rule_engine = rule_engine
        self.learner = learner
        self.documents = documents
        self.event_bus = event_bus or EventBus()
        self.fallback = fallback

        self.max_file_size = int(self.config.get('pipeline.max_file_size_bytes', 10 * 1024 * 1024))
        self.warn_file_size = int(self.config.get('pipeline.warn_file_size_bytes', 5 * 1024 * 1024))
        self.route_to_review = bool(self.config.get('pipeline.route_to_review', False))
        self.review_threshold = float(self.config.get('pipeline.review_confidence_threshold', 0.6))
        self.apply_corrections = bool(self.config.get('pipeline.apply_suggested_corrections', False))

        self._status_counts: Dict[str, int] = {}
        self._total_time_ms = 0
        self._processed = 0

    @classmethod
    def from_database(
        cls,
        db: Database,
        config: Optional[DocExtractConfig] = None,
        event_bus: Optional[EventBus] = None,
        text_extractor: Optional[TextExtractor] = None,
    ) -> 'DocumentProcessingPipeline':
        """Wire every component against one database"""
        config = config or DocExtractConfig.get_instance()
        event_bus = event_bus or EventBus()
        store = PatternStore(PatternRepository(db), PatternSampleRepository(db), config)
        return cls(
            text_extractor=text_extractor,
            classifier=DocumentClassifier(config),
            extraction_engine=FieldExtractionEngine(store),
            validator=ValidationEngine(config),
            rule_engine=RuleEngine(RuleRepository(db), TemplateRepository(db), event_bus, config),
            learner=PatternLearner(store, event_bus, config),
            documents=DocumentRepository(db),
            event_bus=event_bus,
            config=config,
        )

    # Single document

    async def process_document(
        self,
        file_path: str,
        template_id: Optional[str] = None,
        template_category: Optional[str] = None,
    ) -> ExtractedDocument:
        """
        Process one file.

        Returns:
            The document in a terminal status; never raises for per-document
            failures
        """
        document = ExtractedDocument(file_path=str(file_path), file_name=Path(file_path).name)
        return await self._process(document, template_id, template_category)

    async def reprocess_document(
        self,
        document: ExtractedDocument,
        template_id: Optional[str] = None,
        template_category: Optional[str] = None,
    ) -> ExtractedDocument:
        """Run a document's file through the pipeline again, keeping its id"""
        fresh = ExtractedDocument(id=document.id, file_path=document.file_path, file_name=document.file_name)
        return await self._process(fresh, template_id or document.template_id, template_category)

    async def _process(
        self,
        document: ExtractedDocument,
        template_id: Optional[str],
        template_category: Optional[str],
    ) -> ExtractedDocument:
        start_time = time.time()
        ctx = PipelineContext(document=document, template_id=template_id, template_category=template_category)
        document.template_id = template_id
        document.mark_status(ProcessingStatus.PROCESSING)
        self.event_bus.emit(
            EventType.PROCESSING_STARTED, document_id=document.id, data={'file_path': document.file_path}
        )

        try:
            await self._run_stage(ctx, PipelineStage.VALIDATE_FILE, self._stage_validate_file)
            await self._run_stage(ctx, PipelineStage.OCR, self._stage_ocr)
            await self._run_stage(ctx, PipelineStage.CLASSIFY, self._stage_classify)
            await self._run_stage(ctx, PipelineStage.EXTRACT, self._stage_extract)
            await self._run_stage(ctx, PipelineStage.VALIDATE_FIELDS, self._stage_validate_fields)
            await self._run_stage(ctx, PipelineStage.MAP_RULES, self._stage_map_rules)
            await self._run_stage(ctx, PipelineStage.FINALIZE, self._stage_finalize)
            ctx.current_stage = PipelineStage.COMPLETE
        except DocExtractError as e:
            logger.warning(f"Processing failed for {document.file_name} at {ctx.current_stage.value}: {e}")
            document.fail(str(e))
        except Exception as e:
            logger.exception(f"Pipeline failed for {document.file_name}: {e}")
            document.fail(f"Unexpected error during {ctx.current_stage.value}: {e}")

        document.processing_time_ms = int((time.time() - start_time) * 1000)
        self._persist(document)
        self._record_statistics(document)

        self._report_progress(document, PipelineStage.COMPLETE)
        self.event_bus.emit(EventType.PROCESSING_COMPLETED, document_id=document.id, data={
            'status': document.status.value,
            'error_message': document.error_message,
            'field_count': len(document.fields),
            'overall_confidence': document.overall_confidence,
            'stage_times': ctx.stage_times,
        })
        logger.info(
            f"Processed {document.file_name}: {document.status.value}, "
            f"{len(document.fields)} fields in {document.processing_time_ms}ms"
        )
        return document

    async def _run_stage(
        self,
        ctx: PipelineContext,
        stage: PipelineStage,
        stage_func: Callable,
    ) -> None:
        """Run a pipeline stage with timing and progress reporting"""
        ctx.current_stage = stage
        start = time.time()
        try:
            await stage_func(ctx)
        except Exception:
            ctx.error_stage = stage
            raise
        finally:
            ctx.stage_times[stage.value] = int((time.time() - start) * 1000)
        self._report_progress(ctx.document, stage)

    def _report_progress(self, document: ExtractedDocument, stage: PipelineStage) -> None:
        progress = STAGE_PROGRESS.get(stage)
        if progress is None:
            return
        self.event_bus.emit(EventType.PROGRESS, document_id=document.id, progress=progress, phase=stage.value)

    async def _stage_validate_file(self, ctx: PipelineContext) -> None:
        details = self.get_validation_details(ctx.document.file_path)
        ctx.document.file_size_bytes = details.file_size_bytes
        for warning in details.warnings:
            logger.warning(f"{ctx.document.file_name}: {warning}")
        if details.is_valid:
            return
        if details.extension and not self.text_extractor.is_format_supported(ctx.document.file_path):
            raise UnsupportedFormatError(details.errors[0])
        raise TextExtractionError(details.errors[0])

    async def _stage_ocr(self, ctx: PipelineContext) -> None:
        result = await self.text_extractor.extract(ctx.document.file_path)
        if not result.text or not result.text.strip():
            raise TextExtractionError("No text could be extracted from the document")
        ctx.document.raw_text = result.text
        ctx.document.is_scanned = result.is_scanned
        if result.confidence is not None and result.confidence < self.review_threshold:
            ctx.document.add_review_reason(f"Low text extraction quality ({result.confidence:.2f})")

    async def _stage_classify(self, ctx: PipelineContext) -> None:
        document = ctx.document
        document.document_type, document.document_type_score = self.classifier.classify_type(document.raw_text)
        document.supplier, document.supplier_score = self.classifier.detect_supplier(
            document.raw_text, document.document_type
        )
        if document.document_type == DocumentType.UNKNOWN:
            document.add_review_reason("Document type could not be determined")
        if document.supplier == "Unknown":
            document.add_review_reason("Supplier could not be detected")

    async def _stage_extract(self, ctx: PipelineContext) -> None:
        document = ctx.document
        fields = self.extraction_engine.extract_fields(document.raw_text, document.document_type, document.supplier)
        if self.fallback is not None:
            fields = await self.extraction_engine.resolve_missing_fields(
                document.raw_text, document.document_type, fields, self.fallback
            )
        document.fields = fields

    async def _stage_validate_fields(self, ctx: PipelineContext) -> None:
        document = ctx.document
        ctx.validation = self.validator.validate_extracted_fields(document.fields, document.document_type)
        if self.apply_corrections:
            document.fields = ctx.validation.corrected_fields
        else:
            document.fields = ctx.validation.original_fields

        if ctx.validation.errors:
            names = ', '.join(e.field_name for e in ctx.validation.errors)
            document.add_review_reason(f"Validation errors: {names}")
        missing = [w.field_name for w in ctx.validation.warnings if w.code == 'missing_required']
        if missing:
            document.add_review_reason(f"Missing required fields: {', '.join(missing)}")

    async def _stage_map_rules(self, ctx: PipelineContext) -> None:
        if self.rule_engine is None or not ctx.template_id:
            return
        document = ctx.document
        ctx.mappings = self.rule_engine.apply_mapping_rules(
            document.to_document_pattern(ctx.template_category), ctx.template_id, document.fields
        )
        document.template_mappings = [m.model_dump() for m in ctx.mappings]
        if not ctx.mappings:
            document.add_review_reason("No mapping rule produced template mappings")

    async def _stage_finalize(self, ctx: PipelineContext) -> None:
        document = ctx.document
        document.calculate_overall_confidence()
        if not document.fields:
            document.add_review_reason("No fields were extracted")
        elif document.overall_confidence < self.review_threshold:
            document.add_review_reason(f"Low overall confidence ({document.overall_confidence:.2f})")

        if self.route_to_review and document.needs_review:
            document.mark_status(ProcessingStatus.NEEDS_REVIEW)
        else:
            document.mark_status(ProcessingStatus.COMPLETED)

    def _persist(self, document: ExtractedDocument) -> None:
        if self.documents is None:
            return
        try:
            self.documents.save_document(document)
        except Exception as e:
            # the caller still gets the in-memory result
            logger.error(f"Failed to persist document {document.id}: {e}")
            document.add_review_reason(f"Document could not be saved: {e}")

    def _record_statistics(self, document: ExtractedDocument) -> None:
        self._processed += 1
        self._total_time_ms += document.processing_time_ms
        key = document.status.value
        self._status_counts[key] = self._status_counts.get(key, 0) + 1

    # Batches

    async def process_batch(
        self,
        file_paths: List[str],
        progress: Optional[BatchProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        template_id: Optional[str] = None,
        template_category: Optional[str] = None,
    ) -> List[ExtractedDocument]:
        """
        Process files one after another.

        Returns:
            One document per input path, in input order. Paths not started
            because of cancellation are Cancelled; repeated paths are Skipped.
        """
        results: List[ExtractedDocument] = []
        seen = set()
        state = BatchProgress(total=len(file_paths))
        start_time = time.time()

        for index, file_path in enumerate(file_paths):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Batch cancelled; {len(file_paths) - index} documents not started")
                for remaining in file_paths[index:]:
                    results.append(self._terminal_document(remaining, ProcessingStatus.CANCELLED, "Batch was cancelled"))
                break

            key = os.path.abspath(str(file_path))
            if key in seen:
                document = self._terminal_document(file_path, ProcessingStatus.SKIPPED, "Duplicate file in batch")
            else:
                seen.add(key)
                state.current_file = str(file_path)
                try:
                    document = await self.process_document(file_path, template_id, template_category)
                except Exception as e:
                    logger.exception(f"Unexpected batch failure on {file_path}: {e}")
                    document = ExtractedDocument(file_path=str(file_path), file_name=Path(file_path).name)
                    document.fail(str(e))

            results.append(document)
            state.completed += 1
            if document.status in (ProcessingStatus.COMPLETED, ProcessingStatus.NEEDS_REVIEW):
                state.succeeded += 1
            elif document.status == ProcessingStatus.FAILED:
                state.failed += 1
            state.elapsed_seconds = time.time() - start_time
            await self._notify(progress, state)

        return results

    @staticmethod
    def _terminal_document(file_path: str, status: ProcessingStatus, message: str) -> ExtractedDocument:
        document = ExtractedDocument(file_path=str(file_path), file_name=Path(file_path).name)
        document.mark_status(status, message)
        return document

    @staticmethod
    async def _notify(callback: Optional[BatchProgressCallback], state: BatchProgress) -> None:
        if callback is None:
            return
        try:
            result = callback(state)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Batch progress callback failed: {e}")

    # File checks

    def get_validation_details(self, file_path: str) -> DocumentValidationResult:
        """Existence, size and format checks for a file"""
        path = Path(file_path)
        result = DocumentValidationResult(file_path=str(file_path), extension=path.suffix.lower())

        if not path.exists():
            result.add_error(f"File not found: {file_path}")
            return result
        if not path.is_file():
            result.add_error(f"Not a regular file: {file_path}")
            return result
        if not os.access(path, os.R_OK):
            result.add_error(f"File is not readable: {file_path}")
            return result

        result.file_size_bytes = path.stat().st_size
        if result.file_size_bytes == 0:
            result.add_error("File is empty")
        elif result.file_size_bytes > self.max_file_size:
            result.add_error(
                f"File size {result.file_size_bytes} bytes exceeds the limit of {self.max_file_size} bytes"
            )
        elif result.file_size_bytes > self.warn_file_size:
            result.warnings.append(f"Large file ({result.file_size_bytes} bytes) may process slowly")

        if not self.text_extractor.is_format_supported(path.name):
            result.add_error(
                f"Unsupported file format '{result.extension or path.name}'. "
                f"Supported: {', '.join(self.text_extractor.supported_formats())}"
            )
        return result

    def validate_document(self, file_path: str) -> bool:
        return self.get_validation_details(file_path).is_valid

    # Feedback

    def apply_user_correction(
        self,
        document: ExtractedDocument,
        field_name: str,
        correct_value: str,
    ) -> Optional[PatternLearningResult]:
        """
        Record a user's correction on the document and learn from it.

        Returns:
            The learning result, or None when no learner is configured
        """
        extracted = document.get_field(field_name)
        original_value = extracted.value if extracted else None
        if extracted is not None:
            extracted.apply_correction(correct_value)
        else:
            document.fields.append(ExtractedField(
                field_name=field_name,
                value=correct_value,
                confidence=1.0,
                field_type=classify_field_type(field_name),
                source=ExtractionSource.USER_MANUAL,
                is_verified=True,
            ))
        document.calculate_overall_confidence()

        result = None
        if self.learner is not None and document.raw_text:
            result = self.learner.learn_from_correction(
                document.supplier, field_name, document.raw_text, original_value, correct_value
            )
            for warning in result.warnings:
                logger.info(f"Learning warning for {field_name}: {warning}")
        self._persist(document)
        return result

    def confirm_field(self, document: ExtractedDocument, field_name: str) -> Optional[PatternLearningResult]:
        """Mark an extracted value as correct and reinforce the pattern that produced it"""
        extracted = document.get_field(field_name)
        if extracted is None or not extracted.has_value:
            return None
        extracted.is_verified = True

        result = None
        if self.learner is not None and document.raw_text:
            result = self.learner.learn_from_success(
                document.supplier, extracted.field_name, document.raw_text, extracted.value, extracted.pattern_id
            )
        self._persist(document)
        return result

    def get_processing_statistics(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            'processed': self._processed,
            'by_status': dict(self._status_counts),
            'average_processing_time_ms': self._total_time_ms / self._processed if self._processed else 0.0,
            'extraction': self.extraction_engine.get_extraction_statistics(),
        }
        if self.documents is not None:
            stats['stored_by_status'] = self.documents.count_by_status()
        return stats
