"""
Tests for the DocumentProcessingPipeline
"""

import asyncio
import threading

import pytest

from docextract.events import EventType
from docextract.extractors.plain_text import PlainTextExtractor
from docextract.models.document import DocumentType, ExtractedField, ExtractionSource, ProcessingStatus
from docextract.models.patterns import PatternLearningType
from docextract.models.rules import ConditionKind, MappingRule, RuleCondition, RuleProjection
from docextract.processors.pipeline import BatchProgress, DocumentProcessingPipeline


@pytest.fixture
def pipeline(db, config, event_bus):
    return DocumentProcessingPipeline.from_database(db, config, event_bus, PlainTextExtractor())


@pytest.fixture
def bill_file(tmp_path, utility_bill_text):
    path = tmp_path / 'tnb_march.txt'
    path.write_text(utility_bill_text)
    return str(path)


def write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content)
    return str(path)


class TestProcessDocument:
    """Single document processing"""

    def test_utility_bill(self, pipeline, bill_file):
        document = asyncio.run(pipeline.process_document(bill_file))

        assert document.status == ProcessingStatus.COMPLETED
        assert document.document_type == DocumentType.UTILITY_BILL
        assert document.supplier == "TNB Berhad"
        assert document.get_field('AccountNumber').value == '1234567890123'
        assert document.get_field('TotalAmountDue').value == '245.67'
        assert 0.0 < document.overall_confidence <= 1.0
        assert document.error_message is None

    def test_whitespace_text_fails(self, pipeline, tmp_path):
        document = asyncio.run(pipeline.process_document(write(tmp_path, 'blank.txt', '  \n\t\n')))

        assert document.status == ProcessingStatus.FAILED
        assert document.error_message == "No text could be extracted from the document"
        assert document.fields == []

    def test_empty_file_fails(self, pipeline, tmp_path):
        document = asyncio.run(pipeline.process_document(write(tmp_path, 'empty.txt', '')))

        assert document.status == ProcessingStatus.FAILED
        assert document.error_message == "File is empty"

    def test_missing_file_fails(self, pipeline, tmp_path):
        document = asyncio.run(pipeline.process_document(str(tmp_path / 'missing.txt')))

        assert document.status == ProcessingStatus.FAILED
        assert "File not found" in document.error_message

    def test_unsupported_format_fails_fast(self, pipeline, tmp_path):
        document = asyncio.run(pipeline.process_document(write(tmp_path, 'letter.docx', 'Dear customer')))

        assert document.status == ProcessingStatus.FAILED
        assert "Unsupported file format '.docx'" in document.error_message
        assert document.raw_text == ''

    def test_no_fields_still_completes(self, pipeline, tmp_path):
        document = asyncio.run(pipeline.process_document(write(tmp_path, 'note.txt', 'hello there, nothing to see')))

        assert document.status == ProcessingStatus.COMPLETED
        assert document.fields == []
        assert document.needs_review
        assert "No fields were extracted" in document.review_reasons

    def test_route_to_review(self, db, config, event_bus, tmp_path):
        config.set('pipeline.route_to_review', True)
        pipeline = DocumentProcessingPipeline.from_database(db, config, event_bus, PlainTextExtractor())

        document = asyncio.run(pipeline.process_document(write(tmp_path, 'note.txt', 'hello there')))

        assert document.status == ProcessingStatus.NEEDS_REVIEW

    def test_unexpected_error_fails_document(self, pipeline, bill_file):
        def explode(*args, **kwargs):
            raise RuntimeError("classifier crashed")

        pipeline.classifier.classify_type = explode

        document = asyncio.run(pipeline.process_document(bill_file))

        assert document.status == ProcessingStatus.FAILED
        assert document.error_message == "Unexpected error during classify: classifier crashed"

    def test_progress_events(self, pipeline, event_bus, bill_file):
        progress = []
        completed = []
        event_bus.subscribe(EventType.PROGRESS, lambda e: progress.append((e.phase, e.progress)))
        event_bus.subscribe(EventType.PROCESSING_COMPLETED, completed.append)

        document = asyncio.run(pipeline.process_document(bill_file))

        assert [p for _, p in progress] == [0.1, 0.3, 0.5, 0.7, 0.9, 1.0]
        assert progress[-1][0] == 'complete'
        assert completed[0].document_id == document.id
        assert completed[0].data['status'] == 'Completed'

    def test_document_is_persisted(self, pipeline, document_repository, bill_file):
        document = asyncio.run(pipeline.process_document(bill_file))

        stored = document_repository.get_document(document.id)

        assert stored.status == ProcessingStatus.COMPLETED
        assert stored.supplier == "TNB Berhad"
        assert len(stored.fields) == len(document.fields)

    def test_failed_document_is_persisted(self, pipeline, document_repository, tmp_path):
        document = asyncio.run(pipeline.process_document(str(tmp_path / 'missing.txt')))

        assert document_repository.get_document(document.id).status == ProcessingStatus.FAILED

    def test_fallback_fills_missing_fields(self, pipeline, bill_file):
        async def fallback(text, doc_type, missing):
            return [ExtractedField(field_name='CustomerName', value='Ahmad bin Ali', confidence=0.7)]

        pipeline.fallback = fallback

        document = asyncio.run(pipeline.process_document(bill_file))

        assert document.get_field('CustomerName').source == ExtractionSource.CLOUD_FALLBACK

    def test_template_mapping(self, pipeline, bill_file):
        pipeline.rule_engine.add_rule(MappingRule(
            name='TNB to expenses sheet',
            conditions=[
                RuleCondition(kind=ConditionKind.SUPPLIER_EQUALS, operand='TNB Berhad'),
                RuleCondition(kind=ConditionKind.FIELD_EXISTS, operand='TotalAmountDue'),
            ],
            projections=[RuleProjection(field_name='TotalAmountDue', target_location='C7')],
        ))

        document = asyncio.run(pipeline.process_document(bill_file, template_id='expenses'))

        assert document.template_id == 'expenses'
        assert document.template_mappings[0]['target_location'] == 'C7'
        assert document.template_mappings[0]['value'] == '245.67'

    def test_validation_details(self, pipeline, tmp_path, bill_file):
        assert pipeline.validate_document(bill_file)
        details = pipeline.get_validation_details(str(tmp_path))
        assert not details.is_valid
        assert "Not a regular file" in details.errors[0]


class TestBatch:
    """Batch processing"""

    def test_one_result_per_input(self, pipeline, tmp_path, bill_file):
        paths = [bill_file, str(tmp_path / 'missing.txt'), write(tmp_path, 'letter.docx', 'x')]

        documents = asyncio.run(pipeline.process_batch(paths))

        assert [d.status for d in documents] == [
            ProcessingStatus.COMPLETED, ProcessingStatus.FAILED, ProcessingStatus.FAILED,
        ]

    def test_duplicates_skipped(self, pipeline, bill_file):
        documents = asyncio.run(pipeline.process_batch([bill_file, bill_file]))

        assert documents[1].status == ProcessingStatus.SKIPPED

    def test_cancelled_before_start(self, pipeline, bill_file):
        cancel = threading.Event()
        cancel.set()

        documents = asyncio.run(pipeline.process_batch([bill_file, bill_file], cancel_event=cancel))

        assert [d.status for d in documents] == [ProcessingStatus.CANCELLED, ProcessingStatus.CANCELLED]

    def test_cancel_mid_batch(self, pipeline, tmp_path, utility_bill_text):
        paths = [write(tmp_path, f'bill_{i}.txt', utility_bill_text) for i in range(3)]
        cancel = threading.Event()

        def on_progress(state):
            cancel.set()

        documents = asyncio.run(pipeline.process_batch(paths, progress=on_progress, cancel_event=cancel))

        assert len(documents) == 3
        assert documents[0].status == ProcessingStatus.COMPLETED
        assert all(d.status == ProcessingStatus.CANCELLED for d in documents[1:])

    def test_progress_callback(self, pipeline, tmp_path, bill_file):
        snapshots = []

        async def on_progress(state: BatchProgress):
            snapshots.append((state.completed, state.fraction, state.succeeded, state.failed))

        asyncio.run(pipeline.process_batch([bill_file, str(tmp_path / 'missing.txt')], progress=on_progress))

        assert snapshots == [(1, 0.5, 1, 0), (2, 1.0, 1, 1)]

    def test_failing_callback_does_not_stop_batch(self, pipeline, bill_file, tmp_path):
        def on_progress(state):
            raise ValueError("ui went away")

        documents = asyncio.run(pipeline.process_batch([bill_file, str(tmp_path / 'other.txt')], progress=on_progress))

        assert len(documents) == 2

    def test_batch_progress_estimate(self):
        state = BatchProgress(total=4, completed=1, elapsed_seconds=2.0)
        assert state.estimated_remaining_seconds == 6.0
        assert BatchProgress(total=4).estimated_remaining_seconds is None
        assert BatchProgress(total=0).fraction == 1.0

    def test_statistics(self, pipeline, bill_file, tmp_path):
        asyncio.run(pipeline.process_batch([bill_file, str(tmp_path / 'missing.txt')]))

        stats = pipeline.get_processing_statistics()

        assert stats['processed'] == 2
        assert stats['by_status'] == {'Completed': 1, 'Failed': 1}
        assert stats['stored_by_status'] == {'Completed': 1, 'Failed': 1}


class TestFeedback:
    """Corrections and confirmations feed the learner"""

    def test_correction_is_learned(self, pipeline, bill_file):
        document = asyncio.run(pipeline.process_document(bill_file))

        result = pipeline.apply_user_correction(document, 'AccountNumber', '1234567890123')

        assert result.success
        assert result.learning_type == PatternLearningType.NEW_PATTERN
        assert document.get_field('AccountNumber').source == ExtractionSource.USER_CORRECTION

        again = asyncio.run(pipeline.reprocess_document(document))

        assert again.id == document.id
        assert again.get_field('AccountNumber').source == ExtractionSource.LEARNED_PATTERN
        assert again.get_field('AccountNumber').value == '1234567890123'

    def test_manual_field_added(self, pipeline, bill_file):
        document = asyncio.run(pipeline.process_document(bill_file))

        pipeline.apply_user_correction(document, 'CustomerName', 'Tenaga Nasional')

        field = document.get_field('CustomerName')
        assert field.source == ExtractionSource.USER_MANUAL
        assert field.is_verified

    def test_confirm_learned_field(self, pipeline, bill_file):
        document = asyncio.run(pipeline.process_document(bill_file))
        pipeline.apply_user_correction(document, 'AccountNumber', '1234567890123')
        again = asyncio.run(pipeline.reprocess_document(document))

        result = pipeline.confirm_field(again, 'AccountNumber')

        assert result.success
        assert result.learning_type == PatternLearningType.PATTERN_REINFORCED
        assert again.get_field('AccountNumber').is_verified

    def test_confirm_missing_field(self, pipeline, bill_file):
        document = asyncio.run(pipeline.process_document(bill_file))

        assert pipeline.confirm_field(document, 'DoesNotExist') is None
