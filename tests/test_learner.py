"""
Tests for the PatternLearner learning loop and pattern interchange
"""

import json

import pytest

from docextract.db.connection import Database
from docextract.db.repository import PatternRepository, PatternSampleRepository
from docextract.events import EventType
from docextract.exceptions import PatternImportError, PatternLearningError
from docextract.learning.learner import PatternLearner, corpus_match_rate
from docextract.learning.pattern_store import PatternStore
from docextract.models.document import DocumentType
from docextract.models.patterns import PatternLearningType, PatternMergeStrategy, PatternRecommendation
from docextract.processors.field_extractor import FieldExtractionEngine

SUPPLIER = "TNB Berhad"
ACCOUNT = "1234567890123"


class TestLearnFromCorrection:
    """Learning from user corrections"""

    def test_new_pattern(self, learner, utility_bill_text):
        result = learner.learn_from_correction(SUPPLIER, "AccountNumber", utility_bill_text, "", ACCOUNT)

        assert result.success
        assert result.learning_type == PatternLearningType.NEW_PATTERN
        assert result.accuracy_before == 0.0
        assert result.accuracy_after == 1.0
        assert not result.requires_review
        assert result.pattern.try_extract(utility_bill_text) == ACCOUNT
        assert result.pattern.try_extract("Account No: 9876543210987") == "9876543210987"

    def test_repeated_correction_is_idempotent(self, learner, utility_bill_text):
        """Test that the same correction twice keeps one pattern and reinforces it"""
        first = learner.learn_from_correction(SUPPLIER, "AccountNumber", utility_bill_text, "", ACCOUNT)
        second = learner.learn_from_correction(SUPPLIER, "AccountNumber", utility_bill_text, "", ACCOUNT)

        assert second.success
        assert second.learning_type == PatternLearningType.PATTERN_REINFORCED
        assert second.pattern.id == first.pattern.id
        assert second.pattern.success_count == first.pattern.success_count + 1
        assert len(learner.get_patterns_for_supplier(SUPPLIER)) == 1

    def test_value_not_in_text(self, learner, utility_bill_text):
        result = learner.learn_from_correction(SUPPLIER, "AccountNumber", utility_bill_text, "", "5550001112223")

        assert not result.success
        assert "not found" in result.message
        assert learner.get_patterns_for_supplier(SUPPLIER) == []

    def test_missing_inputs(self, learner):
        result = learner.learn_from_correction(SUPPLIER, "AccountNumber", "", "", ACCOUNT)

        assert not result.success
        assert result.message

    def test_unknown_supplier_warns(self, learner, utility_bill_text):
        result = learner.learn_from_correction("Unknown", "AccountNumber", utility_bill_text, "", ACCOUNT)

        assert result.success
        assert any("unknown" in w for w in result.warnings)

    def test_unknown_supplier_pattern_used_on_next_extraction(self, learner, pattern_store):
        text = "Account No: ZX-99812\nTotal Amount Due: RM 10.00\n"
        result = learner.learn_from_correction("Unknown", "AccountNumber", text, "", "ZX-99812")

        fields = FieldExtractionEngine(pattern_store).extract_fields(
            "Account No: QT-40417\nTotal Amount Due: RM 12.00\n", DocumentType.UTILITY_BILL, "Unknown"
        )

        assert result.success
        account = [f for f in fields if f.field_name == "AccountNumber"]
        assert [f.value for f in account] == ["QT-40417"]
        assert account[0].pattern_id == result.pattern.id

    def test_regression_is_rejected(self, learner):
        """Test that a candidate doing worse than the incumbent over the corpus is not stored"""
        learner.learn_from_correction(SUPPLIER, "AccountNumber", "Account No: 1234567890123\n", "", ACCOUNT)
        learner.learn_from_correction(
            SUPPLIER, "AccountNumber", "Account No: 9876543210987\nTotal: RM 1.00\n", "", "9876543210987"
        )

        result = learner.learn_from_correction(
            SUPPLIER, "AccountNumber", "Customer Ref: 555\nAccount No: 1112223334445\n", "", "555"
        )

        assert not result.success
        assert result.learning_type == PatternLearningType.PATTERN_REJECTED
        assert result.requires_review
        assert result.accuracy_after < result.accuracy_before
        assert result.warnings
        assert len(learner.get_patterns_for_supplier(SUPPLIER)) == 1
        assert len(learner.store.get_samples(SUPPLIER, "AccountNumber")) == 3

    def test_improved_pattern_outranks_incumbent(self, learner, event_bus, utility_bill_text):
        """Test that a better pattern gets priority above the incumbent, which records a failure"""
        improved = []
        changed = []
        event_bus.subscribe(EventType.PATTERN_IMPROVED, improved.append)
        event_bus.subscribe(EventType.PATTERN_ACCURACY_CHANGED, changed.append)
        incumbent = learner.add_pattern(SUPPLIER, "AccountNumber", r'Account No:\s*(\d{3})')

        result = learner.learn_from_correction(SUPPLIER, "AccountNumber", utility_bill_text, "123", ACCOUNT)

        assert result.success
        assert result.learning_type == PatternLearningType.PATTERN_IMPROVED
        assert result.pattern.priority == incumbent.priority + 1
        assert learner.store.best_pattern(SUPPLIER, "AccountNumber").id == result.pattern.id
        assert learner.store.get(incumbent.id).failure_count == 1
        assert len(improved) == 1
        assert changed[0].data['pattern_id'] == incumbent.id

    def test_new_pattern_event(self, learner, event_bus, utility_bill_text):
        events = []
        event_bus.subscribe(EventType.PATTERN_LEARNED, events.append)

        result = learner.learn_from_correction(SUPPLIER, "AccountNumber", utility_bill_text, "", ACCOUNT)

        assert events[0].data['pattern_id'] == result.pattern.id
        assert events[0].data['created']


class TestLearnFromSuccess:
    """Reinforcement from confirmed extractions"""

    def test_reinforces_by_id(self, learner):
        stored = learner.add_pattern(SUPPLIER, "AccountNumber", r'Account No:\s*(\d{13})')

        result = learner.learn_from_success(SUPPLIER, "AccountNumber", "Account No: 1234567890123", ACCOUNT, stored.id)

        assert result.success
        assert result.pattern.success_count == stored.success_count + 1
        assert result.accuracy_after > result.accuracy_before

    def test_reinforces_by_pattern_text(self, learner):
        stored = learner.add_pattern(SUPPLIER, "AccountNumber", r'Account No:\s*(\d{13})')

        result = learner.learn_from_success(
            SUPPLIER, "AccountNumber", "Account No: 1234567890123", ACCOUNT, r'Account No:\s*(\d{13})'
        )

        assert result.pattern.id == stored.id

    def test_unknown_pattern(self, learner):
        result = learner.learn_from_success(SUPPLIER, "AccountNumber", "Account No: 1234567890123", ACCOUNT, "missing")

        assert not result.success
        assert result.warnings

    def test_record_extraction_failure(self, learner):
        stored = learner.add_pattern(SUPPLIER, "AccountNumber", r'Account No:\s*(\d{13})')

        updated = learner.record_extraction_failure(stored.id)

        assert updated.failure_count == 1
        assert updated.success_rate < stored.success_rate


class TestEvaluation:
    """Pattern testing and seeding"""

    def test_corpus_match_rate(self):
        samples = [("Account No: 1", "1"), ("Account No: 2", "3")]
        assert corpus_match_rate(r'Account No:\s*(\d+)', samples) == 0.5
        assert corpus_match_rate(r'Account No:\s*(\d+)', []) == 0.0

    @pytest.mark.parametrize('texts,expected,recommendation', [
        (["Account No: 1", "Account No: 2"], ["1", "2"], PatternRecommendation.APPROVE),
        (["Account No: 1", "Account No: 2", "nothing"], ["1", "2", None], PatternRecommendation.REVIEW),
        (["Account No: 1", "nothing", "none"], None, PatternRecommendation.IMPROVE),
        (["nothing", "none"], None, PatternRecommendation.REJECT),
    ])
    def test_recommendations(self, learner, texts, expected, recommendation):
        result = learner.test_pattern(r'Account No:\s*(\d+)', texts, expected)

        assert result.recommendation == recommendation
        assert result.total_tests == len(texts)
        assert len(result.examples) == len(texts)
        assert 0.3 <= result.average_confidence <= 0.99

    def test_existing_pattern_recommends_merge(self, learner):
        learner.add_pattern(SUPPLIER, "AccountNumber", r'Account No:\s*(\d+)')

        result = learner.test_pattern(r'Account No:\s*(\d+)', ["Account No: 1"], ["1"], SUPPLIER, "AccountNumber")

        assert result.recommendation == PatternRecommendation.MERGE

    def test_invalid_regex(self, learner):
        result = learner.test_pattern(r'Account (', ["Account No: 1"])

        assert result.error
        assert result.recommendation == PatternRecommendation.REJECT

    def test_generate_initial_patterns(self, learner, utility_bill_text):
        generated = learner.generate_initial_patterns(SUPPLIER, DocumentType.UTILITY_BILL, [utility_bill_text])

        fields = {p.field_name for p in generated}
        assert {'AccountNumber', 'TotalAmountDue'} <= fields
        assert all(p.priority == 0 for p in generated)
        assert learner.generate_initial_patterns(SUPPLIER, DocumentType.UTILITY_BILL, [utility_bill_text]) == []

    def test_generate_without_samples(self, learner):
        assert learner.generate_initial_patterns(SUPPLIER, DocumentType.UTILITY_BILL, []) == []

    def test_add_pattern_rejects_bad_regex(self, learner):
        with pytest.raises(PatternLearningError, match="Invalid regular expression"):
            learner.add_pattern(SUPPLIER, "AccountNumber", r'(unclosed')


class TestInterchange:
    """Export and import of pattern catalogs"""

    def setup_method(self):
        self.pattern = r'Account No:\s*(\d{13})'

    def _export_with(self, learner, **changes):
        payload = json.loads(learner.export_patterns(SUPPLIER))
        payload['patterns'][0].update(changes)
        return json.dumps(payload)

    def test_export_format(self, learner):
        learner.add_pattern(SUPPLIER, "AccountNumber", self.pattern)
        learner.add_pattern("Maxis", "AccountNumber", self.pattern)

        payload = json.loads(learner.export_patterns(SUPPLIER))

        assert payload['version'] == 1
        assert payload['supplier'] == SUPPLIER
        assert [p['supplier'] for p in payload['patterns']] == [SUPPLIER]
        assert payload['patterns'][0]['success_rate'] == 0.5

    def test_import_into_empty_catalog(self, learner, config):
        learner.add_pattern(SUPPLIER, "AccountNumber", self.pattern)
        exported = learner.export_patterns()
        other_db = Database(config)
        other_db.create_tables()
        other = PatternLearner(
            PatternStore(PatternRepository(other_db), PatternSampleRepository(other_db), config), config=config
        )

        result = other.import_patterns(exported)

        assert result.imported_patterns == 1
        assert result.success
        assert other.get_patterns_for_supplier(SUPPLIER)[0].pattern == self.pattern
        other_db.dispose()

    def test_skip_existing_is_a_no_op(self, learner):
        stored = learner.add_pattern(SUPPLIER, "AccountNumber", self.pattern)

        result = learner.import_patterns(learner.export_patterns())

        assert result.skipped_patterns == 1
        assert result.imported_patterns == 0
        after = learner.store.get(stored.id)
        assert after.success_count == stored.success_count
        assert len(learner.get_patterns_for_supplier(SUPPLIER)) == 1

    def test_overwrite_existing(self, learner):
        stored = learner.add_pattern(SUPPLIER, "AccountNumber", self.pattern)

        learner.import_patterns(
            self._export_with(learner, success_count=10, priority=4), PatternMergeStrategy.OVERWRITE_EXISTING
        )

        after = learner.store.get(stored.id)
        assert after.success_count == 10
        assert after.priority == 4

    def test_merge_by_accuracy_keeps_better(self, learner):
        stored = learner.add_pattern(SUPPLIER, "AccountNumber", self.pattern)
        learner.store.record_success(stored.id)

        worse = learner.import_patterns(
            self._export_with(learner, success_count=0, failure_count=5), PatternMergeStrategy.MERGE_BY_ACCURACY
        )
        assert worse.skipped_patterns == 1
        assert learner.store.get(stored.id).failure_count == 0

        better = learner.import_patterns(
            self._export_with(learner, success_count=20, failure_count=0), PatternMergeStrategy.MERGE_BY_ACCURACY
        )
        assert better.imported_patterns == 1
        assert learner.store.get(stored.id).success_count == 20

    def test_create_new_version(self, learner):
        stored = learner.add_pattern(SUPPLIER, "AccountNumber", self.pattern)
        learner.store.record_success(stored.id)

        learner.import_patterns(
            self._export_with(learner, success_count=3, failure_count=2), PatternMergeStrategy.CREATE_NEW_VERSION
        )

        after = learner.store.get(stored.id)
        assert after.version == 2
        assert after.success_count == 4
        assert after.failure_count == 2

    @pytest.mark.parametrize('payload', ['not json', '{"version": 1}', '[]'])
    def test_invalid_payload(self, learner, payload):
        with pytest.raises(PatternImportError):
            learner.import_patterns(payload)

    def test_bad_items_are_counted(self, learner):
        payload = json.dumps({'patterns': [
            {'supplier': SUPPLIER, 'field_name': 'AccountNumber', 'pattern': '(unclosed'},
            {'supplier': SUPPLIER, 'field_name': 'AccountNumber'},
            {'supplier': SUPPLIER, 'field_name': 'AccountNumber', 'pattern': self.pattern},
        ]})

        result = learner.import_patterns(payload)

        assert result.failed_patterns == 2
        assert result.imported_patterns == 1
        assert not result.success
        assert len(result.errors) == 2
