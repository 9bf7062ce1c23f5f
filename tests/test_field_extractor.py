"""
Tests for the FieldExtractionEngine strategy cascade
"""

import asyncio
from unittest.mock import Mock

from docextract.models.document import DocumentType, ExtractedField, ExtractionSource
from docextract.models.patterns import LearnedPattern
from docextract.processors.field_extractor import FieldExtractionEngine
from docextract.processors.strategies import ExtractionStrategy, GenericRuleStrategy


def by_name(fields):
    return {f.field_name: f for f in fields}


class TestGenericExtraction:
    """Generic rule extraction without learned patterns"""

    def setup_method(self):
        self.engine = FieldExtractionEngine()

    def test_utility_bill_scenario(self):
        """Test account number and total from a minimal utility bill"""
        text = "Account No: 1234567890123\nTotal Amount Due: RM 245.67"

        fields = by_name(self.engine.extract_fields(text, DocumentType.UTILITY_BILL))

        assert fields['AccountNumber'].value == '1234567890123'
        assert 0.70 <= fields['AccountNumber'].confidence <= 0.95
        assert fields['AccountNumber'].source == ExtractionSource.RULE_BASED
        assert fields['TotalAmountDue'].value == '245.67'
        assert 0.70 <= fields['TotalAmountDue'].confidence <= 0.95

    def test_unresolved_fields_are_omitted(self):
        text = "Account No: 1234567890123\nTotal Amount Due: RM 245.67"

        fields = by_name(self.engine.extract_fields(text, DocumentType.UTILITY_BILL))

        assert 'CustomerName' not in fields
        assert 'MeterNumber' not in fields
        assert all(f.has_value for f in fields.values())

    def test_full_bill(self, utility_bill_text):
        fields = by_name(self.engine.extract_fields(utility_bill_text, DocumentType.UTILITY_BILL))

        assert fields['MeterNumber'].value == '87654321'
        assert fields['BillDate'].value == '05/03/2024'
        assert fields['DueDate'].value == '25/03/2024'
        assert fields['UsageAmount'].value == '342'

    def test_phone_not_taken_from_account_number(self):
        fields = by_name(self.engine.extract_fields("Account No: 0123456789012\n", DocumentType.TELECOM_BILL))

        assert fields['AccountNumber'].value == '0123456789012'
        assert 'PhoneNumber' not in fields

    def test_phone_number(self):
        fields = by_name(self.engine.extract_fields("Mobile: 012-3456789\n", DocumentType.TELECOM_BILL))

        assert fields['PhoneNumber'].value == '012-3456789'

    def test_empty_text(self):
        assert self.engine.extract_fields("", DocumentType.UTILITY_BILL) == []
        assert self.engine.extract_fields("   \n", DocumentType.INVOICE) == []

    def test_specific_fields(self):
        text = "Account No: 1234567890123\nTotal Amount Due: RM 245.67"

        fields = self.engine.extract_specific_fields(text, ['TotalAmountDue'], doc_type=DocumentType.UTILITY_BILL)

        assert [f.field_name for f in fields] == ['TotalAmountDue']

    def test_specific_fields_without_type(self):
        """Test that the first rule set defined for a field is used when no type is given"""
        fields = self.engine.extract_specific_fields("Invoice No: INV-2024-001", ['InvoiceNumber'])

        assert fields[0].value == 'INV-2024-001'

    def test_unknown_type_uses_default_fields(self):
        fields = by_name(self.engine.extract_fields("Paid RM 12.50 on 01/02/2024", DocumentType.UNKNOWN))

        assert fields['Amount'].value == '12.50'
        assert fields['Date'].value == '01/02/2024'

    def test_statistics(self):
        text = "Account No: 1234567890123"
        self.engine.extract_specific_fields(text, ['AccountNumber', 'MeterNumber'], doc_type=DocumentType.UTILITY_BILL)

        stats = self.engine.get_extraction_statistics()

        assert stats['fields']['AccountNumber']['successes'] == 1
        assert stats['fields']['MeterNumber']['success_rate'] == 0.0
        assert stats['sources'][ExtractionSource.RULE_BASED.value] == 1


class TestLearnedPatterns:
    """Learned patterns take precedence over generic rules"""

    def test_learned_pattern_wins(self, pattern_store):
        stored, _ = pattern_store.add_pattern(LearnedPattern(
            supplier="TNB Berhad", field_name="AccountNumber", pattern=r'Account No:\s*(\d{5})',
        ))
        engine = FieldExtractionEngine(pattern_store)
        text = "Account No: 1234567890123"

        fields = by_name(engine.extract_fields(text, DocumentType.UTILITY_BILL, "TNB Berhad"))

        assert fields['AccountNumber'].value == '12345'
        assert fields['AccountNumber'].source == ExtractionSource.LEARNED_PATTERN
        assert fields['AccountNumber'].pattern_id == stored.id
        assert fields['AccountNumber'].confidence == 0.5

    def test_unknown_partition_serves_undetected_suppliers(self, pattern_store):
        """Test that patterns stored under Unknown apply when no supplier was detected"""
        stored, _ = pattern_store.add_pattern(LearnedPattern(
            supplier="Unknown", field_name="AccountNumber", pattern=r'Account No:\s*(\d{5})',
        ))
        engine = FieldExtractionEngine(pattern_store)

        fields = by_name(engine.extract_fields("Account No: 1234567890123", DocumentType.UTILITY_BILL, "Unknown"))

        assert fields['AccountNumber'].value == '12345'
        assert fields['AccountNumber'].pattern_id == stored.id

    def test_unknown_partition_not_used_for_known_supplier(self, pattern_store):
        pattern_store.add_pattern(LearnedPattern(
            supplier="Unknown", field_name="AccountNumber", pattern=r'Account No:\s*(\d{5})',
        ))
        engine = FieldExtractionEngine(pattern_store)

        fields = by_name(engine.extract_fields("Account No: 1234567890123", DocumentType.UTILITY_BILL, "TNB Berhad"))

        assert fields['AccountNumber'].value == '1234567890123'

    def test_usage_count_never_decreases(self, pattern_store):
        stored, _ = pattern_store.add_pattern(LearnedPattern(
            supplier="TNB Berhad", field_name="AccountNumber", pattern=r'Account No:\s*(\d{13})',
        ))
        engine = FieldExtractionEngine(pattern_store)
        before = pattern_store.get(stored.id).usage_count

        engine.extract_fields("Account No: 1234567890123", DocumentType.UTILITY_BILL, "TNB Berhad")

        assert pattern_store.get(stored.id).usage_count >= before + 1

    def test_non_matching_pattern_falls_through(self, pattern_store):
        pattern_store.add_pattern(LearnedPattern(
            supplier="TNB Berhad", field_name="AccountNumber", pattern=r'Acct Ref:\s*(\d+)',
        ))
        engine = FieldExtractionEngine(pattern_store)

        fields = by_name(engine.extract_fields("Account No: 1234567890123", DocumentType.UTILITY_BILL, "TNB Berhad"))

        assert fields['AccountNumber'].source == ExtractionSource.RULE_BASED


class TestStrategyCascade:
    """Cascade behaviour with custom strategies"""

    def test_failing_strategy_degrades(self):
        broken = Mock(spec=ExtractionStrategy)
        broken.name = "broken"
        broken.try_extract.side_effect = RuntimeError("boom")
        engine = FieldExtractionEngine(strategies=[broken, GenericRuleStrategy()])

        fields = engine.extract_specific_fields(
            "Account No: 1234567890123", ['AccountNumber'], doc_type=DocumentType.UTILITY_BILL
        )

        assert fields[0].value == '1234567890123'
        broken.try_extract.assert_called_once()

    def test_fallback_resolves_missing_fields(self):
        engine = FieldExtractionEngine()
        text = "Account No: 1234567890123\nTotal Amount Due: RM 245.67"
        fields = engine.extract_fields(text, DocumentType.UTILITY_BILL)
        requested = []

        async def fallback(fallback_text, doc_type, missing):
            requested.extend(missing)
            return [
                ExtractedField(field_name='CustomerName', value='Ahmad bin Ali', confidence=0.8),
                ExtractedField(field_name='AccountNumber', value='should not replace', confidence=0.8),
            ]

        merged = by_name(asyncio.run(engine.resolve_missing_fields(text, DocumentType.UTILITY_BILL, fields, fallback)))

        assert 'AccountNumber' not in requested
        assert 'CustomerName' in requested
        assert merged['CustomerName'].source == ExtractionSource.CLOUD_FALLBACK
        assert merged['AccountNumber'].value == '1234567890123'

    def test_fallback_failure_keeps_fields(self):
        engine = FieldExtractionEngine()
        fields = [ExtractedField(field_name='AccountNumber', value='1234567890123', confidence=0.9)]

        async def fallback(text, doc_type, missing):
            raise ConnectionError("service unavailable")

        merged = asyncio.run(engine.resolve_missing_fields("x", DocumentType.UTILITY_BILL, fields, fallback))

        assert [f.value for f in merged] == ['1234567890123']
