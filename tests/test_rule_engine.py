"""
Tests for mapping rule evaluation, selection and the rule catalog
"""

import threading

import pytest

from docextract.config.docextract_config import DocExtractConfig
from docextract.db.repository import RuleRepository
from docextract.events import EventType
from docextract.exceptions import RuleEngineError
from docextract.models.document import DocumentType, ExtractedField
from docextract.models.rules import (
    ConditionKind,
    DocumentPattern,
    MappingRule,
    RuleCondition,
    RuleProjection,
    TemplateFieldMapping,
)
from docextract.rules.rule_engine import RuleEngine


def make_pattern(**kwargs):
    values = kwargs.pop('field_values', {'AccountNumber': '1234567890123', 'TotalAmountDue': '245.67'})
    return DocumentPattern(
        supplier=kwargs.pop('supplier', 'TNB Berhad'),
        document_type=kwargs.pop('document_type', DocumentType.UTILITY_BILL),
        available_fields=set(values),
        field_values=values,
        **kwargs,
    )


def make_fields():
    return [
        ExtractedField(field_name='AccountNumber', value='1234567890123', confidence=0.95),
        ExtractedField(field_name='TotalAmountDue', value='245.67', confidence=0.95),
        ExtractedField(field_name='MeterNumber', value='', confidence=0.3),
    ]


def exists(field_name, weight=1.0):
    return RuleCondition(kind=ConditionKind.FIELD_EXISTS, operand=field_name, weight=weight)


def make_rule(name='TNB bill', conditions=None, priority=100, success_rate=1.0, projections=None):
    return MappingRule(
        name=name,
        conditions=conditions if conditions is not None else [
            RuleCondition(kind=ConditionKind.SUPPLIER_EQUALS, operand='TNB Berhad'),
            exists('AccountNumber'),
        ],
        projections=projections if projections is not None else [
            RuleProjection(field_name='AccountNumber', target_location='B2'),
            RuleProjection(field_name='TotalAmountDue', target_location='B3', is_required=True),
            RuleProjection(field_name='MeterNumber', target_location='B4'),
        ],
        priority=priority,
        success_rate=success_rate,
    )


class TestEvaluation:
    """Condition and rule evaluation"""

    def setup_method(self):
        self.engine = RuleEngine(rules=None, config=DocExtractConfig(load_user_config=False))

    def test_all_conditions_hold(self):
        assert self.engine.evaluate_rule(make_rule(), make_pattern())

    def test_missing_field_fails(self):
        rule = make_rule(conditions=[exists('MeterNumber')])
        assert not self.engine.evaluate_rule(rule, make_pattern())

    def test_no_conditions_never_matches(self):
        result = self.engine.evaluate_rule_advanced(make_rule(conditions=[]), make_pattern())
        assert not result.matched
        assert result.match_score == 0.0

    def test_supplier_comparison_ignores_case(self):
        rule = make_rule(conditions=[RuleCondition(kind=ConditionKind.SUPPLIER_EQUALS, operand='tnb berhad')])
        assert self.engine.evaluate_rule(rule, make_pattern())

    def test_case_sensitive_condition(self):
        rule = make_rule(conditions=[
            RuleCondition(kind=ConditionKind.SUPPLIER_EQUALS, operand='tnb berhad', case_sensitive=True),
        ])
        assert not self.engine.evaluate_rule(rule, make_pattern())

    def test_document_type_and_category(self):
        rule = make_rule(conditions=[
            RuleCondition(kind=ConditionKind.DOCUMENT_TYPE_EQUALS, operand='UtilityBill'),
            RuleCondition(kind=ConditionKind.TEMPLATE_CATEGORY_EQUALS, operand='expenses'),
        ])
        assert self.engine.evaluate_rule(rule, make_pattern(template_category='Expenses'))
        assert not self.engine.evaluate_rule(rule, make_pattern())

    def test_field_value_matches(self):
        rule = make_rule(conditions=[RuleCondition(
            kind=ConditionKind.FIELD_VALUE_MATCHES, field_name='accountnumber', operand=r'^\d{13}$',
        )])
        assert self.engine.evaluate_rule(rule, make_pattern())
        assert not self.engine.evaluate_rule(rule, make_pattern(field_values={'AccountNumber': 'A-1'}))

    def test_invalid_regex_is_unsatisfied(self):
        rule = make_rule(conditions=[RuleCondition(
            kind=ConditionKind.FIELD_VALUE_MATCHES, field_name='AccountNumber', operand='(',
        )])
        result = self.engine.evaluate_rule_advanced(rule, make_pattern())
        assert not result.matched
        assert 'invalid regex' in result.condition_results[0].detail

    def test_weighted_threshold(self):
        engine = RuleEngine(rules=None, config=DocExtractConfig(
            overrides={'rules': {'acceptance_threshold': 0.6}}, load_user_config=False,
        ))
        rule = make_rule(conditions=[exists('AccountNumber', weight=2.0), exists('MeterNumber')])

        result = engine.evaluate_rule_advanced(rule, make_pattern())

        assert result.match_score == pytest.approx(2 / 3)
        assert result.matched
        assert not self.engine.evaluate_rule(rule, make_pattern())

    def test_non_positive_weight_rejected(self):
        with pytest.raises(ValueError):
            exists('AccountNumber', weight=0)


class TestSelection:
    """Selecting and applying the best rule"""

    def test_absent_field_yields_no_mappings(self, rule_engine):
        rule_engine.add_rule(make_rule(conditions=[exists('MeterNumber')]))

        assert rule_engine.apply_mapping_rules(make_pattern(), 'tpl', make_fields()) == []

    def test_success_rate_breaks_priority_tie(self, rule_engine):
        strong = rule_engine.add_rule(make_rule(name='strong', success_rate=0.9))
        rule_engine.add_rule(make_rule(name='weak', success_rate=0.4))

        assert rule_engine.select_rule(make_pattern()).id == strong.id

    def test_success_rate_outranks_match_score(self, db, config):
        """Test that a reliable partial match beats a better-matching unreliable rule"""
        engine = RuleEngine(RuleRepository(db), config=DocExtractConfig(
            overrides={'rules': {'acceptance_threshold': 0.5}}, load_user_config=False,
        ))
        engine.add_rule(make_rule(name='exact', success_rate=0.4))
        reliable = engine.add_rule(make_rule(
            name='partial', success_rate=0.9, conditions=[exists('AccountNumber'), exists('MeterNumber')],
        ))

        assert [r.name for r in engine.find_matching_rules(make_pattern())] == ['partial', 'exact']
        assert engine.select_rule(make_pattern()).id == reliable.id

    def test_priority_wins(self, rule_engine):
        rule_engine.add_rule(make_rule(name='reliable', success_rate=1.0, priority=100))
        urgent = rule_engine.add_rule(make_rule(name='urgent', success_rate=0.2, priority=200))

        names = [r.name for r in rule_engine.find_matching_rules(make_pattern())]

        assert rule_engine.select_rule(make_pattern()).id == urgent.id
        assert names == ['urgent', 'reliable']

    def test_inactive_rules_ignored(self, rule_engine):
        rule = rule_engine.add_rule(make_rule())
        rule_engine.deactivate_rule(rule.id)

        assert rule_engine.select_rule(make_pattern()) is None

    def test_projections_only_for_extracted_values(self, rule_engine):
        rule_engine.add_rule(make_rule())

        mappings = rule_engine.apply_mapping_rules(make_pattern(), 'tpl', make_fields())

        assert [(m.field_name, m.target_location, m.value) for m in mappings] == [
            ('AccountNumber', 'B2', '1234567890123'),
            ('TotalAmountDue', 'B3', '245.67'),
        ]
        assert all(m.template_id == 'tpl' for m in mappings)

    def test_apply_records_use_and_emits(self, rule_engine, event_bus):
        events = []
        event_bus.subscribe(EventType.RULE_APPLIED, events.append)
        rule = rule_engine.add_rule(make_rule())

        rule_engine.apply_mapping_rules(make_pattern(), 'tpl', make_fields())

        assert rule_engine.get_rule(rule.id).last_used_at is not None
        assert events[0].data['rule_id'] == rule.id
        assert events[0].data['mapped_fields'] == ['AccountNumber', 'TotalAmountDue']

    def test_rule_preview(self, rule_engine):
        rule = make_rule(projections=[
            RuleProjection(field_name='AccountNumber', target_location='B2'),
            RuleProjection(field_name='DueDate', target_location='B5', is_required=True),
        ])

        result = rule_engine.test_rule(rule, make_pattern(supplier='Maxis'), make_fields())

        assert not result.matched
        assert result.match_score == 0.5
        assert any('SupplierEquals' in w for w in result.warnings)
        assert [m.field_name for m in result.mappings] == ['AccountNumber']
        assert result.unmapped_fields == ['TotalAmountDue']
        assert result.missing_required_fields == ['DueDate']
        assert rule_engine.get_all_rules() == []


class TestOutcomes:
    """Success-rate tracking"""

    def test_failure_moves_rate_down(self, rule_engine):
        rule = rule_engine.add_rule(make_rule())

        updated = rule_engine.record_rule_failure(rule.id)

        assert updated.success_rate == pytest.approx(0.9)
        assert updated.usage_count == 1

    def test_success_moves_rate_up(self, rule_engine):
        rule = rule_engine.add_rule(make_rule(success_rate=0.9))

        updated = rule_engine.record_rule_success(rule.id)

        assert updated.success_rate == pytest.approx(0.91)

    def test_rate_stays_in_range(self, rule_engine):
        rule = rule_engine.add_rule(make_rule())
        for _ in range(50):
            rule = rule_engine.record_rule_failure(rule.id)

        assert 0.0 <= rule.success_rate <= 1.0
        assert rule.usage_count == 50

    def test_unknown_rule(self, rule_engine):
        with pytest.raises(RuleEngineError, match="Unknown rule"):
            rule_engine.record_rule_success('missing')

    def test_resaving_keeps_recorded_outcomes(self, rule_engine):
        rule = rule_engine.add_rule(make_rule())
        rule_engine.record_rule_failure(rule.id)

        saved = rule_engine.add_rule(rule.model_copy(update={'name': 'renamed', 'priority': 150}))

        assert saved.name == 'renamed'
        assert saved.priority == 150
        assert saved.usage_count == 1
        assert saved.success_rate == pytest.approx(0.9)


class TestConcurrency:
    """Outcome recording from several engines sharing one catalog"""

    def test_no_lost_updates_across_engines(self, file_db, config):
        engines = [RuleEngine(RuleRepository(file_db), config=config) for _ in range(2)]
        rule = engines[0].add_rule(make_rule())
        errors = []

        def record(engine):
            try:
                for _ in range(100):
                    engine.record_rule_failure(rule.id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=record, args=(engine,)) for engine in engines]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stored = engines[1].get_rule(rule.id)
        assert errors == []
        assert stored.usage_count == 200
        assert stored.success_rate == pytest.approx(0.9 ** 200, abs=1e-9)


class TestCatalog:
    """Rule catalog management"""

    def test_create_from_mappings(self, rule_engine):
        mappings = [
            TemplateFieldMapping(template_id='tpl', field_name='TotalAmountDue', target_location='B3', display_order=2),
            TemplateFieldMapping(template_id='tpl', field_name='AccountNumber', target_location='B2', display_order=1),
            TemplateFieldMapping(template_id='tpl', field_name='accountnumber', target_location='C2', display_order=3),
        ]

        rule = rule_engine.create_rule_from_mappings(
            'From session', None, make_pattern(template_category='expenses'), mappings, include_pattern_conditions=True,
        )

        kinds = [c.kind for c in rule.conditions]
        assert kinds == [
            ConditionKind.SUPPLIER_EQUALS,
            ConditionKind.DOCUMENT_TYPE_EQUALS,
            ConditionKind.TEMPLATE_CATEGORY_EQUALS,
            ConditionKind.FIELD_EXISTS,
            ConditionKind.FIELD_EXISTS,
        ]
        assert [(p.field_name, p.target_location) for p in rule.projections] == [
            ('AccountNumber', 'B2'), ('TotalAmountDue', 'B3'),
        ]
        assert rule.priority == 100
        assert rule.success_rate == 1.0
        assert rule_engine.evaluate_rule(rule, make_pattern(template_category='expenses'))

    def test_create_requires_mappings(self, rule_engine):
        with pytest.raises(RuleEngineError, match="At least one"):
            rule_engine.create_rule_from_mappings('empty', None, make_pattern(), [])

    def test_invalid_rules_rejected(self, rule_engine):
        with pytest.raises(RuleEngineError, match="name"):
            rule_engine.add_rule(make_rule(name=' '))
        with pytest.raises(RuleEngineError, match="field name"):
            rule_engine.add_rule(make_rule(conditions=[
                RuleCondition(kind=ConditionKind.FIELD_VALUE_MATCHES, operand=r'\d+'),
            ]))
        with pytest.raises(RuleEngineError, match="operand"):
            rule_engine.add_rule(make_rule(conditions=[RuleCondition(kind=ConditionKind.FIELD_EXISTS)]))

    def test_round_trip_through_repository(self, rule_engine):
        rule = rule_engine.add_rule(make_rule())

        loaded = rule_engine.get_rule(rule.id)

        assert loaded.name == rule.name
        assert [c.kind for c in loaded.conditions] == [c.kind for c in rule.conditions]
        assert [p.target_location for p in loaded.projections] == ['B2', 'B3', 'B4']

    def test_activation_and_priority(self, rule_engine):
        rule = rule_engine.add_rule(make_rule())

        assert not rule_engine.toggle_rule_activation(rule.id).is_active
        assert rule_engine.get_active_rules() == []
        assert rule_engine.activate_rule(rule.id).is_active
        assert rule_engine.update_rule_priority(rule.id, 5).priority == 5
        with pytest.raises(RuleEngineError):
            rule_engine.update_rule_priority('missing', 1)

    def test_delete(self, rule_engine):
        rule = rule_engine.add_rule(make_rule())

        assert rule_engine.delete_rule(rule.id)
        assert rule_engine.get_rule(rule.id) is None
        assert not rule_engine.delete_rule(rule.id)

    def test_statistics(self, db, config):
        engine = RuleEngine(RuleRepository(db), config=config)
        busy = engine.add_rule(make_rule(name='busy'))
        engine.add_rule(make_rule(name='idle'))
        engine.record_rule_success(busy.id)
        engine.record_rule_failure(busy.id)

        stats = engine.get_statistics()

        assert stats.total_rules == 2
        assert stats.total_applications == 2
        assert stats.top_rules[0]['name'] == 'busy'
        assert stats.overall_success_rate == pytest.approx(0.9)
