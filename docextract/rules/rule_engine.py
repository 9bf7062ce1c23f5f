"""
Rule Engine

Selects the mapping rule that fits a document pattern and projects the
extracted fields onto template locations.

A rule matches when the weighted share of its satisfied conditions reaches
``rules.acceptance_threshold`` (1.0 by default, i.e. every condition must
hold). Among matching rules a single winner is applied, ranked by priority,
success rate, match score and most recent use.
"""

import logging
import re
from datetime import datetime
from typing import Dict, List, Optional

from docextract.config.docextract_config import DocExtractConfig
from docextract.db.repository import RuleRepository, TemplateRepository
from docextract.events import EventBus, EventType
from docextract.exceptions import RuleEngineError
from docextract.models.document import ExtractedField
from docextract.models.patterns import PATTERN_FLAGS
from docextract.models.rules import (
    ConditionKind,
    ConditionResult,
    DocumentPattern,
    MappingRule,
    RuleCondition,
    RuleEngineStatistics,
    RuleEvaluationResult,
    RuleProjection,
    RuleTestResult,
    TemplateFieldMapping,
)
from docextract.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


def _texts_equal(left: Optional[str], right: Optional[str], case_sensitive: bool) -> bool:
    if left is None or right is None:
        return False
    if case_sensitive:
        return left.strip() == right.strip()
    return left.strip().casefold() == right.strip().casefold()


def _field_values(fields: List[ExtractedField]) -> Dict[str, ExtractedField]:
    """Extracted fields with a value, keyed by lower-cased name (first wins)"""
    values: Dict[str, ExtractedField] = {}
    for field in fields:
        if field.has_value and field.field_name.lower() not in values:
            values[field.field_name.lower()] = field
    return values


class RuleEngine:
    """
    Condition-gated mapping rules over a RuleRepository.

    Usage:
        engine = RuleEngine(RuleRepository(db))
        mappings = engine.apply_mapping_rules(document.to_document_pattern(), template_id, document.fields)
    """

    def __init__(
        self,
        rules: RuleRepository,
        templates: Optional[TemplateRepository] = None,
        event_bus: Optional[EventBus] = None,
        config: Optional[DocExtractConfig] = None,
    ):
        self.rules = rules
        self.templates = templates
        self.event_bus = event_bus or EventBus()
        config = config or DocExtractConfig.get_instance()
        self.acceptance_threshold = float(config.get('rules.acceptance_threshold', 1.0))
        self.ewma_alpha = float(config.get('rules.ewma_alpha', 0.1))
        self.initial_success_rate = float(config.get('rules.initial_success_rate', 1.0))
        self.default_priority = int(config.get('rules.default_priority', 100))
        self._locks = KeyedLock()

    # Evaluation

    def evaluate_condition(self, condition: RuleCondition, pattern: DocumentPattern) -> ConditionResult:
        kind = condition.kind
        if kind == ConditionKind.SUPPLIER_EQUALS:
            satisfied = _texts_equal(pattern.supplier, condition.operand, condition.case_sensitive)
            detail = f"supplier is {pattern.supplier!r}"
        elif kind == ConditionKind.DOCUMENT_TYPE_EQUALS:
            satisfied = _texts_equal(pattern.document_type.value, condition.operand, condition.case_sensitive)
            detail = f"document type is {pattern.document_type.value!r}"
        elif kind == ConditionKind.TEMPLATE_CATEGORY_EQUALS:
            satisfied = _texts_equal(pattern.template_category, condition.operand, condition.case_sensitive)
            detail = f"template category is {pattern.template_category!r}"
        elif kind == ConditionKind.FIELD_EXISTS:
            if condition.case_sensitive:
                satisfied = condition.operand in pattern.available_fields
            else:
                satisfied = pattern.has_field(condition.operand)
            detail = f"{condition.operand} {'present' if satisfied else 'absent'}"
        elif kind == ConditionKind.FIELD_VALUE_MATCHES:
            satisfied, detail = self._value_matches(condition, pattern)
        else:
            satisfied, detail = False, f"unsupported condition {kind}"
        return ConditionResult(condition=condition, satisfied=satisfied, detail=detail)

    def _value_matches(self, condition: RuleCondition, pattern: DocumentPattern):
        name = condition.field_name or ''
        value = pattern.field_values.get(name) if condition.case_sensitive else pattern.get_value(name)
        if value is None:
            return False, f"{name} has no value"
        flags = re.MULTILINE if condition.case_sensitive else PATTERN_FLAGS
        try:
            matched = re.search(condition.operand, value, flags) is not None
        except re.error as e:
            logger.warning(f"Invalid FieldValueMatches regex {condition.operand!r}: {e}")
            return False, f"invalid regex: {e}"
        return matched, f"{name}={value!r} {'matches' if matched else 'does not match'}"

    def evaluate_rule_advanced(self, rule: MappingRule, pattern: DocumentPattern) -> RuleEvaluationResult:
        """Weighted evaluation with per-condition results"""
        result = RuleEvaluationResult(rule_id=rule.id, rule_name=rule.name)
        if not rule.conditions:
            return result

        total = satisfied = 0.0
        for condition in rule.conditions:
            outcome = self.evaluate_condition(condition, pattern)
            result.condition_results.append(outcome)
            total += condition.weight
            if outcome.satisfied:
                satisfied += condition.weight

        result.match_score = satisfied / total if total else 0.0
        # float sums of weights may land a hair below 1.0
        result.matched = result.match_score >= self.acceptance_threshold - 1e-9
        return result

    def evaluate_rule(self, rule: MappingRule, pattern: DocumentPattern) -> bool:
        return self.evaluate_rule_advanced(rule, pattern).matched

    def _rank_matches(self, pattern: DocumentPattern) -> List[tuple]:
        matches = []
        for rule in self.rules.list_rules(active_only=True):
            evaluation = self.evaluate_rule_advanced(rule, pattern)
            if evaluation.matched:
                matches.append((rule, evaluation))
        matches.sort(key=lambda m: (
            -m[0].priority,
            -m[0].success_rate,
            -m[1].match_score,
            -(m[0].last_used_at.timestamp() if m[0].last_used_at else 0.0),
            m[0].created_at,
            m[0].id,
        ))
        return matches

    def find_matching_rules(self, pattern: DocumentPattern) -> List[MappingRule]:
        """Active matching rules, best first"""
        return [rule for rule, _ in self._rank_matches(pattern)]

    def select_rule(self, pattern: DocumentPattern) -> Optional[MappingRule]:
        matches = self._rank_matches(pattern)
        return matches[0][0] if matches else None

    # Application

    def _project(
        self,
        rule: MappingRule,
        template_id: str,
        fields: List[ExtractedField],
    ) -> List[TemplateFieldMapping]:
        values = _field_values(fields)
        mappings = []
        for projection in rule.projections:
            field = values.get(projection.field_name.lower())
            if field is None:
                continue
            mappings.append(TemplateFieldMapping(
                template_id=template_id,
                field_name=projection.field_name,
                target_location=projection.target_location,
                location_type=projection.location_type,
                description=projection.description,
                is_required=projection.is_required,
                display_order=projection.display_order,
                value=field.value,
            ))
        return mappings

    def apply_mapping_rules(
        self,
        pattern: DocumentPattern,
        template_id: str,
        fields: List[ExtractedField],
    ) -> List[TemplateFieldMapping]:
        """
        Apply the best matching rule.

        Returns:
            One mapping per projection whose field was extracted with a
            value; an empty list when no rule matches
        """
        rule = self.select_rule(pattern)
        if rule is None:
            logger.debug(f"No mapping rule matches supplier={pattern.supplier} type={pattern.document_type.value}")
            return []

        mappings = self._project(rule, template_id, fields)
        with self._locks.hold(rule.id):
            self.rules.update_rule(rule.id, {'last_used_at': datetime.utcnow()})
        if self.templates is not None and mappings:
            self.templates.increment_usage(template_id)

        logger.info(f"Applied rule '{rule.name}': {len(mappings)}/{len(rule.projections)} projections")
        self.event_bus.emit(EventType.RULE_APPLIED, data={
            'rule_id': rule.id,
            'rule_name': rule.name,
            'template_id': template_id,
            'mapped_fields': [m.field_name for m in mappings],
        })
        return mappings

    def test_rule(
        self,
        rule: MappingRule,
        pattern: DocumentPattern,
        fields: List[ExtractedField],
        template_id: str = "preview",
    ) -> RuleTestResult:
        """Preview a rule without recording usage"""
        evaluation = self.evaluate_rule_advanced(rule, pattern)
        result = RuleTestResult(rule_id=rule.id, matched=evaluation.matched, match_score=evaluation.match_score)
        if not rule.conditions:
            result.warnings.append("Rule has no conditions and never matches")
        for outcome in evaluation.condition_results:
            if not outcome.satisfied:
                result.warnings.append(f"Condition not met: {outcome.condition.describe()} ({outcome.detail})")

        result.mappings = self._project(rule, template_id, fields)
        projected = {p.field_name.lower() for p in rule.projections}
        result.unmapped_fields = [f.field_name for f in _field_values(fields).values()
                                  if f.field_name.lower() not in projected]
        mapped = {m.field_name.lower() for m in result.mappings}
        result.missing_required_fields = [p.field_name for p in rule.projections
                                          if p.is_required and p.field_name.lower() not in mapped]
        return result

    # Outcomes

    def _record_outcome(self, rule_id: str, outcome: float) -> MappingRule:
        # single UPDATE, no read-modify-write
        with self._locks.hold(rule_id):
            updated = self.rules.record_outcome(rule_id, outcome, self.ewma_alpha)
        if updated is None:
            raise RuleEngineError(f"Unknown rule: {rule_id}")
        logger.debug(f"Rule {rule_id} success rate now {updated.success_rate:.3f} after {updated.usage_count} uses")
        return updated

    def record_rule_success(self, rule_id: str) -> MappingRule:
        return self._record_outcome(rule_id, 1.0)

    def record_rule_failure(self, rule_id: str) -> MappingRule:
        return self._record_outcome(rule_id, 0.0)

    # Catalog

    def _check_rule(self, rule: MappingRule) -> None:
        if not rule.name or not rule.name.strip():
            raise RuleEngineError("Rule name is required")
        for condition in rule.conditions:
            if condition.kind == ConditionKind.FIELD_VALUE_MATCHES:
                if not condition.field_name:
                    raise RuleEngineError("FieldValueMatches condition needs a field name")
                try:
                    re.compile(condition.operand)
                except re.error as e:
                    raise RuleEngineError(f"Invalid condition regex {condition.operand!r}: {e}") from e
            elif not condition.operand:
                raise RuleEngineError(f"{condition.kind.value} condition needs an operand")

    def add_rule(self, rule: MappingRule) -> MappingRule:
        self._check_rule(rule)
        if not rule.conditions:
            logger.warning(f"Rule '{rule.name}' has no conditions and will never match")
        with self._locks.hold(rule.id):
            saved = self.rules.save_rule(rule)
        logger.info(f"Saved mapping rule '{saved.name}' ({saved.id})")
        return saved

    def create_rule_from_mappings(
        self,
        name: str,
        description: Optional[str],
        pattern: DocumentPattern,
        mappings: List[TemplateFieldMapping],
        include_pattern_conditions: bool = False,
    ) -> MappingRule:
        """
        Build a rule from a manual mapping session: one FieldExists condition
        per mapped field, optionally gated on the pattern's supplier, type and
        template category.
        """
        if not mappings:
            raise RuleEngineError("At least one field mapping is required")

        conditions: List[RuleCondition] = []
        if include_pattern_conditions:
            if pattern.supplier and pattern.supplier != "Unknown":
                conditions.append(RuleCondition(kind=ConditionKind.SUPPLIER_EQUALS, operand=pattern.supplier))
            conditions.append(RuleCondition(
                kind=ConditionKind.DOCUMENT_TYPE_EQUALS, operand=pattern.document_type.value,
            ))
            if pattern.template_category:
                conditions.append(RuleCondition(
                    kind=ConditionKind.TEMPLATE_CATEGORY_EQUALS, operand=pattern.template_category,
                ))

        seen = set()
        projections: List[RuleProjection] = []
        for mapping in sorted(mappings, key=lambda m: m.display_order):
            key = mapping.field_name.lower()
            if key in seen:
                continue
            seen.add(key)
            conditions.append(RuleCondition(kind=ConditionKind.FIELD_EXISTS, operand=mapping.field_name))
            projections.append(RuleProjection(
                field_name=mapping.field_name,
                target_location=mapping.target_location,
                location_type=mapping.location_type,
                description=mapping.description,
                is_required=mapping.is_required,
            ))

        for order, condition in enumerate(conditions):
            condition.display_order = order
        for order, projection in enumerate(projections):
            projection.display_order = order

        return self.add_rule(MappingRule(
            name=name,
            description=description,
            conditions=conditions,
            projections=projections,
            priority=self.default_priority,
            success_rate=self.initial_success_rate,
        ))

    def get_rule(self, rule_id: str) -> Optional[MappingRule]:
        return self.rules.get_rule(rule_id)

    def get_all_rules(self) -> List[MappingRule]:
        return self.rules.list_rules()

    def get_active_rules(self) -> List[MappingRule]:
        return self.rules.list_rules(active_only=True)

    def _set_active(self, rule_id: str, active: bool) -> MappingRule:
        with self._locks.hold(rule_id):
            updated = self.rules.update_rule(rule_id, {'is_active': active, 'updated_at': datetime.utcnow()})
        if updated is None:
            raise RuleEngineError(f"Unknown rule: {rule_id}")
        return updated

    def activate_rule(self, rule_id: str) -> MappingRule:
        return self._set_active(rule_id, True)

    def deactivate_rule(self, rule_id: str) -> MappingRule:
        return self._set_active(rule_id, False)

    def toggle_rule_activation(self, rule_id: str) -> MappingRule:
        rule = self.rules.get_rule(rule_id)
        if rule is None:
            raise RuleEngineError(f"Unknown rule: {rule_id}")
        return self._set_active(rule_id, not rule.is_active)

    def update_rule_priority(self, rule_id: str, priority: int) -> MappingRule:
        with self._locks.hold(rule_id):
            updated = self.rules.update_rule(rule_id, {'priority': int(priority), 'updated_at': datetime.utcnow()})
        if updated is None:
            raise RuleEngineError(f"Unknown rule: {rule_id}")
        return updated

    def delete_rule(self, rule_id: str) -> bool:
        """Permanently delete a rule with its conditions and projections"""
        with self._locks.hold(rule_id):
            deleted = self.rules.delete(rule_id)
        if deleted:
            logger.info(f"Deleted mapping rule {rule_id}")
        return deleted

    def get_statistics(self, top: int = 5) -> RuleEngineStatistics:
        rules = self.rules.list_rules()
        applications = sum(r.usage_count for r in rules)
        used = [r for r in rules if r.usage_count]
        overall = sum(r.success_rate * r.usage_count for r in used) / applications if applications else 0.0
        ranked = sorted(rules, key=lambda r: (-r.usage_count, -r.success_rate, r.name))[:top]
        return RuleEngineStatistics(
            total_rules=len(rules),
            active_rules=sum(1 for r in rules if r.is_active),
            total_applications=applications,
            overall_success_rate=overall,
            top_rules=[
                {'id': r.id, 'name': r.name, 'usage_count': r.usage_count, 'success_rate': r.success_rate}
                for r in ranked
            ],
        )
