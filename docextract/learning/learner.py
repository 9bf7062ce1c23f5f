"""
Pattern Learner

Turns user corrections and confirmations into new or reinforced patterns.

Corrections go through a regression gate: the candidate and the current best
pattern are both replayed over the stored corpus for the (supplier, field)
pair plus the corrected document, and a candidate that does worse is
rejected. Accepted corrections either reinforce an equivalent stored pattern
or insert a new one.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from docextract.config.docextract_config import DocExtractConfig
from docextract.events import EventBus, EventType
from docextract.exceptions import PatternImportError, PatternLearningError
from docextract.learning.pattern_builder import build_pattern
from docextract.learning.pattern_store import PatternStore
from docextract.models.document import DocumentType, classify_field_type
from docextract.models.patterns import (
    PATTERN_FLAGS,
    LearnedPattern,
    LearningStatistics,
    PatternAccuracy,
    PatternImportResult,
    PatternLearningResult,
    PatternLearningType,
    PatternMergeStrategy,
    PatternRecommendation,
    PatternTestExample,
    PatternTestResult,
    apply_pattern,
    compute_success_rate,
)
from docextract.processors.field_rules import get_generic_rules, get_standard_field_names

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 1


def _same_value(extracted: Optional[str], expected: str) -> bool:
    if extracted is None:
        return False
    return extracted.strip().casefold() == expected.strip().casefold()


def corpus_match_rate(pattern: str, samples: List[Tuple[str, str]]) -> float:
    """Fraction of (text, expected) samples for which the pattern yields the expected value"""
    if not samples:
        return 0.0
    hits = sum(1 for text, expected in samples if _same_value(apply_pattern(pattern, text), expected))
    return hits / len(samples)


class PatternLearner:
    """
    Supervised learning loop over the PatternStore.

    Usage:
        learner = PatternLearner(store, event_bus)
        result = learner.learn_from_correction("TNB Berhad", "AccountNumber", text, "", "1234567890123")
        if result.requires_review:
            ...
    """

    def __init__(
        self,
        store: PatternStore,
        event_bus: Optional[EventBus] = None,
        config: Optional[DocExtractConfig] = None,
    ):
        self.store = store
        self.event_bus = event_bus or EventBus()
        config = config or DocExtractConfig.get_instance()
        self.context_window = int(config.get('learning.context_window', 40))
        self.anchor_tokens = int(config.get('learning.anchor_tokens', 3))
        self.review_margin = float(config.get('learning.review_margin', 0.05))
        self.priority_boost = int(config.get('learning.reinforcement_priority_boost', 1))
        self.min_confidence = float(config.get('extraction.min_pattern_confidence', 0.3))
        self.max_confidence = float(config.get('extraction.max_pattern_confidence', 0.99))

    # Learning

    def learn_from_correction(
        self,
        supplier: str,
        field_name: str,
        text: str,
        original_value: Optional[str],
        correct_value: str,
    ) -> PatternLearningResult:
        """
        Learn a pattern from a user correction.

        Returns:
            PatternLearningResult; ``success`` is False when no pattern was
            stored (value not in text, self-check failed, or regression)
        """
        result = PatternLearningResult()
        correct_value = (correct_value or '').strip()
        if not supplier or not field_name or not correct_value or not text:
            result.message = "Supplier, field name, text and corrected value are required"
            return result
        if supplier == "Unknown":
            result.warnings.append("Supplier is unknown; the pattern applies only to undetected suppliers")

        candidate = build_pattern(text, correct_value, self.context_window, self.anchor_tokens)
        if candidate is None:
            result.message = f"Corrected value '{correct_value}' was not found in the document text"
            return result

        if not _same_value(apply_pattern(candidate.pattern, text), correct_value):
            result.learning_type = PatternLearningType.PATTERN_REJECTED
            result.requires_review = True
            result.message = "Derived pattern does not reproduce the corrected value"
            result.warnings.append(f"Self-check failed for {candidate.pattern}")
            self._store_sample(supplier, field_name, text, correct_value)
            return result

        self._penalize_wrong_patterns(supplier, field_name, text, original_value, correct_value)

        existing = self.store.find(supplier, field_name, candidate.pattern)
        if existing is not None:
            return self._reinforce(existing, text, correct_value, PatternLearningType.PATTERN_REINFORCED)

        samples = [(s.text, s.expected_value) for s in self.store.get_samples(supplier, field_name)]
        if not samples:
            result.warnings.append("No regression corpus yet; candidate checked against this document only")
        if (text, correct_value) not in samples:
            samples.append((text, correct_value))

        incumbent = self.store.best_pattern(supplier, field_name)
        result.accuracy_before = corpus_match_rate(incumbent.pattern, samples) if incumbent else 0.0
        result.accuracy_after = corpus_match_rate(candidate.pattern, samples)

        if result.accuracy_after < result.accuracy_before:
            result.learning_type = PatternLearningType.PATTERN_REJECTED
            result.requires_review = True
            result.message = "Candidate pattern regresses against the stored corpus"
            result.warnings.append(
                f"Candidate matched {result.accuracy_after:.0%} of samples; "
                f"current pattern matches {result.accuracy_before:.0%}"
            )
            self._store_sample(supplier, field_name, text, correct_value)
            logger.info(f"Rejected regressing pattern for {supplier}/{field_name}: {candidate.pattern}")
            return result

        outranks = incumbent is not None and result.accuracy_after > result.accuracy_before
        priority = incumbent.priority + 1 if outranks else 0
        pattern = LearnedPattern(
            supplier=supplier,
            field_name=field_name,
            pattern=candidate.pattern,
            field_type=classify_field_type(field_name),
            priority=priority,
            usage_count=1,
            description=candidate.description,
            example_match=correct_value,
            min_confidence=self.min_confidence,
            max_confidence=self.max_confidence,
        )
        stored, created = self.store.add_pattern(pattern, self.priority_boost)
        self._store_sample(supplier, field_name, text, correct_value)

        if incumbent is None:
            result.learning_type = PatternLearningType.NEW_PATTERN
        elif outranks:
            result.learning_type = PatternLearningType.PATTERN_IMPROVED
        else:
            result.learning_type = PatternLearningType.PATTERN_CORRECTED

        result.success = True
        result.pattern = stored
        result.requires_review = (
            result.accuracy_delta < self.review_margin and incumbent is not None
        ) or not candidate.anchored
        if not candidate.anchored:
            result.warnings.append("No stable context found; pattern matches on value shape only")
        result.message = f"Learned pattern for {field_name}: {candidate.description}"

        event_type = EventType.PATTERN_IMPROVED if outranks else EventType.PATTERN_LEARNED
        self.event_bus.emit(event_type, data={
            'pattern_id': stored.id,
            'supplier': supplier,
            'field_name': field_name,
            'pattern': stored.pattern,
            'created': created,
            'accuracy_before': result.accuracy_before,
            'accuracy_after': result.accuracy_after,
        })
        logger.info(f"{result.learning_type.value} for {supplier}/{field_name}: {stored.pattern}")
        return result

    def learn_from_success(
        self,
        supplier: str,
        field_name: str,
        text: str,
        extracted_value: str,
        pattern_used: Optional[str] = None,
    ) -> PatternLearningResult:
        """
        Reinforce the pattern that produced a confirmed extraction.

        ``pattern_used`` is a pattern id or the pattern text.
        """
        pattern = self._resolve_pattern(supplier, field_name, pattern_used)
        if pattern is None:
            result = PatternLearningResult(message="No learned pattern to reinforce")
            result.warnings.append(
                f"Pattern {pattern_used!r} is not stored for {supplier}/{field_name}" if pattern_used
                else "Confirmation did not come from a learned pattern"
            )
            self._store_sample(supplier, field_name, text, extracted_value)
            return result
        return self._reinforce(pattern, text, extracted_value, PatternLearningType.PATTERN_REINFORCED)

    def record_extraction_failure(self, pattern_id: str) -> LearnedPattern:
        """Record that a pattern's extraction was rejected by a reviewer"""
        before = self.store.get(pattern_id)
        updated = self.store.record_failure(pattern_id)
        self._emit_accuracy_change(updated, before.success_rate if before else updated.success_rate)
        return updated

    def _reinforce(
        self,
        pattern: LearnedPattern,
        text: str,
        value: str,
        learning_type: PatternLearningType,
    ) -> PatternLearningResult:
        before = pattern.success_rate
        updated = self.store.reinforce(pattern.id, self.priority_boost)
        self._store_sample(pattern.supplier, pattern.field_name, text, value)
        self._emit_accuracy_change(updated, before)
        return PatternLearningResult(
            success=True,
            learning_type=learning_type,
            pattern=updated,
            accuracy_before=before,
            accuracy_after=updated.success_rate,
            requires_review=updated.success_rate < before,
            message=f"Reinforced pattern {updated.id}",
        )

    def _resolve_pattern(self, supplier: str, field_name: str, pattern_used: Optional[str]) -> Optional[LearnedPattern]:
        if not pattern_used:
            return None
        pattern = self.store.get(pattern_used)
        if pattern is not None and pattern.field_name == field_name:
            return pattern
        return self.store.find(supplier, field_name, pattern_used)

    def _penalize_wrong_patterns(
        self,
        supplier: str,
        field_name: str,
        text: str,
        original_value: Optional[str],
        correct_value: str,
    ) -> None:
        """Patterns that reproduce the rejected value on this text record a failure"""
        if not original_value or _same_value(original_value, correct_value):
            return
        for pattern in self.store.get_patterns(supplier, field_name):
            if _same_value(apply_pattern(pattern.pattern, text), original_value):
                self.record_extraction_failure(pattern.id)

    def _store_sample(self, supplier: str, field_name: str, text: str, value: str) -> None:
        if value and text and value.strip().casefold() in text.casefold():
            self.store.add_sample(supplier, field_name, text, value.strip())

    def _emit_accuracy_change(self, pattern: LearnedPattern, before: float) -> None:
        self.event_bus.emit(EventType.PATTERN_ACCURACY_CHANGED, data={
            'pattern_id': pattern.id,
            'supplier': pattern.supplier,
            'field_name': pattern.field_name,
            'accuracy_before': before,
            'accuracy_after': pattern.success_rate,
        })

    # Evaluation

    def test_pattern(
        self,
        pattern: str,
        texts: List[str],
        expected_values: Optional[List[Optional[str]]] = None,
        supplier: Optional[str] = None,
        field_name: Optional[str] = None,
    ) -> PatternTestResult:
        """Run a pattern over sample texts and recommend what to do with it"""
        result = PatternTestResult(pattern=pattern, total_tests=len(texts))
        try:
            re.compile(pattern, PATTERN_FLAGS)
        except re.error as e:
            result.error = f"Invalid regular expression: {e}"
            return result

        expected_values = list(expected_values or [])
        for index, text in enumerate(texts):
            expected = expected_values[index] if index < len(expected_values) else None
            extracted = apply_pattern(pattern, text)
            matched = _same_value(extracted, expected) if expected is not None else extracted is not None
            if matched:
                result.successful_matches += 1
            result.examples.append(PatternTestExample(
                text_excerpt=text[:120],
                expected_value=expected,
                extracted_value=extracted,
                matched=matched,
            ))

        failures = result.total_tests - result.successful_matches
        result.success_rate = result.successful_matches / result.total_tests if result.total_tests else 0.0
        result.average_confidence = max(
            self.min_confidence,
            min(self.max_confidence, compute_success_rate(result.successful_matches, failures)),
        )

        if supplier and field_name and self.store.find(supplier, field_name, pattern) is not None:
            result.recommendation = PatternRecommendation.MERGE
        elif result.success_rate >= 0.8:
            result.recommendation = PatternRecommendation.APPROVE
        elif result.success_rate >= 0.6:
            result.recommendation = PatternRecommendation.REVIEW
        elif result.success_rate >= 0.3:
            result.recommendation = PatternRecommendation.IMPROVE
        else:
            result.recommendation = PatternRecommendation.REJECT
        return result

    def generate_initial_patterns(
        self,
        supplier: str,
        doc_type: DocumentType,
        sample_texts: List[str],
    ) -> List[LearnedPattern]:
        """
        Seed a new supplier's patterns from the generic rules that match at
        least half of the sample documents.
        """
        generated: List[LearnedPattern] = []
        if not sample_texts:
            return generated

        for field_name in get_standard_field_names(doc_type):
            for rule, _confidence in get_generic_rules(doc_type, field_name):
                hits = [apply_pattern(rule, text) for text in sample_texts]
                matched = [h for h in hits if h]
                if len(matched) * 2 < len(sample_texts):
                    continue
                stored, created = self.store.add_pattern(LearnedPattern(
                    supplier=supplier,
                    field_name=field_name,
                    pattern=rule,
                    field_type=classify_field_type(field_name),
                    description=f"Generated from generic {doc_type.value} rule",
                    example_match=matched[0],
                    min_confidence=self.min_confidence,
                    max_confidence=self.max_confidence,
                ), priority_boost=0)
                if created:
                    generated.append(stored)
                break

        logger.info(f"Generated {len(generated)} initial patterns for {supplier}")
        for pattern in generated:
            self.event_bus.emit(EventType.PATTERN_LEARNED, data={
                'pattern_id': pattern.id,
                'supplier': supplier,
                'field_name': pattern.field_name,
                'pattern': pattern.pattern,
                'learning_type': PatternLearningType.PATTERN_GENERATED.value,
            })
        return generated

    # Catalog pass-throughs

    def add_pattern(
        self,
        supplier: str,
        field_name: str,
        pattern: str,
        priority: int = 0,
        description: Optional[str] = None,
    ) -> LearnedPattern:
        """Manually add a pattern; an equivalent stored pattern is reinforced instead"""
        try:
            re.compile(pattern, PATTERN_FLAGS)
        except re.error as e:
            raise PatternLearningError(f"Invalid regular expression: {e}") from e
        stored, _ = self.store.add_pattern(LearnedPattern(
            supplier=supplier,
            field_name=field_name,
            pattern=pattern,
            field_type=classify_field_type(field_name),
            priority=priority,
            description=description,
            min_confidence=self.min_confidence,
            max_confidence=self.max_confidence,
        ), self.priority_boost)
        return stored

    def remove_pattern(self, pattern_id: str, deactivate_only: bool = True) -> bool:
        return self.store.remove_pattern(pattern_id, deactivate_only)

    def get_pattern_accuracy(self, supplier: str, field_name: str) -> PatternAccuracy:
        return self.store.get_pattern_accuracy(supplier, field_name)

    def get_patterns_for_supplier(self, supplier: str) -> List[LearnedPattern]:
        return self.store.get_patterns_for_supplier(supplier)

    def get_patterns_for_field(self, field_name: str) -> List[LearnedPattern]:
        return self.store.get_patterns_for_field(field_name)

    def get_learning_statistics(self) -> LearningStatistics:
        return self.store.get_statistics()

    # Interchange

    def export_patterns(self, supplier: Optional[str] = None) -> str:
        """Serialize the catalog (optionally one supplier) to JSON"""
        patterns = self.store.get_patterns_for_supplier(supplier) if supplier else self.store.get_all_patterns()
        payload = {
            'version': EXPORT_FORMAT_VERSION,
            'exported_at': datetime.now(timezone.utc).isoformat(),
            'supplier': supplier,
            'patterns': [
                {
                    'supplier': p.supplier,
                    'field_name': p.field_name,
                    'pattern': p.pattern,
                    'field_type': p.field_type.value,
                    'priority': p.priority,
                    'success_count': p.success_count,
                    'failure_count': p.failure_count,
                    'success_rate': p.success_rate,
                    'usage_count': p.usage_count,
                    'is_active': p.is_active,
                    'version': p.version,
                    'description': p.description,
                    'example_match': p.example_match,
                }
                for p in patterns
            ],
        }
        return json.dumps(payload, indent=2)

    def import_patterns(
        self,
        payload: str,
        merge_strategy: PatternMergeStrategy = PatternMergeStrategy.SKIP_EXISTING,
    ) -> PatternImportResult:
        """
        Import a JSON catalog produced by ``export_patterns``.

        Raises:
            PatternImportError: the payload is not a pattern export
        """
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise PatternImportError(f"Invalid pattern export: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get('patterns'), list):
            raise PatternImportError("Invalid pattern export: missing 'patterns' list")

        result = PatternImportResult(total_patterns=len(data['patterns']))
        for index, item in enumerate(data['patterns']):
            try:
                outcome = self._import_one(item, merge_strategy)
            except (PatternLearningError, KeyError, TypeError, ValueError) as e:
                result.failed_patterns += 1
                result.errors.append(f"Pattern #{index}: {e}")
                continue
            if outcome == 'imported':
                result.imported_patterns += 1
            else:
                result.skipped_patterns += 1
            result.messages.append(f"{item['supplier']}/{item['field_name']}: {outcome}")

        logger.info(
            f"Imported {result.imported_patterns}/{result.total_patterns} patterns "
            f"({result.skipped_patterns} skipped, {result.failed_patterns} failed)"
        )
        return result

    def _import_one(self, item: Dict[str, Any], strategy: PatternMergeStrategy) -> str:
        supplier, field_name, pattern = item['supplier'], item['field_name'], item['pattern']
        if not supplier or not field_name or not pattern:
            raise ValueError("supplier, field_name and pattern are required")
        try:
            re.compile(pattern, PATTERN_FLAGS)
        except re.error as e:
            raise PatternLearningError(f"invalid regular expression: {e}") from e

        counts = {
            'priority': int(item.get('priority', 0)),
            'success_count': int(item.get('success_count', 0)),
            'failure_count': int(item.get('failure_count', 0)),
            'is_active': bool(item.get('is_active', True)),
        }

        existing = self.store.find(supplier, field_name, pattern)
        if existing is None:
            stored, _ = self.store.add_pattern(LearnedPattern(
                supplier=supplier,
                field_name=field_name,
                pattern=pattern,
                field_type=item.get('field_type') or classify_field_type(field_name),
                usage_count=int(item.get('usage_count', 0)),
                version=int(item.get('version', 1)),
                description=item.get('description'),
                example_match=item.get('example_match'),
                min_confidence=self.min_confidence,
                max_confidence=self.max_confidence,
                **counts,
            ))
            return 'imported'

        if strategy == PatternMergeStrategy.SKIP_EXISTING:
            return 'skipped'

        if strategy == PatternMergeStrategy.MERGE_BY_ACCURACY:
            incoming_rate = compute_success_rate(counts['success_count'], counts['failure_count'])
            if incoming_rate <= existing.success_rate:
                return 'skipped'

        if strategy == PatternMergeStrategy.CREATE_NEW_VERSION:
            counts = {
                'priority': max(existing.priority, counts['priority']),
                'success_count': existing.success_count + counts['success_count'],
                'failure_count': existing.failure_count + counts['failure_count'],
                'is_active': True,
                'version': existing.version + 1,
            }

        if item.get('description') and strategy != PatternMergeStrategy.CREATE_NEW_VERSION:
            counts['description'] = item['description']
        self.store.update_pattern(existing.id, counts)
        return 'imported'
