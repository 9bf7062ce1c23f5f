"""
Pattern Store

Persists and ranks per-supplier, per-field extraction patterns. Counter and
priority mutations are serialized per (supplier, field_name); reads return
detached pydantic snapshots.
"""

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from docextract.config.docextract_config import DocExtractConfig
from docextract.db.repository import PatternRepository, PatternSampleRepository
from docextract.exceptions import PatternLearningError
from docextract.models.document import ExtractedField, ExtractionSource, classify_field_type
from docextract.models.patterns import (
    LearnedPattern,
    LearningStatistics,
    PatternAccuracy,
    PatternSample,
    apply_pattern,
)
from docextract.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


def rank_patterns(patterns: List[LearnedPattern]) -> List[LearnedPattern]:
    """Priority descending, then success rate descending"""
    return sorted(patterns, key=lambda p: (-p.priority, -p.success_rate, p.created_at))


class PatternStore:
    """Repository-backed catalog of learned patterns and their regression corpus"""

    def __init__(
        self,
        patterns: PatternRepository,
        samples: Optional[PatternSampleRepository] = None,
        config: Optional[DocExtractConfig] = None,
    ):
        self.patterns = patterns
        self.samples = samples
        config = config or DocExtractConfig.get_instance()
        self.corpus_size = int(config.get('learning.corpus_size', 50))
        self.min_confidence = float(config.get('extraction.min_pattern_confidence', 0.3))
        self.max_confidence = float(config.get('extraction.max_pattern_confidence', 0.99))
        self._locks = KeyedLock()

    def _key(self, supplier: str, field_name: str) -> Tuple[str, str]:
        return (supplier.lower(), field_name)

    # Reads

    def get(self, pattern_id: str) -> Optional[LearnedPattern]:
        return self.patterns.get_pattern(pattern_id)

    def find(self, supplier: str, field_name: str, pattern: str) -> Optional[LearnedPattern]:
        return self.patterns.find_by_key(supplier, field_name, pattern)

    def get_patterns(self, supplier: str, field_name: str, active_only: bool = True) -> List[LearnedPattern]:
        return rank_patterns(self.patterns.list_patterns(supplier, field_name, active_only=active_only))

    def get_patterns_for_supplier(self, supplier: str, active_only: bool = False) -> List[LearnedPattern]:
        return rank_patterns(self.patterns.list_patterns(supplier=supplier, active_only=active_only))

    def get_patterns_for_field(self, field_name: str, active_only: bool = False) -> List[LearnedPattern]:
        return rank_patterns(self.patterns.list_patterns(field_name=field_name, active_only=active_only))

    def get_all_patterns(self, active_only: bool = False) -> List[LearnedPattern]:
        return self.patterns.list_patterns(active_only=active_only)

    def best_pattern(self, supplier: str, field_name: str) -> Optional[LearnedPattern]:
        ranked = self.get_patterns(supplier, field_name)
        return ranked[0] if ranked else None

    # Read path used by extraction

    def match_field(self, text: str, supplier: str, field_name: str) -> Optional[Tuple[LearnedPattern, str]]:
        """
        Try ranked active patterns until one matches.

        Every attempted pattern has its usage counter incremented, whether it
        matches or not.
        """
        for pattern in self.get_patterns(supplier, field_name):
            updated = self.record_usage(pattern.id) or pattern
            value = apply_pattern(pattern.pattern, text)
            if value:
                return updated, value
        return None

    def try_local_patterns(
        self,
        text: str,
        supplier: str,
        field_names: Optional[List[str]] = None,
    ) -> List[ExtractedField]:
        """Extract every requested field (default: all with patterns) using learned patterns only"""
        if field_names is None:
            field_names = sorted({p.field_name for p in self.get_patterns_for_supplier(supplier, active_only=True)})

        fields: List[ExtractedField] = []
        for field_name in field_names:
            hit = self.match_field(text, supplier, field_name)
            if hit is None:
                continue
            pattern, value = hit
            fields.append(self.to_field(pattern, value))
        return fields

    def to_field(self, pattern: LearnedPattern, value: str) -> ExtractedField:
        return ExtractedField(
            field_name=pattern.field_name,
            value=value,
            confidence=self.confidence_of(pattern),
            field_type=classify_field_type(pattern.field_name),
            source=ExtractionSource.LEARNED_PATTERN,
            pattern_id=pattern.id,
        )

    def confidence_of(self, pattern: LearnedPattern) -> float:
        low = max(self.min_confidence, pattern.min_confidence)
        high = min(self.max_confidence, pattern.max_confidence)
        return max(low, min(high, pattern.success_rate))

    # Writes

    def _require(self, pattern_id: str) -> LearnedPattern:
        pattern = self.patterns.get_pattern(pattern_id)
        if pattern is None:
            raise PatternLearningError(f"Unknown pattern: {pattern_id}")
        return pattern

    def record_usage(self, pattern_id: str) -> Optional[LearnedPattern]:
        pattern = self._require(pattern_id)
        with self._locks.hold(self._key(pattern.supplier, pattern.field_name)):
            return self.patterns.increment(pattern_id, usage=1, touch=True)

    def record_success(self, pattern_id: str) -> LearnedPattern:
        pattern = self._require(pattern_id)
        with self._locks.hold(self._key(pattern.supplier, pattern.field_name)):
            return self.patterns.increment(pattern_id, success=1)

    def record_failure(self, pattern_id: str) -> LearnedPattern:
        pattern = self._require(pattern_id)
        with self._locks.hold(self._key(pattern.supplier, pattern.field_name)):
            return self.patterns.increment(pattern_id, failure=1)

    def reinforce(self, pattern_id: str, priority_boost: int = 1) -> LearnedPattern:
        """Record a success and raise priority"""
        pattern = self._require(pattern_id)
        with self._locks.hold(self._key(pattern.supplier, pattern.field_name)):
            return self.patterns.increment(pattern_id, success=1, priority=priority_boost)

    def add_pattern(self, pattern: LearnedPattern, priority_boost: int = 1) -> Tuple[LearnedPattern, bool]:
        """
        Insert a pattern, or reinforce the stored pattern with the same key.

        Returns:
            (stored pattern, created)
        """
        with self._locks.hold(self._key(pattern.supplier, pattern.field_name)):
            existing = self.patterns.find_by_key(pattern.supplier, pattern.field_name, pattern.pattern)
            if existing is None:
                try:
                    stored = self.patterns.insert(pattern)
                except IntegrityError:
                    # another store over the same catalog inserted this key first
                    existing = self.patterns.find_by_key(pattern.supplier, pattern.field_name, pattern.pattern)
                    if existing is None:
                        raise
                else:
                    logger.info(f"Added pattern for {pattern.supplier}/{pattern.field_name}: {pattern.pattern}")
                    return stored, True
            updated = self.patterns.increment(existing.id, success=1, priority=priority_boost)
            if not existing.is_active:
                updated = self.patterns.update_pattern(existing.id, {'is_active': True})
            return updated, False

    def update_pattern(self, pattern_id: str, data: Dict) -> LearnedPattern:
        pattern = self._require(pattern_id)
        with self._locks.hold(self._key(pattern.supplier, pattern.field_name)):
            return self.patterns.update_pattern(pattern_id, data)

    def remove_pattern(self, pattern_id: str, deactivate_only: bool = True) -> bool:
        pattern = self.patterns.get_pattern(pattern_id)
        if pattern is None:
            return False
        with self._locks.hold(self._key(pattern.supplier, pattern.field_name)):
            if deactivate_only:
                self.patterns.update_pattern(pattern_id, {'is_active': False})
                return True
            return self.patterns.delete(pattern_id)

    # Regression corpus

    def add_sample(self, supplier: str, field_name: str, text: str, expected_value: str) -> bool:
        if self.samples is None or not text or not expected_value:
            return False
        with self._locks.hold(self._key(supplier, field_name)):
            return self.samples.add_sample(supplier, field_name, text, expected_value, self.corpus_size)

    def get_samples(self, supplier: str, field_name: str) -> List[PatternSample]:
        if self.samples is None:
            return []
        return self.samples.get_samples(supplier, field_name)

    # Statistics

    def get_pattern_accuracy(self, supplier: str, field_name: str) -> PatternAccuracy:
        patterns = self.get_patterns(supplier, field_name, active_only=False)
        active = [p for p in patterns if p.is_active]
        rates = [p.success_rate for p in active]
        return PatternAccuracy(
            supplier=supplier,
            field_name=field_name,
            pattern_count=len(patterns),
            active_pattern_count=len(active),
            best_success_rate=max(rates) if rates else 0.0,
            average_success_rate=sum(rates) / len(rates) if rates else 0.0,
            total_usage=sum(p.usage_count for p in patterns),
        )

    def get_statistics(self) -> LearningStatistics:
        patterns = self.get_all_patterns()
        active = [p for p in patterns if p.is_active]
        by_field: Dict[str, int] = {}
        for p in active:
            by_field[p.field_name] = by_field.get(p.field_name, 0) + 1
        return LearningStatistics(
            total_patterns=len(patterns),
            active_patterns=len(active),
            suppliers=len({p.supplier.lower() for p in patterns}),
            total_usage=sum(p.usage_count for p in patterns),
            total_successes=sum(p.success_count for p in patterns),
            total_failures=sum(p.failure_count for p in patterns),
            average_success_rate=(sum(p.success_rate for p in active) / len(active)) if active else 0.0,
            corpus_samples=self.samples.count() if self.samples else 0,
            patterns_by_field=by_field,
        )
