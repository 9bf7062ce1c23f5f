"""
Learned Pattern Models

A learned pattern is a supplier- and field-specific regular expression whose
first capture group yields the field value. Its success rate is derived from
recorded outcomes and never assigned directly.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

from docextract.models.document import FieldType

PATTERN_FLAGS = re.IGNORECASE | re.MULTILINE


class PatternLearningType(str, Enum):
    NEW_PATTERN = "NewPattern"
    PATTERN_IMPROVED = "PatternImproved"
    PATTERN_REINFORCED = "PatternReinforced"
    PATTERN_CORRECTED = "PatternCorrected"
    PATTERN_GENERATED = "PatternGenerated"
    PATTERN_MERGED = "PatternMerged"
    PATTERN_REJECTED = "PatternRejected"


class PatternRecommendation(str, Enum):
    APPROVE = "Approve"
    REVIEW = "Review"
    IMPROVE = "Improve"
    REJECT = "Reject"
    MERGE = "Merge"


class PatternMergeStrategy(str, Enum):
    SKIP_EXISTING = "SkipExisting"
    OVERWRITE_EXISTING = "OverwriteExisting"
    MERGE_BY_ACCURACY = "MergeByAccuracy"
    CREATE_NEW_VERSION = "CreateNewVersion"


def compute_success_rate(success_count: int, failure_count: int) -> float:
    """Laplace-smoothed success rate; 0.5 with no recorded outcomes"""
    return (success_count + 1) / (success_count + failure_count + 2)


def apply_pattern(pattern: str, text: str) -> Optional[str]:
    """Run a pattern against text; capture group 1 wins over the full match"""
    if not pattern or not text:
        return None
    try:
        match = re.search(pattern, text, PATTERN_FLAGS)
    except re.error:
        return None
    if not match:
        return None
    value = match.group(1) if match.re.groups >= 1 and match.group(1) is not None else match.group(0)
    value = value.strip()
    return value or None


class LearnedPattern(BaseModel):
    """Snapshot of a learned extraction pattern"""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    supplier: str
    field_name: str
    pattern: str
    field_type: FieldType = FieldType.TEXT
    priority: int = 0
    success_count: int = 0
    failure_count: int = 0
    usage_count: int = 0
    is_active: bool = True
    version: int = 1
    description: Optional[str] = None
    example_match: Optional[str] = None
    min_confidence: float = 0.3
    max_confidence: float = 0.99
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_used_at: Optional[datetime] = None

    @computed_field
    @property
    def success_rate(self) -> float:
        return compute_success_rate(self.success_count, self.failure_count)

    @property
    def confidence(self) -> float:
        return max(self.min_confidence, min(self.max_confidence, self.success_rate))

    @property
    def key(self) -> tuple:
        return (self.supplier, self.field_name, self.pattern)

    def try_extract(self, text: str) -> Optional[str]:
        return apply_pattern(self.pattern, text)


class PatternSample(BaseModel):
    """One entry of the regression corpus for a (supplier, field) pair"""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    supplier: str
    field_name: str
    text: str
    expected_value: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PatternLearningResult(BaseModel):
    """Outcome of a learn-from-correction or learn-from-success call"""
    success: bool = False
    learning_type: Optional[PatternLearningType] = None
    pattern: Optional[LearnedPattern] = None
    accuracy_before: float = 0.0
    accuracy_after: float = 0.0
    requires_review: bool = False
    message: str = ""
    warnings: List[str] = Field(default_factory=list)

    @property
    def accuracy_delta(self) -> float:
        return self.accuracy_after - self.accuracy_before


class PatternTestExample(BaseModel):
    text_excerpt: str
    expected_value: Optional[str] = None
    extracted_value: Optional[str] = None
    matched: bool = False


class PatternTestResult(BaseModel):
    """Result of running a candidate pattern over sample texts"""
    pattern: str
    total_tests: int = 0
    successful_matches: int = 0
    success_rate: float = 0.0
    average_confidence: float = 0.0
    examples: List[PatternTestExample] = Field(default_factory=list)
    recommendation: PatternRecommendation = PatternRecommendation.REJECT
    error: Optional[str] = None


class PatternImportResult(BaseModel):
    total_patterns: int = 0
    imported_patterns: int = 0
    skipped_patterns: int = 0
    failed_patterns: int = 0
    messages: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_patterns == 0


class PatternAccuracy(BaseModel):
    supplier: str
    field_name: str
    pattern_count: int = 0
    active_pattern_count: int = 0
    best_success_rate: float = 0.0
    average_success_rate: float = 0.0
    total_usage: int = 0


class LearningStatistics(BaseModel):
    total_patterns: int = 0
    active_patterns: int = 0
    suppliers: int = 0
    total_usage: int = 0
    total_successes: int = 0
    total_failures: int = 0
    average_success_rate: float = 0.0
    corpus_samples: int = 0
    patterns_by_field: Dict[str, int] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()
