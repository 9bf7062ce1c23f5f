from docextract.models.document import (
    ConfidenceLevel,
    DocumentType,
    ExtractedDocument,
    ExtractedField,
    ExtractionSource,
    FieldPosition,
    FieldType,
    ProcessingStatus,
    classify_field_type,
)
from docextract.models.patterns import (
    LearnedPattern,
    LearningStatistics,
    PatternAccuracy,
    PatternImportResult,
    PatternLearningResult,
    PatternLearningType,
    PatternMergeStrategy,
    PatternRecommendation,
    PatternSample,
    PatternTestResult,
)
from docextract.models.rules import (
    ConditionKind,
    DocumentPattern,
    LocationType,
    MappingRule,
    RuleCondition,
    RuleEngineStatistics,
    RuleEvaluationResult,
    RuleProjection,
    RuleTestResult,
    Template,
    TemplateFieldMapping,
)
from docextract.models.validation import (
    DocumentValidationResult,
    FieldValidationError,
    FieldValidationResult,
    FieldValidationWarning,
    ValidationSeverity,
)

__all__ = [
    'ConfidenceLevel', 'DocumentType', 'ExtractedDocument', 'ExtractedField',
    'ExtractionSource', 'FieldPosition', 'FieldType', 'ProcessingStatus',
    'classify_field_type',
    'LearnedPattern', 'LearningStatistics', 'PatternAccuracy', 'PatternImportResult',
    'PatternLearningResult', 'PatternLearningType', 'PatternMergeStrategy',
    'PatternRecommendation', 'PatternSample', 'PatternTestResult',
    'ConditionKind', 'DocumentPattern', 'LocationType', 'MappingRule', 'RuleCondition',
    'RuleEngineStatistics', 'RuleEvaluationResult', 'RuleProjection', 'RuleTestResult',
    'Template', 'TemplateFieldMapping',
    'DocumentValidationResult', 'FieldValidationError', 'FieldValidationResult',
    'FieldValidationWarning', 'ValidationSeverity',
]
