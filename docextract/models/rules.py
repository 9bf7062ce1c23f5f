"""
Mapping Rule and Template Models

Rules are condition-gated recipes that project extracted fields onto
template locations (e.g. spreadsheet cells).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docextract.models.document import DocumentType


class ConditionKind(str, Enum):
    SUPPLIER_EQUALS = "SupplierEquals"
    DOCUMENT_TYPE_EQUALS = "DocumentTypeEquals"
    TEMPLATE_CATEGORY_EQUALS = "TemplateCategoryEquals"
    FIELD_EXISTS = "FieldExists"
    FIELD_VALUE_MATCHES = "FieldValueMatches"


class LocationType(str, Enum):
    EXCEL_CELL = "ExcelCell"
    PDF_FIELD = "PDFField"
    WORD_BOOKMARK = "WordBookmark"
    WORD_TABLE_CELL = "WordTableCell"
    CUSTOM = "Custom"


class DocumentPattern(BaseModel):
    """Point-in-time snapshot of a document used as rule-matching input"""
    supplier: Optional[str] = None
    document_type: DocumentType = DocumentType.UNKNOWN
    template_category: Optional[str] = None
    available_fields: Set[str] = Field(default_factory=set)
    field_values: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def has_field(self, field_name: str) -> bool:
        wanted = field_name.lower()
        return any(name.lower() == wanted for name in self.available_fields)

    def get_value(self, field_name: str) -> Optional[str]:
        wanted = field_name.lower()
        for name, value in self.field_values.items():
            if name.lower() == wanted:
                return value
        return None


class RuleCondition(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: ConditionKind
    operand: str = ""
    field_name: Optional[str] = None
    weight: float = 1.0
    case_sensitive: bool = False
    display_order: int = 0

    @field_validator('weight')
    @classmethod
    def positive_weight(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Condition weight must be positive")
        return v

    def describe(self) -> str:
        if self.kind == ConditionKind.FIELD_EXISTS:
            return f"{self.operand} exists"
        if self.kind == ConditionKind.FIELD_VALUE_MATCHES:
            return f"{self.field_name} matches /{self.operand}/"
        return f"{self.kind.value} '{self.operand}'"


class RuleProjection(BaseModel):
    """One FieldName -> TargetLocation projection of a rule"""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    field_name: str
    target_location: str
    location_type: LocationType = LocationType.EXCEL_CELL
    description: Optional[str] = None
    is_required: bool = False
    display_order: int = 0


class MappingRule(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    description: Optional[str] = None
    conditions: List[RuleCondition] = Field(default_factory=list)
    projections: List[RuleProjection] = Field(default_factory=list)
    priority: int = 100
    success_rate: float = 1.0
    usage_count: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    last_used_at: Optional[datetime] = None

    @field_validator('success_rate')
    @classmethod
    def rate_in_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("success_rate must be in [0, 1]")
        return v


class TemplateFieldMapping(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    template_id: str
    field_name: str
    target_location: str
    location_type: LocationType = LocationType.EXCEL_CELL
    description: Optional[str] = None
    is_required: bool = False
    display_order: int = 0
    format_instructions: Optional[str] = None
    value: Optional[str] = None


class Template(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    file_path: Optional[str] = None
    usage_count: int = 0
    is_active: bool = True
    field_mappings: List[TemplateFieldMapping] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ConditionResult(BaseModel):
    condition: RuleCondition
    satisfied: bool
    detail: str = ""


class RuleEvaluationResult(BaseModel):
    rule_id: str
    rule_name: str
    matched: bool = False
    match_score: float = 0.0
    condition_results: List[ConditionResult] = Field(default_factory=list)


class RuleTestResult(BaseModel):
    """Preview of what applying a rule would produce"""
    rule_id: str
    matched: bool = False
    match_score: float = 0.0
    mappings: List[TemplateFieldMapping] = Field(default_factory=list)
    unmapped_fields: List[str] = Field(default_factory=list)
    missing_required_fields: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class RuleEngineStatistics(BaseModel):
    total_rules: int = 0
    active_rules: int = 0
    total_applications: int = 0
    overall_success_rate: float = 0.0
    top_rules: List[Dict[str, Any]] = Field(default_factory=list)
