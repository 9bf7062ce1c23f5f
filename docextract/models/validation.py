"""
Validation Result Models
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from docextract.models.document import ExtractedField, FieldType


class ValidationSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class FieldValidationError(BaseModel):
    """A value that could not be parsed as its declared type"""
    field_name: str
    field_type: FieldType = FieldType.TEXT
    value: Optional[str] = None
    message: str
    code: Optional[str] = None
    severity: ValidationSeverity = ValidationSeverity.ERROR


class FieldValidationWarning(BaseModel):
    """A value that parsed but is not in canonical form"""
    field_name: Optional[str] = None
    field_type: Optional[FieldType] = None
    value: Optional[str] = None
    suggested_value: Optional[str] = None
    message: str
    code: Optional[str] = None
    severity: ValidationSeverity = ValidationSeverity.WARNING


class FieldValidationResult(BaseModel):
    """
    Annotated view of a field list. ``original_fields`` and
    ``corrected_fields`` always have the same length and order as the input.
    """
    original_fields: List[ExtractedField] = Field(default_factory=list)
    corrected_fields: List[ExtractedField] = Field(default_factory=list)
    errors: List[FieldValidationError] = Field(default_factory=list)
    warnings: List[FieldValidationWarning] = Field(default_factory=list)
    auto_corrected_fields: List[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


class DocumentValidationResult(BaseModel):
    """Pre-flight checks on an input file"""
    file_path: str
    is_valid: bool = True
    file_size_bytes: int = 0
    extension: str = ""
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False
