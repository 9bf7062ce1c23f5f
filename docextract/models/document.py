"""
Document and Extracted Field Models

Pydantic models for documents moving through the extraction pipeline and the
confidence-scored fields extracted from them.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docextract.exceptions import DocumentStateError


class DocumentType(str, Enum):
    """Supported document types"""
    UNKNOWN = "Unknown"
    UTILITY_BILL = "UtilityBill"
    TELECOM_BILL = "TelecomBill"
    INVOICE = "Invoice"
    RECEIPT = "Receipt"
    MEDICAL_BILL = "MedicalBill"
    BANK_STATEMENT = "BankStatement"
    INSURANCE_DOCUMENT = "InsuranceDocument"
    TAX_DOCUMENT = "TaxDocument"
    LEGAL_DOCUMENT = "LegalDocument"
    CONTRACT = "Contract"


class FieldType(str, Enum):
    """Value types a field can carry"""
    TEXT = "Text"
    NUMBER = "Number"
    CURRENCY = "Currency"
    DATE = "Date"
    PHONE_NUMBER = "PhoneNumber"
    EMAIL = "Email"
    ACCOUNT_NUMBER = "AccountNumber"
    ADDRESS = "Address"
    PERCENTAGE = "Percentage"
    URL = "Url"
    TAX_ID = "TaxId"
    BOOLEAN = "Boolean"


class ProcessingStatus(str, Enum):
    """Document processing status"""
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    NEEDS_REVIEW = "NeedsReview"
    CANCELLED = "Cancelled"
    SKIPPED = "Skipped"

    @property
    def is_terminal(self) -> bool:
        return self not in (ProcessingStatus.PENDING, ProcessingStatus.PROCESSING)


class ExtractionSource(str, Enum):
    """Which strategy produced a field value"""
    UNKNOWN = "Unknown"
    LEARNED_PATTERN = "LearnedPattern"
    RULE_BASED = "RuleBased"
    CLOUD_FALLBACK = "CloudFallback"
    USER_MANUAL = "UserManual"
    USER_CORRECTION = "UserCorrection"


class ConfidenceLevel(str, Enum):
    """Coarse confidence bands for display"""
    VERY_LOW = "VeryLow"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    VERY_HIGH = "VeryHigh"

    @classmethod
    def from_score(cls, score: float) -> 'ConfidenceLevel':
        if score >= 0.8:
            return cls.VERY_HIGH
        if score >= 0.6:
            return cls.HIGH
        if score >= 0.4:
            return cls.MEDIUM
        if score >= 0.2:
            return cls.LOW
        return cls.VERY_LOW


# Field name -> declared value type. Names not listed default to TEXT.
FIELD_TYPES: Dict[str, FieldType] = {
    'AccountNumber': FieldType.ACCOUNT_NUMBER,
    'MeterNumber': FieldType.ACCOUNT_NUMBER,
    'InvoiceNumber': FieldType.ACCOUNT_NUMBER,
    'PurchaseOrderNumber': FieldType.ACCOUNT_NUMBER,
    'CustomerName': FieldType.TEXT,
    'VendorName': FieldType.TEXT,
    'Vendor': FieldType.TEXT,
    'BillToName': FieldType.TEXT,
    'PatientName': FieldType.TEXT,
    'Provider': FieldType.TEXT,
    'AccountHolder': FieldType.TEXT,
    'PlanName': FieldType.TEXT,
    'PaymentTerms': FieldType.TEXT,
    'PaymentMethod': FieldType.TEXT,
    'UsagePeriod': FieldType.TEXT,
    'ServiceAddress': FieldType.ADDRESS,
    'BillingAddress': FieldType.ADDRESS,
    'VendorAddress': FieldType.ADDRESS,
    'BillToAddress': FieldType.ADDRESS,
    'BillDate': FieldType.DATE,
    'DueDate': FieldType.DATE,
    'InvoiceDate': FieldType.DATE,
    'StatementDate': FieldType.DATE,
    'DateOfService': FieldType.DATE,
    'Date': FieldType.DATE,
    'CurrentCharges': FieldType.CURRENCY,
    'PreviousBalance': FieldType.CURRENCY,
    'TotalAmountDue': FieldType.CURRENCY,
    'MonthlyCharges': FieldType.CURRENCY,
    'UsageCharges': FieldType.CURRENCY,
    'TaxesAndFees': FieldType.CURRENCY,
    'Subtotal': FieldType.CURRENCY,
    'TaxAmount': FieldType.CURRENCY,
    'TotalAmount': FieldType.CURRENCY,
    'Total': FieldType.CURRENCY,
    'Amount': FieldType.CURRENCY,
    'TotalCharges': FieldType.CURRENCY,
    'InsurancePayment': FieldType.CURRENCY,
    'PatientResponsibility': FieldType.CURRENCY,
    'BeginningBalance': FieldType.CURRENCY,
    'EndingBalance': FieldType.CURRENCY,
    'UsageAmount': FieldType.NUMBER,
    'DataUsage': FieldType.NUMBER,
    'MinutesUsed': FieldType.NUMBER,
    'PhoneNumber': FieldType.PHONE_NUMBER,
    'CustomerServicePhone': FieldType.PHONE_NUMBER,
    'Email': FieldType.EMAIL,
    'Website': FieldType.URL,
    'TaxId': FieldType.TAX_ID,
    'TaxRate': FieldType.PERCENTAGE,
}


def classify_field_type(field_name: str) -> FieldType:
    """Return the declared value type for a field name"""
    return FIELD_TYPES.get(field_name, FieldType.TEXT)


class FieldPosition(BaseModel):
    """Location of a field on a page, used only for UI highlighting"""
    page: int = 1
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    def to_bounding_box(self) -> str:
        return f"{self.page}:{self.x},{self.y},{self.width},{self.height}"

    @classmethod
    def from_bounding_box(cls, value: str) -> Optional['FieldPosition']:
        try:
            page, rect = value.split(':', 1)
            x, y, width, height = (float(part) for part in rect.split(','))
            return cls(page=int(page), x=x, y=y, width=width, height=height)
        except (ValueError, AttributeError):
            return None


class ExtractedField(BaseModel):
    """A single named value extracted from a document"""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    field_name: str
    value: str = ""
    confidence: float = 0.0
    field_type: FieldType = FieldType.TEXT
    source: ExtractionSource = ExtractionSource.UNKNOWN
    pattern_id: Optional[str] = None
    position: Optional[FieldPosition] = None
    is_verified: bool = False
    original_value: Optional[str] = None
    original_context: Optional[str] = None
    validation_message: Optional[str] = None
    extracted_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('confidence', mode='before')
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        """Keep confidence inside [0, 1]"""
        v = float(v or 0.0)
        return max(0.0, min(1.0, v))

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return ConfidenceLevel.from_score(self.confidence)

    @property
    def has_value(self) -> bool:
        return bool(self.value and self.value.strip())

    def apply_correction(self, correct_value: str) -> None:
        """Replace the value with a user correction, keeping the first original"""
        if self.original_value is None:
            self.original_value = self.value
        self.value = correct_value
        self.is_verified = True
        self.source = ExtractionSource.USER_CORRECTION
        self.confidence = 1.0

    def formatted_value(self) -> str:
        if self.field_type in (FieldType.CURRENCY, FieldType.NUMBER):
            try:
                amount = Decimal(self.value.replace(',', ''))
            except (InvalidOperation, AttributeError):
                return self.value
            if self.field_type == FieldType.CURRENCY:
                return f"{amount:,.2f}"
            return f"{amount:,}"
        if self.field_type == FieldType.PERCENTAGE and not self.value.endswith('%'):
            return f"{self.value}%"
        return self.value


class ExtractedDocument(BaseModel):
    """
    A document as it moves through the processing pipeline.

    Status transitions go through ``mark_status``; once a terminal status is
    reached the status can no longer change.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    file_path: str = ""
    file_name: str = ""
    file_size_bytes: int = 0
    document_type: DocumentType = DocumentType.UNKNOWN
    document_type_score: float = 0.0
    supplier: str = "Unknown"
    supplier_score: float = 0.0
    fields: List[ExtractedField] = Field(default_factory=list)
    overall_confidence: float = 0.0
    status: ProcessingStatus = ProcessingStatus.PENDING
    error_message: Optional[str] = None
    raw_text: str = ""
    is_scanned: bool = False
    processing_time_ms: int = 0
    processed_at: datetime = Field(default_factory=datetime.utcnow)
    needs_review: bool = False
    review_reasons: List[str] = Field(default_factory=list)
    template_id: Optional[str] = None
    # serialized TemplateFieldMapping entries produced by the rule engine
    template_mappings: List[Dict[str, Any]] = Field(default_factory=list)

    def mark_status(self, status: ProcessingStatus, error_message: Optional[str] = None) -> None:
        if self.status.is_terminal:
            raise DocumentStateError(
                f"Document {self.id} is already {self.status.value}; cannot move to {status.value}"
            )
        self.status = status
        if error_message is not None:
            self.error_message = error_message

    def fail(self, error_message: str) -> None:
        """Move to Failed, dropping any partial field set"""
        self.fields = []
        self.template_mappings = []
        self.overall_confidence = 0.0
        self.mark_status(ProcessingStatus.FAILED, error_message or "Processing failed")

    def add_review_reason(self, reason: str) -> None:
        if reason not in self.review_reasons:
            self.review_reasons.append(reason)
        self.needs_review = True

    def calculate_overall_confidence(self) -> float:
        if not self.fields:
            self.overall_confidence = 0.0
        else:
            self.overall_confidence = sum(f.confidence for f in self.fields) / len(self.fields)
        return self.overall_confidence

    def get_field(self, field_name: str) -> Optional[ExtractedField]:
        for extracted in self.fields:
            if extracted.field_name.lower() == field_name.lower():
                return extracted
        return None

    def get_fields_by_type(self, field_type: FieldType) -> List[ExtractedField]:
        return [f for f in self.fields if f.field_type == field_type]

    def needs_manual_review(self, min_confidence: float = 0.6) -> bool:
        if self.status == ProcessingStatus.NEEDS_REVIEW or self.needs_review:
            return True
        return any(f.confidence < min_confidence for f in self.fields)

    def to_document_pattern(self, template_category: Optional[str] = None):
        """Build a rule-matching snapshot of this document"""
        from docextract.models.rules import DocumentPattern

        values = {f.field_name: f.value for f in self.fields if f.has_value}
        return DocumentPattern(
            supplier=self.supplier,
            document_type=self.document_type,
            template_category=template_category,
            available_fields=set(values),
            field_values=values,
            metadata={'document_id': self.id, 'file_name': self.file_name},
        )
