"""
Validation Engine

Checks and normalizes extracted field values per declared field type:
- Dates must parse under one of the accepted formats (canonical ISO 8601)
- Currency/number/percentage values must reduce to a decimal
- Phone numbers must reduce to 10-15 digits
- Email, URL, account number, tax id and boolean format checks
- Free text and addresses are not checked

Unparsable values produce errors, normalisable values produce warnings with a
suggested value. Fields are never removed.
"""

import logging
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from docextract.config.docextract_config import DocExtractConfig
from docextract.models.document import DocumentType, ExtractedField, FieldType
from docextract.models.validation import (
    FieldValidationError,
    FieldValidationResult,
    FieldValidationWarning,
    ValidationSeverity,
)

logger = logging.getLogger(__name__)

CURRENCY_TOKENS = re.compile(r'(?i)\b(?:rm|myr|usd|sgd|eur|gbp)(?![a-z])|[$€£¥]')
EMAIL_RE = re.compile(r'^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$')
URL_RE = re.compile(r'^(?:https?://)?(?:[A-Za-z0-9\-]+\.)+[A-Za-z]{2,}(?:[/?#]\S*)?$', re.IGNORECASE)
TRUE_WORDS = {'true', 'yes', 'y', '1', 'checked', 'x'}
FALSE_WORDS = {'false', 'no', 'n', '0', 'unchecked'}
MONTH_FIRST = {'%m/%d/%Y', '%m-%d-%Y', '%m/%d/%y', '%m-%d-%y', '%m.%d.%Y'}
DAY_FIRST = {'%d/%m/%Y', '%d-%m-%Y', '%d/%m/%y', '%d-%m-%y', '%d.%m.%Y'}

# (canonical value or None when unparsable, message)
CheckResult = Tuple[Optional[str], Optional[str]]


class ValidationEngine:
    """
    Type-aware field validator.

    Config options (``validation`` section):
    - day_first: prefer DD/MM over MM/DD for ambiguous dates (default: True)
    - date_formats: accepted strptime formats
    - required_fields: per document type, names whose absence is warned about
    """

    def __init__(self, config: Optional[DocExtractConfig] = None, decimal_places: int = 2):
        config = config or DocExtractConfig.get_instance()
        self.day_first = bool(config.get('validation.day_first', True))
        self.date_formats = self._order_formats(list(config.get('validation.date_formats', ['%Y-%m-%d'])))
        self.required_fields: Dict[str, List[str]] = config.get('validation.required_fields', {}) or {}
        self.decimal_places = decimal_places

        self._checks = {
            FieldType.DATE: self._check_date,
            FieldType.CURRENCY: self._check_currency,
            FieldType.NUMBER: self._check_number,
            FieldType.PERCENTAGE: self._check_percentage,
            FieldType.PHONE_NUMBER: self._check_phone,
            FieldType.EMAIL: self._check_email,
            FieldType.URL: self._check_url,
            FieldType.ACCOUNT_NUMBER: self._check_identifier,
            FieldType.TAX_ID: self._check_identifier,
            FieldType.BOOLEAN: self._check_boolean,
        }

    def _order_formats(self, formats: List[str]) -> List[str]:
        preferred, deferred = (DAY_FIRST, MONTH_FIRST) if self.day_first else (MONTH_FIRST, DAY_FIRST)
        head = [f for f in formats if f not in deferred]
        tail = [f for f in formats if f in deferred]
        # keep the preferred family ahead of the other for ambiguous inputs
        return [f for f in head if f in preferred] + [f for f in head if f not in preferred] + tail

    def validate_extracted_fields(
        self,
        fields: List[ExtractedField],
        doc_type: DocumentType = DocumentType.UNKNOWN,
    ) -> FieldValidationResult:
        """
        Validate a list of fields.

        Returns:
            FieldValidationResult whose ``original_fields`` and
            ``corrected_fields`` mirror the input one-to-one
        """
        result = FieldValidationResult()

        for field in fields:
            original = field.model_copy(deep=True)
            corrected = field.model_copy(deep=True)

            canonical, message = self.validate_value(field.value, field.field_type)

            if canonical is None:
                original.validation_message = message
                corrected.validation_message = message
                result.errors.append(FieldValidationError(
                    field_name=field.field_name,
                    field_type=field.field_type,
                    value=field.value,
                    message=message,
                    code=f"invalid_{field.field_type.value.lower()}",
                ))
            elif canonical != field.value:
                corrected.value = canonical
                corrected.validation_message = message
                result.auto_corrected_fields.append(field.field_name)
                result.warnings.append(FieldValidationWarning(
                    field_name=field.field_name,
                    field_type=field.field_type,
                    value=field.value,
                    suggested_value=canonical,
                    message=message,
                    code='normalized',
                ))

            result.original_fields.append(original)
            result.corrected_fields.append(corrected)

        present = {f.field_name.lower() for f in fields if f.has_value}
        for name in self.required_fields.get(doc_type.value, []):
            if name.lower() not in present:
                result.warnings.append(FieldValidationWarning(
                    field_name=name,
                    message=f"Required field {name} was not extracted",
                    code='missing_required',
                    severity=ValidationSeverity.WARNING,
                ))

        logger.debug(
            f"Validated {len(fields)} fields: {len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result

    def validate_value(self, value: Optional[str], field_type: FieldType) -> CheckResult:
        """Return (canonical value, message); canonical is None when unparsable"""
        if value is None or not str(value).strip():
            return None, "Value is empty"
        check = self._checks.get(field_type)
        if check is None:
            return value, None
        return check(str(value).strip())

    def _check_date(self, value: str) -> CheckResult:
        parsed = self.parse_date(value)
        if parsed is None:
            return None, f"'{value}' is not a recognised date"
        iso = parsed.date().isoformat()
        return iso, None if iso == value else f"Date normalised to {iso}"

    def parse_date(self, value: str) -> Optional[datetime]:
        candidate = re.sub(r'\s+', ' ', value.strip())
        for fmt in self.date_formats:
            try:
                return datetime.strptime(candidate, fmt)
            except ValueError:
                continue
        return None

    def parse_decimal(self, value: str) -> Optional[Decimal]:
        """
        Strip currency codes, symbols and thousands separators.

        A comma is the decimal mark when it is the last separator and is
        followed by one or two digits ("1.234,56", "12,5"); otherwise commas
        group thousands ("1,234.56", "1,234").
        """
        text = CURRENCY_TOKENS.sub('', value).strip()
        negative = text.startswith('(') and text.endswith(')')
        if re.search(r'[A-Za-z]', text):
            return None
        if re.search(r',\d{1,2}\)?$', text) and text.count(',') == 1:
            text = text.replace('.', '').replace(',', '.')
        cleaned = re.sub(r'[^\d.\-]', '', text)
        if not cleaned or cleaned.count('.') > 1 or not re.search(r'\d', cleaned):
            return None
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            return None
        return -abs(amount) if negative else amount

    def _check_currency(self, value: str) -> CheckResult:
        amount = self.parse_decimal(value)
        if amount is None:
            return None, f"'{value}' is not a valid amount"
        quantum = Decimal(1).scaleb(-self.decimal_places)
        canonical = str(amount.quantize(quantum, rounding=ROUND_HALF_UP))
        return canonical, None if canonical == value else f"Amount normalised to {canonical}"

    def _check_number(self, value: str) -> CheckResult:
        amount = self.parse_decimal(value)
        if amount is None:
            return None, f"'{value}' is not a number"
        canonical = format(amount.normalize(), 'f') if amount == amount.to_integral() else str(amount)
        return canonical, None if canonical == value else f"Number normalised to {canonical}"

    def _check_percentage(self, value: str) -> CheckResult:
        amount = self.parse_decimal(value.replace('%', ''))
        if amount is None:
            return None, f"'{value}' is not a percentage"
        canonical = str(amount)
        return canonical, None if canonical == value else f"Percentage normalised to {canonical}"

    def _check_phone(self, value: str) -> CheckResult:
        if re.search(r'[A-Za-z]', value):
            return None, f"'{value}' contains letters"
        digits = re.sub(r'\D', '', value)
        if not 10 <= len(digits) <= 15:
            return None, f"Phone number must have 10-15 digits, found {len(digits)}"
        return value, None

    def _check_email(self, value: str) -> CheckResult:
        candidate = value.replace(' ', '').lower()
        if not EMAIL_RE.match(candidate):
            return None, f"'{value}' is not a valid email address"
        return candidate, None if candidate == value else "Email normalised"

    def _check_url(self, value: str) -> CheckResult:
        if not URL_RE.match(value):
            return None, f"'{value}' is not a valid URL"
        if not re.match(r'(?i)https?://', value):
            return f"https://{value}", "Added URL scheme"
        return value, None

    def _check_identifier(self, value: str) -> CheckResult:
        if not re.search(r'\d', value):
            return None, f"'{value}' contains no digits"
        canonical = re.sub(r'\s+', '', value)
        return canonical, None if canonical == value else "Whitespace removed from identifier"

    def _check_boolean(self, value: str) -> CheckResult:
        lowered = value.lower()
        if lowered in TRUE_WORDS:
            canonical = 'true'
        elif lowered in FALSE_WORDS:
            canonical = 'false'
        else:
            return None, f"'{value}' is not a yes/no value"
        return canonical, None if canonical == value else f"Boolean normalised to {canonical}"
