"""
Static extraction catalogs

- STANDARD_FIELD_NAMES: the fields attempted for each document type
- GENERIC_RULES: per-type, per-field (regex, confidence) pairs, most specific first
- SUPPLIER_SIGNATURES: known issuers with keyword/alias sets
- DOCUMENT_TYPE_KEYWORDS: weighted classification cues

All regexes are compiled with IGNORECASE | MULTILINE. Capture group 1 holds
the value when present.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from docextract.models.document import DocumentType

DATE_VALUE = r'(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}|\d{4}-\d{2}-\d{2}|\d{1,2}\s+[A-Za-z]{3,9}\s+\d{4}|[A-Za-z]{3,9}\s+\d{1,2},\s*\d{4})'
AMOUNT_VALUE = r'(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)'
CURRENCY_PREFIX = r'(?:rm|myr|usd|\$)?\s*'

STANDARD_FIELD_NAMES: Dict[DocumentType, List[str]] = {
    DocumentType.UTILITY_BILL: [
        'AccountNumber', 'CustomerName', 'ServiceAddress', 'BillingAddress', 'BillDate',
        'DueDate', 'CurrentCharges', 'PreviousBalance', 'TotalAmountDue', 'UsageAmount',
        'UsagePeriod', 'MeterNumber', 'CustomerServicePhone',
    ],
    DocumentType.TELECOM_BILL: [
        'AccountNumber', 'CustomerName', 'BillingAddress', 'PhoneNumber', 'BillDate',
        'DueDate', 'MonthlyCharges', 'UsageCharges', 'TaxesAndFees', 'TotalAmountDue',
        'PlanName', 'DataUsage', 'MinutesUsed',
    ],
    DocumentType.INVOICE: [
        'InvoiceNumber', 'InvoiceDate', 'DueDate', 'VendorName', 'VendorAddress',
        'BillToName', 'BillToAddress', 'Subtotal', 'TaxAmount', 'TotalAmount',
        'PaymentTerms', 'PurchaseOrderNumber',
    ],
    DocumentType.RECEIPT: ['Date', 'Vendor', 'Total', 'PaymentMethod'],
    DocumentType.MEDICAL_BILL: [
        'PatientName', 'DateOfService', 'Provider', 'TotalCharges',
        'InsurancePayment', 'PatientResponsibility',
    ],
    DocumentType.BANK_STATEMENT: [
        'AccountNumber', 'StatementDate', 'BeginningBalance', 'EndingBalance', 'AccountHolder',
    ],
}

DEFAULT_FIELD_NAMES: List[str] = ['Date', 'Amount']

Rule = Tuple[str, float]

_ACCOUNT_NUMBER: List[Rule] = [
    (r'account\s*no\.?\s*:?\s*(\d{10,15})', 0.95),
    (r'acc\.?\s*no\.?\s*:?\s*(\d{10,15})', 0.90),
    (r'customer\s*no\.?\s*:?\s*(\d{10,15})', 0.85),
    (r'\b(\d{12,15})\b', 0.70),
]

_DUE_DATE: List[Rule] = [
    (r'due\s*date\s*:?\s*(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})', 0.95),
    (r'payment\s*due\s*:?\s*(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})', 0.90),
    (r'due\s*date\s*:?\s*' + DATE_VALUE, 0.85),
]

_AMOUNT_FALLBACKS: List[Rule] = [
    (r'rm\s*(\d+\.\d{2})', 0.75),
    (r'\$(\d+\.\d{2})', 0.70),
]

_CUSTOMER_NAME: List[Rule] = [
    (r'^\s*(?:customer|account)\s*name\s*:?[ \t]*([A-Za-z][A-Za-z .\'\-]{1,60}?)[ \t]*$', 0.90),
    (r'^\s*name\s*:[ \t]*([A-Za-z][A-Za-z .\'\-]{1,60}?)[ \t]*$', 0.75),
]

_PHONE: List[Rule] = [
    (r'(?<![\d\-])(\+?6?0?\d{2}-?\d{3,4}-?\d{4})(?![\d\-])', 0.95),
    (r'(\(\d{3}\)\s*\d{3}-\d{4})(?![\d\-])', 0.90),
    (r'(?<![\d\-])(\d{3}-\d{3}-\d{4})(?![\d\-])', 0.85),
]


def _labelled_amount(label: str, confidence: float) -> Rule:
    return (label + r'\s*:?\s*' + CURRENCY_PREFIX + AMOUNT_VALUE, confidence)


def _labelled_date(label: str, confidence: float) -> Rule:
    return (label + r'\s*:?\s*' + DATE_VALUE, confidence)


def _labelled_line(label: str, confidence: float) -> Rule:
    return (r'^\s*' + label + r'\s*:[ \t]*([^\n]{2,80}?)[ \t]*$', confidence)


GENERIC_RULES: Dict[DocumentType, Dict[str, List[Rule]]] = {
    DocumentType.UTILITY_BILL: {
        'AccountNumber': _ACCOUNT_NUMBER,
        'CustomerName': _CUSTOMER_NAME,
        'ServiceAddress': [_labelled_line(r'(?:service|premise|supply)\s*address', 0.85)],
        'BillingAddress': [_labelled_line(r'(?:billing|mailing)\s*address', 0.85)],
        'TotalAmountDue': [
            (r'total\s*amount\s*due\s*:?\s*rm\s*(\d+\.?\d*)', 0.95),
            (r'amount\s*due\s*:?\s*rm\s*(\d+\.?\d*)', 0.90),
            (r'total\s*:?\s*rm\s*(\d+\.?\d*)', 0.85),
            _labelled_amount(r'total\s*amount\s*due', 0.80),
        ] + _AMOUNT_FALLBACKS,
        'CurrentCharges': [_labelled_amount(r'current\s*charges?', 0.90)],
        'PreviousBalance': [_labelled_amount(r'(?:previous|outstanding)\s*balance', 0.90)],
        'BillDate': [
            (r'bill\s*date\s*:?\s*(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})', 0.95),
            (r'(?<!due )date\s*:?\s*(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})', 0.85),
            (r'(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})', 0.75),
        ],
        'DueDate': _DUE_DATE,
        'UsageAmount': [(r'(?:usage|consumption)\s*:?\s*(\d+(?:\.\d+)?)\s*(?:kwh|m3|units)', 0.85)],
        'UsagePeriod': [_labelled_line(r'(?:billing|usage|service)\s*period', 0.80)],
        'MeterNumber': [
            (r'meter\s*no\.?\s*:?\s*(\d{8,12})', 0.95),
            (r'meter\s*:?\s*(\d{8,12})', 0.85),
        ],
        'CustomerServicePhone': [
            (r'(?:customer\s*service|hotline|call\s*us)[^\n\d]{0,20}(\+?\d[\d\s\-]{8,16}\d)', 0.85),
        ],
    },
    DocumentType.TELECOM_BILL: {
        'AccountNumber': [_ACCOUNT_NUMBER[0], _ACCOUNT_NUMBER[3]],
        'CustomerName': _CUSTOMER_NAME,
        'BillingAddress': [_labelled_line(r'(?:billing|mailing)\s*address', 0.85)],
        'PhoneNumber': _PHONE,
        'BillDate': [
            (r'bill\s*date\s*:?\s*(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})', 0.95),
            (r'(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})', 0.75),
        ],
        'DueDate': _DUE_DATE,
        'MonthlyCharges': [
            (r'monthly\s*charges?\s*:?\s*rm\s*(\d+\.?\d*)', 0.95),
            _labelled_amount(r'monthly\s*charges?', 0.85),
        ] + _AMOUNT_FALLBACKS,
        'UsageCharges': [_labelled_amount(r'usage\s*charges?', 0.90)],
        'TaxesAndFees': [_labelled_amount(r'(?:taxes\s*(?:and|&)\s*fees|service\s*tax|sst)', 0.85)],
        'TotalAmountDue': [
            (r'total\s*amount\s*due\s*:?\s*rm\s*(\d+\.?\d*)', 0.95),
            _labelled_amount(r'(?:total\s*amount\s*due|amount\s*due)', 0.85),
        ],
        'PlanName': [_labelled_line(r'(?:plan|package)(?:\s*name)?', 0.80)],
        'DataUsage': [(r'data\s*(?:usage|used)?\s*:?\s*(\d+(?:\.\d+)?)\s*(?:gb|mb)', 0.85)],
        'MinutesUsed': [(r'(\d+)\s*(?:minutes|mins)\b', 0.80)],
    },
    DocumentType.INVOICE: {
        'InvoiceNumber': [
            (r'invoice\s*(?:no\.?|number|#)\s*:?\s*([A-Z0-9][A-Z0-9\-]*\d[A-Z0-9\-]*)', 0.95),
            (r'\binv\.?\s*(?:no\.?|#)?\s*:?\s*([A-Z0-9]*\d[A-Z0-9\-]*)', 0.85),
            (r'\b(INV-\d{4,8})\b', 0.80),
        ],
        'InvoiceDate': [
            (r'invoice\s*date\s*:?\s*(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})', 0.95),
            _labelled_date(r'invoice\s*date', 0.90),
            (r'(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})', 0.75),
        ],
        'DueDate': _DUE_DATE,
        'VendorName': [_labelled_line(r'(?:vendor|supplier|from)', 0.80)],
        'VendorAddress': [_labelled_line(r'(?:vendor|supplier)\s*address', 0.80)],
        'BillToName': [_labelled_line(r'bill\s*to', 0.85)],
        'BillToAddress': [_labelled_line(r'bill\s*to\s*address', 0.85)],
        'Subtotal': [_labelled_amount(r'sub\s*-?\s*total', 0.90)],
        'TaxAmount': [_labelled_amount(r'(?:tax\s*amount|sales\s*tax|gst|sst|vat)', 0.85)],
        'TotalAmount': [
            (r'total\s*amount\s*:?\s*rm\s*(\d+\.?\d*)', 0.95),
            (r'(?<!sub)total\s*:?\s*rm\s*(\d+\.?\d*)', 0.85),
            _labelled_amount(r'(?:grand\s*total|total\s*amount|amount\s*due)', 0.80),
        ] + _AMOUNT_FALLBACKS,
        'PaymentTerms': [
            (r'(?:payment\s*)?terms\s*:?\s*(net\s*\d{1,3}|due\s*on\s*receipt|cod)', 0.85),
        ],
        'PurchaseOrderNumber': [
            (r'(?:p\.?o\.?|purchase\s*order)\s*(?:no\.?|number|#)?\s*:?\s*([A-Z0-9]*\d[A-Z0-9\-]*)', 0.85),
        ],
    },
    DocumentType.RECEIPT: {
        'Date': [
            _labelled_date(r'date', 0.85),
            (r'(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})', 0.70),
            (r'(\d{4}-\d{2}-\d{2})', 0.70),
        ],
        'Total': [
            _labelled_amount(r'(?<!sub)total', 0.85),
        ] + _AMOUNT_FALLBACKS,
        'PaymentMethod': [
            (r'\b(cash|visa|mastercard|amex|debit\s*card|credit\s*card|e-?wallet)\b', 0.80),
        ],
    },
    DocumentType.MEDICAL_BILL: {
        'PatientName': [_labelled_line(r'patient(?:\s*name)?', 0.85)],
        'DateOfService': [_labelled_date(r'(?:date\s*of\s*service|service\s*date)', 0.90)],
        'Provider': [_labelled_line(r'(?:provider|physician|doctor)', 0.80)],
        'TotalCharges': [_labelled_amount(r'total\s*charges?', 0.90)],
        'InsurancePayment': [_labelled_amount(r'insurance\s*(?:payment|paid)', 0.85)],
        'PatientResponsibility': [_labelled_amount(r'(?:patient\s*responsibility|you\s*owe|balance\s*due)', 0.85)],
    },
    DocumentType.BANK_STATEMENT: {
        'AccountNumber': _ACCOUNT_NUMBER,
        'StatementDate': [_labelled_date(r'statement\s*date', 0.90)],
        'BeginningBalance': [_labelled_amount(r'(?:beginning|opening)\s*balance', 0.90)],
        'EndingBalance': [_labelled_amount(r'(?:ending|closing)\s*balance', 0.90)],
        'AccountHolder': [_labelled_line(r'account\s*(?:holder|name)', 0.85)],
    },
    DocumentType.UNKNOWN: {
        'Date': [
            (r'(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})', 0.70),
            (r'(\d{4}-\d{2}-\d{2})', 0.70),
        ],
        'Amount': _AMOUNT_FALLBACKS,
    },
}


def get_standard_field_names(doc_type: DocumentType) -> List[str]:
    return list(STANDARD_FIELD_NAMES.get(doc_type, DEFAULT_FIELD_NAMES))


def get_generic_rules(doc_type: DocumentType, field_name: str) -> List[Rule]:
    """Rules for a field under a document type, falling back to the default set"""
    rules = GENERIC_RULES.get(doc_type, {}).get(field_name)
    if rules is None:
        rules = GENERIC_RULES[DocumentType.UNKNOWN].get(field_name, [])
    return list(rules)


def find_generic_rules(field_name: str) -> List[Rule]:
    """First rule list defined for a field under any document type"""
    for rules_by_field in GENERIC_RULES.values():
        if field_name in rules_by_field:
            return list(rules_by_field[field_name])
    return []


@dataclass(frozen=True)
class SupplierSignature:
    name: str
    keywords: Tuple[str, ...]
    aliases: Tuple[str, ...] = ()
    document_types: Tuple[DocumentType, ...] = ()


SUPPLIER_SIGNATURES: List[SupplierSignature] = [
    SupplierSignature('TNB Berhad', ('tenaga nasional', 'tnb berhad'), ('tnb',), (DocumentType.UTILITY_BILL,)),
    SupplierSignature('Indah Water Konsortium', ('indah water',), ('iwk',), (DocumentType.UTILITY_BILL,)),
    SupplierSignature('Air Selangor', ('air selangor',), ('syabas',), (DocumentType.UTILITY_BILL,)),
    SupplierSignature('Gas Malaysia', ('gas malaysia',), ('gas teknologi',), (DocumentType.UTILITY_BILL,)),
    SupplierSignature('Maxis', ('maxis',), ('hotlink',), (DocumentType.TELECOM_BILL,)),
    SupplierSignature('Celcom', ('celcom',), ('xpax',), (DocumentType.TELECOM_BILL,)),
    SupplierSignature('Digi', ('digi telecommunications',), ('digi',), (DocumentType.TELECOM_BILL,)),
    SupplierSignature('Telekom Malaysia', ('telekom malaysia',), ('unifi', 'streamyx', 'tm'), (DocumentType.TELECOM_BILL,)),
    SupplierSignature('TIME dotCom', ('time dotcom',), ('time internet',), (DocumentType.TELECOM_BILL,)),
    SupplierSignature('ConEd', ('consolidated edison',), ('coned', 'con ed'), (DocumentType.UTILITY_BILL,)),
    SupplierSignature('Verizon', ('verizon',), (), (DocumentType.TELECOM_BILL,)),
    SupplierSignature('PG&E', ('pacific gas',), ('pge', 'pg&e'), (DocumentType.UTILITY_BILL,)),
    SupplierSignature('ACME Corp', ('acme corporation', 'acme corp'), (), (DocumentType.INVOICE,)),
]

LEGAL_ENTITY_PATTERNS: List[str] = [
    r'([A-Z][a-z]+\s+[A-Z][a-z]+\s+(?:Berhad|Sdn\.?\s*Bhd\.?|Bhd\.?)(?![A-Za-z]))',
    r'([A-Z][a-z]+\s+(?:Corporation|Corp\.?|Company|Co\.?|Inc\.?|LLC)(?![A-Za-z]))',
    r'([A-Z][A-Z][A-Z]+\s*(?:Berhad|Corporation|Corp\.?)(?![A-Za-z]))',
]

LEGAL_ENTITY_TOKENS: Tuple[str, ...] = ('Berhad', 'Sdn Bhd', 'Corporation', 'Company', 'Ltd', 'Inc')


@dataclass(frozen=True)
class TypeCue:
    pattern: str
    weight: float = 1.0


# Declaration order is the tie-break order.
DOCUMENT_TYPE_KEYWORDS: Dict[DocumentType, List[TypeCue]] = {
    DocumentType.UTILITY_BILL: [
        TypeCue(r'\belectric(?:ity)?\b', 1.5), TypeCue(r'\bgas\b'), TypeCue(r'\bwater\b'),
        TypeCue(r'\butility\b', 1.5), TypeCue(r'\bkwh\b', 2.0), TypeCue(r'\bmeter\s*(?:reading|no)', 2.0),
        TypeCue(r'\btotal\s*amount\s*due\b', 0.5), TypeCue(r'\baccount\s*no\b', 0.5),
    ],
    DocumentType.TELECOM_BILL: [
        TypeCue(r'\bphone\b'), TypeCue(r'\bmobile\b', 1.5), TypeCue(r'\bdata\b'),
        TypeCue(r'\bminutes\b', 1.5), TypeCue(r'\bsms\b', 1.5), TypeCue(r'\binternet\b'),
        TypeCue(r'\bbroadband\b', 1.5), TypeCue(r'\bmonthly\s*charges?\b', 1.5),
    ],
    DocumentType.INVOICE: [
        TypeCue(r'\binvoice\b', 2.0), TypeCue(r'\bbill\s*to\b', 1.5), TypeCue(r'\binvoice\s*(?:no|number|#)', 2.0),
        TypeCue(r'\bpayment\s*due\b'), TypeCue(r'\bsub\s*-?\s*total\b'), TypeCue(r'\bpurchase\s*order\b'),
    ],
    DocumentType.RECEIPT: [
        TypeCue(r'\breceipt\b', 2.0), TypeCue(r'\bpurchase\b'), TypeCue(r'\btransaction\b'),
        TypeCue(r'\bcash\b'), TypeCue(r'\bchange\b'), TypeCue(r'\bthank\s*you\b', 0.5),
    ],
    DocumentType.MEDICAL_BILL: [
        TypeCue(r'\bmedical\b', 1.5), TypeCue(r'\bhospital\b', 1.5), TypeCue(r'\bdoctor\b'),
        TypeCue(r'\bpatient\b', 1.5), TypeCue(r'\bdiagnosis\b', 1.5), TypeCue(r'\bclinic\b'),
    ],
    DocumentType.BANK_STATEMENT: [
        TypeCue(r'\bstatement\b'), TypeCue(r'\b(?:opening|beginning)\s*balance\b', 2.0),
        TypeCue(r'\b(?:closing|ending)\s*balance\b', 2.0), TypeCue(r'\bwithdrawals?\b'), TypeCue(r'\bdeposits?\b'),
    ],
    DocumentType.INSURANCE_DOCUMENT: [
        TypeCue(r'\bpolicy\s*(?:no|number)\b', 2.0), TypeCue(r'\bpremium\b', 1.5),
        TypeCue(r'\binsured\b', 1.5), TypeCue(r'\bcoverage\b'),
    ],
    DocumentType.TAX_DOCUMENT: [
        TypeCue(r'\btax\s*(?:return|year|assessment)\b', 2.0), TypeCue(r'\btaxable\s*income\b', 2.0),
        TypeCue(r'\bw-2\b|\b1099\b', 2.0),
    ],
    DocumentType.CONTRACT: [
        TypeCue(r'\bagreement\b', 1.5), TypeCue(r'\bhereinafter\b', 2.0),
        TypeCue(r'\bparties\b'), TypeCue(r'\bterm\s*of\s*(?:this\s*)?contract\b', 2.0),
    ],
    DocumentType.LEGAL_DOCUMENT: [
        TypeCue(r'\bcourt\b', 1.5), TypeCue(r'\bplaintiff\b', 2.0),
        TypeCue(r'\bdefendant\b', 2.0), TypeCue(r'\baffidavit\b', 2.0),
    ],
}
