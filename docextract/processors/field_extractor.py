"""
Field Extraction Engine

Runs, for each standard field of a document type, an ordered cascade of
strategies (learned pattern, then generic rule). Unresolved fields are
omitted; escalation to a slower fallback is an explicit, separate call.
"""

import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional

from docextract.learning.pattern_store import PatternStore
from docextract.models.document import DocumentType, ExtractedField, ExtractionSource
from docextract.processors.field_rules import get_standard_field_names
from docextract.processors.strategies import (
    ExtractionStrategy,
    GenericRuleStrategy,
    LearnedPatternStrategy,
)

logger = logging.getLogger(__name__)

# (text, doc_type, missing field names) -> fields the fallback resolved
FieldFallback = Callable[[str, DocumentType, List[str]], Awaitable[List[ExtractedField]]]


class FieldExtractionEngine:
    """
    Strategy cascade over standard field names.

    Usage:
        engine = FieldExtractionEngine(pattern_store)
        fields = engine.extract_fields(text, DocumentType.UTILITY_BILL, "TNB Berhad")
    """

    def __init__(
        self,
        pattern_store: Optional[PatternStore] = None,
        strategies: Optional[List[ExtractionStrategy]] = None,
    ):
        if strategies is None:
            strategies = []
            if pattern_store is not None:
                strategies.append(LearnedPatternStrategy(pattern_store))
            strategies.append(GenericRuleStrategy())
        self.strategies = strategies
        self.pattern_store = pattern_store

        self._attempts: Dict[str, int] = defaultdict(int)
        self._successes: Dict[str, int] = defaultdict(int)
        self._source_usage: Dict[str, int] = defaultdict(int)

    def get_standard_field_names(self, doc_type: DocumentType) -> List[str]:
        return get_standard_field_names(doc_type)

    def extract_fields(
        self,
        text: str,
        doc_type: DocumentType,
        supplier: Optional[str] = None,
    ) -> List[ExtractedField]:
        """Extract every standard field of ``doc_type`` that can be resolved"""
        return self._extract(text, self.get_standard_field_names(doc_type), doc_type, supplier)

    def extract_specific_fields(
        self,
        text: str,
        field_names: List[str],
        supplier: Optional[str] = None,
        doc_type: Optional[DocumentType] = None,
    ) -> List[ExtractedField]:
        """Same cascade restricted to ``field_names``"""
        return self._extract(text, field_names, doc_type, supplier)

    def _extract(
        self,
        text: str,
        field_names: List[str],
        doc_type: Optional[DocumentType],
        supplier: Optional[str],
    ) -> List[ExtractedField]:
        if not text or not text.strip():
            return []

        fields: List[ExtractedField] = []
        for field_name in field_names:
            self._attempts[field_name] += 1
            extracted = self._extract_one(text, field_name, doc_type, supplier)
            if extracted is None:
                logger.debug(f"{field_name} not found")
                continue
            self._successes[field_name] += 1
            self._source_usage[extracted.source.value] += 1
            fields.append(extracted)

        logger.info(
            f"Extracted {len(fields)}/{len(field_names)} fields"
            f" (type={doc_type.value if doc_type else 'any'}, supplier={supplier or 'Unknown'})"
        )
        return fields

    def _extract_one(
        self,
        text: str,
        field_name: str,
        doc_type: Optional[DocumentType],
        supplier: Optional[str],
    ) -> Optional[ExtractedField]:
        for strategy in self.strategies:
            try:
                extracted = strategy.try_extract(text, field_name, doc_type, supplier)
            except Exception as e:
                # A broken strategy degrades to the next one
                logger.warning(f"Strategy {strategy.name} failed on {field_name}: {e}")
                continue
            if extracted is not None and extracted.has_value:
                return extracted
        return None

    async def resolve_missing_fields(
        self,
        text: str,
        doc_type: DocumentType,
        fields: List[ExtractedField],
        fallback: FieldFallback,
    ) -> List[ExtractedField]:
        """
        Ask a caller-supplied fallback (cloud service, manual entry) for the
        standard fields still missing. Existing fields are returned unchanged.
        """
        present = {f.field_name for f in fields}
        missing = [name for name in self.get_standard_field_names(doc_type) if name not in present]
        if not missing:
            return list(fields)

        try:
            resolved = await fallback(text, doc_type, missing)
        except Exception as e:
            logger.warning(f"Fallback extraction failed: {e}")
            return list(fields)

        merged = list(fields)
        for extracted in resolved or []:
            if extracted.field_name in missing and extracted.has_value and extracted.field_name not in present:
                if extracted.source == ExtractionSource.UNKNOWN:
                    extracted.source = ExtractionSource.CLOUD_FALLBACK
                merged.append(extracted)
                present.add(extracted.field_name)
                self._source_usage[extracted.source.value] += 1
        return merged

    def get_extraction_statistics(self) -> Dict[str, Dict]:
        per_field = {
            name: {
                'attempts': self._attempts[name],
                'successes': self._successes.get(name, 0),
                'success_rate': self._successes.get(name, 0) / self._attempts[name] if self._attempts[name] else 0.0,
            }
            for name in self._attempts
        }
        return {'fields': per_field, 'sources': dict(self._source_usage)}
