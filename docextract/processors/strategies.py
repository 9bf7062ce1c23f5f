"""
Field extraction strategies

Each strategy exposes ``try_extract(text, field_name, doc_type, supplier)``
and returns an ExtractedField or None. The engine iterates them in order and
stops at the first hit.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Optional

from docextract.learning.pattern_store import PatternStore
from docextract.models.document import DocumentType, ExtractedField, ExtractionSource, classify_field_type
from docextract.models.patterns import PATTERN_FLAGS
from docextract.processors.field_rules import find_generic_rules, get_generic_rules

logger = logging.getLogger(__name__)


class ExtractionStrategy(ABC):
    name = "strategy"

    @abstractmethod
    def try_extract(
        self,
        text: str,
        field_name: str,
        doc_type: Optional[DocumentType],
        supplier: Optional[str],
    ) -> Optional[ExtractedField]:
        """Return a field or None when this strategy cannot resolve it"""


class LearnedPatternStrategy(ExtractionStrategy):
    """Supplier-specific learned patterns from the PatternStore"""

    name = "learned_pattern"

    def __init__(self, store: PatternStore):
        self.store = store

    def try_extract(self, text, field_name, doc_type, supplier):
        if not supplier:
            return None
        hit = self.store.match_field(text, supplier, field_name)
        if hit is None:
            return None
        pattern, value = hit
        logger.debug(f"{field_name} resolved by learned pattern {pattern.id} for {supplier}")
        return self.store.to_field(pattern, value)


class GenericRuleStrategy(ExtractionStrategy):
    """Static per-field rules, most specific first"""

    name = "generic_rule"

    def __init__(self):
        self._compiled: Dict[str, re.Pattern] = {}

    def _compile(self, pattern: str) -> Optional[re.Pattern]:
        compiled = self._compiled.get(pattern)
        if compiled is None:
            try:
                compiled = re.compile(pattern, PATTERN_FLAGS)
            except re.error as e:
                logger.warning(f"Invalid generic rule {pattern!r}: {e}")
                return None
            self._compiled[pattern] = compiled
        return compiled

    def try_extract(self, text, field_name, doc_type, supplier):
        if doc_type is None:
            rules = find_generic_rules(field_name)
        else:
            rules = get_generic_rules(doc_type, field_name)

        for pattern, confidence in rules:
            regex = self._compile(pattern)
            if regex is None:
                continue
            match = regex.search(text)
            if not match:
                continue
            value = match.group(1) if regex.groups >= 1 and match.group(1) is not None else match.group(0)
            value = value.strip()
            if not value:
                continue
            return ExtractedField(
                field_name=field_name,
                value=value,
                confidence=confidence,
                field_type=classify_field_type(field_name),
                source=ExtractionSource.RULE_BASED,
                original_context=text[max(0, match.start() - 20):match.end() + 20],
            )
        return None
