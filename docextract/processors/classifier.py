"""
Document Classifier

Scores candidate document types and detects the issuing supplier from raw
text using weighted keyword and regex heuristics. Pure functions of the text;
never raises.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from docextract.config.docextract_config import DocExtractConfig
from docextract.models.document import DocumentType
from docextract.processors.field_rules import (
    DOCUMENT_TYPE_KEYWORDS,
    LEGAL_ENTITY_PATTERNS,
    LEGAL_ENTITY_TOKENS,
    SUPPLIER_SIGNATURES,
    SupplierSignature,
)

logger = logging.getLogger(__name__)

UNKNOWN_SUPPLIER = "Unknown"

KEYWORD_SCORE = 0.9
ALIAS_SCORE = 0.75
LEGAL_ENTITY_SCORE = 0.6
FIRST_LINES_SCORE = 0.4
TYPE_AGREEMENT_BONUS = 0.05


class DocumentClassifier:
    """
    Weighted keyword classifier.

    Each matched cue contributes its weight once; the sum is divided by a
    saturation constant and capped at 1.0.
    """

    def __init__(self, config: Optional[DocExtractConfig] = None):
        config = config or DocExtractConfig.get_instance()
        self.min_score = float(config.get('classification.min_score', 0.25))
        self.saturation = float(config.get('classification.saturation', 6.0))

        self._type_cues = {
            doc_type: [(re.compile(cue.pattern, re.IGNORECASE), cue.weight) for cue in cues]
            for doc_type, cues in DOCUMENT_TYPE_KEYWORDS.items()
        }
        self._supplier_cues = [
            (
                signature,
                [self._word_regex(k) for k in signature.keywords],
                [self._word_regex(a) for a in signature.aliases],
            )
            for signature in SUPPLIER_SIGNATURES
        ]
        self._legal_entity = [re.compile(p) for p in LEGAL_ENTITY_PATTERNS]
        self._legal_token = re.compile(r'\b(?:%s)\b' % '|'.join(re.escape(t) for t in LEGAL_ENTITY_TOKENS))

    @staticmethod
    def _word_regex(term: str) -> re.Pattern:
        return re.compile(r'(?<![A-Za-z0-9])' + re.escape(term) + r'(?![A-Za-z0-9])', re.IGNORECASE)

    def classify_with_scores(self, text: Optional[str]) -> Dict[DocumentType, float]:
        """Score every known type; ``Unknown`` carries ``1 - best``"""
        scores: Dict[DocumentType, float] = {}
        if not text:
            return {DocumentType.UNKNOWN: 1.0}

        for doc_type, cues in self._type_cues.items():
            total = sum(weight for regex, weight in cues if regex.search(text))
            scores[doc_type] = min(1.0, total / self.saturation)

        best = max(scores.values()) if scores else 0.0
        scores[DocumentType.UNKNOWN] = 1.0 - best
        return scores

    def classify_type(self, text: Optional[str]) -> Tuple[DocumentType, float]:
        """
        Classify a document.

        Returns:
            (document_type, score); ``Unknown`` when the best score is below
            the configured floor
        """
        scores = self.classify_with_scores(text)
        best_type, best_score = DocumentType.UNKNOWN, 0.0
        for doc_type in self._type_cues:
            if scores.get(doc_type, 0.0) > best_score:
                best_type, best_score = doc_type, scores[doc_type]

        if best_score < self.min_score:
            logger.debug(f"Classification below floor ({best_score:.2f} < {self.min_score}); Unknown")
            return DocumentType.UNKNOWN, best_score

        logger.debug(f"Classified as {best_type.value} with score {best_score:.2f}")
        return best_type, best_score

    def detect_supplier_with_scores(
        self,
        text: Optional[str],
        doc_type: Optional[DocumentType] = None,
    ) -> List[Tuple[str, float]]:
        """All supplier candidates, best first"""
        if not text:
            return []

        candidates: Dict[str, float] = {}

        def offer(name: str, score: float, signature: Optional[SupplierSignature] = None) -> None:
            if signature and doc_type and doc_type in signature.document_types:
                score = min(1.0, score + TYPE_AGREEMENT_BONUS)
            if score > candidates.get(name, 0.0):
                candidates[name] = score

        for signature, keywords, aliases in self._supplier_cues:
            if any(r.search(text) for r in keywords):
                offer(signature.name, KEYWORD_SCORE, signature)
            elif any(r.search(text) for r in aliases):
                offer(signature.name, ALIAS_SCORE, signature)

        for regex in self._legal_entity:
            for match in regex.finditer(text):
                offer(match.group(1).strip(), LEGAL_ENTITY_SCORE)

        for line in self._first_lines(text):
            offer(line, FIRST_LINES_SCORE)

        # stable: table order wins among equal scores
        return sorted(candidates.items(), key=lambda item: -item[1])

    def detect_supplier(
        self,
        text: Optional[str],
        doc_type: Optional[DocumentType] = None,
    ) -> Tuple[str, float]:
        """
        Detect the issuing organization.

        Signature table first, then legal-entity suffixes, then a first-lines
        heuristic; ``("Unknown", 0.0)`` when nothing matches.
        """
        candidates = self.detect_supplier_with_scores(text, doc_type)
        if not candidates:
            return UNKNOWN_SUPPLIER, 0.0
        return candidates[0]

    def _first_lines(self, text: str, limit: int = 5) -> List[str]:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        return [
            line for line in lines[:limit]
            if 5 < len(line) < 60 and self._legal_token.search(line)
        ]
