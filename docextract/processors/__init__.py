"""
DocExtract Processors Module

Contains the document processing stages:
- Document type and supplier classification
- Field extraction (learned patterns, then generic rules)
- Field validation and normalisation
- The end-to-end processing pipeline
"""

from . import classifier
from . import field_rules
from . import validator

__all__ = ['classifier', 'field_rules', 'validator']
