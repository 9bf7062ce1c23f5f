from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from docextract.db.connection import Base


class Document(Base):
    """A processed document and its outcome"""
    __tablename__ = 'documents'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    file_path = Column(Text, nullable=False)
    file_name = Column(String(255), nullable=False)
    file_size_bytes = Column(Integer, default=0)
    document_type = Column(String(50), nullable=False, default='Unknown')
    supplier = Column(String(255), default='Unknown')
    status = Column(String(20), nullable=False, default='Pending')
    overall_confidence = Column(Float, default=0.0)
    error_message = Column(Text)
    raw_text = Column(Text)
    is_scanned = Column(Boolean, default=False)
    processing_time_ms = Column(Integer, default=0)
    needs_review = Column(Boolean, default=False)
    review_reasons = Column(JSON)
    processed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    fields = relationship(
        "ExtractedFieldRecord", back_populates="document",
        cascade="all, delete-orphan", order_by="ExtractedFieldRecord.position_index",
    )

    def __repr__(self):
        return f"<Document(id={self.id}, type='{self.document_type}', status='{self.status}')>"


class ExtractedFieldRecord(Base):
    __tablename__ = 'extracted_fields'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    document_id = Column(String(36), ForeignKey('documents.id', ondelete='CASCADE'), nullable=False)
    position_index = Column(Integer, default=0)
    field_name = Column(String(100), nullable=False)
    value = Column(Text)
    confidence = Column(Float, default=0.0)
    field_type = Column(String(30), default='Text')
    source = Column(String(30), default='Unknown')
    pattern_id = Column(String(36))
    bounding_box = Column(String(100))
    is_verified = Column(Boolean, default=False)
    original_value = Column(Text)
    extracted_at = Column(DateTime, default=datetime.utcnow)

    document = relationship("Document", back_populates="fields")

    def __repr__(self):
        return f"<ExtractedFieldRecord(field='{self.field_name}', value='{self.value}')>"


class LearnedPatternRecord(Base):
    """Per-supplier, per-field extraction pattern"""
    __tablename__ = 'learned_patterns'
    __table_args__ = (
        UniqueConstraint('supplier', 'field_name', 'pattern', name='uq_learned_pattern_key'),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    supplier = Column(String(255), nullable=False, index=True)
    field_name = Column(String(100), nullable=False, index=True)
    pattern = Column(Text, nullable=False)
    field_type = Column(String(30), default='Text')
    priority = Column(Integer, default=0)
    success_count = Column(Integer, default=0, nullable=False)
    failure_count = Column(Integer, default=0, nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True)
    version = Column(Integer, default=1)
    description = Column(Text)
    example_match = Column(Text)
    min_confidence = Column(Float, default=0.3)
    max_confidence = Column(Float, default=0.99)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_used_at = Column(DateTime)

    def __repr__(self):
        return f"<LearnedPatternRecord(supplier='{self.supplier}', field='{self.field_name}', priority={self.priority})>"


class PatternSampleRecord(Base):
    """Regression corpus entry"""
    __tablename__ = 'pattern_samples'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    supplier = Column(String(255), nullable=False, index=True)
    field_name = Column(String(100), nullable=False, index=True)
    sequence = Column(Integer, nullable=False, default=0)
    text_hash = Column(String(64), nullable=False)
    text = Column(Text, nullable=False)
    expected_value = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class MappingRuleRecord(Base):
    __tablename__ = 'mapping_rules'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(255), nullable=False)
    description = Column(Text)
    priority = Column(Integer, default=100)
    success_rate = Column(Float, default=1.0)
    usage_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_used_at = Column(DateTime)

    conditions = relationship(
        "RuleConditionRecord", back_populates="rule",
        cascade="all, delete-orphan", order_by="RuleConditionRecord.display_order",
    )
    projections = relationship(
        "RuleProjectionRecord", back_populates="rule",
        cascade="all, delete-orphan", order_by="RuleProjectionRecord.display_order",
    )

    def __repr__(self):
        return f"<MappingRuleRecord(id={self.id}, name='{self.name}', priority={self.priority})>"


class RuleConditionRecord(Base):
    __tablename__ = 'rule_conditions'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    rule_id = Column(String(36), ForeignKey('mapping_rules.id', ondelete='CASCADE'), nullable=False)
    kind = Column(String(40), nullable=False)
    operand = Column(Text, default='')
    field_name = Column(String(100))
    weight = Column(Float, default=1.0)
    case_sensitive = Column(Boolean, default=False)
    display_order = Column(Integer, default=0)

    rule = relationship("MappingRuleRecord", back_populates="conditions")


class RuleProjectionRecord(Base):
    __tablename__ = 'rule_projections'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    rule_id = Column(String(36), ForeignKey('mapping_rules.id', ondelete='CASCADE'), nullable=False)
    field_name = Column(String(100), nullable=False)
    target_location = Column(String(255), nullable=False)
    location_type = Column(String(30), default='ExcelCell')
    description = Column(Text)
    is_required = Column(Boolean, default=False)
    display_order = Column(Integer, default=0)

    rule = relationship("MappingRuleRecord", back_populates="projections")


class TemplateRecord(Base):
    __tablename__ = 'templates'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(255), nullable=False)
    description = Column(Text)
    category = Column(String(100))
    file_path = Column(Text)
    usage_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    field_mappings = relationship(
        "TemplateFieldMappingRecord", back_populates="template",
        cascade="all, delete-orphan", order_by="TemplateFieldMappingRecord.display_order",
    )

    def __repr__(self):
        return f"<TemplateRecord(id={self.id}, name='{self.name}')>"


class TemplateFieldMappingRecord(Base):
    __tablename__ = 'template_field_mappings'
    __table_args__ = (
        UniqueConstraint('template_id', 'field_name', name='uq_template_field'),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    template_id = Column(String(36), ForeignKey('templates.id', ondelete='CASCADE'), nullable=False)
    field_name = Column(String(100), nullable=False)
    target_location = Column(String(255), nullable=False)
    location_type = Column(String(30), default='ExcelCell')
    description = Column(Text)
    is_required = Column(Boolean, default=False)
    display_order = Column(Integer, default=0)
    format_instructions = Column(Text)

    template = relationship("TemplateRecord", back_populates="field_mappings")
