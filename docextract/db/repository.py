import hashlib
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import selectinload

from docextract.db.connection import Base, Database
from docextract.db.models import (
    Document,
    ExtractedFieldRecord,
    LearnedPatternRecord,
    MappingRuleRecord,
    PatternSampleRecord,
    RuleConditionRecord,
    RuleProjectionRecord,
    TemplateFieldMappingRecord,
    TemplateRecord,
)
from docextract.models.document import (
    DocumentType,
    ExtractedDocument,
    ExtractedField,
    ExtractionSource,
    FieldPosition,
    FieldType,
    ProcessingStatus,
)
from docextract.models.patterns import LearnedPattern, PatternSample
from docextract.models.rules import (
    ConditionKind,
    LocationType,
    MappingRule,
    RuleCondition,
    RuleProjection,
    Template,
    TemplateFieldMapping,
)

T = TypeVar('T', bound=Base)


class BaseRepository(Generic[T]):
    """Base repository class for common database operations"""

    def __init__(self, model_class: Type[T], db: Database):
        self.model_class = model_class
        self.db = db

    def create(self, data: Dict[str, Any]) -> T:
        """Create a new record"""
        with self.db.transaction() as session:
            instance = self.model_class(**data)
            session.add(instance)
            session.flush()
            session.refresh(instance)
            return instance

    def get(self, id: str) -> Optional[T]:
        """Get a record by ID"""
        with self.db.session() as session:
            return session.get(self.model_class, id)

    def update(self, id: str, data: Dict[str, Any]) -> Optional[T]:
        """Update a record"""
        with self.db.transaction() as session:
            instance = session.get(self.model_class, id)
            if instance:
                for key, value in data.items():
                    setattr(instance, key, value)
                session.flush()
                session.refresh(instance)
            return instance

    def delete(self, id: str) -> bool:
        """Delete a record"""
        with self.db.transaction() as session:
            instance = session.get(self.model_class, id)
            if instance:
                session.delete(instance)
                return True
            return False

    def list(self, **filters) -> List[T]:
        """List records with optional filters"""
        with self.db.session() as session:
            query = select(self.model_class)
            for key, value in filters.items():
                query = query.where(getattr(self.model_class, key) == value)
            return list(session.execute(query).scalars())

    def count(self, **filters) -> int:
        with self.db.session() as session:
            query = select(func.count()).select_from(self.model_class)
            for key, value in filters.items():
                query = query.where(getattr(self.model_class, key) == value)
            return session.execute(query).scalar_one()


class PatternRepository(BaseRepository[LearnedPatternRecord]):
    """Repository for learned extraction patterns"""

    def __init__(self, db: Database):
        super().__init__(LearnedPatternRecord, db)

    @staticmethod
    def _to_model(record: LearnedPatternRecord) -> LearnedPattern:
        return LearnedPattern(
            id=record.id,
            supplier=record.supplier,
            field_name=record.field_name,
            pattern=record.pattern,
            field_type=FieldType(record.field_type or FieldType.TEXT.value),
            priority=record.priority or 0,
            success_count=record.success_count or 0,
            failure_count=record.failure_count or 0,
            usage_count=record.usage_count or 0,
            is_active=bool(record.is_active),
            version=record.version or 1,
            description=record.description,
            example_match=record.example_match,
            min_confidence=record.min_confidence if record.min_confidence is not None else 0.3,
            max_confidence=record.max_confidence if record.max_confidence is not None else 0.99,
            created_at=record.created_at,
            last_used_at=record.last_used_at,
        )

    def get_pattern(self, pattern_id: str) -> Optional[LearnedPattern]:
        record = self.get(pattern_id)
        return self._to_model(record) if record else None

    def find_by_key(self, supplier: str, field_name: str, pattern: str) -> Optional[LearnedPattern]:
        with self.db.session() as session:
            query = (
                select(LearnedPatternRecord)
                .where(
                    func.lower(LearnedPatternRecord.supplier) == supplier.lower(),
                    LearnedPatternRecord.field_name == field_name,
                    LearnedPatternRecord.pattern == pattern,
                )
                .order_by(LearnedPatternRecord.created_at)
            )
            record = session.execute(query).scalars().first()
            return self._to_model(record) if record else None

    def list_patterns(
        self,
        supplier: Optional[str] = None,
        field_name: Optional[str] = None,
        active_only: bool = False,
    ) -> List[LearnedPattern]:
        with self.db.session() as session:
            query = select(LearnedPatternRecord)
            if supplier is not None:
                query = query.where(func.lower(LearnedPatternRecord.supplier) == supplier.lower())
            if field_name is not None:
                query = query.where(LearnedPatternRecord.field_name == field_name)
            if active_only:
                query = query.where(LearnedPatternRecord.is_active.is_(True))
            query = query.order_by(LearnedPatternRecord.created_at)
            return [self._to_model(r) for r in session.execute(query).scalars()]

    def insert(self, pattern: LearnedPattern) -> LearnedPattern:
        data = pattern.model_dump(exclude={'success_rate'})
        data['field_type'] = pattern.field_type.value
        return self._to_model(self.create(data))

    def increment(
        self,
        pattern_id: str,
        usage: int = 0,
        success: int = 0,
        failure: int = 0,
        priority: int = 0,
        touch: bool = False,
    ) -> Optional[LearnedPattern]:
        """Apply counter deltas in a single UPDATE statement"""
        values = {
            'usage_count': LearnedPatternRecord.usage_count + usage,
            'success_count': LearnedPatternRecord.success_count + success,
            'failure_count': LearnedPatternRecord.failure_count + failure,
            'priority': LearnedPatternRecord.priority + priority,
        }
        if touch:
            values['last_used_at'] = datetime.utcnow()
        with self.db.transaction() as session:
            session.execute(
                update(LearnedPatternRecord)
                .where(LearnedPatternRecord.id == pattern_id)
                .values(**values)
            )
        return self.get_pattern(pattern_id)

    def update_pattern(self, pattern_id: str, data: Dict[str, Any]) -> Optional[LearnedPattern]:
        record = self.update(pattern_id, data)
        return self._to_model(record) if record else None


class PatternSampleRepository(BaseRepository[PatternSampleRecord]):
    """Repository for the bounded per-(supplier, field) regression corpus"""

    def __init__(self, db: Database):
        super().__init__(PatternSampleRecord, db)

    @staticmethod
    def text_hash(text: str) -> str:
        return hashlib.sha256(text.encode('utf-8')).hexdigest()

    def add_sample(self, supplier: str, field_name: str, text: str, expected_value: str, limit: int) -> bool:
        """Store a sample, dropping the oldest beyond ``limit``; False if already present"""
        digest = self.text_hash(text)
        with self.db.transaction() as session:
            existing = session.execute(
                select(PatternSampleRecord.id).where(
                    func.lower(PatternSampleRecord.supplier) == supplier.lower(),
                    PatternSampleRecord.field_name == field_name,
                    PatternSampleRecord.text_hash == digest,
                    PatternSampleRecord.expected_value == expected_value,
                )
            ).first()
            if existing:
                return False

            key_filter = (
                func.lower(PatternSampleRecord.supplier) == supplier.lower(),
                PatternSampleRecord.field_name == field_name,
            )
            last = session.execute(
                select(func.max(PatternSampleRecord.sequence)).where(*key_filter)
            ).scalar_one()
            session.add(PatternSampleRecord(
                supplier=supplier,
                field_name=field_name,
                sequence=(last or 0) + 1,
                text_hash=digest,
                text=text,
                expected_value=expected_value,
            ))
            session.flush()

            ids = list(session.execute(
                select(PatternSampleRecord.id)
                .where(*key_filter)
                .order_by(PatternSampleRecord.sequence.desc())
            ).scalars())
            stale = ids[limit:]
            if stale:
                session.execute(delete(PatternSampleRecord).where(PatternSampleRecord.id.in_(stale)))
            return True

    def get_samples(self, supplier: str, field_name: str) -> List[PatternSample]:
        with self.db.session() as session:
            query = (
                select(PatternSampleRecord)
                .where(
                    func.lower(PatternSampleRecord.supplier) == supplier.lower(),
                    PatternSampleRecord.field_name == field_name,
                )
                .order_by(PatternSampleRecord.sequence)
            )
            return [PatternSample.model_validate(r) for r in session.execute(query).scalars()]


class DocumentRepository(BaseRepository[Document]):
    """Repository for processed documents and their fields"""

    def __init__(self, db: Database):
        super().__init__(Document, db)

    def save_document(self, document: ExtractedDocument) -> None:
        """Insert or replace a document together with its fields"""
        with self.db.transaction() as session:
            existing = session.get(Document, document.id)
            if existing is not None:
                session.delete(existing)
                session.flush()

            record = Document(id=document.id)
            session.add(record)
            record.file_path = document.file_path
            record.file_name = document.file_name
            record.file_size_bytes = document.file_size_bytes
            record.document_type = document.document_type.value
            record.supplier = document.supplier
            record.status = document.status.value
            record.overall_confidence = document.overall_confidence
            record.error_message = document.error_message
            record.raw_text = document.raw_text
            record.is_scanned = document.is_scanned
            record.processing_time_ms = document.processing_time_ms
            record.needs_review = document.needs_review
            record.review_reasons = list(document.review_reasons)
            record.processed_at = document.processed_at

            record.fields = [
                ExtractedFieldRecord(
                    id=f.id,
                    position_index=index,
                    field_name=f.field_name,
                    value=f.value,
                    confidence=f.confidence,
                    field_type=f.field_type.value,
                    source=f.source.value,
                    pattern_id=f.pattern_id,
                    bounding_box=f.position.to_bounding_box() if f.position else None,
                    is_verified=f.is_verified,
                    original_value=f.original_value,
                    extracted_at=f.extracted_at,
                )
                for index, f in enumerate(document.fields)
            ]

    def get_document(self, document_id: str) -> Optional[ExtractedDocument]:
        with self.db.session() as session:
            query = select(Document).options(selectinload(Document.fields)).where(Document.id == document_id)
            record = session.execute(query).scalar_one_or_none()
            if record is None:
                return None
            return ExtractedDocument(
                id=record.id,
                file_path=record.file_path,
                file_name=record.file_name,
                file_size_bytes=record.file_size_bytes or 0,
                document_type=DocumentType(record.document_type),
                supplier=record.supplier or 'Unknown',
                status=ProcessingStatus(record.status),
                overall_confidence=record.overall_confidence or 0.0,
                error_message=record.error_message,
                raw_text=record.raw_text or '',
                is_scanned=bool(record.is_scanned),
                processing_time_ms=record.processing_time_ms or 0,
                needs_review=bool(record.needs_review),
                review_reasons=list(record.review_reasons or []),
                processed_at=record.processed_at,
                fields=[
                    ExtractedField(
                        id=f.id,
                        field_name=f.field_name,
                        value=f.value or '',
                        confidence=f.confidence,
                        field_type=FieldType(f.field_type),
                        source=ExtractionSource(f.source),
                        pattern_id=f.pattern_id,
                        position=FieldPosition.from_bounding_box(f.bounding_box) if f.bounding_box else None,
                        is_verified=bool(f.is_verified),
                        original_value=f.original_value,
                        extracted_at=f.extracted_at,
                    )
                    for f in record.fields
                ],
            )

    def count_by_status(self) -> Dict[str, int]:
        with self.db.session() as session:
            rows = session.execute(select(Document.status, func.count()).group_by(Document.status))
            return {status: count for status, count in rows}


class RuleRepository(BaseRepository[MappingRuleRecord]):
    """Repository for the mapping rule catalog"""

    def __init__(self, db: Database):
        super().__init__(MappingRuleRecord, db)

    @staticmethod
    def _to_model(record: MappingRuleRecord) -> MappingRule:
        return MappingRule(
            id=record.id,
            name=record.name,
            description=record.description,
            priority=record.priority,
            success_rate=record.success_rate,
            usage_count=record.usage_count or 0,
            is_active=bool(record.is_active),
            created_at=record.created_at,
            updated_at=record.updated_at,
            last_used_at=record.last_used_at,
            conditions=[
                RuleCondition(
                    id=c.id,
                    kind=ConditionKind(c.kind),
                    operand=c.operand or '',
                    field_name=c.field_name,
                    weight=c.weight,
                    case_sensitive=bool(c.case_sensitive),
                    display_order=c.display_order or 0,
                )
                for c in record.conditions
            ],
            projections=[
                RuleProjection(
                    id=p.id,
                    field_name=p.field_name,
                    target_location=p.target_location,
                    location_type=LocationType(p.location_type),
                    description=p.description,
                    is_required=bool(p.is_required),
                    display_order=p.display_order or 0,
                )
                for p in record.projections
            ],
        )

    def _query(self):
        return select(MappingRuleRecord).options(
            selectinload(MappingRuleRecord.conditions),
            selectinload(MappingRuleRecord.projections),
        )

    def save_rule(self, rule: MappingRule) -> MappingRule:
        """Insert or replace a rule; an existing rule keeps its stored outcome counters"""
        success_rate, usage_count, last_used_at = rule.success_rate, rule.usage_count, rule.last_used_at
        created_at = rule.created_at
        with self.db.transaction() as session:
            existing = session.get(MappingRuleRecord, rule.id)
            if existing is not None:
                success_rate, usage_count = existing.success_rate, existing.usage_count
                last_used_at, created_at = existing.last_used_at, existing.created_at
                session.delete(existing)
                session.flush()

            record = MappingRuleRecord(id=rule.id, created_at=created_at)
            session.add(record)
            record.name = rule.name
            record.description = rule.description
            record.priority = rule.priority
            record.success_rate = success_rate
            record.usage_count = usage_count
            record.is_active = rule.is_active
            record.last_used_at = last_used_at
            record.updated_at = datetime.utcnow()
            record.conditions = [
                RuleConditionRecord(
                    id=c.id,
                    kind=c.kind.value,
                    operand=c.operand,
                    field_name=c.field_name,
                    weight=c.weight,
                    case_sensitive=c.case_sensitive,
                    display_order=index,
                )
                for index, c in enumerate(rule.conditions)
            ]
            record.projections = [
                RuleProjectionRecord(
                    id=p.id,
                    field_name=p.field_name,
                    target_location=p.target_location,
                    location_type=p.location_type.value,
                    description=p.description,
                    is_required=p.is_required,
                    display_order=index,
                )
                for index, p in enumerate(rule.projections)
            ]
        return self.get_rule(rule.id)

    def get_rule(self, rule_id: str) -> Optional[MappingRule]:
        with self.db.session() as session:
            record = session.execute(self._query().where(MappingRuleRecord.id == rule_id)).scalar_one_or_none()
            return self._to_model(record) if record else None

    def list_rules(self, active_only: bool = False) -> List[MappingRule]:
        with self.db.session() as session:
            query = self._query()
            if active_only:
                query = query.where(MappingRuleRecord.is_active.is_(True))
            query = query.order_by(MappingRuleRecord.priority.desc(), MappingRuleRecord.created_at)
            return [self._to_model(r) for r in session.execute(query).scalars()]

    def record_outcome(self, rule_id: str, outcome: float, alpha: float) -> Optional[MappingRule]:
        """Fold one outcome into the moving average and bump usage in a single UPDATE"""
        now = datetime.utcnow()
        with self.db.transaction() as session:
            result = session.execute(
                update(MappingRuleRecord)
                .where(MappingRuleRecord.id == rule_id)
                .values(
                    success_rate=MappingRuleRecord.success_rate * (1 - alpha) + outcome * alpha,
                    usage_count=func.coalesce(MappingRuleRecord.usage_count, 0) + 1,
                    updated_at=now,
                )
            )
            if result.rowcount == 0:
                return None
        return self.get_rule(rule_id)

    def update_rule(self, rule_id: str, data: Dict[str, Any]) -> Optional[MappingRule]:
        record = self.update(rule_id, data)
        return self.get_rule(rule_id) if record else None


class TemplateRepository(BaseRepository[TemplateRecord]):
    """Repository for templates and their per-field mappings"""

    def __init__(self, db: Database):
        super().__init__(TemplateRecord, db)

    @staticmethod
    def _mapping_to_model(record: TemplateFieldMappingRecord) -> TemplateFieldMapping:
        return TemplateFieldMapping(
            id=record.id,
            template_id=record.template_id,
            field_name=record.field_name,
            target_location=record.target_location,
            location_type=LocationType(record.location_type),
            description=record.description,
            is_required=bool(record.is_required),
            display_order=record.display_order or 0,
            format_instructions=record.format_instructions,
        )

    def save_template(self, template: Template) -> Template:
        with self.db.transaction() as session:
            record = session.get(TemplateRecord, template.id)
            if record is None:
                record = TemplateRecord(id=template.id, created_at=template.created_at)
                session.add(record)
            record.name = template.name
            record.description = template.description
            record.category = template.category
            record.file_path = template.file_path
            record.usage_count = template.usage_count
            record.is_active = template.is_active
        for mapping in template.field_mappings:
            self.set_field_mapping(mapping.model_copy(update={'template_id': template.id}))
        return self.get_template(template.id)

    def get_template(self, template_id: str) -> Optional[Template]:
        with self.db.session() as session:
            query = (
                select(TemplateRecord)
                .options(selectinload(TemplateRecord.field_mappings))
                .where(TemplateRecord.id == template_id)
            )
            record = session.execute(query).scalar_one_or_none()
            if record is None:
                return None
            return Template(
                id=record.id,
                name=record.name,
                description=record.description,
                category=record.category,
                file_path=record.file_path,
                usage_count=record.usage_count or 0,
                is_active=bool(record.is_active),
                created_at=record.created_at,
                field_mappings=[self._mapping_to_model(m) for m in record.field_mappings],
            )

    def get_field_mappings(self, template_id: str) -> List[TemplateFieldMapping]:
        with self.db.session() as session:
            query = (
                select(TemplateFieldMappingRecord)
                .where(TemplateFieldMappingRecord.template_id == template_id)
                .order_by(TemplateFieldMappingRecord.display_order)
            )
            return [self._mapping_to_model(m) for m in session.execute(query).scalars()]

    def set_field_mapping(self, mapping: TemplateFieldMapping) -> TemplateFieldMapping:
        """Create or update the single mapping for (template, field)"""
        with self.db.transaction() as session:
            record = session.execute(
                select(TemplateFieldMappingRecord).where(
                    TemplateFieldMappingRecord.template_id == mapping.template_id,
                    TemplateFieldMappingRecord.field_name == mapping.field_name,
                )
            ).scalar_one_or_none()
            if record is None:
                record = TemplateFieldMappingRecord(
                    id=mapping.id, template_id=mapping.template_id, field_name=mapping.field_name,
                )
                session.add(record)
            record.target_location = mapping.target_location
            record.location_type = mapping.location_type.value
            record.description = mapping.description
            record.is_required = mapping.is_required
            record.display_order = mapping.display_order
            record.format_instructions = mapping.format_instructions
            session.flush()
            return self._mapping_to_model(record)

    def clear_field_mapping(self, template_id: str, field_name: str) -> bool:
        with self.db.transaction() as session:
            result = session.execute(
                delete(TemplateFieldMappingRecord).where(
                    TemplateFieldMappingRecord.template_id == template_id,
                    TemplateFieldMappingRecord.field_name == field_name,
                )
            )
            return result.rowcount > 0

    def increment_usage(self, template_id: str) -> None:
        with self.db.transaction() as session:
            session.execute(
                update(TemplateRecord)
                .where(TemplateRecord.id == template_id)
                .values(usage_count=TemplateRecord.usage_count + 1)
            )
