from docextract.db.connection import Base, Database
from docextract.db.repository import (
    BaseRepository,
    DocumentRepository,
    PatternRepository,
    PatternSampleRepository,
    RuleRepository,
    TemplateRepository,
)

__all__ = [
    'Base', 'Database', 'BaseRepository', 'DocumentRepository', 'PatternRepository',
    'PatternSampleRepository', 'RuleRepository', 'TemplateRepository',
]
