"""
Shared fixtures for the DocExtract test suite.

Every test gets its own in-memory SQLite database so catalogs never leak
between tests.
"""

import pytest

from docextract.config.docextract_config import DocExtractConfig
from docextract.db.connection import Database
from docextract.db.repository import (
    DocumentRepository,
    PatternRepository,
    PatternSampleRepository,
    RuleRepository,
    TemplateRepository,
)
from docextract.events import EventBus
from docextract.learning.learner import PatternLearner
from docextract.learning.pattern_store import PatternStore
from docextract.rules.rule_engine import RuleEngine

UTILITY_BILL_TEXT = (
    "TNB Berhad\n"
    "Tenaga Nasional electricity bill\n"
    "Account No: 1234567890123\n"
    "Meter No: 87654321\n"
    "Bill Date: 05/03/2024\n"
    "Due Date: 25/03/2024\n"
    "Usage: 342 kWh\n"
    "Total Amount Due: RM 245.67\n"
)


@pytest.fixture
def config():
    return DocExtractConfig(
        overrides={'database': {'type': 'sqlite', 'path': ':memory:'}},
        load_user_config=False,
    )


@pytest.fixture
def db(config):
    database = Database(config)
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def file_db(tmp_path):
    """A file-backed database, for tests that write from several threads"""
    database = Database(DocExtractConfig(
        overrides={'database': {'type': 'sqlite', 'path': str(tmp_path / 'catalog.db')}},
        load_user_config=False,
    ))
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def pattern_store(db, config):
    return PatternStore(PatternRepository(db), PatternSampleRepository(db), config)


@pytest.fixture
def learner(pattern_store, event_bus, config):
    return PatternLearner(pattern_store, event_bus, config)


@pytest.fixture
def rule_engine(db, event_bus, config):
    return RuleEngine(RuleRepository(db), TemplateRepository(db), event_bus, config)


@pytest.fixture
def document_repository(db):
    return DocumentRepository(db)


@pytest.fixture
def utility_bill_text():
    return UTILITY_BILL_TEXT
