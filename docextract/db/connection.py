import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from docextract.config.docextract_config import DocExtractConfig

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """
    Database connection manager for DocExtract

    Handles SQLite and PostgreSQL connections. An in-memory SQLite database
    can be requested with ``path: ':memory:'``.
    """

    def __init__(self, config: Optional[DocExtractConfig] = None, url: Optional[str] = None):
        self.config = config or DocExtractConfig.get_instance()
        self.engine: Optional[Engine] = None
        self.Session = None
        self._url = url
        self._initialize()

    def _build_url(self) -> str:
        db_config = self.config.get_database_config()
        db_type = db_config.get('type', 'sqlite')

        if db_type == 'sqlite':
            db_path = db_config.get('path', 'docextract.db')
            if db_path == ':memory:':
                return 'sqlite://'
            db_path = Path(db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
            return f'sqlite:///{db_path}'

        if db_type == 'postgresql':
            pg = db_config.get('postgres', {})
            return (
                f"postgresql://{pg.get('user')}:{pg.get('password')}"
                f"@{pg.get('host', 'localhost')}:{pg.get('port', 5432)}/{pg.get('database')}"
            )

        raise ValueError(f"Unsupported database type: {db_type}")

    def _initialize(self) -> None:
        url = self._url or self._build_url()

        if url.startswith('sqlite'):
            kwargs = {'connect_args': {'check_same_thread': False}}
            if url == 'sqlite://':
                kwargs['poolclass'] = StaticPool
            self.engine = create_engine(url, **kwargs)

            @event.listens_for(self.engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
        else:
            self.engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)

        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info(f"Database engine created for {self.engine.url.render_as_string(hide_password=True)}")

    def session(self) -> Session:
        """Get a new database session"""
        return self.Session()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Session scope that commits on success and rolls back on error"""
        session = self.Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all tables registered on the declarative base"""
        from docextract.db import models  # noqa: F401  registers the tables

        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
