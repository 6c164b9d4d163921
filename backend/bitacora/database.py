"""
Central SQLAlchemy models and session utilities.

Every table carries the owner's user_id; the storage layer filters on it for
every read and write. Schema is created with Base.metadata.create_all.
"""

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator, UserDefinedType

from .config import Config

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every TIMESTAMP column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Book(Base):
    """
    Notebooks. `name_key` is the case-folded name; it is unique per user so
    "Paneles BI" and "paneles bi" can never be two notebooks.
    """
    __tablename__ = "books"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    name_key = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    context = Column(Text, nullable=True)
    folder_id = Column(String(36), nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "name_key", name="uq_books_user_name"),
        Index("idx_books_user_id", "user_id"),
    )


class Thread(Base):
    __tablename__ = "threads"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False)
    title = Column(String(200), nullable=False)
    book_id = Column(String(36), ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(TIMESTAMP, nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_threads_user_id", "user_id"),
        Index("idx_threads_user_book", "user_id", "book_id"),
    )


class Entry(Base):
    """Classified notes. Each belongs to exactly one notebook."""
    __tablename__ = "entries"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False)
    book_id = Column(String(36), ForeignKey("books.id"), nullable=False)
    thread_id = Column(String(36), ForeignKey("threads.id", ondelete="SET NULL"), nullable=True)

    original_text = Column(Text, nullable=False)
    rewritten_text = Column(Text, nullable=True)
    summary = Column(Text, nullable=False, default="")
    type = Column(String(20), nullable=False, default="NOTE")
    status = Column(String(20), nullable=False, default="COMPLETED")

    created_at = Column(TIMESTAMP, nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_entries_user_id", "user_id"),
        Index("idx_entries_user_book", "user_id", "book_id"),
        Index("idx_entries_user_created", "user_id", "created_at"),
        Index("idx_entries_thread", "thread_id"),
    )


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False)
    entry_id = Column(String(36), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    description = Column(Text, nullable=False)
    assignee = Column(String(100), nullable=True)
    due_date = Column(Date, nullable=True)
    is_done = Column(Boolean, nullable=False, default=False)
    priority = Column(String(10), nullable=False, default="MEDIUM")
    completion_notes = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, server_default=func.now())
    completed_at = Column(TIMESTAMP, nullable=True)

    __table_args__ = (
        Index("idx_tasks_entry_id", "entry_id"),
        Index("idx_tasks_user_done", "user_id", "is_done"),
    )


class EntityMention(Base):
    __tablename__ = "entities"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False)
    entry_id = Column(String(36), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    type = Column(String(20), nullable=False, default="TOPIC")

    __table_args__ = (
        Index("idx_entities_entry_id", "entry_id"),
        Index("idx_entities_user_type", "user_id", "type"),
    )


class _PGVector(UserDefinedType):
    """pgvector column type (declared without adding third-party dependencies)."""

    cache_ok = True

    def __init__(self, dims: int):
        self.dims = dims

    def get_col_spec(self, **kw):
        return f"vector({self.dims})"


class VectorEmbedding(TypeDecorator):
    """
    Cross-dialect embedding type holding a list of floats:
    - SQLite: stored as TEXT (JSON list)
    - Postgres: stored as pgvector vector(dims)

    Both dialects accept the compact "[0.1,0.2,...]" literal.
    """

    impl = Text
    cache_ok = True

    def __init__(self, dims: int, **kwargs):
        super().__init__(**kwargs)
        self.dims = dims

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(_PGVector(self.dims))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: Optional[List[float]], dialect) -> Optional[str]:
        if value is None:
            return None
        return json.dumps([float(x) for x in value], separators=(",", ":"))

    def process_result_value(self, value, dialect) -> Optional[List[float]]:
        if value is None:
            return None
        if isinstance(value, (bytes, bytearray)):
            value = value.decode()
        if isinstance(value, str):
            value = json.loads(value)
        return [float(x) for x in value]


class EntryEmbedding(Base):
    """One embedding per (entry, model); regeneration replaces the row."""

    __tablename__ = "entry_embeddings"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False)
    entry_id = Column(String(36), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False)

    embedding_model = Column(String(100), nullable=False)
    content_hash = Column(String(64), nullable=False)
    embedding = Column(VectorEmbedding(Config.EMBEDDING_DIMENSIONS), nullable=False)

    created_at = Column(TIMESTAMP, nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("entry_id", "embedding_model", name="uq_entry_embeddings_entry_model"),
        Index("idx_entry_embeddings_user_model", "user_id", "embedding_model"),
    )


class EntryRelation(Base):
    """
    Similarity edges between notes. Undirected in meaning; the storage layer
    treats (a, b) and (b, a) as the same edge when upserting.
    """

    __tablename__ = "entry_relations"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False)
    source_entry_id = Column(String(36), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False)
    target_entry_id = Column(String(36), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False)
    strength = Column(Float, nullable=False)

    created_at = Column(TIMESTAMP, nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("source_entry_id", "target_entry_id", name="uq_entry_relations_pair"),
        Index("idx_entry_relations_source", "source_entry_id"),
        Index("idx_entry_relations_target", "target_entry_id"),
    )


class PersonSummary(Base):
    __tablename__ = "person_summaries"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False)
    person_name = Column(String(100), nullable=False)
    person_key = Column(String(100), nullable=False)
    summary = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    latest_entry_at = Column(TIMESTAMP, nullable=True)
    updated_at = Column(TIMESTAMP, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "person_key", name="uq_person_summaries_user_person"),
    )


def get_database_url() -> str:
    """
    Get database URL from configuration, defaulting to SQLite.

    Returns:
        Database connection string
    """
    if Config.DATABASE_URL:
        return Config.DATABASE_URL

    if Config.FLASK_ENV == "production":
        # In production, we must have DATABASE_URL. Do not fallback to SQLite.
        raise ValueError("DATABASE_URL environment variable is not set in production environment!")

    db_path = Config.BASE_DIR / ".bitacora.db"
    logger.warning("Using SQLite database at %s", db_path)
    return f"sqlite:///{db_path}"


def get_engine() -> Engine:
    """Get (and lazily create) the shared SQLAlchemy engine."""
    global _engine
    if _engine is None:
        _engine = create_engine_for_url()
    return _engine


def get_session_factory() -> sessionmaker:
    """Return the configured session factory."""
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = make_session_factory(get_engine())
    return _SessionFactory


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


def create_engine_for_url(database_url: Optional[str] = None) -> Engine:
    """Build a SQLAlchemy engine for the given URL (or default configuration)."""
    url = database_url or get_database_url()
    engine = create_engine(
        url,
        future=True,
        echo=False,
        pool_pre_ping=True,
    )

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _set_sqlite_pragmas)

    return engine


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """Apply SQLite pragmas for consistency (WAL, foreign keys)."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()
