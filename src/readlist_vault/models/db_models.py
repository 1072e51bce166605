"""SQLAlchemy database models for readlist-vault."""
from typing import Optional

from sqlalchemy import (Boolean, Column, DateTime, Float, ForeignKey, Integer,
                        String, Table, Text, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool

from readlist_vault.config import config
from readlist_vault.models.schema import utc_now

Base = declarative_base()


def _utc_naive():
    """Current UTC time without tzinfo; SQLite stores naive datetimes."""
    return utc_now().replace(tzinfo=None)


# Association table for tags and articles
article_tags = Table(
    "article_tags",
    Base.metadata,
    Column("article_id", Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class DBArticle(Base):
    """Database model for a saved article."""
    __tablename__ = "articles"
    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(Text, unique=True, nullable=False)
    title = Column(Text, nullable=False)
    content = Column(Text, nullable=False, default="")
    excerpt = Column(Text, nullable=True)
    author = Column(String(255), nullable=True)
    domain = Column(String(255), nullable=True, index=True)
    word_count = Column(Integer, nullable=True)
    reading_time = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    is_favorite = Column(Boolean, default=False, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)
    reading_progress = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime, default=_utc_naive, nullable=False, index=True)
    updated_at = Column(DateTime, default=_utc_naive, nullable=False)
    last_read_at = Column(DateTime, nullable=True)
    vault_path = Column(Text, nullable=True)
    vault_synced_at = Column(DateTime, nullable=True, index=True)

    tags = relationship(
        "DBTag", secondary=article_tags, back_populates="articles", order_by="DBTag.name"
    )
    highlights = relationship(
        "DBHighlight",
        back_populates="article",
        cascade="all, delete-orphan",
        order_by="DBHighlight.id",
    )

    def __repr__(self) -> str:
        return f"<Article(id={self.id}, title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    color = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=_utc_naive, nullable=False)

    articles = relationship(
        "DBArticle", secondary=article_tags, back_populates="tags"
    )

    def __repr__(self) -> str:
        return f"<Tag(id={self.id}, name='{self.name}')>"


class DBHighlight(Base):
    """Database model for a highlighted passage."""
    __tablename__ = "highlights"
    id = Column(Integer, primary_key=True, autoincrement=True)
    article_id = Column(
        Integer, ForeignKey("articles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    text = Column(Text, nullable=False)
    context = Column(Text, nullable=True)
    position_start = Column(Integer, nullable=True)
    position_end = Column(Integer, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utc_naive, nullable=False)

    article = relationship("DBArticle", back_populates="highlights")

    def __repr__(self) -> str:
        return f"<Highlight(id={self.id}, article_id={self.article_id})>"


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create the engine and schema.

    Applies SQLite settings for crash resilience:
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode
    - foreign keys enforced so highlights and tag links follow their article
    - QueuePool with pre-ping to detect stale connections

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured database path.
    """
    engine = create_engine(
        db_url or config.get_db_url(),
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Optional[Engine] = None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
