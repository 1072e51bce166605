"""Repository for reading-list records backed by SQLite."""
import datetime
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from readlist_vault.exceptions import (
    ErrorCode,
    RecordNotFoundError,
    StorageError,
    ValidationError,
)
from readlist_vault.models.db_models import (
    DBArticle,
    DBHighlight,
    DBTag,
    article_tags,
    get_session_factory,
    init_db,
)
from readlist_vault.models.schema import (
    Highlight,
    Record,
    ensure_timezone_aware,
    utc_now,
)
from readlist_vault.storage.base import RecordStore

logger = logging.getLogger(__name__)

# Columns a partial update may touch. ``id`` and ``created_at`` are fixed.
UPDATABLE_FIELDS = frozenset({
    "url", "title", "content", "excerpt", "author", "domain",
    "word_count", "reading_time", "tags", "notes",
    "is_read", "is_favorite", "is_archived", "reading_progress",
    "last_read_at", "vault_path", "vault_synced_at",
})

_DATETIME_FIELDS = frozenset({"last_read_at", "vault_synced_at"})


def _to_db_datetime(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Normalize to naive UTC for storage."""
    if value is None:
        return None
    value = ensure_timezone_aware(value)
    return value.astimezone(datetime.timezone.utc).replace(tzinfo=None)


def _optional_aware(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    return ensure_timezone_aware(value) if value is not None else None


def _read_error(
    operation: str, error: Exception, record_id: Optional[int] = None
) -> StorageError:
    target = f" {record_id}" if record_id is not None else "s"
    return StorageError(
        f"Failed to read record{target}",
        operation=operation,
        code=ErrorCode.STORAGE_READ_FAILED,
        original_error=error,
    )


class RecordRepository(RecordStore):
    """SQLAlchemy implementation of the record store.

    Tags live in their own table linked through ``article_tags``;
    highlights cascade with their article.
    """

    def __init__(self, engine=None):
        """Initialize the repository.

        Args:
            engine: SQLAlchemy engine. If None, uses the configured database.
        """
        self.engine = engine or init_db()
        self.session_factory = get_session_factory(self.engine)
        logger.info("RecordRepository initialized")

    # ------------------------------------------------------------------
    # RecordStore interface
    # ------------------------------------------------------------------

    def fetch_all(self) -> List[Record]:
        try:
            with self.session_factory() as session:
                rows = session.scalars(
                    select(DBArticle)
                    .options(selectinload(DBArticle.tags))
                    .order_by(DBArticle.created_at.desc(), DBArticle.id.desc())
                ).all()
                return [self._db_to_model(row) for row in rows]
        except SQLAlchemyError as e:
            raise _read_error("fetch_all", e) from e

    def fetch_by_id(self, record_id: int) -> Optional[Record]:
        try:
            with self.session_factory() as session:
                row = session.get(DBArticle, record_id)
                if row is None:
                    return None
                return self._db_to_model(row)
        except SQLAlchemyError as e:
            raise _read_error("fetch_by_id", e, record_id) from e

    def fetch_unsynced(self) -> List[Record]:
        try:
            with self.session_factory() as session:
                rows = session.scalars(
                    select(DBArticle)
                    .options(selectinload(DBArticle.tags))
                    .where(DBArticle.vault_synced_at.is_(None))
                    .order_by(DBArticle.created_at.asc(), DBArticle.id.asc())
                ).all()
                return [self._db_to_model(row) for row in rows]
        except SQLAlchemyError as e:
            raise _read_error("fetch_unsynced", e) from e

    def update_fields(self, record_id: int, fields: Mapping[str, Any]) -> int:
        """Apply a partial update.

        Raises:
            ValidationError: If ``fields`` is empty or names an unknown column.
            StorageError: If the database write fails.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot update field(s): {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        if not fields:
            raise ValidationError("No valid fields to update")

        try:
            with self.session_factory() as session:
                row = session.get(DBArticle, record_id)
                if row is None:
                    return 0
                for key, value in fields.items():
                    if key == "tags":
                        row.tags = self._resolve_tags(session, value)
                    elif key in _DATETIME_FIELDS:
                        setattr(row, key, _to_db_datetime(value))
                    elif key == "reading_progress":
                        progress = float(value)
                        if not 0.0 <= progress <= 1.0:
                            raise ValidationError(
                                "reading_progress must be between 0.0 and 1.0",
                                field=key,
                                value=value,
                            )
                        row.reading_progress = progress
                    else:
                        setattr(row, key, value)
                row.updated_at = _to_db_datetime(utc_now())
                session.commit()
                logger.debug(
                    f"Updated record {record_id}: {', '.join(sorted(fields))}"
                )
                return 1
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to update record {record_id}",
                operation="update_fields",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def get_highlights(self, record_id: int) -> List[Highlight]:
        try:
            with self.session_factory() as session:
                rows = session.scalars(
                    select(DBHighlight)
                    .where(DBHighlight.article_id == record_id)
                    .order_by(DBHighlight.id)
                ).all()
                return [
                    Highlight(
                        id=row.id,
                        record_id=row.article_id,
                        text=row.text,
                        context=row.context,
                        note=row.note,
                        created_at=ensure_timezone_aware(row.created_at),
                    )
                    for row in rows
                ]
        except SQLAlchemyError as e:
            raise _read_error("get_highlights", e, record_id) from e

    def get_tags(self) -> Dict[str, int]:
        try:
            with self.session_factory() as session:
                result = session.execute(
                    select(DBTag.name, func.count(article_tags.c.article_id))
                    .select_from(DBTag)
                    .outerjoin(article_tags, DBTag.id == article_tags.c.tag_id)
                    .group_by(DBTag.name)
                    .order_by(DBTag.name)
                ).all()
                return {name: count for name, count in result}
        except SQLAlchemyError as e:
            raise _read_error("get_tags", e) from e

    # ------------------------------------------------------------------
    # Additional CRUD used by the server and tests
    # ------------------------------------------------------------------

    def create(self, record: Record) -> Record:
        """Insert a new record and return it with its assigned ID.

        Raises:
            ValidationError: If a record with the same URL already exists.
        """
        with self.session_factory() as session:
            row = DBArticle(
                url=record.url,
                title=record.title,
                content=record.content,
                excerpt=record.excerpt,
                author=record.author,
                domain=record.domain,
                word_count=record.word_count,
                reading_time=record.reading_time,
                notes=record.notes,
                is_read=record.is_read,
                is_favorite=record.is_favorite,
                is_archived=record.is_archived,
                reading_progress=record.reading_progress,
                created_at=_to_db_datetime(record.created_at),
                updated_at=_to_db_datetime(record.updated_at),
                last_read_at=_to_db_datetime(record.last_read_at),
                vault_path=record.vault_path,
                vault_synced_at=_to_db_datetime(record.vault_synced_at),
            )
            row.tags = self._resolve_tags(session, record.tags)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ValidationError(
                    f"A record for '{record.url}' already exists",
                    field="url",
                    value=record.url,
                    code=ErrorCode.RECORD_ALREADY_EXISTS,
                ) from e
            logger.info(f"Created record {row.id}: {record.title[:60]}")
            return self._db_to_model(row)

    def delete(self, record_id: int) -> None:
        """Delete a record with its highlights and tag links.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """
        with self.session_factory() as session:
            row = session.get(DBArticle, record_id)
            if row is None:
                raise RecordNotFoundError(record_id)
            session.delete(row)
            session.commit()
            logger.info(f"Deleted record {record_id}")

    def add_highlight(self, highlight: Highlight) -> Highlight:
        """Attach a highlight to an existing record."""
        with self.session_factory() as session:
            if session.get(DBArticle, highlight.record_id) is None:
                raise RecordNotFoundError(highlight.record_id)
            row = DBHighlight(
                article_id=highlight.record_id,
                text=highlight.text,
                context=highlight.context,
                note=highlight.note,
                created_at=_to_db_datetime(highlight.created_at),
            )
            session.add(row)
            session.commit()
            return highlight.model_copy(update={"id": row.id})

    def count(self) -> int:
        with self.session_factory() as session:
            return session.scalar(select(func.count(DBArticle.id))) or 0

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_tags(session: Session, names: Iterable[str]) -> List[DBTag]:
        """Get or create tag rows for the given names."""
        tags: List[DBTag] = []
        for name in dict.fromkeys(n.strip() for n in names or [] if n and n.strip()):
            # INSERT OR IGNORE keeps concurrent creation of the same tag safe
            session.execute(
                text("INSERT OR IGNORE INTO tags (name, created_at) VALUES (:name, :now)"),
                {"name": name, "now": _to_db_datetime(utc_now())},
            )
            tags.append(session.scalar(select(DBTag).where(DBTag.name == name)))
        return tags

    @staticmethod
    def _db_to_model(row: DBArticle) -> Record:
        return Record(
            id=row.id,
            url=row.url,
            title=row.title,
            content=row.content or "",
            excerpt=row.excerpt,
            author=row.author,
            domain=row.domain,
            word_count=row.word_count,
            reading_time=row.reading_time,
            tags=sorted(tag.name for tag in row.tags),
            notes=row.notes,
            is_read=bool(row.is_read),
            is_favorite=bool(row.is_favorite),
            is_archived=bool(row.is_archived),
            reading_progress=row.reading_progress or 0.0,
            created_at=ensure_timezone_aware(row.created_at),
            updated_at=ensure_timezone_aware(row.updated_at),
            last_read_at=_optional_aware(row.last_read_at),
            vault_path=row.vault_path,
            vault_synced_at=_optional_aware(row.vault_synced_at),
        )
