"""Record store interface consumed by the sync engine."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from readlist_vault.models.schema import Highlight, Record


class RecordStore(ABC):
    """CRUD over reading-list records.

    The sync engine only uses the record operations; highlights and tags
    are exposed for other callers.
    """

    @abstractmethod
    def fetch_all(self) -> List[Record]:
        """Return every record, newest first."""

    @abstractmethod
    def fetch_by_id(self, record_id: int) -> Optional[Record]:
        """Return a record, or None if it does not exist."""

    @abstractmethod
    def fetch_unsynced(self) -> List[Record]:
        """Return records never written to the vault, oldest first."""

    @abstractmethod
    def update_fields(self, record_id: int, fields: Mapping[str, Any]) -> int:
        """Apply a partial update and bump ``updated_at``.

        Returns:
            Number of records affected (0 when the record is missing).
        """

    @abstractmethod
    def get_highlights(self, record_id: int) -> List[Highlight]:
        """Return the highlights of a record."""

    @abstractmethod
    def get_tags(self) -> Dict[str, int]:
        """Return tag names with their record counts."""
