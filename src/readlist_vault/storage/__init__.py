"""Storage layer for readlist-vault."""

from readlist_vault.storage.base import RecordStore
from readlist_vault.storage.record_repository import RecordRepository

__all__ = [
    "RecordStore",
    "RecordRepository",
]
