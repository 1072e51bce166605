"""Data models for readlist-vault."""

import datetime
import math
from dataclasses import dataclass, field
from datetime import timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite drops timezone information, so every naive datetime read back
    from the database is assumed to be UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def _lookup_alias(enum_cls, value: Any, aliases: Mapping[str, str]):
    """Resolve case/underscore variants and legacy spellings of an enum value."""
    if not isinstance(value, str):
        return None
    key = value.strip().lower().replace("_", "-")
    key = aliases.get(key, key)
    for member in enum_cls:
        if member.value == key:
            return member
    return None


class FolderLayout(str, Enum):
    """How exported documents are grouped below the vault folder."""

    BY_DATE = "by-date"  # folder/YYYY/MM
    BY_DOMAIN = "by-domain"  # folder/<domain>
    FLAT = "flat"  # folder

    @classmethod
    def _missing_(cls, value):
        return _lookup_alias(
            cls, value, {"date": "by-date", "domain": "by-domain", "none": "flat"}
        )


class TemplateKind(str, Enum):
    """Document templates available to the renderer."""

    MINIMAL = "minimal"
    DEFAULT = "default"
    DETAILED = "detailed"

    @classmethod
    def _missing_(cls, value):
        return _lookup_alias(cls, value, {})


class SyncDirection(str, Enum):
    """Which passes a full sync runs."""

    EXPORT_ONLY = "export-only"
    IMPORT_ONLY = "import-only"
    BOTH = "both"

    @classmethod
    def _missing_(cls, value):
        return _lookup_alias(
            cls, value, {"export": "export-only", "import": "import-only"}
        )

    @property
    def exports(self) -> bool:
        return self in (SyncDirection.EXPORT_ONLY, SyncDirection.BOTH)

    @property
    def imports(self) -> bool:
        return self in (SyncDirection.IMPORT_ONLY, SyncDirection.BOTH)


class ConflictPolicy(str, Enum):
    """Strategies for resolving a detected conflict."""

    VAULT_WINS = "vault-wins"
    RECORD_WINS = "record-wins"
    MERGE = "merge"
    MANUAL = "manual"

    @classmethod
    def _missing_(cls, value):
        return _lookup_alias(
            cls,
            value,
            {
                "obsidian-wins": "vault-wins",
                "app-wins": "record-wins",
                "ask": "manual",
            },
        )

    @classmethod
    def parse(cls, value: Any) -> Optional["ConflictPolicy"]:
        """Return the matching policy, or None for an unrecognized value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class SyncState(str, Enum):
    """Phases of a sync invocation. Every call starts and ends in IDLE."""

    IDLE = "idle"
    BACKING_UP = "backing_up"
    EXPORTING = "exporting"
    IMPORTING = "importing"
    RESOLVING = "resolving"


class Record(BaseModel):
    """A saved article in the reading list."""

    id: Optional[int] = Field(default=None, description="Store-assigned ID")
    url: str = Field(..., description="Source URL of the article")
    title: str = Field(..., description="Article title")
    content: str = Field(default="", description="Extracted HTML content")
    excerpt: Optional[str] = Field(default=None, description="Short summary")
    author: Optional[str] = Field(default=None)
    domain: Optional[str] = Field(default=None, description="Host the URL points to")
    word_count: Optional[int] = Field(default=None)
    reading_time: Optional[int] = Field(
        default=None, description="Estimated reading time in minutes"
    )
    tags: List[str] = Field(default_factory=list, description="Tag names")
    notes: Optional[str] = Field(default=None, description="Free-text reader notes")
    is_read: bool = False
    is_favorite: bool = False
    is_archived: bool = False
    reading_progress: float = Field(default=0.0, ge=0.0, le=1.0)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)
    last_read_at: Optional[datetime.datetime] = None
    vault_path: Optional[str] = Field(
        default=None, description="Where the record was last written in the vault"
    )
    vault_synced_at: Optional[datetime.datetime] = Field(
        default=None, description="Set after a successful vault write"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("url", "title")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Value cannot be empty")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        """Drop blanks and duplicates while keeping first-seen order."""
        seen: Dict[str, None] = {}
        for tag in v:
            name = tag.strip()
            if name:
                seen.setdefault(name, None)
        return list(seen)

    @field_validator("created_at", "updated_at")
    @classmethod
    def validate_aware(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @field_validator("last_read_at", "vault_synced_at")
    @classmethod
    def validate_optional_aware(
        cls, v: Optional[datetime.datetime]
    ) -> Optional[datetime.datetime]:
        if v is None:
            return None
        return ensure_timezone_aware(v)

    @property
    def is_synced(self) -> bool:
        return self.vault_synced_at is not None


class Highlight(BaseModel):
    """A highlighted passage of a record."""

    id: Optional[int] = None
    record_id: int
    text: str
    context: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}


class SyncConfig(BaseModel):
    """Settings for one vault.

    Owned by a single SyncService; updates go through
    ``SyncService.update_config`` which re-validates the merged result.
    """

    vault_path: Path = Field(..., description="Root directory of the vault")
    folder: str = Field(
        default="Reading List", description="Sub-folder that holds exported records"
    )
    layout: FolderLayout = Field(default=FolderLayout.BY_DATE)
    template: TemplateKind = Field(default=TemplateKind.DEFAULT)
    direction: SyncDirection = Field(default=SyncDirection.BOTH)
    conflict_policy: ConflictPolicy = Field(default=ConflictPolicy.VAULT_WINS)
    backup_before_sync: bool = Field(default=True)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("vault_path", mode="before")
    @classmethod
    def validate_vault_path(cls, v: Any) -> Any:
        if v is None or not str(v).strip():
            raise ValueError("vault_path is required")
        return v

    @field_validator("folder")
    @classmethod
    def validate_folder(cls, v: str) -> str:
        """Keep the sync folder inside the vault."""
        v = v.strip().strip("/")
        if "\\" in v:
            v = v.replace("\\", "/")
        if any(part == ".." for part in PurePosixPath(v).parts):
            raise ValueError("folder cannot contain '..' (path traversal)")
        return v

    @property
    def sync_root(self) -> Path:
        """Directory scanned by the import pass."""
        return self.vault_path / self.folder if self.folder else self.vault_path


@dataclass(frozen=True)
class VaultDocument:
    """A Markdown file found in the vault during one scan."""

    path: Path
    relative_path: Path
    text: str
    modified_at: datetime.datetime


# ---------------------------------------------------------------------------
# Front-matter values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BoolValue:
    value: bool


@dataclass(frozen=True)
class NumberValue:
    value: Union[int, float]


@dataclass(frozen=True)
class StringValue:
    value: str


MetadataValue = Union[BoolValue, NumberValue, StringValue]

MAX_RECORD_ID = 2**63 - 1


class Metadata:
    """Typed key/value pairs read from a document's front matter.

    Each value is one of BoolValue, NumberValue or StringValue; the typed
    getters return None when a key is missing or holds another variant.
    """

    def __init__(self, values: Optional[Dict[str, MetadataValue]] = None) -> None:
        self._values: Dict[str, MetadataValue] = dict(values or {})

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Metadata):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        return f"Metadata({self._values!r})"

    def get(self, key: str) -> Optional[MetadataValue]:
        return self._values.get(key)

    def get_bool(self, key: str) -> Optional[bool]:
        value = self._values.get(key)
        return value.value if isinstance(value, BoolValue) else None

    def get_number(self, key: str) -> Optional[Union[int, float]]:
        value = self._values.get(key)
        return value.value if isinstance(value, NumberValue) else None

    def get_string(self, key: str) -> Optional[str]:
        value = self._values.get(key)
        return value.value if isinstance(value, StringValue) else None

    @property
    def url(self) -> Optional[str]:
        return self.get_string("url")

    @property
    def record_id(self) -> Optional[int]:
        """The embedded record ID, or None if it is not a whole number."""
        number = self.get_number("record_id")
        if number is None or not math.isfinite(number) or number != int(number):
            return None
        number = int(number)
        # SQLite integers are signed 64-bit
        if not -MAX_RECORD_ID - 1 <= number <= MAX_RECORD_ID:
            return None
        return number

    @property
    def is_managed(self) -> bool:
        return "url" in self._values and "record_id" in self._values

    def to_dict(self) -> Dict[str, Union[bool, int, float, str]]:
        return {key: value.value for key, value in self._values.items()}


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldDivergence:
    """One tracked field whose record and vault values differ."""

    field: str
    record_value: Any
    vault_value: Any


@dataclass
class Conflict:
    """A record and its vault document diverged after the record was saved.

    Attributes:
        record_id: ID of the record.
        vault_file: Absolute path of the vault document.
        vault_modified_at: Modification time of the vault document.
        record_updated_at: Last update time of the record.
        divergences: Every tracked field that differs, in check order.
    """

    record_id: int
    vault_file: Path
    vault_modified_at: datetime.datetime
    record_updated_at: datetime.datetime
    divergences: List[FieldDivergence] = field(default_factory=list)

    @property
    def fields(self) -> List[str]:
        return [d.field for d in self.divergences]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "content_conflict",
            "record_id": self.record_id,
            "vault_file": str(self.vault_file),
            "vault_modified_at": self.vault_modified_at.isoformat(),
            "record_updated_at": self.record_updated_at.isoformat(),
            "changes": [
                {
                    "field": d.field,
                    "record_value": d.record_value,
                    "vault_value": d.vault_value,
                }
                for d in self.divergences
            ],
        }


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ItemAction(str, Enum):
    """Outcome classification for one record or document in a pass."""

    EXPORTED = "exported"
    EXPORT_FAILED = "export_failed"
    IMPORTED = "imported"
    NO_CHANGES = "no_changes"
    SKIPPED = "skipped"
    ORPHANED = "orphaned"
    CONFLICT = "conflict"
    IMPORT_FAILED = "import_failed"


_SUCCESS_ACTIONS = {ItemAction.EXPORTED, ItemAction.IMPORTED, ItemAction.NO_CHANGES}
_FAILURE_ACTIONS = {ItemAction.EXPORT_FAILED, ItemAction.IMPORT_FAILED}


@dataclass
class ItemOutcome:
    """What happened to one record (export) or document (import)."""

    action: ItemAction
    record_id: Optional[int] = None
    title: Optional[str] = None
    file: Optional[str] = None
    path: Optional[str] = None
    reason: Optional[str] = None
    updates: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.action in _SUCCESS_ACTIONS

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "success": self.success,
            "action": self.action.value,
        }
        for key in ("record_id", "title", "file", "path", "reason"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.updates:
            result["updates"] = list(self.updates)
        return result


@dataclass
class PassReport:
    """Aggregated outcomes of one export or import pass."""

    direction: str
    details: List[ItemOutcome] = field(default_factory=list)
    cancelled: bool = False

    def add(self, outcome: ItemOutcome) -> ItemOutcome:
        self.details.append(outcome)
        return outcome

    def _count(self, *actions: ItemAction) -> int:
        return sum(1 for d in self.details if d.action in actions)

    @property
    def synced(self) -> int:
        return self._count(*_SUCCESS_ACTIONS)

    @property
    def failed(self) -> int:
        return self._count(*_FAILURE_ACTIONS)

    @property
    def conflicts(self) -> int:
        return self._count(ItemAction.CONFLICT)

    @property
    def skipped(self) -> int:
        return self._count(ItemAction.SKIPPED)

    @property
    def orphaned(self) -> int:
        return self._count(ItemAction.ORPHANED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "skipped": self.skipped,
            "orphaned": self.orphaned,
            "cancelled": self.cancelled,
            "details": [d.to_dict() for d in self.details],
        }


@dataclass
class ResolutionOutcome:
    """Result of applying a policy to one conflict."""

    record_id: int
    vault_file: str
    policy: str
    success: bool
    changed_fields: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    action: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "success": self.success,
            "conflict": "content_conflict",
            "record_id": self.record_id,
            "vault_file": self.vault_file,
            "resolution": self.policy,
        }
        if self.success:
            result["updates"] = list(self.changed_fields)
        if self.action:
            result["action"] = self.action
        if self.reason:
            result["reason"] = self.reason
        return result


@dataclass
class SyncReport:
    """Consolidated result of a full sync."""

    export_report: Optional[PassReport] = None
    import_report: Optional[PassReport] = None
    resolutions: List[ResolutionOutcome] = field(default_factory=list)
    backup_path: Optional[Path] = None
    total_conflicts: int = 0

    @property
    def cancelled(self) -> bool:
        return any(
            r is not None and r.cancelled
            for r in (self.export_report, self.import_report)
        )

    def to_dict(self) -> Dict[str, Any]:
        empty = {"synced": 0, "failed": 0, "conflicts": 0}
        return {
            "success": True,
            "export": self.export_report.to_dict() if self.export_report else empty,
            "import": self.import_report.to_dict() if self.import_report else empty,
            "conflicts": [r.to_dict() for r in self.resolutions],
            "total_conflicts": self.total_conflicts,
            "backup_path": str(self.backup_path) if self.backup_path else None,
            "cancelled": self.cancelled,
        }


@dataclass
class SyncStatus:
    """Snapshot of how far the record store and the vault agree."""

    total_records: int
    synced_records: int
    unsynced_records: int
    last_sync: Optional[datetime.datetime]
    direction: SyncDirection
    conflict_policy: ConflictPolicy
    active_conflicts: int
    state: SyncState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_records": self.total_records,
            "synced_records": self.synced_records,
            "unsynced_records": self.unsynced_records,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "sync_direction": self.direction.value,
            "conflict_resolution": self.conflict_policy.value,
            "active_conflicts": self.active_conflicts,
            "state": self.state.value,
        }
