"""Detect and resolve divergence between a record and its vault document."""
import datetime
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from readlist_vault.exceptions import ReadlistError
from readlist_vault.models.schema import (
    Conflict,
    ConflictPolicy,
    FieldDivergence,
    Metadata,
    Record,
    ResolutionOutcome,
    SyncConfig,
    utc_now,
)
from readlist_vault.storage.base import RecordStore
from readlist_vault.utils import atomic_write_text
from readlist_vault.vault.metadata_parser import ParsedDocument, parse_document
from readlist_vault.vault.renderer import render

logger = logging.getLogger(__name__)

NOTES_MERGE_SEPARATOR = "--- Merged from vault ---"

MANUAL_RESOLUTION_REQUIRED = "manual resolution required"
RECORD_NOT_FOUND = "record not found"


def detect_conflict(
    record: Record,
    metadata: Metadata,
    notes: Optional[str],
    file_modified_at: datetime.datetime,
    vault_file: Optional[Path] = None,
) -> Optional[Conflict]:
    """Compare a record with the document that mirrors it.

    Only a document modified after the record's last update can conflict.
    Read state, favorite state and notes are compared; every differing
    field is reported.

    Returns:
        A Conflict, or None when the file is not newer or nothing differs.
    """
    if file_modified_at <= record.updated_at:
        return None

    divergences: List[FieldDivergence] = []
    vault_read = metadata.get_bool("read")
    if vault_read is not None and vault_read != record.is_read:
        divergences.append(FieldDivergence("is_read", record.is_read, vault_read))
    vault_favorite = metadata.get_bool("favorite")
    if vault_favorite is not None and vault_favorite != record.is_favorite:
        divergences.append(
            FieldDivergence("is_favorite", record.is_favorite, vault_favorite)
        )
    if (notes or "") != (record.notes or ""):
        divergences.append(FieldDivergence("notes", record.notes, notes))

    if not divergences:
        return None
    return Conflict(
        record_id=record.id,
        vault_file=Path(vault_file) if vault_file else Path(),
        vault_modified_at=file_modified_at,
        record_updated_at=record.updated_at,
        divergences=divergences,
    )


def extract_updates(parsed: ParsedDocument) -> Dict[str, Any]:
    """Map vault values onto record fields.

    ``read``, ``favorite``, ``archived`` and ``progress`` map one to one;
    the notes section replaces the record's notes when it exists. Keys
    with the wrong type are ignored.
    """
    metadata = parsed.metadata
    updates: Dict[str, Any] = {}
    for key, record_field in (
        ("read", "is_read"),
        ("favorite", "is_favorite"),
        ("archived", "is_archived"),
    ):
        value = metadata.get_bool(key)
        if value is not None:
            updates[record_field] = value

    progress = metadata.get_number("progress")
    if progress is not None:
        if 0.0 <= progress <= 1.0:
            updates["reading_progress"] = float(progress)
        else:
            logger.warning(f"Ignoring out-of-range progress value: {progress}")

    if parsed.notes is not None:
        updates["notes"] = parsed.notes
    return updates


def changed_updates(record: Record, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the updates whose value differs from the record."""
    changed = {}
    for key, value in updates.items():
        current = getattr(record, key)
        if key == "notes":
            if (value or "") != (current or ""):
                changed[key] = value
        elif value != current:
            changed[key] = value
    return changed


def merge_notes(record_notes: Optional[str], vault_notes: Optional[str]) -> Optional[str]:
    """Combine both sides' notes, record first.

    Returns None when neither side has anything to add.
    """
    record_notes = record_notes or ""
    vault_notes = vault_notes or ""
    if record_notes and vault_notes and record_notes != vault_notes:
        return f"{record_notes}\n\n{NOTES_MERGE_SEPARATOR}\n{vault_notes}"
    if vault_notes:
        return vault_notes
    if record_notes:
        return record_notes
    return None


class ConflictResolver:
    """Applies a ConflictPolicy to one conflict.

    Problems with a single conflict (record gone, file unreadable, write
    failure) come back as a failed ResolutionOutcome rather than an
    exception so a batch of resolutions always completes.
    """

    def __init__(self, store: RecordStore, config: SyncConfig):
        self.store = store
        self.config = config

    def resolve(self, conflict: Conflict, policy: Any) -> ResolutionOutcome:
        parsed_policy = ConflictPolicy.parse(policy)
        policy_name = parsed_policy.value if parsed_policy else str(policy)

        def failure(reason: str) -> ResolutionOutcome:
            return ResolutionOutcome(
                record_id=conflict.record_id,
                vault_file=str(conflict.vault_file),
                policy=policy_name,
                success=False,
                reason=reason,
            )

        if parsed_policy is None or parsed_policy == ConflictPolicy.MANUAL:
            return failure(MANUAL_RESOLUTION_REQUIRED)

        try:
            record = self.store.fetch_by_id(conflict.record_id)
            if record is None:
                return failure(RECORD_NOT_FOUND)
            if parsed_policy == ConflictPolicy.VAULT_WINS:
                outcome = self._vault_wins(conflict, record)
            elif parsed_policy == ConflictPolicy.RECORD_WINS:
                outcome = self._record_wins(conflict, record)
            else:
                outcome = self._merge(conflict, record)
        except (OSError, UnicodeDecodeError, ReadlistError) as e:
            logger.warning(
                f"Failed to resolve conflict for record {conflict.record_id} "
                f"({policy_name}): {e}"
            )
            return failure(str(e))

        if outcome is None:
            return failure(RECORD_NOT_FOUND)
        logger.info(
            f"Resolved conflict for record {conflict.record_id} with {policy_name}"
        )
        return outcome

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def _vault_wins(self, conflict: Conflict, record: Record) -> Optional[ResolutionOutcome]:
        parsed = parse_document(Path(conflict.vault_file).read_text(encoding="utf-8"))
        updates = extract_updates(parsed)
        if updates and self.store.update_fields(record.id, updates) == 0:
            return None
        return ResolutionOutcome(
            record_id=record.id,
            vault_file=str(conflict.vault_file),
            policy=ConflictPolicy.VAULT_WINS.value,
            success=True,
            changed_fields=list(updates),
            action="updated_record",
        )

    def _record_wins(self, conflict: Conflict, record: Record) -> Optional[ResolutionOutcome]:
        if not self._write_back(record, Path(conflict.vault_file)):
            return None
        return ResolutionOutcome(
            record_id=record.id,
            vault_file=str(conflict.vault_file),
            policy=ConflictPolicy.RECORD_WINS.value,
            success=True,
            action="overwrote_vault_file",
        )

    def _merge(self, conflict: Conflict, record: Record) -> Optional[ResolutionOutcome]:
        parsed = parse_document(Path(conflict.vault_file).read_text(encoding="utf-8"))
        metadata = parsed.metadata

        updates: Dict[str, Any] = {}
        notes = merge_notes(record.notes, parsed.notes)
        if notes is not None:
            updates["notes"] = notes
        if metadata.get_bool("read") or record.is_read:
            updates["is_read"] = True
        if metadata.get_bool("favorite") or record.is_favorite:
            updates["is_favorite"] = True
        updates = changed_updates(record, updates)

        if updates and self.store.update_fields(record.id, updates) == 0:
            return None
        merged = self.store.fetch_by_id(record.id)
        if merged is None or not self._write_back(merged, Path(conflict.vault_file)):
            return None
        return ResolutionOutcome(
            record_id=record.id,
            vault_file=str(conflict.vault_file),
            policy=ConflictPolicy.MERGE.value,
            success=True,
            changed_fields=list(updates),
            action="merged",
        )

    def _write_back(self, record: Record, vault_file: Path) -> bool:
        """Render ``record`` over ``vault_file`` and mark it synced."""
        vault_file.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_text(vault_file, render(record, self.config.template))
        return (
            self.store.update_fields(
                record.id,
                {
                    "vault_path": relative_vault_path(vault_file, self.config.vault_path),
                    "vault_synced_at": utc_now(),
                },
            )
            > 0
        )


def relative_vault_path(path: Path, vault_root: Path) -> str:
    """Path stored on the record: POSIX, relative to the vault root."""
    try:
        return Path(path).relative_to(vault_root).as_posix()
    except ValueError:
        return Path(path).as_posix()
