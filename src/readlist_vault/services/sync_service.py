"""Bidirectional sync between the record store and a Markdown vault.

The service runs three kinds of pass:

- export: render every record that was never written to the vault
- import: scan the vault and fold reader edits back into the records
- full: backup, then export and/or import, then resolve conflicts

Passes run one at a time per service. A second pass started while one is
running fails fast with ``SyncError`` instead of waiting.
"""
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from readlist_vault.backup import VaultBackupManager
from readlist_vault.exceptions import (
    BackupError,
    ConfigurationError,
    ErrorCode,
    ReadlistError,
    SyncError,
)
from readlist_vault.models.schema import (
    Conflict,
    ItemAction,
    ItemOutcome,
    PassReport,
    Record,
    ResolutionOutcome,
    SyncConfig,
    SyncReport,
    SyncState,
    SyncStatus,
    VaultDocument,
    utc_now,
)
from readlist_vault.observability import timed_operation, traced
from readlist_vault.services.conflicts import (
    ConflictResolver,
    changed_updates,
    detect_conflict,
    extract_updates,
    relative_vault_path,
)
from readlist_vault.storage.base import RecordStore
from readlist_vault.utils import atomic_write_text
from readlist_vault.vault.layout import ensure_folder, target_path
from readlist_vault.vault.metadata_parser import parse_document
from readlist_vault.vault.renderer import render
from readlist_vault.vault.scanner import scan_vault

logger = logging.getLogger(__name__)


class SyncService:
    """Reconciles one record store with one vault.

    Args:
        store: Where records live.
        sync_config: Settings for the vault. The service keeps its own copy.
        backup_manager: Writes snapshots before a full sync. A default
            manager is created when omitted.
    """

    def __init__(
        self,
        store: RecordStore,
        sync_config: SyncConfig,
        backup_manager: Optional[VaultBackupManager] = None,
    ):
        if sync_config is None:
            raise ConfigurationError(
                "Vault is not configured", code=ErrorCode.SYNC_NOT_CONFIGURED
            )
        self.store = store
        self._config = sync_config.model_copy()
        self.backup_manager = backup_manager or VaultBackupManager()
        self._conflicts: List[Conflict] = []
        self._state = SyncState.IDLE
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._last_sync = None

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    def _acquire(self, operation: str) -> None:
        if not self._lock.acquire(blocking=False):
            raise SyncError(
                f"Cannot start {operation}: a sync is already in progress",
                operation=operation,
                code=ErrorCode.SYNC_IN_PROGRESS,
            )
        self._cancel.clear()

    def _release(self) -> None:
        self._state = SyncState.IDLE
        self._lock.release()

    def cancel(self) -> None:
        """Ask the running pass to stop after the current item.

        Files already written stay in place; the report is marked cancelled.
        """
        if self._lock.locked():
            logger.info("Sync cancellation requested")
        self._cancel.set()

    def _cancelled(self, report: PassReport) -> bool:
        if self._cancel.is_set():
            report.cancelled = True
            logger.info(f"{report.direction} pass cancelled after {len(report.details)} item(s)")
            return True
        return False

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def export_pass(self) -> PassReport:
        """Write every unsynced record to the vault."""
        self._acquire("export")
        try:
            return self._export_pass()
        finally:
            self._release()

    def import_pass(self) -> PassReport:
        """Read reader edits back from the vault."""
        self._acquire("import")
        try:
            return self._import_pass()
        finally:
            self._release()

    @traced("full_sync")
    def full_sync(self) -> SyncReport:
        """Backup, run the configured passes and resolve conflicts.

        Raises:
            BackupError: If backups are enabled and the snapshot fails.
                Nothing in the store or the vault has changed at that point.
            SyncError: If another pass is running.
        """
        self._acquire("full_sync")
        try:
            config = self._config
            report = SyncReport()

            if config.backup_before_sync:
                self._state = SyncState.BACKING_UP
                report.backup_path = self._create_backup()

            if config.direction.exports:
                report.export_report = self._export_pass()
            if config.direction.imports and not self._cancel.is_set():
                report.import_report = self._import_pass()

            report.total_conflicts = len(self._conflicts)
            if self._conflicts and not self._cancel.is_set():
                report.resolutions = self._resolve_queued(config.conflict_policy)

            self._last_sync = utc_now()
            logger.info(
                f"Full sync finished: "
                f"exported={report.export_report.synced if report.export_report else 0}, "
                f"imported={report.import_report.synced if report.import_report else 0}, "
                f"conflicts={report.total_conflicts}"
            )
            return report
        finally:
            self._release()

    @traced("export_pass")
    def _export_pass(self) -> PassReport:
        self._state = SyncState.EXPORTING
        config = self._config
        report = PassReport(direction="export")

        for record in self.store.fetch_unsynced():
            if self._cancelled(report):
                break
            report.add(self._export_record(record, config))

        if report.details:
            self._last_sync = utc_now()
        logger.info(
            f"Export pass: {report.synced} exported, {report.failed} failed"
        )
        return report

    def _export_record(self, record: Record, config: SyncConfig) -> ItemOutcome:
        try:
            path = target_path(config.vault_path, record, config)
            ensure_folder(config.vault_path, path.parent.relative_to(config.vault_path))
            atomic_write_text(path, render(record, config.template))
            relative = relative_vault_path(path, config.vault_path)
            self.store.update_fields(
                record.id, {"vault_path": relative, "vault_synced_at": utc_now()}
            )
        except (OSError, ReadlistError) as e:
            logger.warning(f"Failed to export record {record.id}: {e}")
            return ItemOutcome(
                action=ItemAction.EXPORT_FAILED,
                record_id=record.id,
                title=record.title,
                reason=str(e),
            )
        logger.debug(f"Exported record {record.id} to {relative}")
        return ItemOutcome(
            action=ItemAction.EXPORTED,
            record_id=record.id,
            title=record.title,
            path=relative,
        )

    @traced("import_pass")
    def _import_pass(self) -> PassReport:
        self._state = SyncState.IMPORTING
        config = self._config
        report = PassReport(direction="import")
        self._conflicts = []

        def on_error(path: Path, error: Exception) -> None:
            logger.warning(f"Cannot read vault file {path}: {error}")
            report.add(
                ItemOutcome(
                    action=ItemAction.IMPORT_FAILED,
                    file=relative_vault_path(path, config.vault_path),
                    reason=str(error),
                )
            )

        documents = scan_vault(
            config.sync_root, relative_to=config.vault_path, on_error=on_error
        )
        for document in documents:
            if self._cancelled(report):
                break
            try:
                report.add(self._import_document(document))
            except Exception as e:
                file = document.relative_path.as_posix()
                logger.warning(f"Failed to import {file}: {e}", exc_info=True)
                report.add(
                    ItemOutcome(
                        action=ItemAction.IMPORT_FAILED, file=file, reason=str(e)
                    )
                )

        if report.details:
            self._last_sync = utc_now()
        logger.info(
            f"Import pass: {report.synced} synced, {report.conflicts} conflicts, "
            f"{report.skipped} skipped, {report.orphaned} orphaned, {report.failed} failed"
        )
        return report

    def _import_document(self, document: VaultDocument) -> ItemOutcome:
        file = document.relative_path.as_posix()
        parsed = parse_document(document.text)
        if not parsed.managed:
            logger.debug(f"Skipping unmanaged vault file {file}")
            return ItemOutcome(
                action=ItemAction.SKIPPED, file=file, reason="Not a managed document"
            )

        record_id = parsed.metadata.record_id
        if record_id is None:
            logger.warning(f"Skipping {file}: record_id is not a valid record ID")
            return ItemOutcome(
                action=ItemAction.SKIPPED, file=file, reason="Invalid record_id"
            )

        try:
            record = self.store.fetch_by_id(record_id)
            if record is None:
                logger.warning(f"Vault file {file} refers to missing record {record_id}")
                return ItemOutcome(
                    action=ItemAction.ORPHANED,
                    record_id=record_id,
                    file=file,
                    reason="Record not found",
                )

            conflict = detect_conflict(
                record,
                parsed.metadata,
                parsed.notes,
                document.modified_at,
                vault_file=document.path,
            )
            if conflict is not None:
                self._conflicts.append(conflict)
                logger.info(
                    f"Conflict on record {record_id} ({', '.join(conflict.fields)})"
                )
                return ItemOutcome(
                    action=ItemAction.CONFLICT,
                    record_id=record_id,
                    file=file,
                    reason="Content conflict detected",
                )

            updates = changed_updates(record, extract_updates(parsed))
            if not updates:
                return ItemOutcome(
                    action=ItemAction.NO_CHANGES, record_id=record_id, file=file
                )
            self.store.update_fields(record_id, updates)
        except ReadlistError as e:
            logger.warning(f"Failed to import {file}: {e}")
            return ItemOutcome(
                action=ItemAction.IMPORT_FAILED,
                record_id=record_id,
                file=file,
                reason=str(e),
            )

        logger.debug(f"Imported {', '.join(updates)} for record {record_id}")
        return ItemOutcome(
            action=ItemAction.IMPORTED,
            record_id=record_id,
            file=file,
            updates=list(updates),
        )

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def get_conflicts(self) -> List[Conflict]:
        """Conflicts found by the last import pass that are still open."""
        return list(self._conflicts)

    def resolve_queued_conflicts(self, policy: Any = None) -> List[ResolutionOutcome]:
        """Resolve every queued conflict.

        Args:
            policy: Override for the configured policy. An unrecognized value
                behaves like ``manual``.
        """
        self._acquire("resolve")
        try:
            return self._resolve_queued(
                self._config.conflict_policy if policy is None else policy
            )
        finally:
            self._release()

    def _resolve_queued(self, policy: Any) -> List[ResolutionOutcome]:
        self._state = SyncState.RESOLVING
        resolver = ConflictResolver(self.store, self._config)
        outcomes: List[ResolutionOutcome] = []
        remaining: List[Conflict] = []

        with timed_operation("resolve_conflicts", policy=policy) as op:
            for conflict in self._conflicts:
                outcome = resolver.resolve(conflict, policy)
                outcomes.append(outcome)
                if not outcome.success:
                    remaining.append(conflict)
            self._conflicts = remaining
            op["resolved"] = len(outcomes) - len(remaining)
            op["open"] = len(remaining)
        return outcomes

    # ------------------------------------------------------------------
    # Configuration and status
    # ------------------------------------------------------------------

    def get_config(self) -> SyncConfig:
        return self._config.model_copy()

    def update_config(self, partial: Mapping[str, Any]) -> SyncConfig:
        """Merge ``partial`` into the settings and validate the result.

        Raises:
            ConfigurationError: For an unknown key or an invalid value. The
                previous settings stay in effect.
        """
        merged: Dict[str, Any] = {**self._config.model_dump(), **dict(partial)}
        try:
            new_config = SyncConfig.model_validate(merged)
        except PydanticValidationError as e:
            first = e.errors()[0]
            key = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ConfigurationError(
                f"Invalid vault configuration: {first.get('msg', e)}",
                config_key=key,
            ) from e
        self._config = new_config
        logger.info(f"Vault configuration updated: {', '.join(sorted(partial)) or 'no changes'}")
        return new_config.model_copy()

    def get_status(self) -> SyncStatus:
        """Counts from the store. ``last_sync`` is the latest export stamp on
        any record, or a later pass run by this service.
        """
        records = self.store.fetch_all()
        synced = sum(1 for record in records if record.is_synced)
        stamps = [r.vault_synced_at for r in records if r.vault_synced_at]
        if self._last_sync is not None:
            stamps.append(self._last_sync)
        return SyncStatus(
            total_records=len(records),
            synced_records=synced,
            unsynced_records=len(records) - synced,
            last_sync=max(stamps, default=None),
            direction=self._config.direction,
            conflict_policy=self._config.conflict_policy,
            active_conflicts=len(self._conflicts),
            state=self._state,
        )

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def create_backup(self) -> Path:
        """Write a snapshot of every record into the vault root.

        Raises:
            BackupError: If the snapshot cannot be written.
        """
        with timed_operation("create_backup"):
            return self._create_backup()

    def _create_backup(self) -> Path:
        try:
            records = self.store.fetch_all()
        except ReadlistError as e:
            raise BackupError(f"Cannot read records for backup: {e}", original_error=e) from e
        return self.backup_manager.create_backup(records, self._config.vault_path)

    def list_backups(self) -> List[Dict[str, Any]]:
        return self.backup_manager.list_backups(self._config.vault_path)
