"""JSON snapshots of the record store, written before a sync.

A snapshot is ``readlist-backup-<timestamp>.json`` in the vault root:

    {"created_at": ..., "total_records": N, "records": [...]}
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Union

from readlist_vault.exceptions import BackupError
from readlist_vault.models.schema import Record
from readlist_vault.utils import atomic_write_text

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "readlist-backup-"
BACKUP_PATTERN = f"{BACKUP_PREFIX}*.json"

DEFAULT_MAX_BACKUPS = 10  # Keep last N backups per vault


class VaultBackupManager:
    """Writes and rotates record snapshots inside a vault.

    Args:
        max_backups: Snapshots kept per vault; 0 keeps all of them.
    """

    def __init__(self, max_backups: int = DEFAULT_MAX_BACKUPS):
        self.max_backups = max_backups
        self._lock = Lock()

    def create_backup(self, records: Iterable[Record], vault_root: Union[str, Path]) -> Path:
        """Snapshot ``records`` into ``vault_root``.

        Returns:
            Path to the snapshot file.

        Raises:
            BackupError: If the vault root is missing or the file cannot be written.
        """
        vault_root = Path(vault_root)
        with self._lock:
            if not vault_root.is_dir():
                raise BackupError(
                    f"Vault directory does not exist: {vault_root}", path=str(vault_root)
                )

            now = datetime.now(timezone.utc)
            backup_path = vault_root / f"{BACKUP_PREFIX}{now.strftime('%Y-%m-%dT%H-%M-%S-%f')}.json"
            records = list(records)
            data = {
                "created_at": now.isoformat(),
                "total_records": len(records),
                "records": [record.model_dump(mode="json") for record in records],
            }
            try:
                atomic_write_text(backup_path, json.dumps(data, indent=2, ensure_ascii=False))
            except (OSError, TypeError, ValueError) as e:
                raise BackupError(
                    f"Failed to write backup: {e}",
                    path=str(backup_path),
                    original_error=e,
                ) from e

            size_kb = backup_path.stat().st_size / 1024
            logger.info(
                f"Backup created: {backup_path} ({len(records)} records, {size_kb:.1f} KB)"
            )
            self._rotate_backups(vault_root)
            return backup_path

    def _rotate_backups(self, vault_root: Path) -> int:
        """Remove the oldest snapshots beyond ``max_backups``.

        Returns:
            Number of backups removed.
        """
        if self.max_backups <= 0:
            return 0
        removed = 0
        # Timestamped names sort chronologically
        backups = sorted(vault_root.glob(BACKUP_PATTERN), reverse=True)
        for backup in backups[self.max_backups:]:
            try:
                backup.unlink()
                removed += 1
                logger.debug(f"Removed old backup (count limit): {backup}")
            except OSError as e:
                logger.warning(f"Could not remove old backup {backup}: {e}")
        if removed > 0:
            logger.info(f"Rotated {removed} old backup(s)")
        return removed

    def list_backups(self, vault_root: Union[str, Path]) -> List[Dict[str, Any]]:
        """List snapshots in a vault, newest first."""
        backups = []
        for path in Path(vault_root).glob(BACKUP_PATTERN):
            stat = path.stat()
            backups.append({
                "path": str(path),
                "name": path.name,
                "size_bytes": stat.st_size,
                "created_at": datetime.fromtimestamp(
                    stat.st_mtime, tz=timezone.utc
                ).isoformat(),
            })
        backups.sort(key=lambda b: b["name"], reverse=True)
        return backups
