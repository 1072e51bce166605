"""Where a record lives inside the vault."""
import logging
import re
from pathlib import Path
from typing import Optional

from readlist_vault.models.schema import FolderLayout, Record, SyncConfig
from readlist_vault.vault.metadata_parser import parse_metadata

logger = logging.getLogger(__name__)

MAX_FILE_NAME_LENGTH = 100

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")


def file_name(title: str) -> str:
    """Build a filesystem-safe ``.md`` file name from a title.

    Example:
        >>> file_name("My: Cool/Title??")
        'My CoolTitle.md'
    """
    name = _ILLEGAL_CHARS.sub("", title or "")
    name = _WHITESPACE.sub(" ", name).strip()
    name = name[:MAX_FILE_NAME_LENGTH].rstrip()
    return f"{name or 'untitled'}.md"


def folder_path(record: Record, config: SyncConfig) -> Path:
    """Folder for a record relative to the vault root."""
    base = Path(config.folder) if config.folder else Path()
    if config.layout == FolderLayout.BY_DATE:
        created = record.created_at
        return base / f"{created.year:04d}" / f"{created.month:02d}"
    if config.layout == FolderLayout.BY_DOMAIN and record.domain:
        return base / record.domain
    return base


def ensure_folder(vault_root: Path, relative: Path) -> Path:
    """Create ``vault_root/relative`` if needed and return it."""
    folder = Path(vault_root) / relative
    folder.mkdir(parents=True, exist_ok=True)
    return folder


def _inside(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


def _owner_id(path: Path) -> Optional[int]:
    try:
        return parse_metadata(path.read_text(encoding="utf-8")).record_id
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read existing vault file {path}: {e}")
        return None


def target_path(vault_root: Path, record: Record, config: SyncConfig) -> Path:
    """Absolute path an export of ``record`` should write to.

    A record that was exported before keeps its previous file as long as
    that file is inside the vault. A new file whose name is already taken
    by another record's document gets the record ID appended.
    """
    vault_root = Path(vault_root)
    if record.vault_path:
        previous = vault_root / record.vault_path
        if _inside(previous, vault_root):
            return previous
        logger.warning(
            f"Ignoring vault path outside the vault for record {record.id}: "
            f"{record.vault_path}"
        )

    folder = vault_root / folder_path(record, config)
    candidate = folder / file_name(record.title)
    if candidate.exists() and _owner_id(candidate) != record.id:
        candidate = folder / f"{candidate.stem} ({record.id}).md"
    return candidate
