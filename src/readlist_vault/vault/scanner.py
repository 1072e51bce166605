"""Find Markdown documents in a vault folder."""
import datetime
import logging
from pathlib import Path
from typing import Callable, List, Optional

from readlist_vault.models.schema import VaultDocument

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Path, Exception], None]


def _log_unreadable(path: Path, error: Exception) -> None:
    logger.warning(f"Skipping unreadable vault file {path}: {error}")


def scan_vault(
    root: Path,
    relative_to: Optional[Path] = None,
    on_error: Optional[ErrorCallback] = None,
) -> List[VaultDocument]:
    """Collect every ``*.md`` file below ``root``.

    Hidden files and directories (``.obsidian``, ``.trash``...) and
    symlinked directories are skipped.
    A missing root gives an empty list; a directory that cannot be listed
    is logged and treated as empty.

    Args:
        root: Directory to walk.
        relative_to: Base for ``VaultDocument.relative_path``. Defaults to
            ``root``.
        on_error: Called with the path and exception for a file that cannot
            be read or decoded. Defaults to logging a warning.

    Returns:
        One VaultDocument per readable file, in no particular order.
    """
    root = Path(root)
    base = Path(relative_to) if relative_to is not None else root
    report = on_error or _log_unreadable
    documents: List[VaultDocument] = []

    if not root.is_dir():
        logger.debug(f"Vault folder does not exist: {root}")
        return documents

    pending = [root]
    while pending:
        directory = pending.pop()
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            logger.warning(f"Cannot list vault directory {directory}: {e}")
            continue

        for entry in entries:
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                # Linked folders can loop back into the vault
                if entry.is_symlink():
                    logger.debug(f"Skipping linked folder {entry}")
                else:
                    pending.append(entry)
                continue
            if entry.suffix.lower() != ".md" or not entry.is_file():
                continue
            try:
                text = entry.read_text(encoding="utf-8")
                mtime = entry.stat().st_mtime
            except (OSError, UnicodeDecodeError) as e:
                report(entry, e)
                continue
            try:
                relative = entry.relative_to(base)
            except ValueError:
                relative = entry.relative_to(root)
            documents.append(
                VaultDocument(
                    path=entry,
                    relative_path=relative,
                    text=text,
                    modified_at=datetime.datetime.fromtimestamp(
                        mtime, tz=datetime.timezone.utc
                    ),
                )
            )

    logger.debug(f"Scanned {len(documents)} document(s) under {root}")
    return documents
