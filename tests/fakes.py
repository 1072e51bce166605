"""Helpers shared by the sync tests.

Vault files are edited in place the way a reader would, and their
modification times are pinned with ``os.utime`` so conflict detection
is deterministic.
"""
import datetime
import os
from pathlib import Path
from typing import Optional


def set_mtime(path: Path, when: datetime.datetime) -> None:
    """Give ``path`` an exact modification time."""
    ts = when.timestamp()
    os.utime(path, (ts, ts))


def touch_relative(path: Path, reference: datetime.datetime, seconds: float) -> None:
    """Set the mtime ``seconds`` after (or before, if negative) ``reference``."""
    set_mtime(path, reference + datetime.timedelta(seconds=seconds))


def edit_document(
    path: Path,
    read: Optional[bool] = None,
    favorite: Optional[bool] = None,
    notes: Optional[str] = None,
) -> None:
    """Rewrite front-matter flags and the notes section of a rendered document."""
    text = path.read_text(encoding="utf-8")
    if read is not None:
        old = "read: true" if "\nread: true" in text else "read: false"
        text = text.replace(f"\n{old}\n", f"\nread: {str(read).lower()}\n", 1)
    if favorite is not None:
        old = "favorite: true" if "\nfavorite: true" in text else "favorite: false"
        text = text.replace(f"\n{old}\n", f"\nfavorite: {str(favorite).lower()}\n", 1)
    if notes is not None:
        head, _, tail = text.partition("## My Notes\n")
        rest = tail.split("\n## ", 1)
        after = "\n## " + rest[1] if len(rest) > 1 else ""
        text = f"{head}## My Notes\n\n{notes}\n{after}"
    path.write_text(text, encoding="utf-8")


def write_document(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path
