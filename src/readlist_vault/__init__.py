"""
Readlist Vault - reconciles a reading list with a Markdown vault.

This package keeps a SQLite-backed reading list and a directory of
human-editable Markdown documents in step: records are exported as
documents, edits made in the vault (read/favorite flags, progress and the
"My Notes" section) flow back, and divergent edits are resolved with a
configurable policy. A Model Context Protocol server exposes the sync
operations to clients.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("readlist-vault")
except PackageNotFoundError:
    __version__ = "0.3.0"
