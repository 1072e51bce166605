"""Vault-side components: rendering, parsing, layout and scanning."""
from readlist_vault.vault.layout import ensure_folder, file_name, folder_path, target_path
from readlist_vault.vault.metadata_parser import ParsedDocument, parse_document
from readlist_vault.vault.renderer import html_to_markdown, render
from readlist_vault.vault.scanner import scan_vault

__all__ = [
    "ParsedDocument",
    "ensure_folder",
    "file_name",
    "folder_path",
    "html_to_markdown",
    "parse_document",
    "render",
    "scan_vault",
    "target_path",
]
