"""Read front matter and the notes section back out of a vault document.

Values are parsed line by line rather than through a YAML loader: a
reader editing a file by hand in the vault should get ``read: true`` back
as a boolean and ``record_id: 12`` back as a number even when the rest of
the block is not valid YAML.
"""
import re
from dataclasses import dataclass
from typing import Dict, Optional

import frontmatter

from readlist_vault.models.schema import (
    BoolValue,
    Metadata,
    MetadataValue,
    NumberValue,
    StringValue,
)
from readlist_vault.vault.renderer import NOTES_HEADING

_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_ESCAPED_HEADING_LINE = re.compile(r"^\\(\\*## )", re.MULTILINE)

_yaml_handler = frontmatter.YAMLHandler()


@dataclass(frozen=True)
class ParsedDocument:
    """Metadata and notes extracted from one document."""

    metadata: Metadata
    notes: Optional[str]

    @property
    def managed(self) -> bool:
        """True when the document carries both a url and a record_id."""
        return self.metadata.is_managed


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def coerce_value(raw: str) -> MetadataValue:
    """Turn one front-matter value into a typed metadata value."""
    value = _unquote(raw.strip())
    if value == "true":
        return BoolValue(True)
    if value == "false":
        return BoolValue(False)
    if _NUMBER.match(value):
        if "." in value or "e" in value.lower():
            return NumberValue(float(value))
        return NumberValue(int(value))
    return StringValue(value)


def parse_metadata(text: str) -> Metadata:
    """Parse the leading ``---`` block of a document.

    Returns empty Metadata when the document has no block or the block is
    never closed. Lines without a colon are ignored.
    """
    if not _yaml_handler.detect(text):
        return Metadata()
    try:
        block, _ = _yaml_handler.split(text)
    except ValueError:
        return Metadata()

    values: Dict[str, MetadataValue] = {}
    for line in block.splitlines():
        key, sep, raw = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        values[key] = coerce_value(raw)
    return Metadata(values)


def extract_notes(text: str) -> Optional[str]:
    """Return the text under ``## My Notes``.

    The section runs to the next second-level heading or the end of the
    document. Notes lines the renderer escaped as ``\\## `` lose one
    backslash. Returns None when the heading is absent.
    """
    lines = text.splitlines()
    for index, line in enumerate(lines):
        if line.strip() == NOTES_HEADING:
            section = []
            for body_line in lines[index + 1:]:
                if body_line.startswith("## "):
                    break
                section.append(body_line)
            notes = "\n".join(section).strip()
            return _ESCAPED_HEADING_LINE.sub(r"\1", notes)
    return None


def parse_document(text: str) -> ParsedDocument:
    return ParsedDocument(metadata=parse_metadata(text), notes=extract_notes(text))
