"""Render records as Markdown vault documents.

A document is a YAML front-matter block (written with python-frontmatter)
followed by a body produced from one of three templates. The body always
ends with a ``## My Notes`` section so the reader's notes survive a round
trip through the vault.
"""
import re
from typing import Callable, List, Tuple, Union

import frontmatter

from readlist_vault.models.schema import Record, TemplateKind

NOTES_HEADING = "## My Notes"

# Keeps long URLs on one line in the front matter
_YAML_WIDTH = 10_000

_FLAGS = re.IGNORECASE | re.DOTALL

# A notes line that would read as a section heading gets one more backslash
_NOTES_HEADING_LINE = re.compile(r"^(\\*)(## )", re.MULTILINE)

Replacement = Union[str, Callable[["re.Match[str]"], str]]


def _heading(match: "re.Match[str]") -> str:
    return "#" * int(match.group(1)) + " " + match.group(2) + "\n\n"


# Evaluated top to bottom. <pre> runs before inline <code> so a fenced
# block keeps its inner code element; &amp; is decoded last so "&amp;lt;"
# comes out as the literal text "&lt;".
HTML_RULES: List[Tuple["re.Pattern[str]", Replacement]] = [
    (re.compile(r"<h([1-6])\b[^>]*>(.*?)</h\1\s*>", _FLAGS), _heading),
    (re.compile(r"<p\b[^>]*>(.*?)</p\s*>", _FLAGS), r"\1\n\n"),
    (re.compile(r"<br\b[^>]*>", _FLAGS), "\n"),
    (re.compile(r"<strong\b[^>]*>(.*?)</strong\s*>", _FLAGS), r"**\1**"),
    (re.compile(r"<b\b[^>]*>(.*?)</b\s*>", _FLAGS), r"**\1**"),
    (re.compile(r"<em\b[^>]*>(.*?)</em\s*>", _FLAGS), r"_\1_"),
    (re.compile(r"<i\b[^>]*>(.*?)</i\s*>", _FLAGS), r"_\1_"),
    (
        re.compile(
            r"<pre\b[^>]*>\s*(?:<code\b[^>]*>)?(.*?)(?:</code\s*>)?\s*</pre\s*>",
            _FLAGS,
        ),
        "```\n\\1\n```\n\n",
    ),
    (re.compile(r"<code\b[^>]*>(.*?)</code\s*>", _FLAGS), r"`\1`"),
    (
        re.compile(r"<a\b[^>]*?href=[\"']([^\"']*)[\"'][^>]*>(.*?)</a\s*>", _FLAGS),
        r"[\2](\1)",
    ),
    (
        re.compile(
            r"<img\b[^>]*?src=[\"']([^\"']*)[\"'][^>]*?alt=[\"']([^\"']*)[\"'][^>]*>",
            _FLAGS,
        ),
        r"![\2](\1)",
    ),
    (
        re.compile(
            r"<img\b[^>]*?alt=[\"']([^\"']*)[\"'][^>]*?src=[\"']([^\"']*)[\"'][^>]*>",
            _FLAGS,
        ),
        r"![\1](\2)",
    ),
    (re.compile(r"<img\b[^>]*?src=[\"']([^\"']*)[\"'][^>]*>", _FLAGS), r"![](\1)"),
    (re.compile(r"<(?:ul|ol)\b[^>]*>", _FLAGS), ""),
    (re.compile(r"</(?:ul|ol)\s*>", _FLAGS), "\n"),
    (re.compile(r"<li\b[^>]*>(.*?)</li\s*>", _FLAGS), r"- \1\n"),
    (re.compile(r"<blockquote\b[^>]*>(.*?)</blockquote\s*>", _FLAGS), r"> \1\n\n"),
    (re.compile(r"<[^>]+>", _FLAGS), ""),
    (re.compile(r"&nbsp;", _FLAGS), " "),
    (re.compile(r"&lt;", _FLAGS), "<"),
    (re.compile(r"&gt;", _FLAGS), ">"),
    (re.compile(r"&quot;", _FLAGS), '"'),
    (re.compile(r"&#39;", _FLAGS), "'"),
    (re.compile(r"&amp;", _FLAGS), "&"),
    (re.compile(r"\n\s*\n\s*\n"), "\n\n"),
]


def escape_notes(notes: str) -> str:
    """Prefix ``## `` lines with a backslash so they stay inside the notes.

    Example:
        >>> escape_notes("Intro\\n## Key points")
        'Intro\\n\\\\## Key points'
    """
    return _NOTES_HEADING_LINE.sub(r"\\\1\2", notes)


def html_to_markdown(html: str) -> str:
    """Convert the subset of HTML produced by the article extractor to Markdown.

    Args:
        html: HTML fragment; may be empty.

    Returns:
        Markdown text with no surrounding whitespace.
    """
    if not html:
        return ""
    text = html
    for pattern, replacement in HTML_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


MINIMAL_TEMPLATE = """# {title}

**Source**: [{domain}]({url})
**Added**: {added}
{tags}

{content}

---

## My Notes

{notes}
"""

DEFAULT_TEMPLATE = """# {title}

**URL**: {url}
**Domain**: {domain}
**Author**: {author}
**Added**: {added}
**Reading Time**: {reading_time} min
**Tags**: {tags}

---

{content}

---

## My Notes

{notes}

## Related Articles

"""

DETAILED_TEMPLATE = """# {title}

## Metadata
- **URL**: {url}
- **Domain**: {domain}
- **Author**: {author}
- **Added**: {added}
- **Reading Time**: {reading_time} min
- **Status**: {read_glyph} Read {favorite_glyph} Favorite
- **Tags**: {tags}

## Summary
{excerpt}

## Content

{content}

---

## My Notes

{notes}

## Related Articles


## Action Items

"""

TEMPLATES = {
    TemplateKind.MINIMAL: MINIMAL_TEMPLATE,
    TemplateKind.DEFAULT: DEFAULT_TEMPLATE,
    TemplateKind.DETAILED: DETAILED_TEMPLATE,
}


def front_matter(record: Record) -> dict:
    """The machine-readable keys the import pass reads back."""
    return {
        "record_id": record.id,
        "url": record.url,
        "domain": record.domain or "",
        "created": record.created_at.isoformat(),
        "read": record.is_read,
        "favorite": record.is_favorite,
        "archived": record.is_archived,
        "progress": record.reading_progress,
    }


def render_body(record: Record, template: TemplateKind = TemplateKind.DEFAULT) -> str:
    """Fill a template without the front-matter block."""
    return TEMPLATES[TemplateKind(template)].format(
        title=record.title or "Untitled",
        url=record.url,
        domain=record.domain or "",
        author=record.author or "",
        added=record.created_at.strftime("%x"),
        reading_time=record.reading_time or 0,
        tags=" ".join(f"#{tag}" for tag in record.tags),
        content=html_to_markdown(record.content),
        excerpt=record.excerpt or "",
        read_glyph="✅" if record.is_read else "⬜",
        favorite_glyph="⭐" if record.is_favorite else "",
        notes=escape_notes((record.notes or "").strip()),
    )


def render(record: Record, template: TemplateKind = TemplateKind.DEFAULT) -> str:
    """Render a record as a complete vault document.

    Args:
        record: The record to render. Must have an ID.
        template: Which body template to use.

    Returns:
        Front matter plus body, ending with a newline.
    """
    post = frontmatter.Post(render_body(record, template), **front_matter(record))
    text = frontmatter.dumps(post, sort_keys=False, width=_YAML_WIDTH)
    return text if text.endswith("\n") else text + "\n"
