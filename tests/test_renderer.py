"""Tests for the Markdown renderer and HTML transcoder."""
import datetime

import pytest

from readlist_vault.models.schema import Record, TemplateKind
from readlist_vault.vault.metadata_parser import parse_document
from readlist_vault.vault.renderer import escape_notes, html_to_markdown, render


@pytest.fixture
def record():
    return Record(
        id=7,
        url="https://example.com/article",
        title="Understanding: Async/Await?",
        content="<h2>Intro</h2><p>Hello <b>world</b></p>",
        excerpt="A short summary",
        author="Ada",
        domain="example.com",
        reading_time=4,
        tags=["python", "async"],
        notes="My thoughts",
        created_at=datetime.datetime(2024, 3, 5, 12, 0, tzinfo=datetime.timezone.utc),
    )


class TestHtmlToMarkdown:
    """Tests for the ordered HTML conversion rules."""

    def test_empty(self):
        assert html_to_markdown("") == ""

    def test_headings_paragraphs_and_emphasis(self):
        html = "<h2>Title</h2><p>Hello <b>bold</b> and <em>it</em></p>"
        assert html_to_markdown(html) == "## Title\n\nHello **bold** and _it_"

    def test_all_heading_levels(self):
        for level in range(1, 7):
            assert html_to_markdown(f"<h{level} class='x'>T</h{level}>") == "#" * level + " T"

    def test_bold_does_not_match_blockquote_or_br(self):
        html = "<blockquote>Quote <b>x</b></blockquote>a<br>b<br />c"
        assert html_to_markdown(html) == "> Quote **x**\n\na\nb\nc"

    def test_italic_does_not_match_img(self):
        assert html_to_markdown('<i>word</i> <img src="a.png">') == "_word_ ![](a.png)"

    def test_pre_absorbs_inner_code(self):
        html = "<pre><code>x = 1\ny = 2</code></pre><p>Use <code>x</code></p>"
        assert html_to_markdown(html) == "```\nx = 1\ny = 2\n```\n\nUse `x`"

    def test_links(self):
        html = '<a href="https://x.com" class="l">X site</a>'
        assert html_to_markdown(html) == "[X site](https://x.com)"

    def test_images_in_either_attribute_order(self):
        assert html_to_markdown('<img src="a.png" alt="A">') == "![A](a.png)"
        assert html_to_markdown("<img alt='B' src='b.png' />") == "![B](b.png)"
        assert html_to_markdown('<img src="c.png">') == "![](c.png)"

    def test_lists(self):
        html = "<ul><li>One</li><li>Two</li></ul><ol><li>Three</li></ol>"
        assert html_to_markdown(html) == "- One\n- Two\n\n- Three"

    def test_unknown_tags_are_stripped(self):
        assert html_to_markdown("<div><span>plain</span></div>") == "plain"

    def test_entities_decode_ampersand_last(self):
        html = "Tom &amp; Jerry &lt;3 &amp;lt;tag&amp;gt; &quot;q&quot; it&#39;s&nbsp;ok"
        assert html_to_markdown(html) == "Tom & Jerry <3 &lt;tag&gt; \"q\" it's ok"

    def test_collapses_blank_lines(self):
        assert html_to_markdown("<p>a</p>\n\n\n<p>b</p>") == "a\n\nb"

    def test_case_insensitive_and_multiline(self):
        assert html_to_markdown("<P>line one\nline two</P>") == "line one\nline two"


class TestRender:
    """Tests for template rendering."""

    def test_front_matter_is_written(self, record):
        text = render(record)
        assert text.startswith("---\n")
        assert "record_id: 7\n" in text
        assert "url: https://example.com/article\n" in text
        assert "read: false\n" in text
        assert "favorite: false\n" in text
        assert "progress: 0.0\n" in text

    def test_front_matter_keeps_key_order_and_long_urls(self, record):
        record.url = "https://example.com/" + "very-long-segment/" * 20
        head = render(record).split("---\n")[1]
        keys = [line.split(":", 1)[0] for line in head.splitlines()]
        assert keys == [
            "record_id", "url", "domain", "created", "read", "favorite", "archived", "progress",
        ]
        assert f"url: {record.url}\n" in head

    def test_default_template(self, record):
        text = render(record, TemplateKind.DEFAULT)
        assert "# Understanding: Async/Await?" in text
        assert "**Author**: Ada" in text
        assert "**Reading Time**: 4 min" in text
        assert "**Tags**: #python #async" in text
        assert f"**Added**: {record.created_at.strftime('%x')}" in text
        assert "## Intro\n\nHello **world**" in text
        assert "## My Notes\n\nMy thoughts\n\n## Related Articles" in text
        assert "## Action Items" not in text

    def test_minimal_template(self, record):
        text = render(record, TemplateKind.MINIMAL)
        assert "**Source**: [example.com](https://example.com/article)" in text
        assert "## My Notes\n\nMy thoughts" in text
        assert "Related Articles" not in text

    def test_detailed_template_glyphs(self, record):
        unread = render(record, TemplateKind.DETAILED)
        assert "- **Status**: ⬜ Read  Favorite" in unread

        record.is_read = True
        record.is_favorite = True
        text = render(record, TemplateKind.DETAILED)
        assert "- **Status**: ✅ Read ⭐ Favorite" in text
        assert "## Summary\nA short summary" in text
        assert "## Related Articles" in text
        assert "## Action Items" in text

    def test_template_by_name(self, record):
        assert render(record, "minimal") == render(record, TemplateKind.MINIMAL)

    def test_missing_optional_fields(self):
        bare = Record(id=1, url="https://a.org/x", title="Bare")
        text = render(bare)
        assert "**Author**: \n" in text
        assert "**Reading Time**: 0 min" in text
        assert "domain: ''" in text

    def test_rendered_document_parses_back(self, record):
        for template in TemplateKind:
            parsed = parse_document(render(record, template))
            assert parsed.managed
            assert parsed.metadata.record_id == 7
            assert parsed.metadata.url == record.url
            assert parsed.metadata.get_string("domain") == "example.com"
            assert parsed.metadata.get_bool("read") is False
            assert parsed.metadata.get_number("progress") == 0.0
            assert parsed.notes == "My thoughts"

    def test_no_notes_parses_as_empty_section(self, record):
        record.notes = None
        assert parse_document(render(record)).notes == ""

    def test_heading_lines_in_notes_survive(self, record):
        record.notes = "Intro line\n\n## Key points\n\n- one\n\\## already escaped"
        for template in TemplateKind:
            text = render(record, template)
            assert "\n## Key points" not in text
            assert parse_document(text).notes == record.notes

    def test_escape_notes(self):
        assert escape_notes("## a\n### b\n\\## c\nx ## d") == "\\## a\n### b\n\\\\## c\nx ## d"
