"""Unit tests for the ADF and storage-format converters.

Tests:
- Paragraphs, headings, marks, lists, code blocks, quotes, tables
- Inline mentions, cards and emoji
- Unknown nodes fall back to their text
- Confluence storage markup stripped to readable text
"""

from src.ji_mirror.connectors.adf_converter import adf_to_text
from src.ji_mirror.connectors.storage_format import storage_to_text


def doc(*content):
    return {"type": "doc", "version": 1, "content": list(content)}


def para(*inline):
    return {"type": "paragraph", "content": list(inline)}


def text(value, *marks):
    node = {"type": "text", "text": value}
    if marks:
        node["marks"] = list(marks)
    return node


# =============================================================================
# ADF Blocks
# =============================================================================


class TestAdfBlocks:
    """Block-level node conversion."""

    def test_empty_inputs(self):
        assert adf_to_text(None) == ""
        assert adf_to_text({}) == ""
        assert adf_to_text(doc(para())) == ""

    def test_legacy_plain_string(self):
        assert adf_to_text("  plain description \n") == "plain description"

    def test_paragraphs_separated_by_blank_line(self):
        assert adf_to_text(doc(para(text("First")), para(text("Second")))) == "First\n\nSecond"

    def test_heading(self):
        heading = {"type": "heading", "attrs": {"level": 2}, "content": [text("Steps")]}
        assert adf_to_text(doc(heading)) == "## Steps"

    def test_bullet_list_with_nesting(self):
        nested = {
            "type": "bulletList",
            "content": [
                {"type": "listItem", "content": [para(text("inner"))]},
            ],
        }
        adf = doc(
            {
                "type": "bulletList",
                "content": [
                    {"type": "listItem", "content": [para(text("outer")), nested]},
                    {"type": "listItem", "content": [para(text("second"))]},
                ],
            }
        )
        assert adf_to_text(adf) == "- outer\n  - inner\n- second"

    def test_ordered_list_start(self):
        adf = doc(
            {
                "type": "orderedList",
                "attrs": {"order": 3},
                "content": [
                    {"type": "listItem", "content": [para(text("three"))]},
                    {"type": "listItem", "content": [para(text("four"))]},
                ],
            }
        )
        assert adf_to_text(adf) == "3. three\n4. four"

    def test_code_block(self):
        code = {"type": "codeBlock", "attrs": {"language": "python"}, "content": [text("print(1)")]}
        assert adf_to_text(doc(code)) == "```python\nprint(1)\n```"

    def test_blockquote_and_rule(self):
        quote = {"type": "blockquote", "content": [para(text("quoted"))]}
        assert adf_to_text(doc(quote, {"type": "rule"})) == "> quoted\n\n---"

    def test_table_cells(self):
        cell = {"type": "tableCell", "content": [para(text("a"))]}
        table = {"type": "table", "content": [{"type": "tableRow", "content": [cell]}]}
        assert adf_to_text(doc(table)) == "| a"

    def test_media_skipped(self):
        media = {"type": "mediaSingle", "content": [{"type": "media", "attrs": {"id": "x"}}]}
        assert adf_to_text(doc(media, para(text("after")))) == "after"

    def test_unknown_block_falls_back_to_text(self):
        custom = {"type": "expand", "content": [text("hidden detail")]}
        assert adf_to_text(doc(custom)) == "hidden detail"


# =============================================================================
# ADF Inline Nodes
# =============================================================================


class TestAdfInline:
    """Inline nodes and marks."""

    def test_marks(self):
        adf = doc(para(text("bold", {"type": "strong"}), text(" and "), text("code", {"type": "code"})))
        assert adf_to_text(adf) == "**bold** and `code`"

    def test_link_mark(self):
        adf = doc(para(text("docs", {"type": "link", "attrs": {"href": "https://example.com"}})))
        assert adf_to_text(adf) == "docs (https://example.com)"

    def test_mention_card_emoji(self):
        adf = doc(
            para(
                {"type": "mention", "attrs": {"id": "1", "text": "@Alice"}},
                text(" see "),
                {"type": "inlineCard", "attrs": {"url": "https://x.atlassian.net/browse/PROJ-2"}},
                text(" "),
                {"type": "emoji", "attrs": {"shortName": ":tada:", "text": "🎉"}},
            )
        )
        assert adf_to_text(adf) == "@Alice see https://x.atlassian.net/browse/PROJ-2 🎉"

    def test_hard_break(self):
        adf = doc(para(text("line one"), {"type": "hardBreak"}, text("line two")))
        assert adf_to_text(adf) == "line one\nline two"

    def test_malformed_children_ignored(self):
        adf = doc(para(text("ok"), 42, None), "stray")
        assert adf_to_text(adf) == "ok\n\nstray"


# =============================================================================
# Confluence Storage Format
# =============================================================================


class TestStorageFormat:
    def test_empty(self):
        assert storage_to_text(None) == ""
        assert storage_to_text("") == ""

    def test_paragraphs_and_inline(self):
        markup = "<p>Restart <strong>the</strong> service</p><p>Then verify</p>"
        assert storage_to_text(markup) == "Restart the service\n\nThen verify"

    def test_headings_and_lists(self):
        markup = "<h2>Steps</h2><ul><li>one</li><li>two</li></ul>"
        assert storage_to_text(markup) == "## Steps\n\n- one\n\n- two"

    def test_macro_parameters_skipped(self):
        markup = (
            '<ac:structured-macro ac:name="info">'
            '<ac:parameter ac:name="title">hidden</ac:parameter>'
            "<ac:rich-text-body><p>Visible note</p></ac:rich-text-body>"
            "</ac:structured-macro>"
        )
        assert storage_to_text(markup) == "Visible note"

    def test_entities_decoded(self):
        assert storage_to_text("<p>a &amp; b &lt;c&gt;</p>") == "a & b <c>"

    def test_table_cells_spaced(self):
        markup = "<table><tr><th>Key</th><td>Value</td></tr></table>"
        assert storage_to_text(markup) == "Key Value"
