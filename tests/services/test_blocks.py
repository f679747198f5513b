"""Tests for the markdown block parser shared by both PDF engines."""

from services.rendering.blocks import (
    Heading,
    ListItem,
    Paragraph,
    Rule,
    Span,
    blocks_to_html,
    parse_inline,
    parse_markdown,
)


class TestParseMarkdown:
    def test_block_kinds(self) -> None:
        text = "# Title\n\nFirst line\nSecond line\n\n---\n\n- [X] Ticked\n\n2. Numbered"
        blocks = parse_markdown(text)

        assert isinstance(blocks[0], Heading) and blocks[0].level == 1
        assert isinstance(blocks[1], Paragraph)
        assert len(blocks[1].lines) == 2
        assert isinstance(blocks[2], Rule)
        assert blocks[3] == ListItem((Span("[X] Ticked"),))
        assert blocks[4] == ListItem((Span("Numbered"),), ordered=True, number=2)

    def test_paragraphs_are_not_merged(self) -> None:
        blocks = parse_markdown("One.\n\nTwo.")
        assert [type(b) for b in blocks] == [Paragraph, Paragraph]

    def test_deep_headings_are_capped(self) -> None:
        (heading,) = parse_markdown("###### Tiny")
        assert heading.level == 4

    def test_hard_break_backslash_is_dropped(self) -> None:
        (para,) = parse_markdown("Line one\\\nLine two")
        assert para.lines == ((Span("Line one"),), (Span("Line two"),))


class TestInline:
    def test_bold_and_italic(self) -> None:
        spans = parse_inline("**To:** the *council* now")
        assert spans == (
            Span("To:", bold=True),
            Span(" the "),
            Span("council", italic=True),
            Span(" now"),
        )

    def test_lone_asterisk_is_text(self) -> None:
        assert parse_inline("5 * 3") == (Span("5 * 3"),)


class TestHtml:
    def test_escapes_and_groups_lists(self) -> None:
        blocks = parse_markdown("# A & B\n\n- one\n- two\n\n3. three")
        markup = blocks_to_html(blocks, "A & B")

        assert "<title>A &amp; B</title>" in markup
        assert "<h1>A &amp; B</h1>" in markup
        assert "<ul><li>one</li><li>two</li></ul>" in markup
        assert '<ol start="3"><li>three</li></ol>' in markup

    def test_paragraph_lines_use_breaks(self) -> None:
        markup = blocks_to_html(parse_markdown("a\nb"), "t")
        assert "<p>a<br>b</p>" in markup
