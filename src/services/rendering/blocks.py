"""Parse the canonical markdown body into blocks both PDF engines can draw.

Only the subset the formatter and the generated grounds use is understood:
headings (levels 1 to 4), paragraphs, bullet and numbered items, horizontal
rules and inline ``**bold**`` / ``*italic*``. Lines inside a paragraph stay
separate lines; paragraphs are never merged.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Span:
    text: str
    bold: bool = False
    italic: bool = False


@dataclass(frozen=True, slots=True)
class Heading:
    level: int
    spans: tuple[Span, ...]


@dataclass(frozen=True, slots=True)
class Paragraph:
    lines: tuple[tuple[Span, ...], ...]


@dataclass(frozen=True, slots=True)
class ListItem:
    spans: tuple[Span, ...]
    ordered: bool = False
    number: int | None = None


@dataclass(frozen=True, slots=True)
class Rule:
    pass


Block = Heading | Paragraph | ListItem | Rule

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_RULE_RE = re.compile(r"^(?:-{3,}|\*{3,}|_{3,})$")
_BULLET_RE = re.compile(r"^[-*+]\s+(.*)$")
_NUMBERED_RE = re.compile(r"^(\d{1,3})[.)]\s+(.*)$")
_INLINE_RE = re.compile(r"\*\*(.+?)\*\*|\*(?!\s)(.+?)(?<!\s)\*")


def parse_inline(text: str) -> tuple[Span, ...]:
    spans: list[Span] = []
    pos = 0
    for m in _INLINE_RE.finditer(text):
        if m.start() > pos:
            spans.append(Span(text[pos : m.start()]))
        if m.group(1) is not None:
            spans.append(Span(m.group(1), bold=True))
        else:
            spans.append(Span(m.group(2), italic=True))
        pos = m.end()
    if pos < len(text):
        spans.append(Span(text[pos:]))
    return tuple(spans)


@dataclass(slots=True)
class _ParagraphBuffer:
    lines: list[str] = field(default_factory=list)

    def flush(self, out: list[Block]) -> None:
        if self.lines:
            out.append(Paragraph(tuple(parse_inline(line) for line in self.lines)))
            self.lines.clear()


def parse_markdown(text: str) -> list[Block]:
    blocks: list[Block] = []
    para = _ParagraphBuffer()

    for raw in text.replace("\r\n", "\n").split("\n"):
        line = raw.rstrip()
        stripped = line.strip()
        if not stripped:
            para.flush(blocks)
            continue

        heading = _HEADING_RE.match(stripped)
        if heading:
            para.flush(blocks)
            level = min(len(heading.group(1)), 4)
            blocks.append(Heading(level, parse_inline(heading.group(2))))
            continue
        if _RULE_RE.match(stripped):
            para.flush(blocks)
            blocks.append(Rule())
            continue
        bullet = _BULLET_RE.match(stripped)
        if bullet:
            para.flush(blocks)
            blocks.append(ListItem(parse_inline(bullet.group(1))))
            continue
        numbered = _NUMBERED_RE.match(stripped)
        if numbered:
            para.flush(blocks)
            blocks.append(
                ListItem(
                    parse_inline(numbered.group(2)),
                    ordered=True,
                    number=int(numbered.group(1)),
                )
            )
            continue

        para.lines.append(stripped.rstrip("\\").rstrip())

    para.flush(blocks)
    return blocks


def _spans_html(spans: tuple[Span, ...]) -> str:
    out: list[str] = []
    for span in spans:
        text = html.escape(span.text)
        if span.italic:
            text = f"<em>{text}</em>"
        if span.bold:
            text = f"<strong>{text}</strong>"
        out.append(text)
    return "".join(out)


_STYLE = """
body { font-family: "Helvetica Neue", Arial, sans-serif; font-size: 11pt; line-height: 1.45; color: #111; }
h1 { font-size: 20pt; margin: 0 0 12pt; }
h2 { font-size: 15pt; margin: 16pt 0 8pt; }
h3 { font-size: 13pt; margin: 14pt 0 6pt; }
h4 { font-size: 11.5pt; margin: 12pt 0 6pt; }
p { margin: 0 0 9pt; }
li { margin: 0 0 4pt; }
hr { border: 0; border-top: 1px solid #999; margin: 12pt 0; }
"""


def blocks_to_html(blocks: list[Block], title: str) -> str:
    """Standalone HTML page for the browser engine."""
    body: list[str] = []
    open_list: str | None = None

    def close_list() -> None:
        nonlocal open_list
        if open_list:
            body.append(f"</{open_list}>")
            open_list = None

    for block in blocks:
        if isinstance(block, ListItem):
            tag = "ol" if block.ordered else "ul"
            if open_list != tag:
                close_list()
                start = f' start="{block.number}"' if block.ordered and block.number else ""
                body.append(f"<{tag}{start}>")
                open_list = tag
            body.append(f"<li>{_spans_html(block.spans)}</li>")
            continue

        close_list()
        if isinstance(block, Heading):
            body.append(f"<h{block.level}>{_spans_html(block.spans)}</h{block.level}>")
        elif isinstance(block, Paragraph):
            body.append("<p>" + "<br>".join(_spans_html(line) for line in block.lines) + "</p>")
        else:
            body.append("<hr>")
    close_list()

    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title><style>{_STYLE}</style></head>"
        f"<body>{''.join(body)}</body></html>"
    )
