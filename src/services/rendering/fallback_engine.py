"""Fallback PDF engine built on reportlab platypus.

No browser and no network: it produces a plain but complete document for any
block list, with "Page X of Y" in the footer of every page.
"""

from __future__ import annotations

import asyncio
from io import BytesIO
from typing import Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, StyleSheet1, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer

from services.rendering.blocks import Block, Heading, ListItem, Rule, Span
from services.rendering.browser_engine import count_pdf_pages


class NumberedCanvas(canvas.Canvas):
    """Canvas that defers page output so every footer knows the total."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._saved_page_states: list[dict[str, Any]] = []

    def showPage(self) -> None:  # noqa: N802 - reportlab API
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self) -> None:
        total = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_page_number(total)
            super().showPage()
        super().save()

    def _draw_page_number(self, total: int) -> None:
        self.setFont("Helvetica", 8)
        self.drawCentredString(A4[0] / 2, 10 * mm, f"Page {self._pageNumber} of {total}")


def _styles() -> StyleSheet1:
    styles = getSampleStyleSheet()
    styles.add(
        ParagraphStyle(
            "ListBody",
            parent=styles["BodyText"],
            leftIndent=8 * mm,
            bulletIndent=3 * mm,
            spaceBefore=0,
            spaceAfter=2,
        )
    )
    return styles


def _markup(spans: tuple[Span, ...]) -> str:
    out: list[str] = []
    for span in spans:
        text = escape(span.text)
        if span.italic:
            text = f"<i>{text}</i>"
        if span.bold:
            text = f"<b>{text}</b>"
        out.append(text)
    return "".join(out)


def _story(blocks: list[Block], styles: StyleSheet1) -> list[Any]:
    story: list[Any] = []
    for block in blocks:
        if isinstance(block, Heading):
            style = styles["Title"] if block.level == 1 else styles[f"Heading{block.level}"]
            story.append(Paragraph(_markup(block.spans), style))
        elif isinstance(block, ListItem):
            bullet = f"{block.number}." if block.ordered and block.number else "•"
            story.append(
                Paragraph(_markup(block.spans), styles["ListBody"], bulletText=bullet)
            )
        elif isinstance(block, Rule):
            story.append(Spacer(1, 2 * mm))
            story.append(HRFlowable(width="100%", thickness=0.5, color=colors.HexColor("#999999")))
            story.append(Spacer(1, 2 * mm))
        else:
            text = "<br/>".join(_markup(line) for line in block.lines)
            story.append(Paragraph(text, styles["BodyText"]))
    if not story:
        story.append(Spacer(1, 1))
    return story


def render_pdf(blocks: list[Block], title: str) -> tuple[bytes, int]:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        title=title,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
    )
    doc.build(_story(blocks, _styles()), canvasmaker=NumberedCanvas)
    data = buffer.getvalue()
    return data, count_pdf_pages(data)


class FallbackEngine:
    async def render(self, blocks: list[Block], title: str) -> tuple[bytes, int]:
        # reportlab is synchronous and CPU bound
        return await asyncio.to_thread(render_pdf, blocks, title)
