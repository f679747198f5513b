"""Render a submission document to PDF: primary engine, then fallback."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Protocol

from core.config import RenderConfig
from core.exceptions import RenderingFailed
from core.observability import get_tracer
from schemas.documents import RenderedArtifact, RenderEngine, SubmissionDocument
from services.rendering.blocks import Block, parse_markdown
from services.rendering.browser_engine import BrowserEngine, BrowserPool
from services.rendering.fallback_engine import FallbackEngine


logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class PdfEngine(Protocol):
    async def render(self, blocks: list[Block], title: str) -> tuple[bytes, int]: ...


def artifact_filename(document: SubmissionDocument) -> str:
    app = document.section("application_number")
    stem = f"objection-{app.content}" if app and app.content else "submission"
    return re.sub(r"[^A-Za-z0-9._-]+", "-", stem).strip("-") + ".pdf"


class ArtifactRenderer:
    """TryPrimary, then TryFallback, then fail with ``RenderingFailed``."""

    def __init__(
        self,
        config: RenderConfig,
        *,
        primary: PdfEngine | None = None,
        fallback: PdfEngine | None = None,
        pool: BrowserPool | None = None,
    ) -> None:
        self._config = config
        self._pool = pool
        if primary is None and config.primary_enabled:
            self._pool = pool or BrowserPool(size=config.pool_size)
            primary = BrowserEngine(self._pool)
        self._primary = primary
        self._fallback = fallback or FallbackEngine()

    async def start(self) -> None:
        """Warm the browser pool. A failed launch is retried on first render."""
        if self._pool is None:
            return
        try:
            await self._pool.start()
        except Exception as e:  # noqa: BLE001
            logger.warning("Primary renderer unavailable at startup: %s", e)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()

    async def _try_primary(self, blocks: list[Block], title: str) -> tuple[bytes, int] | None:
        if self._primary is None:
            return None
        with tracer.start_as_current_span("render.primary") as span:
            try:
                return await asyncio.wait_for(
                    self._primary.render(blocks, title), timeout=self._config.timeout_seconds
                )
            except TimeoutError as e:
                span.record_exception(e)
                logger.warning(
                    "Primary renderer timed out after %.1fs; using fallback",
                    self._config.timeout_seconds,
                )
            except Exception as e:  # noqa: BLE001 - any engine failure falls through
                span.record_exception(e)
                logger.warning("Primary renderer failed (%s); using fallback", e)
        return None

    async def render(self, document: SubmissionDocument) -> RenderedArtifact:
        blocks = parse_markdown(document.to_markdown())
        title = document.title
        filename = artifact_filename(document)

        produced = await self._try_primary(blocks, title)
        if produced is not None:
            data, pages = produced
            logger.info("Rendered %s with primary engine (%d pages)", filename, pages)
            return RenderedArtifact(
                binary=data,
                page_count=pages,
                engine_used=RenderEngine.PRIMARY,
                filename=filename,
            )

        with tracer.start_as_current_span("render.fallback") as span:
            try:
                data, pages = await self._fallback.render(blocks, title)
            except Exception as e:
                span.record_exception(e)
                logger.error("Fallback renderer failed for %s: %s", filename, e)
                raise RenderingFailed(f"Both rendering engines failed: {e}") from e

        logger.info("Rendered %s with fallback engine (%d pages)", filename, pages)
        return RenderedArtifact(
            binary=data,
            page_count=pages,
            engine_used=RenderEngine.FALLBACK,
            filename=filename,
        )
