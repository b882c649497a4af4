"""
Local report document builder.

Orchestrates one local build: logo, photos, HTML, render-to-file, then the
move into the documents directory under the sanitized report filename.

The render step is a collaborator behind the RenderToFile protocol. The
default FpdfHtmlRenderer hands the HTML to fpdf2's write_html, which covers
the simple markup the report template produces; tests swap in a fake.

Usage:
    from tools.pool.document_builder import DocumentBuilder

    builder = DocumentBuilder(output_dir="data/documents", logo_path="assets/logo.png")
    artifact = await builder.build(report)
    print(artifact.path, artifact.size)
"""

import asyncio
import logging
import os
import re
import shutil
import tempfile
from datetime import datetime
from html import unescape
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import urlparse

import httpx
from fpdf import FPDF

from core.errors import RenderFailure
from tools.pool.filenames import document_filename
from tools.pool.image_codec import (
    REMOTE_PREFIXES,
    data_uri_bytes,
    image_problem,
    local_path_for,
    mime_type_for,
    resolve_image,
    to_data_uri,
)
from tools.pool.models import PHOTO_ROLES, DocumentArtifact, Report
from tools.pool.template import BRAND_NAME, NOT_AVAILABLE, render_report_html

logger = logging.getLogger("pooldoc.document_builder")

_HEAD_RE = re.compile(r"<head>.*?</head>", re.IGNORECASE | re.DOTALL)
_IMG_RE = re.compile(r'<img\b[^>]*?\bsrc="([^"]*)"[^>]*>', re.IGNORECASE)

# Glyphs the PDF core fonts cannot encode
_PDF_GLYPHS = {
    "✅": "[OK]",       # check mark
    "❌": "[X]",        # cross
    "⊘": "[N/A]",      # circled slash
    "—": "-",          # em dash
    "–": "-",          # en dash
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "…": "...",
    "•": "*",
}


def pdf_safe(text: str) -> str:
    """Replace or drop characters outside latin-1 (emoji, symbols)."""
    for glyph, replacement in _PDF_GLYPHS.items():
        text = text.replace(glyph, replacement)
    return "".join(ch for ch in text if ord(ch) < 256)


def _image_placeholder(tag: str) -> str:
    """Text standing in for an <img> that cannot go into the PDF."""
    if 'class="logo-img"' in tag:
        return f'<div class="logo">{BRAND_NAME}</div>'
    return NOT_AVAILABLE


# ---------------------------------------------------------------------------
# Render primitive
# ---------------------------------------------------------------------------

class RenderToFile(Protocol):
    """Turns an HTML document into a file on disk and returns its path."""

    async def render(self, html: str) -> Path: ...


class FpdfHtmlRenderer:
    """Render HTML to a temporary PDF with fpdf2.

    Every <img> is loaded and decode-checked before fpdf2 sees it: remote
    images are fetched with httpx and inlined, anything that cannot be
    loaded is swapped for the "No disponible" placeholder (the brand name
    for the logo). If fpdf2 still rejects an image, the page is rendered
    again with no images at all.

    Args:
        tmp_dir:       Where temporary files are written (system temp by default).
        font_family:   fpdf2 core font used for body text.
        http_client:   httpx.Client for remote images (one per render by default).
        image_timeout: Seconds allowed per remote image.
    """

    def __init__(
        self,
        tmp_dir: str | Path | None = None,
        font_family: str = "Helvetica",
        http_client: Optional[httpx.Client] = None,
        image_timeout: float = 10.0,
    ):
        self.tmp_dir = str(tmp_dir) if tmp_dir else None
        self.font_family = font_family
        self.http_client = http_client
        self.image_timeout = image_timeout

    async def render(self, html: str) -> Path:
        return await asyncio.to_thread(self._render_sync, html)

    # -- images --------------------------------------------------------------

    def _load_image(self, src: str, client: httpx.Client) -> tuple[Optional[bytes], str]:
        """Image bytes for an <img src>, or (None, reason)."""
        if src.startswith("data:"):
            data = data_uri_bytes(src)
            if data is None:
                return None, "malformed data URI"
        elif src.startswith(REMOTE_PREFIXES):
            try:
                response = client.get(src)
                response.raise_for_status()
            except httpx.HTTPError as e:
                return None, f"{type(e).__name__}: {e}"
            data = response.content
        else:
            try:
                data = local_path_for(src).read_bytes()
            except (OSError, ValueError) as e:
                return None, str(e)
        problem = image_problem(data)
        return (None, problem) if problem else (data, "")

    def _inline_images(self, body: str, client: httpx.Client) -> str:
        def swap(match: re.Match) -> str:
            tag, raw_src = match.group(0), match.group(1)
            src = unescape(raw_src)
            data, problem = self._load_image(src, client)
            if data is None:
                logger.warning("Image left out of document, slot degraded: %s (%s)", src[:80], problem)
                return _image_placeholder(tag)
            if src.startswith("data:"):
                return tag
            start, end = match.span(1)
            inline = to_data_uri(data, mime_type_for(urlparse(src).path or src))
            return tag[:start - match.start()] + inline + tag[end - match.start():]

        return _IMG_RE.sub(swap, body)

    # -- render --------------------------------------------------------------

    def _write(self, body: str) -> FPDF:
        pdf = FPDF()
        pdf.set_auto_page_break(auto=True, margin=15)
        pdf.add_page()
        pdf.set_font(self.font_family, size=10)
        pdf.write_html(body)
        return pdf

    def _render_sync(self, html: str) -> Path:
        body = pdf_safe(_HEAD_RE.sub("", html))

        client = self.http_client or httpx.Client(timeout=self.image_timeout, follow_redirects=True)
        try:
            body = self._inline_images(body, client)
        finally:
            if client is not self.http_client:
                client.close()

        try:
            pdf = self._write(body)
        except Exception as e:
            if not _IMG_RE.search(body):
                raise
            logger.warning("fpdf2 rejected an image (%s), rendering without images", e)
            pdf = self._write(_IMG_RE.sub(lambda m: _image_placeholder(m.group(0)), body))

        fd, tmp_path = tempfile.mkstemp(prefix="pooldoc-", suffix=".pdf", dir=self.tmp_dir)
        os.close(fd)
        try:
            pdf.output(tmp_path)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.debug("Rendered %s", tmp_path)
        return Path(tmp_path)


# ---------------------------------------------------------------------------
# DocumentBuilder
# ---------------------------------------------------------------------------

class DocumentBuilder:
    """Builds report documents into output_dir.

    Args:
        output_dir: Directory holding finished documents (created on demand).
        renderer:   RenderToFile implementation. Defaults to FpdfHtmlRenderer.
        logo_path:  Logo image reference; unreadable means a text logo.
    """

    def __init__(
        self,
        output_dir: str | Path,
        renderer: Optional[RenderToFile] = None,
        logo_path: str | None = None,
    ):
        self.output_dir = Path(output_dir)
        self.renderer = renderer or FpdfHtmlRenderer()
        self.logo_path = logo_path
        self._logo: Optional[str] = None
        self._logo_resolved = False

    async def _resolve_logo(self) -> Optional[str]:
        """Resolve the logo the first time it is needed and keep it."""
        if not self._logo_resolved:
            self._logo = await resolve_image(self.logo_path)
            self._logo_resolved = True
            if self.logo_path and self._logo is None:
                logger.warning("Logo unavailable, using text logo: %s", self.logo_path)
        return self._logo

    async def _resolve_photos(self, report: Report) -> Report:
        resolved = {}
        for role in PHOTO_ROLES:
            ref = report.photos.get(role.slot)
            if ref:
                resolved[role.slot] = await resolve_image(ref)
        return report.with_photos(report.photos.with_resolved(resolved))

    async def prepare_html(self, report: Report, generated_at: datetime | None = None) -> str:
        """Resolve logo and photos, then render the report HTML."""
        logo = await self._resolve_logo()
        ready = await self._resolve_photos(report)
        return render_report_html(ready, logo=logo, generated_at=generated_at)

    async def build(self, report: Report, generated_at: datetime | None = None) -> DocumentArtifact:
        """Produce the document for a report.

        Returns:
            DocumentArtifact for <output_dir>/<number>_<project>.pdf

        Raises:
            RenderFailure: the render primitive failed or the result could
                           not be moved into place.
        """
        html = await self.prepare_html(report, generated_at=generated_at)
        logger.info("Rendering report %s (%d chars of HTML)", report.report_number, len(html))

        try:
            rendered = await self.renderer.render(html)
        except Exception as e:
            logger.error("Render failed for report %s: %s", report.report_number, e)
            raise RenderFailure(cause=e) from e

        destination = self.output_dir / document_filename(report.report_number, report.project_name)
        try:
            await asyncio.to_thread(self._move_into_place, Path(rendered), destination)
            artifact = await asyncio.to_thread(DocumentArtifact.from_path, destination)
        except OSError as e:
            logger.error("Could not store %s: %s", destination, e)
            raise RenderFailure("No se pudo guardar el PDF generado", cause=e) from e

        logger.info("Document ready: %s (%d bytes)", artifact.path, artifact.size)
        return artifact

    @staticmethod
    def _move_into_place(source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        if destination.exists():
            destination.unlink()
            logger.debug("Replaced older document %s", destination.name)
        shutil.move(str(source), str(destination))
