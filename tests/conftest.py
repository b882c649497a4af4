"""Shared fixtures: sample reports, a fake renderer and a fake share backend."""

import io
from pathlib import Path

import pytest
from PIL import Image

from tools.pool.dispatcher import ShareOutcome


def image_bytes(fmt: str = "PNG", size=(8, 6), color="navy") -> bytes:
    """A small image Pillow (and fpdf2) can decode."""
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, fmt)
    return buf.getvalue()


PDF_BYTES = b"%PDF-1.4\n" + b"%" * 1500 + b"\n%%EOF\n"
HTML_ERROR_PAGE = b"<!DOCTYPE html><html><body>Bad Gateway</body></html>" + b" " * 1500
PNG_BYTES = image_bytes("PNG")
JPEG_BYTES = image_bytes("JPEG")


class FakeRenderer:
    """RenderToFile that writes a small fixed PDF and remembers the HTML."""

    def __init__(self, tmp_dir: Path, fail: bool = False):
        self.tmp_dir = Path(tmp_dir)
        self.fail = fail
        self.htmls: list[str] = []

    async def render(self, html: str) -> Path:
        self.htmls.append(html)
        if self.fail:
            raise RuntimeError("renderer crashed")
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        path = self.tmp_dir / f"render-{len(self.htmls)}.pdf"
        path.write_bytes(PDF_BYTES)
        return path


class FakeBackend:
    """ShareBackend that records calls and returns a fixed outcome."""

    def __init__(self, available: bool = True, outcome: ShareOutcome = ShareOutcome.SHARED):
        self.available = available
        self.outcome = outcome
        self.calls: list[dict] = []

    async def is_available(self) -> bool:
        return self.available

    async def share(self, path, mime_type, recipient_hint, title):
        self.calls.append({
            "path": Path(path),
            "existed": Path(path).exists(),
            "mime_type": mime_type,
            "recipient_hint": recipient_hint,
            "title": title,
        })
        return self.outcome


@pytest.fixture
def report_data() -> dict:
    """Mobile-shaped report JSON, no photos."""
    return {
        "reportNumber": "#001",
        "projectName": "Pool A",
        "clientName": "Hotel Central",
        "location": "Av. Reforma 100",
        "technician": "Ana López",
        "entryTime": "2025-03-05T09:05:00",
        "exitTime": "2025-03-05T10:40:00",
        "parametersBefore": {"cl": 1.5, "ph": 7.4, "alk": 90, "stabilizer": 30,
                             "hardness": 200, "salt": 0, "temperature": 28},
        "chemicals": {"tricloro": 2, "tabletas": 0, "acido": 0},
        "equipmentCheck": {"bomba": {"aplica": True, "working": True}},
        "materialsDelivered": "",
        "observations": "",
        "project_client_phone": "+52 555 010 0100",
    }


@pytest.fixture
def renderer(tmp_path) -> FakeRenderer:
    return FakeRenderer(tmp_path / "render")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
