"""
Pooldoc self-test.

Runs a short check against each pipeline stage (settings, template, image
codec, PDF render, transfer validation, mocked download, cache sweep, share
backend) and collects a TestResult per check. `pooldoc selftest` shows the
results table, and so does `python -m tests.self_test`.

Checks write only to their own temporary directories, never to the
configured document or cache directories.
"""

import asyncio
import io
import logging
import sys
import tempfile
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from PIL import Image
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

logger = logging.getLogger("pooldoc.self_test")


def _png_pixel() -> bytes:
    """A 1x1 PNG that Pillow and fpdf2 both decode."""
    buf = io.BytesIO()
    Image.new("RGB", (1, 1), "white").save(buf, "PNG")
    return buf.getvalue()


def sample_report_data() -> dict:
    """A complete report in the mobile app's JSON shape."""
    return {
        "reportNumber": "#ST-001",
        "projectName": "Self Test Pool",
        "clientName": "Cliente de Prueba",
        "location": "Calle Principal 1",
        "technician": "Técnico de Prueba",
        "entryTime": "2025-03-05T09:05:00",
        "exitTime": "2025-03-05T10:30:00",
        "parametersBefore": {"cl": 1.5, "ph": 7.4, "alk": 100, "stabilizer": 40,
                             "hardness": 250, "salt": 0, "temperature": 27},
        "chemicals": {"tricloro": 0.5, "acido": 1},
        "equipmentCheck": {"bomba": True, "filtro": {"aplica": True, "working": False},
                           "calentador": {"aplica": False, "working": True}},
        "observations": "Agua clara <sin novedades>",
    }


# ---------------------------------------------------------------------------
# TestResult
# ---------------------------------------------------------------------------

@dataclass
class TestResult:
    """Outcome of one check. category is config, render, transfer, storage or platform."""
    __test__ = False

    name: str
    passed: bool
    message: str
    duration_ms: float
    category: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _elapsed(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)


# ---------------------------------------------------------------------------
# SelfTest
# ---------------------------------------------------------------------------

class SelfTest:
    """Pipeline self-test runner.

    Args:
        config: PooldocConfig instance. When None, get_config() is used.
    """

    def __init__(self, config=None):
        self.config = config

    # -------------------------------------------------------------------
    # Test runner
    # -------------------------------------------------------------------

    def all_tests(self) -> list:
        return [
            self.test_config,
            self.test_template,
            self.test_image_codec,
            self.test_document_builder,
            self.test_transfer_validation,
            self.test_transfer_download,
            self.test_cache_sweep,
            self.test_share_backend,
        ]

    async def run_one(self, test_fn) -> TestResult:
        """Run a check; an exception escaping it counts as a failed check."""
        start = time.perf_counter()
        try:
            return await test_fn()
        except Exception as exc:
            label = test_fn.__name__.removeprefix("test_").replace("_", " ").title()
            logger.exception("Check %s raised", label)
            return TestResult(label, False, f"{type(exc).__name__}: {exc}",
                              _elapsed(start), "unknown")

    async def run_all(self) -> dict:
        """Run every check in order.

        The summary has total, passed, failed, duration_ms, and results
        (TestResult dicts in check order).
        """
        began = time.perf_counter()
        outcomes = [await self.run_one(check) for check in self.all_tests()]
        for outcome in outcomes:
            log = logger.info if outcome.passed else logger.error
            log("%s %s: %s", "PASS" if outcome.passed else "FAIL", outcome.name, outcome.message)

        passed = len([o for o in outcomes if o.passed])
        summary = {
            "total": len(outcomes),
            "passed": passed,
            "failed": len(outcomes) - passed,
            "duration_ms": _elapsed(began),
            "results": [o.to_dict() for o in outcomes],
        }
        logger.info("Self-test complete: %d/%d passed in %.0fms",
                    passed, len(outcomes), summary["duration_ms"])
        return summary

    # -------------------------------------------------------------------
    # Individual tests
    # -------------------------------------------------------------------

    async def test_config(self) -> TestResult:
        """Settings must carry every pipeline table and a usable attempt count."""
        start = time.perf_counter()
        from core.config import get_config
        settings = self.config if self.config is not None else get_config()

        tables = settings.to_dict()
        absent = [name for name in ("documents", "transfer", "share", "logging") if name not in tables]
        attempts = tables.get("transfer", {}).get("max_attempts", 0)

        if absent:
            verdict, note = False, "absent tables: " + ", ".join(absent)
        elif not isinstance(attempts, int) or attempts < 1:
            verdict, note = False, f"transfer.max_attempts={attempts!r}"
        else:
            verdict, note = True, f"{len(tables)} tables, {attempts} download attempts"
        return TestResult("Settings", verdict, note, _elapsed(start), "config")

    async def test_template(self) -> TestResult:
        """Render the sample report twice; output must be stable and escaped."""
        start = time.perf_counter()
        from tools.pool.models import Report
        from tools.pool.template import render_report_html

        report = Report.from_dict(sample_report_data())
        stamp = datetime(2025, 3, 5, 12, 0)
        first = render_report_html(report, generated_at=stamp)
        second = render_report_html(report, generated_at=stamp)

        if first != second:
            return TestResult("Template Renderer", False, "Output differs between runs",
                              _elapsed(start), "render")
        if "<sin novedades>" in first:
            return TestResult("Template Renderer", False, "Observations not escaped",
                              _elapsed(start), "render")
        cards = first.count('class="param-card"')
        if cards != 7:
            return TestResult("Template Renderer", False, f"{cards} parameter cards, expected 7",
                              _elapsed(start), "render")
        return TestResult("Template Renderer", True,
                          f"Deterministic, {len(first)} chars, 7 parameter cards",
                          _elapsed(start), "render")

    async def test_image_codec(self) -> TestResult:
        """Embed a real PNG and degrade a missing one."""
        start = time.perf_counter()
        from tools.pool.image_codec import resolve_image

        with tempfile.TemporaryDirectory(prefix="pooldoc_selftest_") as tmp:
            png = Path(tmp) / "pixel.png"
            png.write_bytes(_png_pixel())
            embedded = await resolve_image(str(png))
            missing = await resolve_image(str(Path(tmp) / "missing.jpg"))

        if not embedded or not embedded.startswith("data:image/png;base64,"):
            return TestResult("Image Codec", False, "PNG was not embedded",
                              _elapsed(start), "render")
        if missing is not None:
            return TestResult("Image Codec", False, "Missing photo did not degrade",
                              _elapsed(start), "render")
        return TestResult("Image Codec", True, "PNG embedded, missing photo degraded",
                          _elapsed(start), "render")

    async def test_document_builder(self) -> TestResult:
        """Build the sample report with the fpdf2 renderer."""
        start = time.perf_counter()
        from tools.pool.document_builder import DocumentBuilder, FpdfHtmlRenderer
        from tools.pool.models import Report

        with tempfile.TemporaryDirectory(prefix="pooldoc_selftest_") as tmp:
            builder = DocumentBuilder(Path(tmp) / "out", renderer=FpdfHtmlRenderer(tmp_dir=tmp))
            artifact = await builder.build(Report.from_dict(sample_report_data()))

        if not artifact.is_valid:
            return TestResult("Document Builder", False,
                              f"{artifact.filename} has no PDF signature",
                              _elapsed(start), "render")
        return TestResult("Document Builder", True,
                          f"{artifact.filename} ({artifact.size} bytes)",
                          _elapsed(start), "render")

    async def test_transfer_validation(self) -> TestResult:
        """An HTML error page must fail validation; a PDF must pass."""
        start = time.perf_counter()
        from core.file_transfer import validate_document

        with tempfile.TemporaryDirectory(prefix="pooldoc_selftest_") as tmp:
            html_page = Path(tmp) / "error.pdf"
            html_page.write_bytes(b"<!DOCTYPE html>" + b" " * 2000)
            pdf = Path(tmp) / "ok.pdf"
            pdf.write_bytes(b"%PDF-1.4\n" + b"0" * 2000)
            html_reason = validate_document(html_page)
            pdf_reason = validate_document(pdf)

        if html_reason is None:
            return TestResult("Transfer Validation", False, "HTML payload accepted",
                              _elapsed(start), "transfer")
        if pdf_reason is not None:
            return TestResult("Transfer Validation", False, f"PDF rejected: {pdf_reason}",
                              _elapsed(start), "transfer")
        return TestResult("Transfer Validation", True, f"HTML rejected ({html_reason})",
                          _elapsed(start), "transfer")

    async def test_transfer_download(self) -> TestResult:
        """Retry path against an in-process mock server: 503 then a PDF."""
        start = time.perf_counter()
        import httpx

        from core.file_transfer import fetch_with_retry

        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, content=b"%PDF-1.4\n" + b"0" * 2000)

        async def no_sleep(_seconds: float):
            return None

        with tempfile.TemporaryDirectory(prefix="pooldoc_selftest_") as tmp:
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                path = await fetch_with_retry(
                    "http://selftest.invalid/reports/1/pdf", Path(tmp) / "dl.pdf", {},
                    client=client, sleep=no_sleep,
                )
            exists = path.exists()

        if not exists or len(calls) != 2:
            return TestResult("Transfer Retry", False,
                              f"{len(calls)} request(s), file present: {exists}",
                              _elapsed(start), "transfer")
        return TestResult("Transfer Retry", True, "Recovered on attempt 2",
                          _elapsed(start), "transfer")

    async def test_cache_sweep(self) -> TestResult:
        """Sweep removes only documents past the retention window."""
        start = time.perf_counter()
        import os

        from core.cache_steward import sweep

        with tempfile.TemporaryDirectory(prefix="pooldoc_selftest_") as tmp:
            now = time.time()
            old = Path(tmp) / "old.pdf"
            fresh = Path(tmp) / "fresh.pdf"
            for path in (old, fresh):
                path.write_bytes(b"%PDF")
            os.utime(old, (now - 10 * 86400, now - 10 * 86400))
            deleted = await sweep(tmp, 7 * 86400, now=now)
            survivors = sorted(p.name for p in Path(tmp).glob("*.pdf"))

        if deleted != 1 or survivors != ["fresh.pdf"]:
            return TestResult("Cache Sweep", False,
                              f"Deleted {deleted}, left {survivors}",
                              _elapsed(start), "storage")
        return TestResult("Cache Sweep", True, "Expired document removed, fresh kept",
                          _elapsed(start), "storage")

    async def test_share_backend(self) -> TestResult:
        """Check whether this machine can hand documents to a viewer."""
        start = time.perf_counter()
        from tools.pool.dispatcher import SystemShareBackend

        available = await SystemShareBackend().is_available()
        if not available:
            return TestResult("Share Backend", False,
                              "No system opener found (text summary only)",
                              _elapsed(start), "platform")
        return TestResult("Share Backend", True, "System opener available",
                          _elapsed(start), "platform")

    # -------------------------------------------------------------------
    # Standalone runner
    # -------------------------------------------------------------------

    @classmethod
    async def run_standalone(cls, console: Console | None = None) -> int:
        """Run the checks against the configured settings and print a table."""
        from core.config import get_config

        console = console or Console()
        console.print(Panel.fit("Pooldoc Self-Test", style="bold"))
        summary = await cls(config=get_config()).run_all()
        console.print(results_table(summary))
        for r in summary["results"]:
            if not r["passed"]:
                console.print(f"[red]- {escape(r['name'])}[/red]: {escape(r['message'])}")
        return 0 if summary["failed"] == 0 else 1


def results_table(summary: dict) -> Table:
    """Rich table of a run_all() summary, grouped by category."""
    table = Table(
        title=f"Self-Test Results ({summary['passed']}/{summary['total']} passed, "
              f"{summary['duration_ms']:.0f}ms)",
    )
    table.add_column("Category", style="dim")
    table.add_column("Test", style="bold")
    table.add_column("Result")
    table.add_column("Message", overflow="fold")
    table.add_column("Time", justify="right")

    previous = None
    for r in summary["results"]:
        category = r["category"] if r["category"] != previous else ""
        previous = r["category"]
        verdict = "[green]PASS[/green]" if r["passed"] else "[red]FAIL[/red]"
        table.add_row(category, r["name"], verdict, escape(r["message"][:80]),
                      f"{r['duration_ms']:.0f}ms")
    return table


if __name__ == "__main__":
    sys.exit(asyncio.run(SelfTest.run_standalone()))
