"""
Pooldoc command line

Builds, downloads, shares and sweeps pool maintenance report documents
from a terminal. Rich library for formatted output.

Run with:
    python -m interfaces.cli.terminal build report.json --share
    python -m interfaces.cli.terminal fetch 42 --number "#001" --project "Pool A"
    python -m interfaces.cli.terminal status

Or through the installed console script:
    pooldoc sweep --days 3
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.config import get_config
from core.errors import PipelineError, TransferExhausted
from tests.self_test import SelfTest, results_table
from tools.pool.dispatcher import ShareOutcome
from tools.pool.models import Report
from tools.pool.pipeline import DeliveryResult, ReportPipeline

logger = logging.getLogger("pooldoc.cli")


def _configure_logging(level_name: str):
    """Same format as the rest of the tooling, level from config or --verbose."""
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_report(path: str | Path) -> Report:
    """Read a report JSON file (mobile or API shape)."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return Report.from_dict(data)
    except (OSError, json.JSONDecodeError, ValueError, AttributeError) as e:
        raise PipelineError(f"No se pudo leer el reporte {path}", cause=e) from e


# ---------------------------------------------------------------------------
# PooldocTerminal
# ---------------------------------------------------------------------------

class PooldocTerminal:
    """Runs one CLI command against a ReportPipeline."""

    def __init__(self, config, pipeline: ReportPipeline | None = None, console: Console | None = None):
        self.config = config
        self.console = console or Console()
        self.pipeline = pipeline or ReportPipeline.from_config(config)

    async def run(self, args: argparse.Namespace) -> int:
        """Dispatch to the command handler. Returns the process exit code."""
        handler = getattr(self, f"cmd_{args.command}")
        try:
            return await handler(args)
        except PipelineError as e:
            logger.error("%s", e)
            self.console.print(f"[bold red]Error:[/bold red] {e.user_message}")
            if e.retryable:
                self.console.print("[dim]Puedes intentarlo de nuevo.[/dim]")
            return 1
        finally:
            await self.pipeline.close()

    # -----------------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------------

    async def cmd_build(self, args) -> int:
        """build: render the report locally, optionally share it."""
        report = load_report(args.report)
        with self.console.status(f"Generando reporte {report.report_number or ''}..."):
            result = await self.pipeline.deliver_local(report, share=args.share, recipient=args.phone)
        self._print_delivery(result)
        return 0

    async def cmd_fetch(self, args) -> int:
        """fetch: download the server-built document with retries."""
        if args.report:
            report = load_report(args.report)
        else:
            report = Report(report_number=args.number or "", project_name=args.project or "")
        report = replace(report, report_id=str(args.report_id))

        try:
            with self.console.status(f"Descargando reporte {args.report_id}...") as status:
                async def show_progress(record):
                    if record.progress is not None:
                        status.update(f"Descargando {record.filename}... {record.progress:.0%}")

                self.pipeline.transfer.on_progress = show_progress
                result = await self.pipeline.deliver_remote(report, share=args.share, recipient=args.phone)
        except TransferExhausted as e:
            self.console.print(f"[bold red]Error:[/bold red] {e.user_message}")
            if e.text_fallback and args.report:
                self.console.print(Panel(
                    Text(self.pipeline.summary_text(report)),
                    title="Resumen en texto", border_style="yellow",
                ))
                if args.share:
                    url = await self.pipeline.share_summary(report, args.phone)
                    self.console.print(f"[dim]Resumen enviado: {url[:80]}...[/dim]")
            return 1
        self._print_delivery(result)
        return 0

    async def cmd_sweep(self, args) -> int:
        """sweep: delete documents past the retention window."""
        if args.days is not None:
            self.pipeline.steward.retention_days = args.days
        deleted = await self.pipeline.sweep()
        self.console.print(
            f"[green]{deleted}[/green] documento(s) eliminados "
            f"(más de {self.pipeline.steward.retention_days:g} días)"
        )
        return 0

    async def cmd_status(self, _args) -> int:
        """status: stored documents and their total size."""
        steward = self.pipeline.steward
        status = steward.get_status()

        lines = [
            f"[bold]Documentos:[/bold]  {status['count']}",
            f"[bold]Tamaño:[/bold]      {steward.human_size(status['total_size'])}",
            f"[bold]Retención:[/bold]   {status['retention_days']:g} días",
        ]
        if status["oldest"]:
            lines.append(f"[bold]Más antiguo:[/bold] {status['oldest']['filename']}")
        self.console.print(Panel("\n".join(lines), title="Pooldoc Status", border_style="cyan"))

        if not status["documents"]:
            self.console.print("[dim]No hay documentos almacenados.[/dim]")
            return 0

        table = Table(title="Documentos")
        table.add_column("Archivo", style="bold")
        table.add_column("Tamaño", justify="right")
        table.add_column("Modificado")
        table.add_column("PDF")
        for doc in status["documents"]:
            modified = datetime.fromisoformat(doc["modified_at"]).astimezone()
            table.add_row(
                doc["filename"],
                steward.human_size(doc["size"]),
                modified.strftime("%Y-%m-%d %H:%M"),
                "[green]OK[/green]" if doc["is_valid"] else "[red]invalid[/red]",
            )
        self.console.print(table)
        return 0

    async def cmd_summary(self, args) -> int:
        """summary: print (or send) the plain-text summary."""
        report = load_report(args.report)
        self.console.print(self.pipeline.summary_text(report), markup=False)
        if args.share:
            url = await self.pipeline.share_summary(report, args.phone)
            self.console.print(f"[dim]Abierto: {url[:80]}...[/dim]")
        return 0

    async def cmd_selftest(self, _args) -> int:
        """selftest: run the pipeline self-test suite."""
        self.console.print("[dim]Running self-tests...[/dim]")
        results = await SelfTest(config=self.config).run_all()
        self.console.print(results_table(results))
        return 0 if results["failed"] == 0 else 1

    # -----------------------------------------------------------------------
    # Output
    # -----------------------------------------------------------------------

    def _print_delivery(self, result: DeliveryResult):
        artifact = result.artifact
        lines = [
            f"[bold]Archivo:[/bold] {artifact.path}",
            f"[bold]Tamaño:[/bold]  {self.pipeline.steward.human_size(artifact.size)}",
            f"[bold]Válido:[/bold]  {'sí' if artifact.is_valid else 'no'}",
        ]
        if result.outcome is ShareOutcome.SHARED:
            lines.append("[green]Compartido[/green]")
        elif result.outcome is ShareOutcome.CANCELLED:
            lines.append("[yellow]Envío cancelado[/yellow]")
        self.console.print(Panel("\n".join(lines), title="Reporte listo", border_style="green"))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pooldoc",
        description="Pool maintenance report documents: build, download, share, sweep",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to settings.toml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Render a report JSON into a PDF")
    build.add_argument("report", help="Report JSON file")
    build.add_argument("--share", action="store_true", help="Share the document when ready")
    build.add_argument("--phone", default=None, help="Recipient phone (defaults to the client's)")

    fetch = sub.add_parser("fetch", help="Download the server-built PDF")
    fetch.add_argument("report_id", help="Server report id")
    fetch.add_argument("--number", default="", help="Report number, for the filename")
    fetch.add_argument("--project", default="", help="Project name, for the filename")
    fetch.add_argument("--report", default=None, help="Report JSON (enables the text fallback)")
    fetch.add_argument("--token", default=None, help="Bearer token (overrides config)")
    fetch.add_argument("--share", action="store_true", help="Share the document when ready")
    fetch.add_argument("--phone", default=None, help="Recipient phone")

    sweep = sub.add_parser("sweep", help="Delete documents past the retention window")
    sweep.add_argument("--days", type=float, default=None, help="Retention in days")

    sub.add_parser("status", help="Show stored documents")

    summary = sub.add_parser("summary", help="Print the plain-text report summary")
    summary.add_argument("report", help="Report JSON file")
    summary.add_argument("--share", action="store_true", help="Open it in WhatsApp")
    summary.add_argument("--phone", default=None, help="Recipient phone")

    sub.add_parser("selftest", help="Run the self-test suite")
    return parser


async def main(argv: list[str] | None = None) -> int:
    """Parse arguments and run one command."""
    args = build_parser().parse_args(argv)
    config = get_config(args.config)
    _configure_logging("debug" if args.verbose else config.logging.level)
    logger.debug("Started at %s", datetime.now(timezone.utc).isoformat())

    pipeline = ReportPipeline.from_config(config, token=getattr(args, "token", None))
    terminal = PooldocTerminal(config, pipeline=pipeline)
    return await terminal.run(args)


def run():
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
