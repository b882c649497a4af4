"""
ReportPipeline: the two delivery paths behind one facade.

    local:  Report -> DocumentBuilder -> Dispatcher
    remote: report id -> TransferEngine -> Dispatcher

Callers see either a DeliveryResult or exactly one PipelineError subclass.
Anything unexpected coming out of a component is wrapped in PipelineError
so the CLI (or any other front end) only has one thing to catch.

Usage:
    from core.config import get_config
    from tools.pool.pipeline import ReportPipeline

    pipeline = ReportPipeline.from_config(get_config())
    result = await pipeline.deliver_local(report, share=True)
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from core.cache_steward import CacheSteward
from core.errors import PipelineError
from core.file_transfer import TransferEngine, TransferSettings
from tools.pool.dispatcher import Dispatcher, ShareBackend, ShareOutcome, build_text_summary
from tools.pool.document_builder import DocumentBuilder, RenderToFile
from tools.pool.filenames import document_filename
from tools.pool.models import DocumentArtifact, Report

logger = logging.getLogger("pooldoc.pipeline")


@dataclass
class DeliveryResult:
    """Outcome of one delivery.

    Attributes:
        artifact: The document produced or downloaded.
        outcome:  Share outcome, None when sharing was not requested.
    """
    artifact: DocumentArtifact
    outcome: Optional[ShareOutcome] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "artifact": self.artifact.to_dict(),
            "outcome": self.outcome.value if self.outcome else None,
        }


@asynccontextmanager
async def _categorized(step: str):
    """Let PipelineErrors through; wrap anything else."""
    try:
        yield
    except PipelineError:
        raise
    except Exception as e:
        logger.exception("Unexpected failure during %s", step)
        raise PipelineError(f"Error inesperado durante {step}", cause=e) from e


class ReportPipeline:
    """Builds, downloads, shares and sweeps report documents."""

    def __init__(
        self,
        builder: DocumentBuilder,
        transfer: TransferEngine,
        dispatcher: Dispatcher,
        steward: CacheSteward,
    ):
        self.builder = builder
        self.transfer = transfer
        self.dispatcher = dispatcher
        self.steward = steward

    @classmethod
    def from_config(
        cls,
        config,
        token: Optional[str] = None,
        renderer: Optional[RenderToFile] = None,
        backend: Optional[ShareBackend] = None,
    ) -> "ReportPipeline":
        """Wire every component from a PooldocConfig."""
        docs, transfer, share = config.documents, config.transfer, config.share
        settings = TransferSettings(
            base_url=transfer.api_url,
            token=token if token is not None else transfer.token,
            max_attempts=transfer.max_attempts,
            initial_delay_ms=transfer.initial_delay_ms,
            timeout_seconds=transfer.timeout_seconds,
            min_size_bytes=transfer.min_size_bytes,
        )
        return cls(
            builder=DocumentBuilder(docs.output_dir, renderer=renderer, logo_path=docs.logo_path),
            transfer=TransferEngine(settings, docs.cache_dir, history_size=transfer.history_size),
            dispatcher=Dispatcher(
                docs.cache_dir,
                backend=backend,
                cleanup_delay_seconds=share.cleanup_delay_seconds,
                dialog_title=share.dialog_title,
            ),
            steward=CacheSteward([docs.output_dir, docs.cache_dir], retention_days=docs.retention_days),
        )

    async def deliver_local(
        self, report: Report, share: bool = True, recipient: Optional[str] = None,
    ) -> DeliveryResult:
        """Build the document on this machine and optionally share it."""
        async with _categorized("la generación del PDF"):
            await self.steward.sweep()
            artifact = await self.builder.build(report)
        result = DeliveryResult(artifact)
        if share:
            result.outcome = await self._share(artifact, report, recipient, discard_source=False)
        return result

    async def deliver_remote(
        self, report: Report, share: bool = True, recipient: Optional[str] = None,
    ) -> DeliveryResult:
        """Download the server-built document and optionally share it.

        Raises TransferExhausted when every attempt fails; its text_fallback
        flag means summary_text(report) can be offered instead.
        """
        if not report.report_id:
            raise PipelineError("El reporte no tiene identificador del servidor")
        async with _categorized("la descarga del PDF"):
            await self.steward.sweep()
            artifact = await self.transfer.download_report(
                report.report_id, document_filename(report.report_number, report.project_name),
            )
        result = DeliveryResult(artifact)
        if share:
            result.outcome = await self._share(artifact, report, recipient, discard_source=True)
        return result

    async def _share(
        self, artifact: DocumentArtifact, report: Report, recipient: Optional[str], discard_source: bool,
    ) -> ShareOutcome:
        async with _categorized("el envío del PDF"):
            return await self.dispatcher.share(
                artifact.path,
                recipient=recipient if recipient is not None else report.client_phone or None,
                report_number=report.report_number,
                project_name=report.project_name,
                discard_source=discard_source,
            )

    async def share_summary(self, report: Report, recipient: Optional[str] = None) -> str:
        """Text fallback: open the summary in a wa.me link."""
        async with _categorized("el envío del resumen"):
            return await self.dispatcher.share_text(report, recipient)

    @staticmethod
    def summary_text(report: Report) -> str:
        return build_text_summary(report)

    async def sweep(self, now: float | None = None) -> int:
        async with _categorized("la limpieza de caché"):
            return await self.steward.sweep(now=now)

    async def close(self):
        """Let pending working-copy cleanups finish."""
        await self.dispatcher.drain()
