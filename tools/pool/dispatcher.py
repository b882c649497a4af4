"""
Report distribution: hand a finished document to the platform share
mechanism.

The dispatcher copies the document into the cache directory under the name
the recipient will see (Reporte_<number>_<project>.pdf), invokes a share
backend, and schedules the working copy for deletion a few seconds later.
The share target may still be reading the file when the backend returns, so
deletion is never immediate.

A user closing the share sheet is a normal outcome (ShareOutcome.CANCELLED),
not an error. A platform with no share capability raises ShareUnavailable.

When a document cannot be produced at all, build_text_summary() gives the
plain-text version of the report and Dispatcher.share_text() opens it in a
wa.me link.

Usage:
    from tools.pool.dispatcher import Dispatcher, ShareOutcome

    dispatcher = Dispatcher(cache_dir="data/cache")
    outcome = await dispatcher.share(artifact.path, recipient="+1 555 0100",
                                     report_number="#001", project_name="Pool A")
    await dispatcher.drain()
"""

import asyncio
import logging
import os
import re
import shutil
import sys
import webbrowser
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol
from urllib.parse import quote

from core.errors import DispatchError, PipelineError, ShareUnavailable
from tools.pool.filenames import display_filename, sanitize_component
from tools.pool.models import PDF_MIME_TYPE, Report, equipment_label, format_number, normalize_equipment

logger = logging.getLogger("pooldoc.dispatcher")

WHATSAPP_URL = "https://wa.me/"
SUMMARY_FOOTER = "_Reporte generado por AquaPool App_"


class ShareOutcome(Enum):
    SHARED = "shared"
    CANCELLED = "cancelled"
    UNAVAILABLE = "unavailable"


def recipient_digits(phone: Optional[str]) -> str:
    """Keep digits only: "+1 (555) 010-0100" -> "15550100100"."""
    return re.sub(r"\D", "", phone or "")


def whatsapp_link(text: str = "", phone: Optional[str] = None) -> str:
    """wa.me link, direct to the phone's chat when digits are known."""
    url = WHATSAPP_URL + recipient_digits(phone)
    if text:
        url += "?text=" + quote(text, safe="")
    return url


# ---------------------------------------------------------------------------
# Share backends
# ---------------------------------------------------------------------------

class ShareBackend(Protocol):
    """Platform share primitive."""

    async def is_available(self) -> bool: ...

    async def share(
        self, path: Path, mime_type: str, recipient_hint: str, title: str,
    ) -> ShareOutcome: ...


class SystemShareBackend:
    """Desktop hand-off: open the document with the system viewer.

    With a recipient, the recipient's WhatsApp chat is opened too so the
    document can be attached there. Desktop openers give no feedback about
    what the user did next, so a launched opener counts as SHARED.
    """

    def __init__(self, open_url: Callable[[str], bool] = webbrowser.open):
        self._open_url = open_url

    @staticmethod
    def _opener() -> Optional[str]:
        if sys.platform == "darwin":
            return shutil.which("open")
        return shutil.which("xdg-open")

    async def is_available(self) -> bool:
        if sys.platform == "win32":
            return hasattr(os, "startfile")
        return self._opener() is not None

    async def share(self, path: Path, mime_type: str, recipient_hint: str, title: str) -> ShareOutcome:
        """Open the document; an opener that fails raises DispatchError."""
        logger.info("%s: opening %s (%s)", title, path.name, mime_type)
        if sys.platform == "win32":
            try:
                await asyncio.to_thread(os.startfile, str(path))
            except OSError as e:
                raise DispatchError("No se pudo abrir el PDF para compartirlo", cause=e) from e
        else:
            opener = self._opener()
            if opener is None:
                return ShareOutcome.UNAVAILABLE
            proc = await asyncio.create_subprocess_exec(
                opener, str(path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            code = await proc.wait()
            if code != 0:
                logger.error("%s exited with code %d for %s", opener, code, path.name)
                raise DispatchError(
                    f"No se pudo abrir el PDF para compartirlo ({Path(opener).name} código {code})"
                )

        if recipient_hint:
            opened = await asyncio.to_thread(self._open_url, whatsapp_link(phone=recipient_hint))
            if not opened:
                logger.warning("Could not open chat for %s", recipient_hint)
        return ShareOutcome.SHARED


# ---------------------------------------------------------------------------
# Text summary
# ---------------------------------------------------------------------------

def build_text_summary(report: Report) -> str:
    """Plain-text report for messaging apps (WhatsApp markup: *bold*, _italic_)."""
    lines = [
        "*🏊 REPORTE DE MANTENIMIENTO DE PISCINA*",
        "",
        f"*Número de Reporte:* {report.report_number or 'N/A'}",
    ]
    if report.project_name:
        lines.append(f"*Proyecto:* {report.project_name}")
    lines.append(f"*Cliente:* {report.client_name or 'N/A'}")
    lines.append(f"*Ubicación:* {report.location or 'N/A'}")
    lines.append(f"*Técnico:* {report.technician or 'N/A'}")
    when = report.entry_time or report.created_at
    lines.append(f"*Fecha:* {when.strftime('%d/%m/%Y') if when else 'N/A'}")

    lines += ["", "*📊 PARÁMETROS DEL AGUA*"]
    for _name, label, unit, value in report.parameters.items():
        lines.append(f"• {label}: {format_number(value)}{(' ' + unit) if unit else ''}")

    applied = report.chemicals.applied()
    if applied:
        lines += ["", "*🧪 QUÍMICOS UTILIZADOS*"]
        lines += [f"• {label}: {format_number(dosage)} {unit}" for _n, label, unit, dosage in applied]

    if report.equipment:
        lines += ["", "*⚙️ EQUIPOS*"]
        for key, status in report.equipment.items():
            state = normalize_equipment(status)
            lines.append(f"{state.glyph} {equipment_label(key)}: {state.label}")

    lines.append("")
    if report.materials_delivered.strip():
        lines.append(f"*📦 Materiales Entregados:* {report.materials_delivered.strip()}")
    if report.observations.strip():
        lines.append(f"*📝 Observaciones:* {report.observations.strip()}")
    if report.received_by:
        lines.append(f"*✍️ Recibido por:* {report.received_by}")

    lines += ["", SUMMARY_FOOTER]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class Dispatcher:
    """Hands documents to a ShareBackend.

    Args:
        cache_dir:             Where working copies are written.
        backend:               ShareBackend. Defaults to SystemShareBackend.
        cleanup_delay_seconds: Delay before a working copy is deleted.
        dialog_title:          Title prefix shown by the share sheet.
        open_url:              URL opener for text sharing.
    """

    def __init__(
        self,
        cache_dir: str | Path,
        backend: Optional[ShareBackend] = None,
        cleanup_delay_seconds: float = 10.0,
        dialog_title: str = "Compartir Reporte",
        open_url: Callable[[str], bool] = webbrowser.open,
    ):
        self.cache_dir = Path(cache_dir)
        self.backend = backend or SystemShareBackend(open_url=open_url)
        self.cleanup_delay_seconds = cleanup_delay_seconds
        self.dialog_title = dialog_title
        self._open_url = open_url
        self._cleanups: set[asyncio.Task] = set()

    @property
    def pending_cleanups(self) -> int:
        return len(self._cleanups)

    async def share(
        self,
        path: str | Path,
        recipient: Optional[str] = None,
        report_number: str = "",
        project_name: str = "",
        discard_source: bool = False,
    ) -> ShareOutcome:
        """Share a document file.

        Args:
            path:           Document to share.
            recipient:      Client phone; prefers a direct channel when set.
            report_number:  Used for the display filename and dialog title.
            project_name:   Used for the display filename.
            discard_source: Also delete `path` once the cleanup delay passes.

        Returns:
            ShareOutcome.SHARED or ShareOutcome.CANCELLED.

        Raises:
            DispatchError:    path is missing or cannot be copied.
            ShareUnavailable: the platform cannot share.
        """
        source = Path(path)
        if not await asyncio.to_thread(source.is_file):
            logger.error("Nothing to share, file missing: %s", source)
            raise DispatchError(f"El archivo del reporte no existe: {source.name}")

        if not await self.backend.is_available():
            logger.error("Sharing is not available on this platform")
            raise ShareUnavailable()

        working = self.cache_dir / display_filename(report_number, project_name)
        try:
            await asyncio.to_thread(self._copy, source, working)
        except OSError as e:
            raise DispatchError("No se pudo preparar el archivo para compartir", cause=e) from e

        to_remove = [working]
        if discard_source and source.resolve() != working.resolve():
            to_remove.append(source)

        title = f"{self.dialog_title} {sanitize_component(report_number)}".strip()
        try:
            outcome = await self.backend.share(
                working, PDF_MIME_TYPE, recipient_digits(recipient), title,
            )
        except PipelineError:
            self._schedule_cleanup(to_remove)
            raise
        except Exception as e:
            self._schedule_cleanup(to_remove)
            logger.error("Share backend failed: %s", e)
            raise DispatchError(f"No se pudo compartir el PDF: {e}", cause=e) from e

        self._schedule_cleanup(to_remove)
        if outcome is ShareOutcome.UNAVAILABLE:
            raise ShareUnavailable()
        logger.info("Share of %s: %s", working.name, outcome.value)
        return outcome

    async def share_text(self, report: Report, recipient: Optional[str] = None) -> str:
        """Open the text summary in WhatsApp. Returns the link used."""
        phone = recipient if recipient is not None else report.client_phone
        url = whatsapp_link(build_text_summary(report), phone)
        opened = await asyncio.to_thread(self._open_url, url)
        if not opened:
            raise ShareUnavailable("No se pudo abrir WhatsApp")
        logger.info("Text summary of report %s opened (%d chars)", report.report_number, len(url))
        return url

    async def drain(self):
        """Wait for every scheduled cleanup to finish."""
        if self._cleanups:
            await asyncio.gather(*list(self._cleanups))

    # ------------------------------------------------------------------
    # Working copies
    # ------------------------------------------------------------------

    @staticmethod
    def _copy(source: Path, working: Path):
        working.parent.mkdir(parents=True, exist_ok=True)
        if source.resolve() != working.resolve():
            shutil.copyfile(source, working)

    def _schedule_cleanup(self, paths: list[Path]):
        task = asyncio.get_running_loop().create_task(self._deferred_cleanup(paths))
        self._cleanups.add(task)
        task.add_done_callback(self._cleanups.discard)

    async def _deferred_cleanup(self, paths: list[Path]):
        await asyncio.sleep(self.cleanup_delay_seconds)
        for path in paths:
            try:
                await asyncio.to_thread(path.unlink, missing_ok=True)
                logger.debug("Cleaned up %s", path.name)
            except OSError as e:
                logger.warning("Could not clean up %s: %s", path, e)
