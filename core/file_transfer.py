"""
Pooldoc Transfer Engine

Downloads server-built report documents over HTTP with a bounded retry
budget and payload validation.

Each attempt streams the response body to a ".part" file beside the
destination. The part file replaces the destination only once it exists,
is not empty, is at least min_size bytes and starts with the %PDF
signature, so a failed attempt leaves any earlier copy in place. An HTML error page served with status 200 is a
failed attempt, not a download.

Retry policy:
    HTTP 401           -> TransferAuthFailure, no retry
    anything else      -> wait initial_delay * 2**(attempt-1), try again
    budget exhausted   -> TransferExhausted (caller may offer a text summary)

Usage:
    from core.file_transfer import TransferEngine, TransferSettings

    settings = TransferSettings(base_url="https://api.example.com/api", token=token)
    engine = TransferEngine(settings, download_dir="data/cache")
    artifact = await engine.download_report("42", "001_Pool_A.pdf")
"""

import asyncio
import logging
import os
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, Union
from urllib.parse import quote

import httpx

from core.errors import PipelineError, TransferAuthFailure, TransferExhausted, TransferValidationFailure
from tools.pool.models import PDF_MIME_TYPE, PDF_SIGNATURE, DocumentArtifact, read_signature

logger = logging.getLogger("pooldoc.file_transfer")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY_MS = 1000
DEFAULT_TIMEOUT_SECONDS = 30.0
MIN_DOCUMENT_SIZE = 1000        # bytes; smaller payloads are error pages
PARTIAL_SUFFIX = ".part"

ProgressCallback = Callable[[int, int | None], Coroutine]
SleepFunc = Callable[[float], Awaitable[Any]]


def generate_transfer_id() -> str:
    """Generate a unique transfer ID: dl-<12 hex chars>."""
    return "dl-" + os.urandom(6).hex()


def backoff_seconds(attempt: int, initial_delay_ms: int) -> float:
    """Wait after failed attempt number `attempt` (1-based): 1 s, 2 s, 4 s..."""
    return initial_delay_ms * (2 ** (attempt - 1)) / 1000.0


def validate_document(path: str | Path, min_size: int = MIN_DOCUMENT_SIZE) -> str | None:
    """Check a downloaded file. Returns the failure reason, or None if valid."""
    path = Path(path)
    if not path.exists():
        return "downloaded file does not exist"
    size = path.stat().st_size
    if size == 0:
        return "downloaded file is empty"
    if size < min_size:
        return f"downloaded file too small ({size} bytes)"
    signature = read_signature(path)
    if signature != PDF_SIGNATURE:
        return f"not a PDF document (starts with {signature!r})"
    return None


# ---------------------------------------------------------------------------
# Attempt results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AttemptOk:
    path: Path
    size: int


@dataclass(frozen=True)
class AttemptRetryable:
    reason: str
    cause: BaseException | None = None


@dataclass(frozen=True)
class AttemptTerminal:
    error: PipelineError


AttemptResult = Union[AttemptOk, AttemptRetryable, AttemptTerminal]


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove partial download %s: %s", path, e)


def partial_path(destination: Path) -> Path:
    """Sibling file an attempt streams into: r.pdf -> r.pdf.part"""
    return destination.with_name(destination.name + PARTIAL_SUFFIX)


async def _attempt(
    client: httpx.AsyncClient,
    url: str,
    destination: Path,
    headers: dict[str, str],
    min_size: int,
    on_progress: ProgressCallback | None,
) -> AttemptResult:
    """One GET + validation. Never raises for network or payload problems.

    The body goes to partial_path(destination) and replaces destination only
    once it validates, so a failed attempt never touches an earlier copy.
    """
    part = partial_path(destination)
    written = 0
    try:
        async with client.stream("GET", url, headers=headers) as response:
            if response.status_code == 401:
                return AttemptTerminal(TransferAuthFailure())
            if response.status_code != 200:
                return AttemptRetryable(f"HTTP {response.status_code}")

            length = response.headers.get("content-length")
            total = int(length) if length and length.isdigit() else None
            part.parent.mkdir(parents=True, exist_ok=True)
            with open(part, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
                    written += len(chunk)
                    if on_progress:
                        await on_progress(written, total)
    except httpx.HTTPError as e:
        return AttemptRetryable(f"{type(e).__name__}: {e}", e)
    except OSError as e:
        return AttemptRetryable(f"write failed: {e}", e)

    reason = validate_document(part, min_size)
    if reason:
        return AttemptRetryable(reason, TransferValidationFailure(reason))
    try:
        os.replace(part, destination)
    except OSError as e:
        return AttemptRetryable(f"could not store download: {e}", e)
    return AttemptOk(destination, written)


# ---------------------------------------------------------------------------
# Retry loop
# ---------------------------------------------------------------------------

async def fetch_with_retry(
    url: str,
    destination: str | Path,
    headers: dict[str, str],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
    *,
    client: httpx.AsyncClient | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    min_size: int = MIN_DOCUMENT_SIZE,
    on_progress: ProgressCallback | None = None,
    on_attempt: Callable[[int], None] | None = None,
    sleep: SleepFunc = asyncio.sleep,
) -> Path:
    """Download url into destination, retrying with exponential backoff.

    Args:
        url:              Document URL.
        destination:      Target file; replaced only by a validated download.
        headers:          Request headers (bearer token, accept).
        max_attempts:     Total attempts, including the first.
        initial_delay_ms: Wait after the first failure; doubles each time.
        client:           Shared httpx client. One is created (and closed) if omitted.
        timeout_seconds:  Per-request timeout when the client is created here.
        min_size:         Smallest acceptable payload in bytes.
        on_progress:      async callback(bytes_written, total_bytes_or_None).
        on_attempt:       callback(attempt_number) before each attempt.
        sleep:            Awaitable sleep, injectable for tests.

    Returns:
        The destination path, holding a validated document.

    Raises:
        TransferAuthFailure: HTTP 401 on any attempt.
        TransferExhausted:   every attempt failed.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    destination = Path(destination)
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), follow_redirects=True)

    last_reason = ""
    last_cause: BaseException | None = None
    try:
        for attempt in range(1, max_attempts + 1):
            if on_attempt:
                on_attempt(attempt)
            result = await _attempt(client, url, destination, headers, min_size, on_progress)

            if isinstance(result, AttemptOk):
                logger.info("Downloaded %s (%d bytes, attempt %d/%d)",
                            destination.name, result.size, attempt, max_attempts)
                return result.path

            _discard(partial_path(destination))

            if isinstance(result, AttemptTerminal):
                logger.error("Download of %s rejected: %s", url, result.error.user_message)
                raise result.error

            last_reason, last_cause = result.reason, result.cause
            logger.warning("Download attempt %d/%d failed: %s", attempt, max_attempts, last_reason)
            if attempt < max_attempts:
                delay = backoff_seconds(attempt, initial_delay_ms)
                logger.info("Retrying in %.1fs", delay)
                await sleep(delay)
    finally:
        if owns_client:
            await client.aclose()

    logger.error("Download of %s failed after %d attempt(s): %s", url, max_attempts, last_reason)
    raise TransferExhausted(max_attempts, last_reason, cause=last_cause)


# ---------------------------------------------------------------------------
# TransferSettings / DownloadRecord
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransferSettings:
    """Everything a download needs, passed explicitly.

    Attributes:
        base_url:         API root, e.g. "https://api.example.com/api".
        token:            Bearer token for the Authorization header.
        max_attempts:     Retry budget.
        initial_delay_ms: First backoff wait.
        timeout_seconds:  Per-request timeout.
        min_size_bytes:   Smallest acceptable document.
    """
    base_url: str
    token: str = ""
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    min_size_bytes: int = MIN_DOCUMENT_SIZE

    def report_url(self, report_id: str) -> str:
        return f"{self.base_url.rstrip('/')}/reports/{quote(str(report_id), safe='')}/pdf"

    def headers(self) -> dict[str, str]:
        headers = {"Accept": PDF_MIME_TYPE}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers


@dataclass
class DownloadRecord:
    """One report download, active or finished."""

    transfer_id: str
    report_id: str
    url: str
    filename: str
    status: str = "pending"                 # pending | active | completed | failed
    attempts: int = 0
    bytes_written: int = 0
    total_bytes: int | None = None
    started_at: str = ""
    completed_at: str = ""
    error: str = ""
    dest_path: str = ""

    def __post_init__(self):
        if not self.started_at:
            self.started_at = datetime.now(timezone.utc).isoformat()

    @property
    def progress(self) -> float | None:
        """Progress as a float 0.0-1.0, None when the size is unknown."""
        if not self.total_bytes:
            return None
        return min(self.bytes_written / self.total_bytes, 1.0)

    def to_dict(self) -> dict[str, Any]:
        progress = self.progress
        return {
            "transfer_id": self.transfer_id,
            "report_id": self.report_id,
            "url": self.url,
            "filename": self.filename,
            "status": self.status,
            "attempts": self.attempts,
            "bytes_written": self.bytes_written,
            "total_bytes": self.total_bytes,
            "progress": round(progress, 4) if progress is not None else None,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
            "dest_path": self.dest_path,
        }


# ---------------------------------------------------------------------------
# TransferEngine
# ---------------------------------------------------------------------------

class TransferEngine:
    """Downloads report documents and keeps a short history.

    Args:
        settings:     TransferSettings for every download.
        download_dir: Where downloaded documents are written.
        on_progress:  Async callback called as bytes arrive.
                      Signature: async def callback(record: DownloadRecord)
        history_size: Max finished downloads kept in the ring buffer.
        client:       Optional shared httpx.AsyncClient (tests pass a mock transport).
        sleep:        Awaitable sleep used between attempts.
    """

    def __init__(
        self,
        settings: TransferSettings,
        download_dir: str | Path,
        on_progress: Callable[[DownloadRecord], Coroutine] | None = None,
        history_size: int = 50,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.settings = settings
        self.download_dir = Path(download_dir)
        self.on_progress = on_progress
        self._client = client
        self._sleep = sleep
        self._active: dict[str, DownloadRecord] = {}
        self._history: deque[DownloadRecord] = deque(maxlen=history_size)

    async def download_report(self, report_id: str, filename: str | None = None) -> DocumentArtifact:
        """Fetch the server document for report_id into download_dir.

        Raises:
            TransferAuthFailure, TransferExhausted
        """
        filename = filename or f"reporte_{report_id}.pdf"
        destination = self.download_dir / filename
        record = DownloadRecord(
            transfer_id=generate_transfer_id(),
            report_id=str(report_id),
            url=self.settings.report_url(report_id),
            filename=filename,
            status="active",
            dest_path=str(destination),
        )
        self._active[record.transfer_id] = record
        logger.info("Download %s started: report %s → %s", record.transfer_id, report_id, filename)

        async def progress(written: int, total: int | None):
            record.bytes_written = written
            record.total_bytes = total
            if self.on_progress:
                await self.on_progress(record)

        def count_attempt(attempt: int):
            record.attempts = attempt

        try:
            path = await fetch_with_retry(
                record.url,
                destination,
                self.settings.headers(),
                max_attempts=self.settings.max_attempts,
                initial_delay_ms=self.settings.initial_delay_ms,
                client=self._client,
                timeout_seconds=self.settings.timeout_seconds,
                min_size=self.settings.min_size_bytes,
                on_progress=progress,
                on_attempt=count_attempt,
                sleep=self._sleep,
            )
        except PipelineError as e:
            self._finish(record, "failed", error=e.user_message)
            raise

        artifact = await asyncio.to_thread(DocumentArtifact.from_path, path)
        record.bytes_written = artifact.size
        self._finish(record, "completed")
        return artifact

    def _finish(self, record: DownloadRecord, status: str, error: str = ""):
        self._active.pop(record.transfer_id, None)
        record.status = status
        record.error = error
        record.completed_at = datetime.now(timezone.utc).isoformat()
        self._history.appendleft(record)
        if status == "completed":
            logger.info("Download %s completed: %s", record.transfer_id, record.filename)
        else:
            logger.warning("Download %s failed: %s: %s", record.transfer_id, record.filename, error)

    def get_active_list(self) -> list[dict]:
        """Return in-flight downloads as dicts for JSON serialization."""
        return [r.to_dict() for r in self._active.values()]

    def get_history(self) -> list[dict]:
        """Return finished downloads, newest first."""
        return [r.to_dict() for r in self._history]
