import asyncio

import httpx
import pytest

from core.errors import TransferAuthFailure, TransferExhausted
from core.file_transfer import (
    TransferEngine,
    TransferSettings,
    backoff_seconds,
    fetch_with_retry,
    validate_document,
)

from tests.conftest import HTML_ERROR_PAGE, PDF_BYTES

URL = "http://api.test/api/reports/42/pdf"


class Server:
    """Scripted responses for httpx.MockTransport, one per request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, int):
            return httpx.Response(item)
        return httpx.Response(200, content=item)


def fetch(server: Server, destination, **kwargs):
    sleeps: list[float] = []

    async def fake_sleep(seconds: float):
        sleeps.append(seconds)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            return await fetch_with_retry(URL, destination, {}, client=client, sleep=fake_sleep, **kwargs)

    return asyncio.run(go()), sleeps


def test_fails_twice_then_succeeds(tmp_path):
    server = Server(503, 500, PDF_BYTES)
    path, sleeps = fetch(server, tmp_path / "r.pdf")
    assert len(server.requests) == 3
    assert sleeps == [1.0, 2.0]
    assert path.read_bytes() == PDF_BYTES


def test_unauthorized_is_terminal(tmp_path):
    server = Server(401, PDF_BYTES)
    with pytest.raises(TransferAuthFailure):
        fetch(server, tmp_path / "r.pdf")
    assert len(server.requests) == 1
    assert not (tmp_path / "r.pdf").exists()


def test_html_payload_is_retried(tmp_path):
    server = Server(HTML_ERROR_PAGE, PDF_BYTES)
    path, sleeps = fetch(server, tmp_path / "r.pdf")
    assert len(server.requests) == 2
    assert sleeps == [1.0]
    assert path.read_bytes()[:4] == b"%PDF"


def test_exhausted_budget(tmp_path):
    server = Server(HTML_ERROR_PAGE)
    sleeps: list[float] = []

    async def fake_sleep(seconds: float):
        sleeps.append(seconds)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            await fetch_with_retry(URL, tmp_path / "r.pdf", {}, client=client, sleep=fake_sleep)

    with pytest.raises(TransferExhausted) as exc_info:
        asyncio.run(go())

    error = exc_info.value
    assert error.attempts == 3
    assert error.text_fallback
    assert "not a PDF" in error.last_cause
    assert len(server.requests) == 3
    assert sleeps == [1.0, 2.0]
    assert not (tmp_path / "r.pdf").exists()
    assert list(tmp_path.iterdir()) == []


@pytest.mark.parametrize("failure", [503, 401, HTML_ERROR_PAGE])
def test_failed_download_keeps_earlier_copy(tmp_path, failure):
    earlier = b"%PDF-1.7 earlier copy\n" + b"%" * 1200
    destination = tmp_path / "r.pdf"
    destination.write_bytes(earlier)

    with pytest.raises((TransferExhausted, TransferAuthFailure)):
        fetch(Server(failure), destination)

    assert destination.read_bytes() == earlier
    assert not (tmp_path / "r.pdf.part").exists()


def test_validated_download_replaces_earlier_copy(tmp_path):
    destination = tmp_path / "r.pdf"
    destination.write_bytes(b"%PDF-1.7 earlier copy\n" + b"%" * 1200)

    path, _sleeps = fetch(Server(HTML_ERROR_PAGE, PDF_BYTES), destination)

    assert path == destination
    assert destination.read_bytes() == PDF_BYTES
    assert sorted(p.name for p in tmp_path.iterdir()) == ["r.pdf"]


def test_small_payload_rejected(tmp_path):
    server = Server(b"%PDF-1.4 tiny", PDF_BYTES)
    _path, sleeps = fetch(server, tmp_path / "r.pdf", initial_delay_ms=250)
    assert len(server.requests) == 2
    assert sleeps == [0.25]


def test_timeout_counts_as_attempt(tmp_path):
    timeout = httpx.ReadTimeout("timed out")
    server = Server(timeout, PDF_BYTES)
    path, sleeps = fetch(server, tmp_path / "r.pdf")
    assert len(server.requests) == 2
    assert path.exists()


def test_single_attempt_does_not_sleep(tmp_path):
    server = Server(500)
    sleeps: list[float] = []

    async def fake_sleep(seconds: float):
        sleeps.append(seconds)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            await fetch_with_retry(URL, tmp_path / "r.pdf", {}, max_attempts=1,
                                   client=client, sleep=fake_sleep)

    with pytest.raises(TransferExhausted) as exc_info:
        asyncio.run(go())
    assert exc_info.value.last_cause == "HTTP 500"
    assert sleeps == []


def test_backoff_doubles():
    assert [backoff_seconds(n, 1000) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]


def test_validate_document(tmp_path):
    empty = tmp_path / "empty.pdf"
    empty.write_bytes(b"")
    good = tmp_path / "good.pdf"
    good.write_bytes(PDF_BYTES)
    assert "does not exist" in validate_document(tmp_path / "missing.pdf")
    assert "empty" in validate_document(empty)
    assert validate_document(good) is None


def test_engine_builds_request_and_records_history(tmp_path):
    server = Server(PDF_BYTES)
    progress = []

    async def on_progress(record):
        progress.append(record.bytes_written)

    async def go():
        settings = TransferSettings(base_url="http://api.test/api/", token="secret")
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            engine = TransferEngine(settings, tmp_path / "cache", on_progress=on_progress, client=client)
            artifact = await engine.download_report("42", "001_Pool_A.pdf")
            return engine, artifact

    engine, artifact = asyncio.run(go())

    request = server.requests[0]
    assert str(request.url) == URL
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.headers["Accept"] == "application/pdf"
    assert artifact.filename == "001_Pool_A.pdf"
    assert artifact.is_valid
    assert progress and progress[-1] == len(PDF_BYTES)

    history = engine.get_history()
    assert history[0]["status"] == "completed"
    assert history[0]["attempts"] == 1
    assert engine.get_active_list() == []


def test_engine_records_failure(tmp_path):
    server = Server(401)

    async def go():
        settings = TransferSettings(base_url="http://api.test/api")
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            engine = TransferEngine(settings, tmp_path / "cache", client=client)
            with pytest.raises(TransferAuthFailure):
                await engine.download_report("42")
            return engine

    engine = asyncio.run(go())
    assert "Authorization" not in server.requests[0].headers
    assert engine.get_history()[0]["status"] == "failed"
