"""Tests for the probe executors."""
import asyncio
import socket

import httpx
import pytest

from servicemon.schemas.monitor import ServiceMonitor
from servicemon.services import checker as checker_module
from servicemon.services.checker import CheckerService


def make(**overrides) -> ServiceMonitor:
    fields = {"id": 1, "owner_id": "admin", "name": "Target", "timeout_seconds": 2, "interval_seconds": 10}
    fields.update(overrides)
    return ServiceMonitor(**fields)


@pytest.fixture
def mock_http(monkeypatch):
    """Route every AsyncClient the checker creates through a handler."""
    real_client = httpx.AsyncClient

    def install(handler):
        def factory(**kwargs):
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        monkeypatch.setattr(checker_module.httpx, "AsyncClient", factory)

    return install


class TestHttpProbe:
    @pytest.mark.asyncio
    async def test_reports_status_and_latency(self, mock_http):
        mock_http(lambda request: httpx.Response(204))
        outcome = await CheckerService().probe(make(url="http://svc.local/health"))
        assert outcome.status_code == 204
        assert outcome.response_time_ms is not None
        assert not outcome.connect_failed

    @pytest.mark.asyncio
    async def test_error_status_is_passed_through(self, mock_http):
        mock_http(lambda request: httpx.Response(503))
        outcome = await CheckerService().probe(make(url="http://svc.local"))
        assert outcome.status_code == 503
        assert not outcome.connect_failed
        assert outcome.error_message is None

    @pytest.mark.asyncio
    async def test_follows_redirects(self, mock_http):
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(301, headers={"Location": "http://svc.local/new"})
            return httpx.Response(200)

        mock_http(handler)
        outcome = await CheckerService().probe(make(url="http://svc.local/old"))
        assert outcome.status_code == 200

    @pytest.mark.asyncio
    async def test_scheme_is_added(self, mock_http):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200)

        mock_http(handler)
        await CheckerService().probe(make(url="svc.local:8080"))
        assert seen[0].startswith("http://svc.local:8080")

    @pytest.mark.asyncio
    async def test_connection_refused(self, mock_http):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        mock_http(handler)
        outcome = await CheckerService().probe(make(url="http://svc.local"))
        assert outcome.connect_failed
        assert outcome.response_time_ms is None
        assert "Connection refused" in outcome.error_message

    @pytest.mark.asyncio
    async def test_timeout(self, mock_http):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        mock_http(handler)
        outcome = await CheckerService().probe(make(url="http://svc.local"))
        assert outcome.connect_failed
        assert outcome.error_message == "Request timed out"

    @pytest.mark.asyncio
    async def test_slow_body_is_cut_off_at_timeout(self):
        finished = asyncio.Event()

        async def trickle(reader, writer):
            await reader.readuntil(b"\r\n\r\n")
            writer.write(b"HTTP/1.1 200 OK\r\nContent-Length: 8\r\n\r\n")
            try:
                for _ in range(8):
                    if finished.is_set():
                        break
                    await asyncio.sleep(0.6)
                    writer.write(b"x")
                    await writer.drain()
            except ConnectionError:
                pass
            finally:
                writer.close()

        server = await asyncio.start_server(trickle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        loop = asyncio.get_running_loop()
        try:
            started = loop.time()
            outcome = await CheckerService().probe(
                make(url=f"http://127.0.0.1:{port}/", timeout_seconds=1, interval_seconds=5)
            )
            elapsed = loop.time() - started
        finally:
            finished.set()
            server.close()
            await server.wait_closed()

        assert elapsed < 1.5
        assert outcome.connect_failed
        assert outcome.response_time_ms is None
        assert outcome.error_message == "Request timed out"

    @pytest.mark.asyncio
    async def test_missing_url(self):
        outcome = await CheckerService().probe(make(url=None))
        assert outcome.connect_failed
        assert outcome.error_message == "No URL configured"


class TestTcpProbe:
    @pytest.mark.asyncio
    async def test_open_port(self):
        async def accept(reader, writer):
            writer.close()

        server = await asyncio.start_server(accept, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            outcome = await CheckerService().probe(make(type="tcp", url="127.0.0.1", port=port))
        finally:
            server.close()
            await server.wait_closed()

        assert not outcome.connect_failed
        assert outcome.status_code is None
        assert outcome.response_time_ms is not None

    @pytest.mark.asyncio
    async def test_closed_port(self):
        sock = socket.socket()
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.close()

        outcome = await CheckerService().probe(make(type="tcp", url="127.0.0.1", port=port))
        assert outcome.connect_failed
        assert outcome.response_time_ms is None
        assert outcome.error_message

    @pytest.mark.asyncio
    async def test_missing_host(self):
        outcome = await CheckerService().probe(make(type="tcp", url=None, port=22))
        assert outcome.connect_failed
        assert outcome.error_message == "No host configured"


class TestOtherProbes:
    @pytest.mark.asyncio
    async def test_ping_without_host(self):
        outcome = await CheckerService().probe(make(type="ping", url=""))
        assert outcome.connect_failed
        assert outcome.error_message == "No host configured"

    @pytest.mark.asyncio
    async def test_unknown_type(self):
        outcome = await CheckerService().probe(make(type="smtp", url="mail.local"))
        assert outcome.connect_failed
        assert outcome.error_message == "Unknown type: smtp"
