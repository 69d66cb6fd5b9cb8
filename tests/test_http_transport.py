import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from errors import TransportError
from transports.http import HttpTransport


class ResourceServer:
    """Minimal /api/resources endpoint that records what it receives."""

    def __init__(self):
        self.requests = []
        self.existing = {"/taken.bin"}

    async def handle(self, request: web.Request) -> web.Response:
        path = "/" + request.match_info["path"]
        body = await request.read()
        self.requests.append({
            "path": path,
            "raw_path": request.raw_path,
            "override": request.query.get("override"),
            "auth": request.headers.get("X-Auth"),
            "body": body,
        })
        if path in self.existing and request.query.get("override") != "true":
            return web.Response(status=409, text="409 Conflict")
        return web.Response(status=200)


@pytest_asyncio.fixture
async def server():
    resources = ResourceServer()
    app = web.Application()
    app.router.add_post("/api/resources/{path:.*}", resources.handle)
    test_server = TestServer(app)
    await test_server.start_server()
    resources.url = str(test_server.make_url("")).rstrip("/")
    yield resources
    await test_server.close()


@pytest.fixture
def local_file(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_bytes(b"0123456789")
    return path


def test_resource_urls():
    transport = HttpTransport("http://files.local/")
    assert transport.resource_url("/docs/a b.txt") == "http://files.local/api/resources/docs/a%20b.txt"
    assert transport.resource_url("/docs/", is_dir=True) == "http://files.local/api/resources/docs/"


@pytest.mark.asyncio
async def test_upload_streams_file_and_reports_progress(server, local_file):
    progress = []
    async with HttpTransport(server.url, token="tok", chunk_size=4) as transport:
        await transport.upload_file("/docs/notes.txt", str(local_file), False, progress.append)

    request = server.requests[0]
    assert request["path"] == "/docs/notes.txt"
    assert request["override"] == "false"
    assert request["auth"] == "tok"
    assert request["body"] == b"0123456789"
    assert progress == [4, 8, 10]


@pytest.mark.asyncio
async def test_create_directory_uses_trailing_slash(server):
    async with HttpTransport(server.url) as transport:
        await transport.create_directory("/docs/new")

    request = server.requests[0]
    assert request["raw_path"] == "/api/resources/docs/new/"
    assert request["body"] == b""
    assert request["auth"] is None


@pytest.mark.asyncio
async def test_conflict_raises_transport_error(server, tmp_path):
    local = tmp_path / "taken.bin"
    local.write_bytes(b"x")
    async with HttpTransport(server.url) as transport:
        with pytest.raises(TransportError) as exc_info:
            await transport.upload_file("/taken.bin", str(local), False, lambda n: None)
        # overwrite goes through
        await transport.upload_file("/taken.bin", str(local), True, lambda n: None)

    assert exc_info.value.code == 409
    assert "Conflict" in exc_info.value.message
    assert server.requests[-1]["override"] == "true"
