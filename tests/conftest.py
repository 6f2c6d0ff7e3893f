import httpx
import pytest

from search_gateway_mcp.backend import BackendClient
from search_gateway_mcp.config import Config

BACKEND_URL = "http://backend.test"
LOGIN_URL = f"{BACKEND_URL}/auth/login"


class FakeBackend:
    """Scripted backend for httpx.MockTransport.

    Each (method, path) route holds a queue of responses; the last one
    repeats. An item is a (status, json_body) pair, an exception to raise,
    or a callable taking the request.
    """

    def __init__(self):
        self.requests = []
        self.routes = {}

    def add(self, method, path, *responses):
        self.routes.setdefault((method, path), []).extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            raise AssertionError(f"unexpected backend call {request.method} {request.url.path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        status, body = item
        return httpx.Response(status, json=body)

    def calls(self, path):
        return [r for r in self.requests if r.url.path == path]


class FakeSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, delay):
        self.calls.append(delay)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def cfg():
    return Config(backend_url=BACKEND_URL, mcp_secret_token="shared-secret", _env_file=None)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def sleep():
    return FakeSleep()


@pytest.fixture
def make_client(backend):
    def make(config):
        transport = httpx.MockTransport(backend.handler)
        return BackendClient(config, httpx.AsyncClient(transport=transport))

    return make


@pytest.fixture
def client(cfg, make_client):
    return make_client(cfg)
