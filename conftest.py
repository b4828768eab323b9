"""
Test conftest — isolate agent secrets from the developer's or CI
environment, and provide the shared fakes every suite leans on:

  - an RSA key pair (PKCS#1 PEM, as the agent API expects)
  - FakeFeedConnection / FakeFeedServer standing in for websockets.connect
  - FakeServices, a stateful httpx.MockTransport handler for both the
    agent API and the partner service
  - wait_until, a polling helper for background tasks
"""
import asyncio
import json
from urllib.parse import urlsplit

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

_ENV_VARS = [
    "AGENT_API_KEY",
    "AGENT_COMPANY_ID",
    "SIGNING_AGENT_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_agent_env(monkeypatch):
    """Remove agent env vars for every test so Settings() behaves as if no
    secrets are present unless the test provides them. Also disables .env
    file loading so a local .env cannot leak real credentials into tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import signing_agent.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    monkeypatch.setattr(settings_module, "_singleton", None)


# ─────────────────────────────────────────────────────────────────────────────
# Keys
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key) -> bytes:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def public_key(rsa_private_key):
    return rsa_private_key.public_key()


# ─────────────────────────────────────────────────────────────────────────────
# Feed fakes
# ─────────────────────────────────────────────────────────────────────────────

class FakeFeedConnection:
    """Yields the given frames, then either ends (server closed) or blocks
    until close() is called."""

    def __init__(self, frames=(), *, stay_open=False):
        self._frames = list(frames)
        self._stay_open = stay_open
        self._closed = asyncio.Event()
        self.close_calls = 0

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self._frames:
            yield frame
            await asyncio.sleep(0)
        if self._stay_open:
            await self._closed.wait()

    async def close(self):
        self.close_calls += 1
        self._closed.set()


class FakeFeedServer:
    """Connection factory: hands out the queued connections in order (an
    exception in the queue is raised instead), then open idle ones."""

    def __init__(self, connections=()):
        self._connections = list(connections)
        self.dials: list[tuple[str, dict]] = []

    @property
    def dial_count(self) -> int:
        return len(self.dials)

    async def connect(self, url, **kwargs):
        self.dials.append((url, kwargs))
        if not self._connections:
            return FakeFeedConnection(stay_open=True)
        conn = self._connections.pop(0)
        if isinstance(conn, BaseException):
            raise conn
        return conn


@pytest.fixture
def feed_connection():
    return FakeFeedConnection


@pytest.fixture
def feed_server():
    return FakeFeedServer


# ─────────────────────────────────────────────────────────────────────────────
# HTTP fakes
# ─────────────────────────────────────────────────────────────────────────────

class FakeServices:
    """
    Stateful stand-in for the agent API (http://localhost:8007) and the
    partner service (any other host). Records every request.
    """

    def __init__(self, *, details=None, partner_status=200, action_status=200,
                 register_status=200, list_status=200):
        self.agents: list[str] = []
        self.details = details if details is not None else {}
        self.partner_status = partner_status
        self.action_status = action_status
        self.register_status = register_status
        self.list_status = list_status
        self.requests: list[httpx.Request] = []

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def method_calls(self, method: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method]

    @property
    def partner_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if "/company/" in r.url.path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = urlsplit(str(request.url)).path

        if "/company/" in path:
            if self.partner_status != 200:
                return httpx.Response(self.partner_status, json={"error": "nope"})
            return httpx.Response(200, json=self.details)

        if request.method == "GET" and path == "/api/v1/healthcheck":
            return httpx.Response(200, json={"buildVersion": "v1.0.0", "buildType": "dev"})

        if request.method == "GET" and path == "/api/v1/client":
            if self.list_status != 200:
                return httpx.Response(self.list_status)
            return httpx.Response(200, json=list(self.agents))

        if request.method == "POST" and path == "/api/v1/register":
            if self.register_status != 200:
                return httpx.Response(self.register_status)
            body = json.loads(request.content)
            agent_id = f"agent-{len(self.agents) + 1}-{body['name']}"
            self.agents.append(agent_id)
            return httpx.Response(200, json={"agentId": agent_id})

        if path.startswith("/api/v1/client/action/") and request.method in ("PUT", "DELETE"):
            if self.action_status != 200:
                return httpx.Response(self.action_status)
            return httpx.Response(200, json={})

        return httpx.Response(404)


@pytest.fixture
def services():
    return FakeServices


# ─────────────────────────────────────────────────────────────────────────────
# Async polling
# ─────────────────────────────────────────────────────────────────────────────

async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    return _wait_until
