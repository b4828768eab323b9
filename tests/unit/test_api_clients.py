"""
tests/unit/test_api_clients.py — Agent API and Partner API Client Tests

Covers:
  - JSON content type, body only when present
  - non-200, transport error and bad JSON all come back as None
  - agent API paths and verbs for list/register/approve/reject/healthcheck
  - partner calls carry x-api-key, x-timestamp and a verifiable x-sign
  - the signed body is byte-for-byte the transmitted body
  - signing errors propagate and nothing is sent
"""

from __future__ import annotations

import json

import httpx
import pytest

from signing_agent.api.agent_client import AgentApiClient
from signing_agent.api.partner_client import PartnerApiClient
from signing_agent.crypto.signer import RequestSigner, verify_signature
from signing_agent.exceptions import MissingKeyError


def _recorder(responses=None):
    """MockTransport handler that records requests and replies from a map."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if responses is None:
            return httpx.Response(200, json={"ok": True})
        return responses(request)

    return seen, httpx.MockTransport(handler)


# ─────────────────────────────────────────────────────────────────────────────
# Agent API
# ─────────────────────────────────────────────────────────────────────────────

class TestAgentApiClient:
    @pytest.mark.asyncio
    async def test_call_without_body(self):
        seen, transport = _recorder()
        async with AgentApiClient("127.0.0.1", 8007, transport=transport) as api:
            result = await api.call("GET", "/api/v1/client")
        assert result == {"ok": True}
        req = seen[0]
        assert str(req.url) == "http://127.0.0.1:8007/api/v1/client"
        assert req.headers["content-type"] == "application/json"
        assert req.content == b""

    @pytest.mark.asyncio
    async def test_call_with_body_is_json(self):
        seen, transport = _recorder()
        async with AgentApiClient(transport=transport) as api:
            await api.call("POST", "/x", {"name": "a"})
        assert json.loads(seen[0].content) == {"name": "a"}

    @pytest.mark.asyncio
    async def test_non_200_is_none(self):
        _, transport = _recorder(lambda r: httpx.Response(500, json={"err": 1}))
        async with AgentApiClient(transport=transport) as api:
            assert await api.call("GET", "/api/v1/client") is None

    @pytest.mark.asyncio
    async def test_201_is_not_success(self):
        _, transport = _recorder(lambda r: httpx.Response(201, json={}))
        async with AgentApiClient(transport=transport) as api:
            assert await api.call("POST", "/api/v1/register", {}) is None

    @pytest.mark.asyncio
    async def test_transport_error_is_none(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with AgentApiClient(transport=httpx.MockTransport(boom)) as api:
            assert await api.call("GET", "/api/v1/client") is None

    @pytest.mark.asyncio
    async def test_invalid_json_is_none(self):
        _, transport = _recorder(lambda r: httpx.Response(200, content=b"<html>"))
        async with AgentApiClient(transport=transport) as api:
            assert await api.call("GET", "/api/v1/client") is None

    @pytest.mark.asyncio
    async def test_empty_200_body_is_empty_dict(self):
        _, transport = _recorder(lambda r: httpx.Response(200))
        async with AgentApiClient(transport=transport) as api:
            assert await api.call("PUT", "/api/v1/client/action/tx1") == {}

    @pytest.mark.asyncio
    async def test_register_payload(self):
        seen, transport = _recorder(lambda r: httpx.Response(200, json={"agentId": "A1"}))
        async with AgentApiClient(transport=transport) as api:
            result = await api.register("test-agent", "key-123", "UEVN")
        assert result == {"agentId": "A1"}
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/v1/register"
        assert json.loads(seen[0].content) == {
            "name": "test-agent",
            "apikey": "key-123",
            "base64privatekey": "UEVN",
        }

    @pytest.mark.asyncio
    async def test_list_agents(self):
        _, transport = _recorder(lambda r: httpx.Response(200, json=["A1"]))
        async with AgentApiClient(transport=transport) as api:
            assert await api.list_agents() == ["A1"]

    @pytest.mark.asyncio
    async def test_list_agents_rejects_non_list(self):
        _, transport = _recorder(lambda r: httpx.Response(200, json={"agents": []}))
        async with AgentApiClient(transport=transport) as api:
            assert await api.list_agents() is None

    @pytest.mark.asyncio
    async def test_approve_and_reject_verbs(self):
        seen, transport = _recorder()
        async with AgentApiClient(transport=transport) as api:
            assert await api.approve("tx1") is True
            assert await api.reject("tx2") is True
        assert [(r.method, r.url.path) for r in seen] == [
            ("PUT", "/api/v1/client/action/tx1"),
            ("DELETE", "/api/v1/client/action/tx2"),
        ]

    @pytest.mark.asyncio
    async def test_approve_failure_is_false(self):
        _, transport = _recorder(lambda r: httpx.Response(404))
        async with AgentApiClient(transport=transport) as api:
            assert await api.approve("tx1") is False

    @pytest.mark.asyncio
    async def test_healthcheck(self):
        seen, transport = _recorder(lambda r: httpx.Response(200, json={"buildType": "dev"}))
        async with AgentApiClient(transport=transport) as api:
            assert await api.healthcheck() == {"buildType": "dev"}
        assert seen[0].url.path == "/api/v1/healthcheck"

    def test_feed_url(self):
        api = AgentApiClient("10.0.0.5", 9000)
        assert api.feed_url == "ws://10.0.0.5:9000/api/v1/client/feed"
        assert api.base_url == "http://10.0.0.5:9000"


# ─────────────────────────────────────────────────────────────────────────────
# Partner API
# ─────────────────────────────────────────────────────────────────────────────

class TestPartnerApiClient:
    def _client(self, pem, transport, **kw):
        return PartnerApiClient(
            "partner-key",
            RequestSigner(pem),
            base_url="https://partner.example.com",
            transport=transport,
            **kw,
        )

    def test_transaction_url(self, private_key_pem):
        client = self._client(private_key_pem, None)
        assert client.transaction_url("c1", "withdraw", "tx1") == (
            "https://partner.example.com/api/v1/p/company/c1/withdraw/tx1"
        )

    def test_custom_base_path(self, private_key_pem):
        client = self._client(private_key_pem, None, api_base_path="/v2/")
        assert client.transaction_url("c1", "transfer", "tx1") == (
            "https://partner.example.com/v2/company/c1/transfer/tx1"
        )

    @pytest.mark.asyncio
    async def test_get_carries_verifiable_signature(self, private_key_pem, public_key):
        seen, transport = _recorder(lambda r: httpx.Response(200, json={"status": "ok"}))
        client = self._client(private_key_pem, transport)
        async with client:
            details = await client.get_transaction_details("c1", "transfer", "tx1")

        assert details == {"status": "ok"}
        req = seen[0]
        assert req.method == "GET"
        assert req.headers["x-api-key"] == "partner-key"
        assert req.headers["content-type"] == "application/json"
        assert verify_signature(
            public_key,
            req.headers["x-sign"],
            req.headers["x-timestamp"],
            str(req.url),
        )

    @pytest.mark.asyncio
    async def test_signed_body_is_transmitted_body(self, private_key_pem, public_key):
        seen, transport = _recorder()
        client = self._client(private_key_pem, transport)
        url = "https://partner.example.com/api/v1/p/echo"
        async with client:
            await client.call("POST", url, {"amount": 500, "asset": "BTC"})

        req = seen[0]
        sent = req.content.decode()
        assert sent == '{"amount":500,"asset":"BTC"}'
        assert verify_signature(public_key, req.headers["x-sign"], req.headers["x-timestamp"], url, sent)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["hello", {"amount": 500}, [1, "two"], 0])
    async def test_same_body_bytes_as_agent_client(self, private_key_pem, public_key, body):
        partner_seen, partner_transport = _recorder()
        agent_seen, agent_transport = _recorder()
        url = "https://partner.example.com/api/v1/p/echo"

        async with self._client(private_key_pem, partner_transport) as partner:
            await partner.call("POST", url, body)
        async with AgentApiClient(transport=agent_transport) as agent:
            await agent.call("POST", "/echo", body)

        sent = partner_seen[0].content
        assert sent == agent_seen[0].content
        assert json.loads(sent) == body
        req = partner_seen[0]
        assert verify_signature(
            public_key, req.headers["x-sign"], req.headers["x-timestamp"], url, sent.decode()
        )

    @pytest.mark.asyncio
    async def test_non_200_is_none(self, private_key_pem):
        _, transport = _recorder(lambda r: httpx.Response(403))
        client = self._client(private_key_pem, transport)
        async with client:
            assert await client.get_transaction_details("c1", "transfer", "tx1") is None

    @pytest.mark.asyncio
    async def test_missing_key_propagates_and_sends_nothing(self):
        seen, transport = _recorder()
        client = self._client(None, transport)
        async with client:
            with pytest.raises(MissingKeyError):
                await client.get_transaction_details("c1", "transfer", "tx1")
        assert seen == []
