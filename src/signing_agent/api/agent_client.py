"""
api/agent_client.py — Primary Service (Agent API) Client

Request executor for the custody/signing service the agent registers with.
Calls are not signed; the service trusts this client by network/API-key
context only. Approve and reject are best-effort notifications: a failure
is returned as False and logged, never raised.

Usage:
    async with AgentApiClient("localhost", 8007) as api:
        agents = await api.list_agents()
        await api.approve("2IXwq4klvWbnPf1YaAc1XD85jJX")
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx

from signing_agent.api.base import JsonHttpClient
from signing_agent.crypto.signer import serialize_body
from signing_agent.observability.logger import get_logger

log = get_logger(__name__)

API_PREFIX = "/api/v1"


class AgentApiClient(JsonHttpClient):
    """Async client for the agent API at http://{host}:{port}."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8007,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(timeout=timeout, transport=transport)
        self._host = host
        self._port = port

    @property
    def base_url(self) -> str:
        return f"http://{self._host}:{self._port}"

    @property
    def feed_url(self) -> str:
        return f"ws://{self._host}:{self._port}{API_PREFIX}/client/feed"

    # ─────────────────────────────────────────────────────────────────────────
    # Generic call
    # ─────────────────────────────────────────────────────────────────────────

    async def call(self, method: str, path: str, body: Any = None) -> Optional[Any]:
        """
        Execute one request against the agent API.

        The body is serialized to JSON only when it is not None. Returns the
        decoded JSON response, or None on any failure.
        """
        content = serialize_body(body) if body is not None else None
        return await self._send(method, self.base_url + path, content=content)

    # ─────────────────────────────────────────────────────────────────────────
    # Operations
    # ─────────────────────────────────────────────────────────────────────────

    async def healthcheck(self) -> Optional[Any]:
        return await self.call("GET", f"{API_PREFIX}/healthcheck")

    async def list_agents(self) -> Optional[list]:
        """Existing agent(s) registered for this API key, or None on failure."""
        result = await self.call("GET", f"{API_PREFIX}/client")
        if result is None:
            return None
        if not isinstance(result, list):
            log.warning("agent_api.unexpected_client_list", type=type(result).__name__)
            return None
        return result

    async def register(self, name: str, api_key: str, b64_private_key: str) -> Optional[Any]:
        return await self.call(
            "POST",
            f"{API_PREFIX}/register",
            {
                "name": name,
                "apikey": api_key,
                "base64privatekey": b64_private_key,
            },
        )

    async def approve(self, action_id: str) -> bool:
        result = await self.call("PUT", self._action_path(action_id))
        return result is not None

    async def reject(self, action_id: str) -> bool:
        result = await self.call("DELETE", self._action_path(action_id))
        return result is not None

    @staticmethod
    def _action_path(action_id: str) -> str:
        return f"{API_PREFIX}/client/action/{quote(action_id, safe='')}"
