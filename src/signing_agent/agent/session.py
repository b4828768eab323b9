"""
agent/session.py — Agent Session

Top-level orchestrator for one signing agent:

    initialize()
      → register_or_lookup()   GET /api/v1/client, POST /api/v1/register if empty
      → start feed             FeedConnectionManager → asyncio.Queue
      → start pipeline         DecisionPipeline consumes the queue

The session owns the AgentIdentity. Its agent_id is written once, by the
first successful registration or lookup, and never changes afterwards.

Usage:
    async def policy(msg: FeedMessage) -> bool:
        return msg.details is not None

    async with SigningAgentClient("test-agent", pem, api_key, policy) as agent:
        agent_id = await agent.initialize()
        await agent.wait_closed()
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from signing_agent.agent.pipeline import DecisionPipeline
from signing_agent.agent.policy import TransactionPolicy
from signing_agent.api.agent_client import AgentApiClient
from signing_agent.api.partner_client import (
    DEFAULT_API_BASE_PATH,
    DEFAULT_PARTNER_URL,
    PartnerApiClient,
)
from signing_agent.crypto.signer import RequestSigner
from signing_agent.exceptions import RegistrationError, SigningAgentError
from signing_agent.feed.feed_client import (
    DEFAULT_PING_INTERVAL,
    DEFAULT_RECONNECT_DELAY,
    ConnectFactory,
    ConnectionState,
    FeedConnectionManager,
)
from signing_agent.observability.logger import bind_agent, clear_agent, get_logger

log = get_logger(__name__)


@dataclass
class AgentIdentity:
    name: str
    private_key_pem: bytes = field(repr=False)
    api_key: str = field(repr=False)
    company_id: Optional[str] = None
    agent_id: Optional[str] = None

    @property
    def private_key_pem_b64(self) -> str:
        return base64.b64encode(self.private_key_pem).decode("ascii")

    def assign_agent_id(self, agent_id: str) -> None:
        if self.agent_id is not None and self.agent_id != agent_id:
            raise RegistrationError(
                f"Agent id already assigned ({self.agent_id}); "
                f"server returned a different id ({agent_id})."
            )
        self.agent_id = agent_id


def _agent_id_from_entry(entry: Any) -> Optional[str]:
    """The client list holds plain ids; tolerate objects carrying one."""
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, dict):
        for key in ("agentId", "agentID", "id"):
            value = entry.get(key)
            if isinstance(value, str) and value:
                return value
    return None


class SigningAgentClient:
    """
    Registers with the agent API and answers its feed with policy decisions.

    Everything is configured at construction; nothing is persisted locally.
    `transport` and `feed_connect` replace the HTTP and WebSocket layers
    (tests, proxies).
    """

    def __init__(
        self,
        agent_name: str,
        private_key_pem: bytes,
        api_key: str,
        policy: TransactionPolicy,
        *,
        company_id: Optional[str] = None,
        host: str = "localhost",
        port: int = 8007,
        partner_base_url: str = DEFAULT_PARTNER_URL,
        partner_api_base_path: str = DEFAULT_API_BASE_PATH,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        ping_interval: Optional[float] = DEFAULT_PING_INTERVAL,
        request_timeout: float = 30.0,
        partner_timeout: Optional[float] = None,
        policy_timeout: Optional[float] = None,
        detail_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        feed_connect: Optional[ConnectFactory] = None,
    ) -> None:
        self._identity = AgentIdentity(
            name=agent_name,
            private_key_pem=private_key_pem,
            api_key=api_key,
            company_id=company_id or None,
        )

        self._agent_api = AgentApiClient(
            host, port, timeout=request_timeout, transport=transport
        )
        self._partner_api = PartnerApiClient(
            api_key,
            RequestSigner(private_key_pem),
            base_url=partner_base_url,
            api_base_path=partner_api_base_path,
            timeout=partner_timeout or request_timeout,
            transport=transport,
        )

        self._queue: asyncio.Queue = asyncio.Queue()
        self._feed = FeedConnectionManager(
            self._agent_api.feed_url,
            self._queue,
            reconnect_delay=reconnect_delay,
            ping_interval=ping_interval,
            connect=feed_connect,
        )
        self._pipeline = DecisionPipeline(
            self._agent_api,
            self._partner_api,
            policy,
            company_id=self._identity.company_id,
            policy_timeout=policy_timeout,
            detail_timeout=detail_timeout,
        )

        self._pipeline_task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()

    @classmethod
    def from_settings(
        cls, settings: Any, policy: TransactionPolicy, **overrides: Any
    ) -> "SigningAgentClient":
        """Build a client from Settings, reading the PEM from disk."""
        kwargs: dict[str, Any] = dict(
            company_id=settings.effective_company_id,
            host=settings.service.host,
            port=settings.service.port,
            partner_base_url=settings.partner.base_url,
            partner_api_base_path=settings.partner.api_base_path,
            reconnect_delay=settings.feed.reconnect_delay_seconds,
            ping_interval=settings.feed.ping_interval_seconds,
            request_timeout=settings.service.request_timeout_seconds,
            partner_timeout=settings.partner.request_timeout_seconds,
            policy_timeout=settings.policy.timeout_seconds,
            detail_timeout=settings.policy.detail_timeout_seconds,
        )
        kwargs.update(overrides)
        return cls(
            settings.agent.name,
            settings.read_private_key(),
            settings.api_key or "",
            policy,
            **kwargs,
        )

    async def __aenter__(self) -> "SigningAgentClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Read-only state
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def agent_id(self) -> Optional[str]:
        return self._identity.agent_id

    @property
    def name(self) -> str:
        return self._identity.name

    @property
    def company_id(self) -> Optional[str]:
        return self._identity.company_id

    @property
    def connection_state(self) -> ConnectionState:
        return self._feed.state

    @property
    def is_running(self) -> bool:
        return self._pipeline_task is not None and not self._pipeline_task.done()

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def register_or_lookup(self) -> Optional[str]:
        """
        Return this key's agent id, registering a new agent if none exists.
        None means the agent could not be looked up or registered.
        """
        self._ensure_open()
        agents = await self._agent_api.list_agents()
        if agents is None:
            log.error("session.lookup_failed")
            return None

        if agents:
            agent_id = _agent_id_from_entry(agents[0])
            if agent_id:
                log.info("session.agent_found", agent_id=agent_id)
                return agent_id
            log.warning("session.unreadable_agent_entry")

        result = await self._agent_api.register(
            self._identity.name,
            self._identity.api_key,
            self._identity.private_key_pem_b64,
        )
        agent_id = _agent_id_from_entry(result)
        if agent_id is None:
            log.error("session.register_failed", agent_name=self._identity.name)
            return None

        log.info("session.agent_registered", agent_id=agent_id)
        return agent_id

    async def initialize(self) -> str:
        """
        Register (or look up) the agent, then start the feed and pipeline.

        Raises:
            RegistrationError: no agent id could be obtained; the feed is
                               not started.
            SigningAgentError: the session was closed. A closed session
                               cannot be reused; build a new client.
        """
        self._ensure_open()
        if self.is_running and self.agent_id is not None:
            return self.agent_id

        agent_id = await self.register_or_lookup()
        if agent_id is None:
            raise RegistrationError(
                f"Could not register agent '{self._identity.name}' "
                f"with {self._agent_api.base_url}."
            )
        self._identity.assign_agent_id(agent_id)
        bind_agent(agent_id, self._identity.name)

        self._pipeline_task = asyncio.create_task(self._pipeline.run(self._queue))
        await self._feed.connect()

        log.info(
            "session.started",
            detail_enrichment=self._identity.company_id is not None,
        )
        return agent_id

    def _ensure_open(self) -> None:
        if self._closed.is_set():
            raise SigningAgentError(
                f"Session for agent '{self._identity.name}' is closed."
            )

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def close(self) -> None:
        await self._feed.close()

        if self._pipeline_task is not None:
            self._pipeline_task.cancel()
            try:
                await self._pipeline_task
            except asyncio.CancelledError:
                pass
            self._pipeline_task = None

        await self._agent_api.aclose()
        await self._partner_api.aclose()

        if not self._closed.is_set():
            log.info("session.closed")
            self._closed.set()
        clear_agent()
