"""
agent/pipeline.py — Decision Pipeline

Per-message orchestration for the client feed:

    FeedMessage
      → fetch partner detail (only when a company id is configured)
      → evaluate the approval policy (reject-by-default on error/timeout)
      → approve (PUT) or reject (DELETE) through the agent API

Messages are processed one at a time, in queue order. A message id that
has already been decided in this process is skipped, so a duplicate feed
delivery can never produce a second approve/reject call.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional

from signing_agent.agent.policy import TransactionPolicy, evaluate_policy
from signing_agent.api.agent_client import AgentApiClient
from signing_agent.api.partner_client import PartnerApiClient
from signing_agent.exceptions import SigningError
from signing_agent.feed.protocol import FeedMessage
from signing_agent.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_MAX_TRACKED_IDS = 4096


@dataclass(frozen=True)
class Decision:
    """Outcome of one pipeline run."""
    message_id: str
    approved: bool
    delivered: bool


class DecisionPipeline:
    """
    Turns feed messages into approve/reject calls.

    Args:
        agent_api:       Client used for approve/reject.
        partner_api:     Client used for detail lookups (may be None when
                         no company id is configured).
        policy:          Operator-supplied decision callable.
        company_id:      Partner company; None disables detail enrichment.
        policy_timeout:  Seconds before an unfinished policy counts as reject.
        detail_timeout:  Seconds before a detail lookup is abandoned.
        max_tracked_ids: How many decided ids to remember for de-duplication.
    """

    def __init__(
        self,
        agent_api: AgentApiClient,
        partner_api: Optional[PartnerApiClient],
        policy: TransactionPolicy,
        *,
        company_id: Optional[str] = None,
        policy_timeout: Optional[float] = None,
        detail_timeout: Optional[float] = None,
        max_tracked_ids: int = DEFAULT_MAX_TRACKED_IDS,
    ) -> None:
        self._agent_api = agent_api
        self._partner_api = partner_api
        self._policy = policy
        self._company_id = company_id or None
        self._policy_timeout = policy_timeout
        self._detail_timeout = detail_timeout
        self._max_tracked_ids = max_tracked_ids
        self._decided: OrderedDict[str, bool] = OrderedDict()
        self._lock = asyncio.Lock()

    def already_decided(self, message_id: str) -> bool:
        return message_id in self._decided

    # ─────────────────────────────────────────────────────────────────────────
    # Consumer loop
    # ─────────────────────────────────────────────────────────────────────────

    async def run(self, queue: asyncio.Queue) -> None:
        """Consume the queue until cancelled. One message at a time."""
        while True:
            message = await queue.get()
            try:
                await self.process(message)
            except Exception:
                log.exception("pipeline.message_failed", message_id=message.id)
            finally:
                queue.task_done()

    # ─────────────────────────────────────────────────────────────────────────
    # Single message
    # ─────────────────────────────────────────────────────────────────────────

    async def process(self, message: FeedMessage) -> Optional[Decision]:
        """
        Decide one message. Returns None if the id was already decided.
        """
        async with self._lock:
            if self.already_decided(message.id):
                log.info("pipeline.duplicate_skipped", message_id=message.id)
                return None

            message.details = await self.fetch_details(message)
            if message.is_expired():
                log.warning(
                    "pipeline.message_expired",
                    message_id=message.id,
                    expire_time=message.expire_time,
                )

            approved = await evaluate_policy(
                self._policy, message, timeout=self._policy_timeout
            )
            self._remember(message.id, approved)

            if approved:
                delivered = await self._agent_api.approve(message.id)
            else:
                delivered = await self._agent_api.reject(message.id)

        decision = Decision(message_id=message.id, approved=approved, delivered=delivered)
        if delivered:
            log.info(
                "pipeline.decision",
                message_id=message.id,
                type=message.type,
                approved=approved,
            )
        else:
            log.error(
                "pipeline.decision_not_delivered",
                message_id=message.id,
                approved=approved,
            )
        return decision

    async def fetch_details(self, message: FeedMessage) -> Optional[Any]:
        """
        Partner detail for the message, or None when enrichment is disabled
        or the lookup fails. Never raises.
        """
        if self._company_id is None or self._partner_api is None:
            return None

        try:
            return await asyncio.wait_for(
                self._partner_api.get_transaction_details(
                    self._company_id, message.resource, message.id
                ),
                timeout=self._detail_timeout,
            )
        except asyncio.TimeoutError:
            log.warning(
                "pipeline.details_timeout",
                message_id=message.id,
                timeout_seconds=self._detail_timeout,
            )
        except SigningError as e:
            log.error("pipeline.details_unsigned", message_id=message.id, error=str(e))
        return None

    def _remember(self, message_id: str, approved: bool) -> None:
        self._decided[message_id] = approved
        while len(self._decided) > self._max_tracked_ids:
            self._decided.popitem(last=False)
