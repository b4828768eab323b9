"""
agent/policy.py — Approval Policy Helpers

A policy is any callable taking the enriched FeedMessage and returning a
bool (or an awaitable of one). True approves, False rejects. The rules
themselves belong to the operator; this module only defines how a policy
is invoked and ships one simple policy for the CLI.

Invocation is reject-by-default: an exception or a timeout inside the
policy never turns into an approval.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from signing_agent.feed.protocol import FeedMessage
from signing_agent.observability.logger import get_logger

log = get_logger(__name__)

TransactionPolicy = Callable[[FeedMessage], Union[Awaitable[bool], bool]]


class _PolicyRaised(Exception):
    """Carries an exception raised by the policy itself past wait_for()."""


async def _call_policy(policy: TransactionPolicy, message: FeedMessage) -> Any:
    try:
        result = policy(message)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        raise _PolicyRaised() from e
    return result


async def evaluate_policy(
    policy: TransactionPolicy,
    message: FeedMessage,
    timeout: Optional[float] = None,
) -> bool:
    """
    Run the policy for one message and return its decision.

    Returns False (reject) if the policy raises or exceeds `timeout`.
    A TimeoutError raised inside the policy counts as a policy error,
    not as the timeout.
    """
    try:
        result = await asyncio.wait_for(_call_policy(policy, message), timeout=timeout)
    except _PolicyRaised as wrapped:
        e = wrapped.__cause__
        log.error(
            "policy.error",
            message_id=message.id,
            error=f"{type(e).__name__}: {e}",
            decision="reject",
            exc_info=e,
        )
        return False
    except asyncio.TimeoutError:
        log.error(
            "policy.timeout",
            message_id=message.id,
            timeout_seconds=timeout,
            decision="reject",
        )
        return False

    return bool(result)


class AmountLimitPolicy:
    """
    Approve when the partner-reported net amount is below a limit.

    Reads ``details["statusDetails"]["netAmount"]``. Anything that cannot be
    read as a number (missing details included) is rejected.
    """

    def __init__(self, max_net_amount: float) -> None:
        self.max_net_amount = max_net_amount

    @staticmethod
    def net_amount(message: FeedMessage) -> Optional[float]:
        details = message.details
        if not isinstance(details, dict):
            return None
        status = details.get("statusDetails")
        if not isinstance(status, dict):
            return None
        amount = status.get("netAmount")
        if isinstance(amount, bool):
            return None
        try:
            return float(amount)
        except (TypeError, ValueError):
            return None

    async def __call__(self, message: FeedMessage) -> bool:
        amount = self.net_amount(message)
        if amount is None:
            log.info("policy.amount_missing", message_id=message.id, decision="reject")
            return False

        approved = amount < self.max_net_amount
        log.info(
            "policy.amount_checked",
            message_id=message.id,
            net_amount=amount,
            limit=self.max_net_amount,
            decision="approve" if approved else "reject",
        )
        return approved
