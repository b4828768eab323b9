"""
signing_agent — Transaction-authorization agent client.

Registers with a custody/signing service, listens to its feed of pending
transactions, enriches each one from the partner API, asks a policy and
answers approve/reject.
"""

from signing_agent.agent.policy import AmountLimitPolicy, TransactionPolicy
from signing_agent.agent.session import SigningAgentClient
from signing_agent.feed.protocol import FeedMessage, TransactionType

__version__ = "0.1.0"

__all__ = [
    "AmountLimitPolicy",
    "FeedMessage",
    "SigningAgentClient",
    "TransactionPolicy",
    "TransactionType",
    "__version__",
]
