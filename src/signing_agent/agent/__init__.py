"""
agent/ — Session orchestration, decision pipeline and policy helpers.
"""

from signing_agent.agent.pipeline import Decision, DecisionPipeline
from signing_agent.agent.policy import AmountLimitPolicy, TransactionPolicy, evaluate_policy
from signing_agent.agent.session import AgentIdentity, SigningAgentClient

__all__ = [
    "AgentIdentity",
    "AmountLimitPolicy",
    "Decision",
    "DecisionPipeline",
    "SigningAgentClient",
    "TransactionPolicy",
    "evaluate_policy",
]
