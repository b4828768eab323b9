"""
api/ — HTTP clients for the agent API (primary) and the partner service.
"""

from signing_agent.api.agent_client import AgentApiClient
from signing_agent.api.partner_client import PartnerApiClient

__all__ = ["AgentApiClient", "PartnerApiClient"]
