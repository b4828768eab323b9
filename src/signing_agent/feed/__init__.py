"""
feed/ — Real-time client feed: message schema and the reconnecting reader.
"""

from signing_agent.feed.feed_client import ConnectionState, FeedConnectionManager
from signing_agent.feed.protocol import FeedMessage, TransactionType, resource_for_type

__all__ = [
    "ConnectionState",
    "FeedConnectionManager",
    "FeedMessage",
    "TransactionType",
    "resource_for_type",
]
