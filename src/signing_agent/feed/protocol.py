"""
feed/protocol.py — Client Feed Message Schema

Every feed frame is a JSON object describing one pending action:

    {
      "id": "2IXwq4klvWbnPf1YaAc1XD85jJX",
      "coreClientID": "98cTMMSPrDdcDDVU8idhuJGK2U1P4vmQcsp8wnED8pPR",
      "type": "ApproveWithdraw",
      "status": "pending",
      "timestamp": 1670341423,
      "expireTime": 1676184187
    }

Fields beyond these are kept verbatim in FeedMessage.raw.
"""

from __future__ import annotations

import json
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from signing_agent.exceptions import FeedMessageError


class TransactionType(str, Enum):
    """Action types the feed announces."""

    APPROVE_WITHDRAW = "ApproveWithdraw"
    APPROVE_TRANSFER = "ApproveTransfer"


def resource_for_type(message_type: str) -> str:
    """Partner-service resource segment for a feed message type."""
    if message_type == TransactionType.APPROVE_WITHDRAW.value:
        return "withdraw"
    return "transfer"


def _optional_int(d: dict[str, Any], key: str) -> Optional[int]:
    value = d.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FeedMessageError(f"'{key}' must be a number, got {type(value).__name__}")
    if isinstance(value, float) and not math.isfinite(value):
        raise FeedMessageError(f"'{key}' must be finite, got {value}")
    return int(value)


@dataclass
class FeedMessage:
    """
    One pending transaction delivered over the feed.

    `details` starts as None and is filled in by the decision pipeline
    before the policy sees the message.
    """
    id: str
    type: str = ""
    core_client_id: Optional[str] = None
    status: Optional[str] = None
    timestamp: Optional[int] = None
    expire_time: Optional[int] = None
    raw: dict[str, Any] = field(default_factory=dict)
    details: Optional[Any] = None

    @property
    def resource(self) -> str:
        return resource_for_type(self.type)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expire_time is None:
            return False
        return self.expire_time <= (time.time() if now is None else now)

    def get(self, key: str, default: Any = None) -> Any:
        """Read any wire field, including ones without a typed attribute."""
        return self.raw.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.raw[key]

    def to_dict(self) -> dict[str, Any]:
        d = dict(self.raw)
        d["details"] = self.details
        return d

    @classmethod
    def from_dict(cls, d: Any) -> "FeedMessage":
        if not isinstance(d, dict):
            raise FeedMessageError(f"expected a JSON object, got {type(d).__name__}")

        msg_id = d.get("id")
        if not isinstance(msg_id, str) or not msg_id:
            raise FeedMessageError("missing or empty 'id'")

        msg_type = d.get("type", "")
        if not isinstance(msg_type, str):
            raise FeedMessageError(f"'type' must be a string, got {type(msg_type).__name__}")

        return cls(
            id=msg_id,
            type=msg_type,
            core_client_id=d.get("coreClientID"),
            status=d.get("status"),
            timestamp=_optional_int(d, "timestamp"),
            expire_time=_optional_int(d, "expireTime"),
            raw=dict(d),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "FeedMessage":
        """Parse one feed frame. Raises FeedMessageError if it is malformed."""
        try:
            d = json.loads(raw)
        except (ValueError, TypeError, RecursionError) as e:
            preview = raw[:120] if isinstance(raw, str) else repr(raw[:120])
            raise FeedMessageError(f"invalid JSON ({type(e).__name__})", payload=preview) from e
        return cls.from_dict(d)
