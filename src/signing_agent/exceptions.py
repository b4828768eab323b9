"""
exceptions.py — Signing Agent Error Hierarchy

All signing-agent specific exceptions live here. Every layer raises typed
subclasses of SigningAgentError — never bare Exception.

Import from here, not from individual modules:
    from signing_agent.exceptions import SigningError, RegistrationError

Hierarchy:
    SigningAgentError
    ├── ConfigError
    ├── SigningError
    │   ├── MissingKeyError
    │   └── BodySerializationError
    ├── RegistrationError
    └── FeedError
        └── FeedMessageError
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class SigningAgentError(Exception):
    """Base class for all signing agent exceptions."""


class ConfigError(SigningAgentError):
    """Raised by Settings.validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Request signing
# ─────────────────────────────────────────────────────────────────────────────

class SigningError(SigningAgentError):
    """A partner request could not be signed. The request must not be sent."""


class MissingKeyError(SigningError):
    """No private key is loaded, so nothing can be signed."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or "No private key configured; cannot sign request.")


class BodySerializationError(SigningError):
    """The request body could not be serialized to JSON for signing."""

    def __init__(self, body_type: str, message: str = "") -> None:
        self.body_type = body_type
        super().__init__(
            message or f"Request body of type '{body_type}' is not JSON serializable."
        )


# ─────────────────────────────────────────────────────────────────────────────
# Session / registration
# ─────────────────────────────────────────────────────────────────────────────

class RegistrationError(SigningAgentError):
    """The agent could not be registered, or its identity was reassigned."""


# ─────────────────────────────────────────────────────────────────────────────
# Feed
# ─────────────────────────────────────────────────────────────────────────────

class FeedError(SigningAgentError):
    """Base for feed connection and feed payload errors."""


class FeedMessageError(FeedError):
    """A feed payload is not a valid transaction message."""

    def __init__(self, reason: str, payload: str = "") -> None:
        self.reason = reason
        self.payload = payload
        super().__init__(f"Malformed feed message: {reason}")


__all__ = [
    "SigningAgentError",
    "ConfigError",
    # Signing
    "SigningError",
    "MissingKeyError",
    "BodySerializationError",
    # Session
    "RegistrationError",
    # Feed
    "FeedError",
    "FeedMessageError",
]
