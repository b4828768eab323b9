"""
crypto/signer.py — Canonical Request Signer

Authenticates outbound partner-service requests. The partner verifies

    x-sign == b64url(RSA-PKCS1v15-SHA256(private_key, timestamp + url + body))

where `timestamp` is the x-timestamp header (unix seconds), `url` is the
full request URL including scheme, host, port and path, and `body` is the
exact JSON string transmitted (omitted when the request has no body).
No separators are inserted between the three parts. The HTTP method is
not part of the signed string.

Usage:
    signer = RequestSigner(pem_bytes)
    signed = signer.sign_request("GET", url)
    headers.update(signed.headers)
"""

from __future__ import annotations

import base64
import json
import time
from dataclasses import dataclass
from typing import Any, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from signing_agent.exceptions import BodySerializationError, MissingKeyError, SigningError
from signing_agent.observability.logger import get_logger

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Encoding helpers
# ─────────────────────────────────────────────────────────────────────────────

def b64url_encode(data: bytes) -> str:
    """URL-safe base64 ('+' → '-', '/' → '_') with trailing '=' stripped."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    """Inverse of b64url_encode. Restores the padding before decoding."""
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def serialize_body(body: Any) -> str:
    """
    Serialize a request body to the compact JSON string that is both signed
    and transmitted. Raises BodySerializationError for unserializable input.
    """
    try:
        return json.dumps(body, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise BodySerializationError(type(body).__name__) from e


def string_to_sign(timestamp: str, url: str, body_json: Optional[str] = None) -> str:
    return timestamp + url + (body_json if body_json is not None else "")


def current_timestamp() -> str:
    """Whole seconds since the epoch, as a decimal string."""
    return str(int(time.time()))


def load_private_key(pem: bytes) -> rsa.RSAPrivateKey:
    """Parse an unencrypted RSA private key (PKCS#1 or PKCS#8 PEM)."""
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as e:
        raise SigningError(f"Private key PEM could not be parsed: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise SigningError(
            f"Private key must be RSA, got {type(key).__name__}"
        )
    return key


def verify_signature(
    public_key: rsa.RSAPublicKey,
    signature: str,
    timestamp: str,
    url: str,
    body_json: Optional[str] = None,
) -> bool:
    """Return True if `signature` is valid for the canonical string."""
    try:
        raw = b64url_decode(signature)
    except (ValueError, TypeError):
        return False
    try:
        public_key.verify(
            raw,
            string_to_sign(timestamp, url, body_json).encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except InvalidSignature:
        return False
    return True


# ─────────────────────────────────────────────────────────────────────────────
# Signed request value
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SignedRequest:
    method: str
    url: str
    timestamp: str
    body_json: Optional[str]
    signature: str

    @property
    def headers(self) -> dict[str, str]:
        return {"x-timestamp": self.timestamp, "x-sign": self.signature}


# ─────────────────────────────────────────────────────────────────────────────
# Signer
# ─────────────────────────────────────────────────────────────────────────────

class RequestSigner:
    """
    Signs partner requests with the agent's RSA private key.

    The key is parsed once at construction and is read-only afterwards.
    A signer built without a key raises MissingKeyError on every sign
    attempt; it never produces an empty signature.
    """

    def __init__(self, private_key_pem: Optional[bytes]) -> None:
        self._key: Optional[rsa.RSAPrivateKey] = (
            load_private_key(private_key_pem) if private_key_pem else None
        )

    @property
    def has_key(self) -> bool:
        return self._key is not None

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        if self._key is None:
            raise MissingKeyError()
        return self._key.public_key()

    def sign(self, message: str) -> str:
        """Sign an arbitrary canonical string and return it b64url-encoded."""
        if self._key is None:
            raise MissingKeyError()
        raw = self._key.sign(message.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
        return b64url_encode(raw)

    def sign_request(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        body_json: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> SignedRequest:
        """
        Build the x-timestamp / x-sign pair for one request.

        Args:
            method:    HTTP method. Carried on the result, not signed.
            url:       Full request URL, exactly as it will be sent.
            body:      Value to serialize with serialize_body(). A str is
                       serialized too (it becomes a JSON string).
            body_json: Already-serialized JSON, signed and sent verbatim.
                       Mutually exclusive with `body`.
            timestamp: Override for tests. Defaults to the current time.
        """
        if self._key is None:
            raise MissingKeyError()

        if body is not None:
            if body_json is not None:
                raise ValueError("pass either body or body_json, not both")
            body_json = serialize_body(body)

        ts = timestamp if timestamp is not None else current_timestamp()
        signature = self.sign(string_to_sign(ts, url, body_json))

        log.debug(
            "signer.request_signed",
            method=method.upper(),
            url=url,
            timestamp=ts,
            has_body=body_json is not None,
        )
        return SignedRequest(
            method=method.upper(),
            url=url,
            timestamp=ts,
            body_json=body_json,
            signature=signature,
        )
