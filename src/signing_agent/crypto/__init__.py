"""
crypto/ — Partner request signing (RSA PKCS#1 v1.5 / SHA-256).
"""

from signing_agent.crypto.signer import (
    RequestSigner,
    SignedRequest,
    b64url_encode,
    serialize_body,
    string_to_sign,
    verify_signature,
)

__all__ = [
    "RequestSigner",
    "SignedRequest",
    "b64url_encode",
    "serialize_body",
    "string_to_sign",
    "verify_signature",
]
