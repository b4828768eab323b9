"""
api/partner_client.py — Partner Service Client

Request executor for the partner (transaction detail) service. Every call
carries the static x-api-key plus x-timestamp / x-sign produced by the
RequestSigner. This is the only caller of the signer.

The body string that is signed is byte-for-byte the body that is sent, so
serialization happens exactly once, inside sign_request().
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx

from signing_agent.api.base import JsonHttpClient
from signing_agent.crypto.signer import RequestSigner
from signing_agent.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_PARTNER_URL = "https://play-api.qredo.network"
DEFAULT_API_BASE_PATH = "/api/v1/p"


class PartnerApiClient(JsonHttpClient):
    """Async client for the partner service. Signing errors propagate."""

    def __init__(
        self,
        api_key: str,
        signer: RequestSigner,
        *,
        base_url: str = DEFAULT_PARTNER_URL,
        api_base_path: str = DEFAULT_API_BASE_PATH,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(timeout=timeout, transport=transport)
        self._api_key = api_key
        self._signer = signer
        self._base_url = base_url.rstrip("/")
        self._api_base_path = api_base_path.rstrip("/")

    async def call(self, method: str, url: str, body: Any = None) -> Optional[Any]:
        """
        Execute one signed request.

        Raises:
            SigningError: the request could not be signed and was not sent.
        """
        signed = self._signer.sign_request(method, url, body)
        headers = {"x-api-key": self._api_key, **signed.headers}
        return await self._send(method, url, content=signed.body_json, headers=headers)

    def transaction_url(self, company_id: str, resource: str, transaction_id: str) -> str:
        return (
            f"{self._base_url}{self._api_base_path}/company/"
            f"{quote(company_id, safe='')}/{resource}/{quote(transaction_id, safe='')}"
        )

    async def get_transaction_details(
        self, company_id: str, resource: str, transaction_id: str
    ) -> Optional[Any]:
        """Fetch withdraw/transfer detail for one transaction, or None."""
        url = self.transaction_url(company_id, resource, transaction_id)
        details = await self.call("GET", url)
        if details is None:
            log.info(
                "partner_api.details_unavailable",
                resource=resource,
                transaction_id=transaction_id,
            )
        return details
