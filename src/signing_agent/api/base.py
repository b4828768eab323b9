"""
api/base.py — Shared JSON-over-HTTP executor

Both service clients speak the same shape: JSON request, JSON response,
200 means success. A non-200 status, a transport failure or an unparsable
body is reported as None instead of raised, and logged here.
Callers decide what a None means for them.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from signing_agent.observability.logger import get_logger

log = get_logger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


class JsonHttpClient:
    """
    Thin async wrapper around httpx.AsyncClient.

    Async context manager — closes the underlying client on exit.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> "JsonHttpClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(
        self,
        method: str,
        url: str,
        *,
        content: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Optional[Any]:
        """
        Send one request and decode the JSON response.

        Returns the decoded JSON (``{}`` for an empty 200 body) or None on
        any failure. Never raises for HTTP or transport errors.
        """
        merged = dict(JSON_HEADERS)
        if headers:
            merged.update(headers)

        try:
            response = await self._client.request(
                method,
                url,
                content=content.encode("utf-8") if content is not None else None,
                headers=merged,
            )
        except httpx.HTTPError as e:
            log.warning(
                "http.transport_error",
                method=method,
                url=url,
                error=f"{type(e).__name__}: {e}",
            )
            return None

        if response.status_code != 200:
            log.warning(
                "http.non_200",
                method=method,
                url=url,
                status_code=response.status_code,
            )
            return None

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError:
            log.warning("http.invalid_json", method=method, url=url)
            return None
