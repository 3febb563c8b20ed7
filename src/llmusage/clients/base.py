from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from llmusage.errors import (
    HTTPStatusError,
    InvalidResponseError,
    NetworkError,
    NoTokenError,
    TokenExpiredError,
)
from llmusage.models import Account, Service, Token, UsageData

DEFAULT_HTTP_TIMEOUT = 15.0


def require_token(account: Account) -> Token:
    """Return the account's primary token or raise :class:`NoTokenError`."""
    token = account.primary_token
    if token is None:
        raise NoTokenError()
    return token


def parse_json_response(resp: httpx.Response) -> dict:
    """Map a response onto the usage error taxonomy and decode its JSON body."""
    if resp.status_code in (401, 403):
        raise TokenExpiredError()
    if not resp.is_success:
        raise HTTPStatusError(resp.status_code)
    try:
        data = resp.json()
    except ValueError as exc:
        raise InvalidResponseError(f"Response body is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidResponseError("Expected a JSON object")
    return data


class BaseUsageClient(ABC):
    """Fetches one service's usage for an account and normalizes it.

    ``fetch_usage`` raises only :class:`~llmusage.errors.UsageClientError`
    subclasses.  ``transport`` is forwarded to ``httpx.AsyncClient`` and
    exists so tests can substitute ``httpx.MockTransport``.
    """

    service: Service
    settings_url: Optional[str] = None

    def __init__(
        self,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport

    def _client(self, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport, **kwargs
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[dict] = None,
        json: Any = None,
        content: Optional[bytes] = None,
    ) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(
                    method, url, headers=headers, json=json, content=content
                )
        except httpx.TransportError as exc:
            raise NetworkError(exc) from exc

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> dict:
        resp = await self._request(method, url, **kwargs)
        return parse_json_response(resp)

    @abstractmethod
    async def fetch_usage(self, account: Account) -> UsageData:
        ...

    async def refresh_token(self, token: Token) -> Optional[Token]:
        """Exchange refresh material for a new token.

        Services without a refresh flow return None.
        """
        return None
