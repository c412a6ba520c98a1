"""HTTP transport collaborator.

The engine never talks to the network itself: it builds an
:class:`HttpRequest` and hands it to a transport, any awaitable callable
``transport(request) -> str`` returning the response body. Failures are
reported by raising; :class:`TransportError` carries the HTTP status and
body when the server answered. ``HttpRequest.url`` already carries the
extra request parameters (see :func:`with_query`); ``options`` repeats them
alongside the transport settings (``timeout``, ``charset``).

:class:`HttpxTransport` is the default implementation, on top of an
``httpx.AsyncClient``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

# Request options consumed by the transport rather than sent to the server
RESERVED_OPTIONS = ("timeout", "charset")


@dataclass
class HttpRequest:
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    data: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)


class TransportError(Exception):
    """HTTP-level failure; ``status_code`` is ``None`` when no response was received."""

    def __init__(self, status_code: Optional[int], message: str, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.body = body


def with_query(url: str, options: Optional[Dict[str, Any]] = None) -> str:
    """``url`` with the non-reserved ``options`` appended as URL-encoded query parameters."""
    params = {
        key: value
        for key, value in (options or {}).items()
        if key not in RESERVED_OPTIONS and value is not None
    }
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode({k: str(v) for k, v in params.items()})}"


class HttpxTransport:
    """Default transport, one pooled ``httpx.AsyncClient`` per instance."""

    def __init__(self, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def __call__(self, request: HttpRequest) -> str:
        charset = request.options.get("charset") or "UTF-8"
        timeout = request.options.get("timeout", self.timeout)
        content = request.data.encode(charset) if request.data is not None else None
        try:
            response = await self._get_client().request(
                request.method,
                request.url,
                headers=request.headers,
                content=content,
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(None, f"{e.__class__.__name__}: {e}") from e
        if response.status_code >= 400:
            raise TransportError(response.status_code, response.reason_phrase, response.text)
        return response.text

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
