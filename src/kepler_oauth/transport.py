"""HTTP transport collaborators backed by httpx.

The flow engine only produces request descriptors and consumes response
descriptors. These adapters perform the actual exchange with httpx and
report every transport-level failure as TransportError. They never
retry; that decision stays with the caller.
"""

from __future__ import annotations

from types import TracebackType

import httpx

from kepler_oauth.exceptions import TransportError
from kepler_oauth.logging_config import get_logger
from kepler_oauth.oauth.flow import (
    AuthorizationCodeFlow,
    Failed,
    Succeeded,
    TokenExchange,
    TransportFailed,
)
from kepler_oauth.oauth.models import HttpRequest, HttpResponse

logger = get_logger(__name__)

# Default HTTP timeout for OAuth requests
DEFAULT_TIMEOUT = 30.0


def _to_response(response: httpx.Response) -> HttpResponse:
    return HttpResponse(
        status=response.status_code,
        headers=dict(response.headers),
        body=response.content,
    )


class HttpxTransport:
    """Synchronous transport using an httpx.Client."""

    def __init__(
        self,
        http_client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the transport.

        Args:
            http_client: Optional custom HTTP client
            timeout: Timeout for a client created by the transport
        """
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout

    def _get_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=self._timeout)
        return self._http_client

    def send(self, request: HttpRequest) -> HttpResponse:
        """Send a request and return the raw response.

        Non-2xx statuses are returned, not raised; the flow interprets them.

        Raises:
            TransportError: If no response was received
        """
        client = self._get_client()
        logger.debug("Sending %s %s", request.method, request.url)
        try:
            response = client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
            )
        except httpx.HTTPError as e:
            logger.error("HTTP request to %s failed: %s", request.url, type(e).__name__)
            raise TransportError(e) from e

        logger.debug("Received status %d from %s", response.status_code, request.url)
        return _to_response(response)

    def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def __enter__(self) -> HttpxTransport:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class AsyncHttpxTransport:
    """Asynchronous transport using an httpx.AsyncClient."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the transport.

        Args:
            http_client: Optional custom HTTP client
            timeout: Timeout for a client created by the transport
        """
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def send(self, request: HttpRequest) -> HttpResponse:
        """Send a request and return the raw response.

        Raises:
            TransportError: If no response was received
        """
        client = await self._get_client()
        logger.debug("Sending %s %s", request.method, request.url)
        try:
            response = await client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
            )
        except httpx.HTTPError as e:
            logger.error("HTTP request to %s failed: %s", request.url, type(e).__name__)
            raise TransportError(e) from e

        logger.debug("Received status %d from %s", response.status_code, request.url)
        return _to_response(response)

    async def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> AsyncHttpxTransport:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


def exchange_code(
    flow: AuthorizationCodeFlow,
    exchange: TokenExchange,
    transport: HttpxTransport,
) -> Succeeded | Failed | TransportFailed:
    """Perform one token exchange attempt and resume the flow with it.

    Args:
        flow: Flow waiting for a token response
        exchange: The TokenExchange the flow returned
        transport: Transport used to send the request

    Returns:
        The flow's output for the response or the transport failure
    """
    try:
        response = transport.send(exchange.to_http_request())
    except TransportError as e:
        return flow.resume_transport_error(e)
    finally:
        exchange.request.discard()
    return flow.resume_token_response(response)


async def async_exchange_code(
    flow: AuthorizationCodeFlow,
    exchange: TokenExchange,
    transport: AsyncHttpxTransport,
) -> Succeeded | Failed | TransportFailed:
    """Asynchronous variant of exchange_code."""
    try:
        response = await transport.send(exchange.to_http_request())
    except TransportError as e:
        return flow.resume_transport_error(e)
    finally:
        exchange.request.discard()
    return flow.resume_token_response(response)
